from cart import Cart, reconcile
from schemas import CartItem


def item(pid="p1", size=42, qty=1, price=100.0, name="Air Max"):
    return CartItem(id=pid, name=name, price=price, selected_size=size, qty=qty,
                    sizes=[{"size": size, "stock": 10}])


def live(pid="p1", price=100.0, stock=10, size=42, name="Air Max"):
    return {"id": pid, "name": name, "price": price, "images": ["img.png"], "slug": "air-max",
            "sizes": [{"size": size, "stock": stock}]}


def test_same_product_and_size_merges_quantities():
    cart = Cart()
    cart.add(item(qty=2))
    cart.add(item(qty=3))
    assert len(cart.items) == 1
    assert cart.items[0].qty == 5


def test_different_sizes_are_separate_lines():
    cart = Cart([item(size=42), item(size=43)])
    assert len(cart.items) == 2
    assert cart.product_ids == ["p1"]
    assert cart.key == "p1"


def test_update_and_remove():
    cart = Cart([item(), item(pid="p2")])
    cart.update_qty("p1", 42, 4)
    assert cart.find("p1", 42).qty == 4
    cart.update_qty("p1", 42, 0)
    assert cart.find("p1", 42) is None
    cart.remove("p2", 42)
    assert cart.items == []


def test_total_and_count():
    cart = Cart([item(price=10000, qty=2), item(pid="p2", price=500, qty=1)])
    assert cart.total == 20500
    assert cart.count == 3
    assert cart.key == "p1,p2"


def test_storage_boundary():
    cart = Cart([item(qty=2)])
    restored = Cart.from_json(cart.to_json())
    assert [i.model_dump() for i in restored.items] == [i.model_dump() for i in cart.items]
    assert Cart.from_json("{not json").items == []
    assert Cart.from_json(None).items == []


def test_reconcile_clamps_quantity_with_one_notice():
    result = reconcile([item(qty=5)], {"p1": live(stock=2)})
    assert result.items[0].qty == 2
    assert len(result.notices) == 1
    assert "Air Max" in result.notices[0] and "42" in result.notices[0]


def test_reconcile_refreshes_live_fields():
    result = reconcile([item(price=100.0, name="Old")], {"p1": live(price=150.0, name="New")})
    line = result.items[0]
    assert line.price == 150.0
    assert line.name == "New"
    assert line.image == "img.png"
    assert result.notices == []


def test_reconcile_drops_missing_products_for_good():
    first = reconcile([item(), item(pid="gone")], {"p1": live()})
    assert [i.id for i in first.items] == ["p1"]
    second = reconcile(first.items, {"p1": live()})
    assert [i.id for i in second.items] == ["p1"]


def test_reconcile_removes_sold_out_size():
    result = reconcile([item(qty=1)], {"p1": live(stock=0)})
    assert result.items == []
    assert len(result.notices) == 1


def test_reconcile_removes_size_no_longer_offered():
    result = reconcile([item(size=44, qty=2), item(size=42)], {"p1": live(size=42)})
    assert [i.selected_size for i in result.items] == [42]
    assert result.notices == ["Air Max (size 44) is out of stock and was removed"]
