from storage import public_url

from conftest import make_product

PRODUCT_FORM = {
    "name": "Air Max",
    "price": "25000",
    "old_price": "30000",
    "description": "Everyday runner",
    "category": "sneakers",
    "images": ["https://shop.test/o/products%2F1-0-a.png?alt=media", "https://shop.test/o/products%2F1-1-b.png?alt=media"],
    "sizes": [{"size": 42, "stock": 3}],
    "featured": True,
}


def test_admin_routes_require_admin(client, db):
    assert client.get("/admin/orders").status_code in (401, 403)
    assert client.get("/admin/orders", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_login_rejects_bad_password(client, admin_headers):
    r = client.post("/auth/login", json={"email": "admin@storefront.io", "password": "wrong"})
    assert r.status_code == 401
    assert client.get("/me", headers=admin_headers).json()["is_admin"] is True


def test_create_product_normalizes_and_slugs(client, db, admin_headers):
    r = client.post("/admin/products", json=PRODUCT_FORM, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["slug"] == "air-max"
    doc = db.products.find_one({"slug": "air-max"})
    assert doc["price"] == 25000.0
    assert doc["old_price"] == 30000.0
    assert doc["image"] == PRODUCT_FORM["images"][0]
    assert doc["sizes"] == [{"size": 42, "stock": 3}]

    second = client.post("/admin/products", json=PRODUCT_FORM, headers=admin_headers)
    assert second.json()["slug"] == "air-max-1"


def test_create_product_validation(client, db, admin_headers):
    for change, message in [
        ({"name": " "}, "Product name is required."),
        ({"images": []}, "Please upload at least one image before submitting."),
        ({"sizes": []}, "Add at least one size."),
        ({"price": "abc"}, "Price must be a number."),
    ]:
        r = client.post("/admin/products", json=dict(PRODUCT_FORM, **change), headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["detail"] == message
    assert db.products.count_documents({}) == 0


def test_update_product_keeps_slug(client, db, admin_headers):
    make_product(db, name="Air Max")
    r = client.put("/admin/products/air-max", json=dict(PRODUCT_FORM, name="Air Max 2"), headers=admin_headers)
    assert r.json()["updated"] is True
    doc = db.products.find_one({"slug": "air-max"})
    assert doc["name"] == "Air Max 2"
    assert client.put("/admin/products/nope", json=PRODUCT_FORM, headers=admin_headers).status_code == 404


def test_upload_and_delete_images(client, db, storage, admin_headers):
    storage.broken.add("bad.png")
    r = client.post("/admin/uploads", headers=admin_headers, files=[
        ("files", ("a.png", b"aaa", "image/png")),
        ("files", ("bad.png", b"bbb", "image/png")),
    ])
    body = r.json()
    assert len(body["urls"]) == 1
    assert [(f["index"], f["filename"]) for f in body["failures"]] == [(1, "bad.png")]
    assert body["progress"] == [100, 0]

    url = body["urls"][0]
    path = next(iter(storage.objects))
    served = client.get(f"/o/{path}")
    assert served.content == b"aaa"
    assert served.headers["content-type"] == "image/png"

    make_product(db, name="Air Max", images=[url, "https://cdn.test/other.png"], image=url)
    r = client.delete("/admin/products/air-max/images", params={"url": url}, headers=admin_headers)
    assert r.json() == {"images": ["https://cdn.test/other.png"], "blob_deleted": True}
    assert storage.objects == {}
    assert db.products.find_one({"slug": "air-max"})["image"] == "https://cdn.test/other.png"


def test_delete_image_when_blob_is_already_gone(client, db, admin_headers):
    url = public_url("https://shop.test", "products/1-0-gone.png")
    make_product(db, name="Air Max", images=[url], image=url)
    r = client.delete("/admin/products/air-max/images", params={"url": url}, headers=admin_headers)
    assert r.json() == {"images": [], "blob_deleted": False}


def test_orders_list_and_delete(client, db, admin_headers):
    from datetime import datetime

    first = db.orders.insert_one({"order_number": "ORD-1", "created_at": datetime(2024, 1, 1)}).inserted_id
    db.orders.insert_one({"order_number": "ORD-2", "created_at": datetime(2024, 2, 1)})
    orders = client.get("/admin/orders", headers=admin_headers).json()["orders"]
    assert [o["order_number"] for o in orders] == ["ORD-2", "ORD-1"]
    assert client.delete(f"/admin/orders/{first}", headers=admin_headers).json()["deleted"] is True
    assert client.delete(f"/admin/orders/{first}", headers=admin_headers).status_code == 404
    assert client.delete("/admin/orders/not-an-id", headers=admin_headers).status_code == 404


def test_delete_product(client, db, admin_headers):
    make_product(db, name="Air Max")
    assert client.delete("/admin/products/air-max", headers=admin_headers).json()["deleted"] is True
    assert db.products.count_documents({}) == 0
