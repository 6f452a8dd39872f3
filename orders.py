import json
import logging
import os
import random
import time
from datetime import datetime
from typing import Dict, List, MutableMapping, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError

from cart import Cart
from catalog import get_products_by_ids
from schemas import Customer, Order, OrderItem

logger = logging.getLogger(__name__)

ORDER_NUMBER_KEY = "pendingOrderNumber"

SHIPPING_RATES: Dict[str, float] = {k.lower(): float(v) for k, v in json.loads(os.getenv("SHIPPING_RATES", "{}")).items()}
DEFAULT_SHIPPING_COST = float(os.getenv("DEFAULT_SHIPPING_COST", "0"))
FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD", "75000"))


class StockError(Exception):
    pass


# Order numbers

def new_order_number(now_ms: Optional[int] = None, rng: Optional[random.Random] = None) -> str:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    rng = rng or random
    return f"ORD-{str(now_ms)[-4:]}-{rng.randint(100000, 999999)}"


def issue_order_number(storage: MutableMapping[str, str]) -> str:
    """Pending order number for this browser, created on first checkout visit."""
    number = storage.get(ORDER_NUMBER_KEY)
    if not number:
        number = new_order_number()
        storage[ORDER_NUMBER_KEY] = number
    return number


def consume_order_number(storage: MutableMapping[str, str]) -> Optional[str]:
    return storage.pop(ORDER_NUMBER_KEY, None)


# Totals

def shipping_cost_for(state: Optional[str], subtotal: float) -> float:
    if subtotal > FREE_SHIPPING_THRESHOLD:
        return 0.0
    return SHIPPING_RATES.get((state or "").strip().lower(), DEFAULT_SHIPPING_COST)


def compute_totals(cart: Cart, state: Optional[str] = None) -> Dict[str, float]:
    subtotal = cart.total
    shipping = shipping_cost_for(state, subtotal) if cart.items else 0.0
    return {"subtotal": subtotal, "shipping_cost": shipping, "total": subtotal + shipping}


def build_order(cart: Cart, customer: Customer, payment_method: str, order_number: str,
                status: str = "pending", payment_reference: Optional[str] = None) -> Order:
    totals = compute_totals(cart, customer.state)
    return Order(
        order_number=order_number,
        items=[
            OrderItem(product_id=i.id, name=i.name, qty=i.qty, price=i.price, selected_size=i.selected_size)
            for i in cart.items
        ],
        customer=customer,
        payment_method=payment_method,
        status=status,
        payment_reference=payment_reference,
        **totals,
    )


def live_cart(db, cart: Cart) -> Cart:
    """Copy of ``cart`` priced from the products collection.

    Prices sent by the browser are display values only; orders and payment
    amounts are always computed from this copy.
    """
    live = get_products_by_ids(db, cart.product_ids)
    lines = []
    for item in cart.items:
        product = live.get(item.id)
        if product is None:
            raise StockError(f"Product {item.id} not found")
        lines.append(item.model_copy(update={
            "name": product.get("name", item.name),
            "price": float(product.get("price", 0)),
            "old_price": product.get("old_price"),
        }))
    return Cart(lines)


# Stock

def _load_products(db, items: List[OrderItem]) -> Dict[str, dict]:
    products: Dict[str, dict] = {}
    for item in items:
        if item.product_id in products:
            continue
        try:
            doc = db["products"].find_one({"_id": ObjectId(item.product_id)})
        except InvalidId:
            doc = None
        if not doc:
            raise StockError(f"Product {item.product_id} not found")
        products[item.product_id] = doc
    return products


def _apply(products: Dict[str, dict], items: List[OrderItem]) -> Dict[str, List[dict]]:
    new_sizes = {pid: [dict(s) for s in doc.get("sizes") or []] for pid, doc in products.items()}
    for item in items:
        sizes = new_sizes[item.product_id]
        entry = next((s for s in sizes if s.get("size") == item.selected_size), None)
        if entry is None:
            raise StockError(f"Size {item.selected_size} not found for product {item.product_id}")
        available = int(entry.get("stock", 0))
        if available < item.qty:
            raise StockError(
                f"Not enough stock for {item.name}(size: {item.selected_size}). Only {available} item(s) "
                f"is available, but you requested for {item.qty} item(s). Please adjust in cart"
            )
        entry["stock"] = available - item.qty
    return new_sizes


def check_stock(db, items: List[OrderItem]) -> None:
    _apply(_load_products(db, items), items)


def release_stock(db, items: List[OrderItem]) -> None:
    """Give back the quantities of ``items``."""
    for item in items:
        db["products"].update_one(
            {"_id": ObjectId(item.product_id), "sizes.size": item.selected_size},
            {"$inc": {"sizes.$.stock": item.qty}},
        )


def reserve_stock(db, items: List[OrderItem]) -> None:
    """Take every line out of stock, or none of them.

    Each line is a conditional ``$inc`` that only matches while the size
    still holds enough units, so two checkouts cannot both take the last one.
    """
    _apply(_load_products(db, items), items)
    done: List[OrderItem] = []
    try:
        for item in items:
            result = db["products"].update_one(
                {
                    "_id": ObjectId(item.product_id),
                    "sizes": {"$elemMatch": {"size": item.selected_size, "stock": {"$gte": item.qty}}},
                },
                {"$inc": {"sizes.$.stock": -item.qty}},
            )
            if result.matched_count == 0:
                raise StockError(
                    f"Not enough stock for {item.name}(size: {item.selected_size}). The stock changed while "
                    "your order was being placed. Please adjust in cart"
                )
            done.append(item)
    except Exception:
        release_stock(db, done)
        raise


def ensure_indexes(db) -> None:
    # one order per verified payment
    db["orders"].create_index("payment_reference", unique=True, sparse=True)


def save_order(db, order: Order) -> str:
    doc = order.model_dump()
    if doc.get("payment_reference") is None:
        # absent rather than null so the sparse unique index skips bank orders
        doc.pop("payment_reference", None)
    doc["created_at"] = datetime.utcnow()
    inserted = db["orders"].insert_one(doc).inserted_id
    logger.info("Saved order %s (%s)", order.order_number, order.payment_method)
    return str(inserted)


def place_order(db, order: Order) -> str:
    """Reserve stock for ``order`` and write it.

    A failed write gives the reserved stock back before the error propagates.
    """
    reserve_stock(db, order.items)
    try:
        return save_order(db, order)
    except PyMongoError:
        release_stock(db, order.items)
        raise
