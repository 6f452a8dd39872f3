"""
Shopping cart held by the browser.

The server never stores a cart. Each request carries the serialized cart the
client keeps in local storage; the handlers build a ``Cart`` from it, apply
one operation and hand the result back for the client to persist.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from schemas import CartItem, Size, SizeStock

logger = logging.getLogger(__name__)


def same_line(item: CartItem, product_id: str, size: Size) -> bool:
    return item.id == product_id and item.selected_size == size


class Cart:
    def __init__(self, items: Optional[Iterable[CartItem]] = None):
        self.items: List[CartItem] = []
        for item in items or []:
            self.add(item)

    def find(self, product_id: str, size: Size) -> Optional[CartItem]:
        for item in self.items:
            if same_line(item, product_id, size):
                return item
        return None

    def add(self, item: CartItem) -> CartItem:
        existing = self.find(item.id, item.selected_size)
        if existing is not None:
            existing.qty += item.qty
            return existing
        line = item.model_copy(deep=True)
        self.items.append(line)
        return line

    def remove(self, product_id: str, size: Size) -> None:
        self.items = [i for i in self.items if not same_line(i, product_id, size)]

    def update_qty(self, product_id: str, size: Size, qty: int) -> None:
        if qty < 1:
            self.remove(product_id, size)
            return
        item = self.find(product_id, size)
        if item is not None:
            item.qty = qty

    def clear(self) -> None:
        self.items = []

    @property
    def total(self) -> float:
        return sum(i.price * i.qty for i in self.items)

    @property
    def count(self) -> int:
        return sum(i.qty for i in self.items)

    @property
    def product_ids(self) -> List[str]:
        seen: List[str] = []
        for item in self.items:
            if item.id not in seen:
                seen.append(item.id)
        return seen

    @property
    def key(self) -> str:
        """Changes whenever the set of products in the cart changes."""
        return ",".join(self.product_ids)

    def summary(self) -> Dict[str, Any]:
        return {
            "items": [i.model_dump() for i in self.items],
            "total": self.total,
            "count": self.count,
            "key": self.key,
        }

    # Browser storage boundary

    def to_json(self) -> str:
        return json.dumps([i.model_dump() for i in self.items])

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "Cart":
        if not raw:
            return cls()
        try:
            data = json.loads(raw)
            return cls(CartItem.model_validate(d) for d in data)
        except (ValueError, TypeError, ValidationError):
            logger.warning("Discarding unreadable stored cart")
            return cls()


@dataclass
class ReconcileResult:
    items: List[CartItem]
    notices: List[str] = field(default_factory=list)


def stock_for(sizes: Iterable[Any], size: Size) -> Optional[int]:
    for s in sizes:
        entry = s if isinstance(s, SizeStock) else SizeStock.model_validate(s)
        if entry.size == size:
            return entry.stock
    return None


def reconcile(items: Iterable[CartItem], live_products: Dict[str, dict]) -> ReconcileResult:
    """Refresh cached line items against live product records keyed by id.

    Items whose product is gone are dropped. Quantities above the live stock
    for the selected size are clamped, one notice per clamp; a size with no
    stock left (or no longer offered) removes the line.
    """
    result = ReconcileResult(items=[])
    for item in items:
        live = live_products.get(item.id)
        if live is None:
            continue
        sizes = [SizeStock.model_validate(s) for s in live.get("sizes") or []]
        images = live.get("images") or []
        fresh = item.model_copy(update={
            "name": live.get("name", item.name),
            "price": float(live.get("price", item.price)),
            "old_price": live.get("old_price"),
            "image": live.get("image") or (images[0] if images else item.image),
            "slug": live.get("slug", item.slug),
            "sizes": sizes,
        })
        stock = stock_for(sizes, item.selected_size)
        if not stock:
            result.notices.append(f"{fresh.name} (size {item.selected_size}) is out of stock and was removed")
            continue
        if fresh.qty > stock:
            fresh.qty = stock
            result.notices.append(f"{fresh.name} (size {item.selected_size}) reduced to {stock}, the quantity in stock")
        result.items.append(fresh)
    return result
