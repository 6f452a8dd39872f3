"""
Product and category queries backing the storefront pages.

Listings load the whole products collection and sort/slice in Python, so
every page costs a full collection scan. That is fine for a small catalog.
"""
import logging
import random
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId

from database import get_documents, public

logger = logging.getLogger(__name__)

PRODUCTS_PER_PAGE = 12
SORT_KEYS = ("newest", "name", "priceLowToHigh", "priceHighToLow")


def sort_products(products: List[dict], sort_by: str = "newest") -> List[dict]:
    if sort_by == "name":
        return sorted(products, key=lambda p: (p.get("name") or "").lower())
    if sort_by == "priceLowToHigh":
        return sorted(products, key=lambda p: p.get("price", 0))
    if sort_by == "priceHighToLow":
        return sorted(products, key=lambda p: p.get("price", 0), reverse=True)
    return sorted(products, key=lambda p: p.get("created_at") or datetime.min, reverse=True)


def list_products(db, page: int = 1, sort_by: str = "newest", category: Optional[str] = None) -> Dict:
    filt = {"category": category} if category else {}
    products = [public(p) for p in db["products"].find(filt)]
    total = len(products)
    page = max(1, page)
    start = (page - 1) * PRODUCTS_PER_PAGE
    return {
        "products": sort_products(products, sort_by)[start:start + PRODUCTS_PER_PAGE],
        "total": total,
        "page": page,
        "pages": (total + PRODUCTS_PER_PAGE - 1) // PRODUCTS_PER_PAGE,
        "sort_by": sort_by,
    }


def get_product_by_slug(db, slug: str) -> Optional[dict]:
    return public(db["products"].find_one({"slug": slug}))


def get_products_by_ids(db, ids: Iterable[str]) -> Dict[str, dict]:
    oids = []
    for i in ids:
        try:
            oids.append(ObjectId(i))
        except (InvalidId, TypeError):
            continue
    if not oids:
        return {}
    return {str(p["_id"]): public(p) for p in db["products"].find({"_id": {"$in": oids}})}


def featured_products(db, limit: int = 4) -> List[dict]:
    docs = db["products"].find({"featured": True}).sort("created_at", -1).limit(limit)
    return [public(p) for p in docs]


def related_products(db, category: Optional[str], exclude_id: Optional[str] = None, limit: int = 4) -> List[dict]:
    if not category:
        return []
    filt = {"category": category}
    if exclude_id:
        try:
            filt["_id"] = {"$ne": ObjectId(exclude_id)}
        except InvalidId:
            pass
    return [public(p) for p in db["products"].find(filt).limit(limit)]


def random_products(db, exclude_ids: Iterable[str] = (), count: int = 4) -> List[dict]:
    excluded = set(exclude_ids)
    products = [public(p) for p in get_documents("products", database=db)]
    products = [p for p in products if p["id"] not in excluded]
    random.shuffle(products)
    return products[:count]


def all_categories(db) -> List[dict]:
    return [public(c) for c in db["categories"].find({})]


def sitemap_products(db) -> List[dict]:
    return list(db["products"].find({}, {"slug": 1, "updated_at": 1, "created_at": 1}))


class ProductFormError(ValueError):
    pass


def _number(value, label: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ProductFormError(f"{label} must be a number.")


def normalize_product(form) -> dict:
    """Validate an admin ``ProductIn`` and turn it into a products record."""
    if not form.name.strip():
        raise ProductFormError("Product name is required.")
    if not form.images:
        raise ProductFormError("Please upload at least one image before submitting.")
    if not form.sizes:
        raise ProductFormError("Add at least one size.")
    old_price = form.old_price
    return {
        "name": form.name.strip(),
        "price": _number(form.price, "Price"),
        "old_price": _number(old_price, "Old price") if old_price not in (None, "") else None,
        "description": form.description,
        "category": form.category or None,
        "images": list(form.images),
        # kept for older records and clients that read a single image
        "image": form.images[0],
        "sizes": [s.model_dump() for s in form.sizes],
        "featured": form.featured,
    }
