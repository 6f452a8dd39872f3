import re
from typing import Optional

from bson import ObjectId


def slugify(name: str) -> str:
    s = (name or "").lower().strip()
    s = re.sub(r"[^a-z0-9\s-]", "", s)
    s = re.sub(r"\s+", "-", s)
    s = re.sub(r"-+", "-", s)
    return s or "product"


def is_slug_taken(collection, slug: str, exclude_id: Optional[str] = None) -> bool:
    query = {"slug": slug}
    if exclude_id:
        query["_id"] = {"$ne": ObjectId(exclude_id)}
    return collection.find_one(query) is not None


def generate_slug(collection, name: str, exclude_id: Optional[str] = None) -> str:
    """Unique slug for ``name``: "air-max", then "air-max-1", "air-max-2", ..."""
    base = slugify(name)
    slug = base
    count = 1
    while is_slug_taken(collection, slug, exclude_id):
        slug = f"{base}-{count}"
        count += 1
    return slug
