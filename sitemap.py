import os
import xml.etree.ElementTree as ET
from datetime import date, datetime
from typing import Iterable, Optional

SITE_URL = os.getenv("SITE_URL", "http://localhost:8000")

SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"

STATIC_PAGES = [
    ("", "1.0"),
    ("about", "0.8"),
    ("contact", "0.7"),
    ("products", "0.9"),
]


def _lastmod(value, today: date) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value).date().isoformat()
        except ValueError:
            pass
    return today.isoformat()


def _url(urlset: ET.Element, loc: str, lastmod: str, priority: str) -> None:
    url = ET.SubElement(urlset, "url")
    ET.SubElement(url, "loc").text = loc
    ET.SubElement(url, "lastmod").text = lastmod
    ET.SubElement(url, "changefreq").text = "weekly"
    ET.SubElement(url, "priority").text = priority


def build_sitemap(base_url: str, products: Iterable[dict] = (), today: Optional[date] = None,
                  include_static: bool = True) -> str:
    today = today or date.today()
    base_url = base_url.rstrip("/")
    urlset = ET.Element("urlset", xmlns=SITEMAP_NS)
    pages = STATIC_PAGES if include_static else STATIC_PAGES[:1]
    for path, priority in pages:
        _url(urlset, f"{base_url}/{path}" if path else f"{base_url}/", today.isoformat(), priority)
    for p in products:
        if not p.get("slug"):
            continue
        _url(urlset, f"{base_url}/products/{p['slug']}",
             _lastmod(p.get("updated_at") or p.get("created_at"), today), "0.9")
    body = ET.tostring(urlset, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body
