from datetime import datetime

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from auth import ensure_admin
from database import get_db
from storage import StorageError


class MemoryStorage:
    def __init__(self):
        self.objects = {}
        self.broken = set()

    def put(self, path, data, content_type=None):
        if any(path.endswith(name) for name in self.broken):
            raise IOError("upload refused")
        self.objects[path] = (data, content_type or "application/octet-stream")

    def get(self, path):
        if path not in self.objects:
            raise StorageError(path)
        return self.objects[path]

    def delete(self, path):
        if path not in self.objects:
            raise StorageError(path)
        del self.objects[path]


class StubVerifier:
    def __init__(self):
        self.result = {"success": True, "status": "success", "amount": 0, "currency": "NGN"}
        self.error = None
        self.calls = []

    def verify(self, reference):
        self.calls.append(reference)
        if self.error is not None:
            raise self.error
        return dict(self.result, reference=reference)


@pytest.fixture
def db():
    return mongomock.MongoClient().db


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def verifier():
    return StubVerifier()


@pytest.fixture
def client(db, storage, verifier):
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[main.get_storage] = lambda: storage
    main.app.dependency_overrides[main.get_verifier] = lambda: verifier
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(client, db):
    ensure_admin(db, "admin@storefront.io", "secret-pass")
    r = client.post("/auth/login", json={"email": "admin@storefront.io", "password": "secret-pass"})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['token']}"}


def make_product(db, name="Air Max", price=10000, sizes=((42, 5),), slug=None, **extra):
    doc = {
        "name": name,
        "price": price,
        "old_price": None,
        "images": [f"https://cdn.test/{name}.png"],
        "image": f"https://cdn.test/{name}.png",
        "slug": slug or name.lower().replace(" ", "-"),
        "category": "sneakers",
        "description": "",
        "sizes": [{"size": s, "stock": n} for s, n in sizes],
        "featured": False,
        "created_at": datetime(2024, 1, 1),
    }
    doc.update(extra)
    db.products.insert_one(doc)
    return doc


def cart_line(product, size=42, qty=1):
    return {
        "id": str(product["_id"]),
        "name": product["name"],
        "price": product["price"],
        "image": product.get("image"),
        "slug": product.get("slug"),
        "sizes": product.get("sizes", []),
        "selected_size": size,
        "qty": qty,
    }


CUSTOMER = {
    "firstname": "Ada",
    "lastname": "Obi",
    "phone": "08030000000",
    "email": "ada@mail.com",
    "address": "12 Marina Road",
    "state": "Lagos",
    "newsletter": True,
    "terms": True,
}
