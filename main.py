import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Literal, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, FastAPI, File, HTTPException, Query, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
from auth import create_token, ensure_admin, get_current_user, require_admin, verify_password
from cart import Cart, reconcile
from catalog import (
    ProductFormError,
    all_categories,
    featured_products,
    get_product_by_slug,
    get_products_by_ids,
    list_products,
    normalize_product,
    random_products,
    related_products,
    sitemap_products,
)
from database import create_document, get_db, public
from orders import (
    StockError,
    build_order,
    check_stock,
    compute_totals,
    consume_order_number,
    ensure_indexes,
    issue_order_number,
    live_cart,
    place_order,
    save_order,
)
from payments import PAYMENT_CURRENCY, PaymentVerificationError, PaystackClient, to_minor_units, widget_config
from schemas import CartItem, Category, Customer, ProductIn, Size
from sitemap import SITE_URL, build_sitemap
from slugs import generate_slug, slugify
from storage import GridFSStorage, PendingUpload, StorageError, delete_image, upload_batch

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

def prepare_database():
    if database.db is None:
        return
    try:
        ensure_indexes(database.db)
    except PyMongoError:
        logger.exception("Could not create indexes")
    email = os.getenv("ADMIN_EMAIL")
    password = os.getenv("ADMIN_PASSWORD")
    if not email or not password:
        return
    try:
        ensure_admin(database.db, email, password)
    except PyMongoError:
        logger.exception("Could not seed admin user")


@asynccontextmanager
async def lifespan(app: FastAPI):
    prepare_database()
    yield


# App setup
app = FastAPI(title="Storefront API", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependencies
def get_storage(db=Depends(get_db)):
    return GridFSStorage(db)


def get_verifier():
    return PaystackClient()


# Schemas (request/response)
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class CartRequest(BaseModel):
    cart: List[CartItem] = Field(default_factory=list)


class CartAddRequest(CartRequest):
    item: CartItem


class CartLineRequest(CartRequest):
    product_id: str
    size: Size
    qty: int = 1


class StorageRequest(BaseModel):
    storage: Dict[str, str] = Field(default_factory=dict)


class QuoteRequest(CartRequest):
    state: Optional[str] = None


class PaymentInitRequest(CartRequest):
    customer: Customer
    order_number: str


class CheckoutRequest(CartRequest):
    customer: Customer
    payment_method: Literal["bank", "paystack"]
    order_number: str
    payment_reference: Optional[str] = None
    storage: Dict[str, str] = Field(default_factory=dict)


class VerifyRequest(BaseModel):
    reference: Optional[str] = None


def oid(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=404, detail="Not found")


# Health and helpers
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# Auth
@app.post("/auth/login")
def login(payload: LoginRequest, db=Depends(get_db)):
    user = db["user"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("hashed_password", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_token(user)
    return {"token": token, "user": {"id": str(user["_id"]), "name": user.get("name"), "email": user["email"],
                                     "is_admin": user.get("is_admin", False)}}


@app.get("/me")
async def me(current_user: dict = Depends(get_current_user)):
    return {
        "id": str(current_user["_id"]),
        "name": current_user.get("name"),
        "email": current_user.get("email"),
        "is_admin": current_user.get("is_admin", False),
    }


# Products
@app.get("/api/products")
def api_list_products(page: int = 1, sortBy: str = "newest", db=Depends(get_db)):
    return list_products(db, page=page, sort_by=sortBy)


@app.get("/api/products/featured")
def api_featured_products(limit: int = 4, db=Depends(get_db)):
    return {"products": featured_products(db, limit)}


@app.get("/api/products/{slug}")
def api_get_product(slug: str, db=Depends(get_db)):
    p = get_product_by_slug(db, slug)
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")
    p["in_stock"] = sum(s.get("stock", 0) for s in p.get("sizes") or []) > 0
    return p


@app.get("/api/products/{slug}/related")
def api_related_products(slug: str, db=Depends(get_db)):
    p = get_product_by_slug(db, slug)
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"products": related_products(db, p.get("category"), p["id"])}


@app.get("/api/random-products")
def api_random_products(excludeIds: List[str] = Query(default=[]), db=Depends(get_db)):
    try:
        return random_products(db, excludeIds)
    except PyMongoError:
        logger.exception("Error fetching random products")
        raise HTTPException(status_code=500, detail="Internal server error")


@app.get("/api/collections/{category}")
def api_collection(category: str, page: int = 1, sortBy: str = "newest", db=Depends(get_db)):
    result = list_products(db, page=page, sort_by=sortBy, category=category)
    result["category"] = category
    return result


@app.get("/api/categories")
def api_categories(db=Depends(get_db)):
    return {"categories": all_categories(db)}


@app.get("/sitemap.xml")
def sitemap(db=Depends(get_db)):
    try:
        xml = build_sitemap(SITE_URL, sitemap_products(db))
    except PyMongoError:
        logger.exception("Error generating sitemap")
        xml = build_sitemap(SITE_URL, include_static=False)
    return Response(content=xml, media_type="application/xml",
                    headers={"Cache-Control": "public, s-maxage=86400, stale-while-revalidate"})


# Cart
@app.post("/api/cart/add")
def cart_add(payload: CartAddRequest):
    cart = Cart(payload.cart)
    cart.add(payload.item)
    return cart.summary()


@app.post("/api/cart/update")
def cart_update(payload: CartLineRequest):
    cart = Cart(payload.cart)
    cart.update_qty(payload.product_id, payload.size, payload.qty)
    return cart.summary()


@app.post("/api/cart/remove")
def cart_remove(payload: CartLineRequest):
    cart = Cart(payload.cart)
    cart.remove(payload.product_id, payload.size)
    return cart.summary()


@app.post("/api/cart/clear")
def cart_clear():
    return Cart().summary()


@app.post("/api/cart/reconcile")
def cart_reconcile(payload: CartRequest, db=Depends(get_db)):
    cart = Cart(payload.cart)
    try:
        live = get_products_by_ids(db, cart.product_ids)
    except PyMongoError:
        logger.exception("Cart reconciliation fetch failed")
        summary = cart.summary()
        summary.update({"notices": [], "reconciled": False})
        return summary
    result = reconcile(cart.items, live)
    summary = Cart(result.items).summary()
    summary.update({"notices": result.notices, "reconciled": True})
    return summary


# Checkout & Orders
@app.post("/api/checkout/order-number")
def checkout_order_number(payload: StorageRequest):
    storage = dict(payload.storage)
    number = issue_order_number(storage)
    return {"order_number": number, "storage": storage}


@app.delete("/api/checkout/order-number")
def checkout_drop_order_number(payload: StorageRequest):
    storage = dict(payload.storage)
    consume_order_number(storage)
    return {"storage": storage}


@app.post("/api/checkout/quote")
def checkout_quote(payload: QuoteRequest):
    return compute_totals(Cart(payload.cart), payload.state)


def priced_cart(db, items: List[CartItem]) -> Cart:
    cart = Cart(items)
    if not cart.items:
        raise HTTPException(status_code=400, detail="Cart is empty")
    try:
        return live_cart(db, cart)
    except StockError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PyMongoError:
        logger.exception("Could not load products for checkout")
        raise HTTPException(status_code=500, detail="Failed to load products. Please try again.")


@app.post("/api/checkout/payment")
def checkout_payment(payload: PaymentInitRequest, db=Depends(get_db)):
    cart = priced_cart(db, payload.cart)
    order = build_order(cart, payload.customer, "paystack", payload.order_number)
    try:
        check_stock(db, order.items)
    except StockError as e:
        raise HTTPException(status_code=409, detail=str(e))
    customer = payload.customer
    return widget_config(
        email=customer.email,
        amount=order.total,
        reference=payload.order_number,
        metadata={"firstname": customer.firstname, "lastname": customer.lastname, "phone": customer.phone},
    )


def pending_response(order, storage: Dict[str, str]) -> JSONResponse:
    return JSONResponse(status_code=202, content={
        "order_number": order.order_number,
        "status": "pending",
        "message": ("Your payment has been processed successfully, but there was an issue processing your "
                    f"order. Please contact support with your reference number: {order.payment_reference}"),
        "redirect": f"/payment-success/pending?reference={order.payment_reference}",
        "clear_cart": True,
        "storage": storage,
    })


@app.post("/api/checkout")
def checkout(payload: CheckoutRequest, db=Depends(get_db), verifier=Depends(get_verifier)):
    cart = priced_cart(db, payload.cart)
    storage = dict(payload.storage)
    order = build_order(cart, payload.customer, payload.payment_method, payload.order_number)

    if payload.payment_method == "paystack":
        reference = payload.payment_reference or payload.order_number
        try:
            verification = verifier.verify(reference)
        except PaymentVerificationError as e:
            raise HTTPException(status_code=e.status_code, detail={"code": e.code, "message": e.message})
        if (verification.get("status") != "success"
                or verification.get("amount") != to_minor_units(order.total)
                or verification.get("currency") != PAYMENT_CURRENCY):
            logger.warning("Rejected payment %s: %s", reference, verification)
            raise HTTPException(status_code=402, detail="Payment verification failed. Please contact support.")
        if db["orders"].find_one({"payment_reference": reference}):
            logger.warning("Payment %s was already used for an order", reference)
            raise HTTPException(status_code=409, detail="This payment has already been used for an order.")
        order.status = "paid"
        order.payment_reference = reference
        try:
            order_id = place_order(db, order)
        except DuplicateKeyError:
            logger.warning("Payment %s was already used for an order", reference)
            raise HTTPException(status_code=409, detail="This payment has already been used for an order.")
        except (StockError, PyMongoError):
            logger.exception("Order placement failed after successful payment %s", reference)
            order.status = "payment_received_unfulfilled"
            try:
                save_order(db, order)
            except PyMongoError:
                logger.exception("Could not record unfulfilled order %s", reference)
            consume_order_number(storage)
            return pending_response(order, storage)
    else:
        try:
            order_id = place_order(db, order)
        except StockError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except PyMongoError:
            logger.exception("Failed to save order %s", order.order_number)
            raise HTTPException(status_code=500, detail="Failed to save order. Please try again.")

    consume_order_number(storage)
    response = {
        "order_id": order_id,
        "order_number": order.order_number,
        "status": order.status,
        "payment_method": order.payment_method,
        "subtotal": order.subtotal,
        "shipping_cost": order.shipping_cost,
        "total": order.total,
        "redirect": f"/success?orderNumber={order.order_number}",
        "clear_cart": True,
        "storage": storage,
    }
    if payload.payment_method == "bank":
        response["transfer_reference"] = order.order_number
    return response


@app.get("/api/orders/{order_number}/confirmation")
def order_confirmation(order_number: str, db=Depends(get_db)):
    order = db["orders"].find_one({"order_number": order_number})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return {
        "order_number": order["order_number"],
        "status": order.get("status"),
        "payment_method": order.get("payment_method"),
        "items": order.get("items", []),
        "total": order.get("total"),
    }


@app.post("/api/payments/verify")
def payments_verify(payload: VerifyRequest, verifier=Depends(get_verifier)):
    try:
        return verifier.verify(payload.reference)
    except PaymentVerificationError as e:
        raise HTTPException(status_code=e.status_code, detail={"code": e.code, "message": e.message})


# Blob storage
@app.get("/o/{path:path}")
def blob(path: str, storage=Depends(get_storage)):
    try:
        data, content_type = storage.get(path)
    except StorageError:
        raise HTTPException(status_code=404, detail="Not found")
    return Response(content=data, media_type=content_type)


# Admin
@app.post("/admin/uploads")
async def admin_upload(files: List[UploadFile] = File(...), storage=Depends(get_storage),
                       user: dict = Depends(require_admin)):
    pending = [PendingUpload(f.filename or "file", await f.read(), f.content_type) for f in files]
    batch = await upload_batch(storage, pending, SITE_URL)
    return {"urls": batch.urls, "failures": batch.failures, "progress": batch.progress}


@app.post("/admin/products")
def admin_create_product(form: ProductIn, db=Depends(get_db), user: dict = Depends(require_admin)):
    try:
        doc = normalize_product(form)
    except ProductFormError as e:
        raise HTTPException(status_code=400, detail=str(e))
    doc["slug"] = generate_slug(db["products"], doc["name"])
    doc["created_at"] = doc["updated_at"] = datetime.utcnow()
    inserted = db["products"].insert_one(doc).inserted_id
    logger.info("Created product %s", doc["slug"])
    return {"id": str(inserted), "slug": doc["slug"]}


@app.put("/admin/products/{slug}")
def admin_update_product(slug: str, form: ProductIn, db=Depends(get_db), user: dict = Depends(require_admin)):
    existing = db["products"].find_one({"slug": slug})
    if not existing:
        raise HTTPException(status_code=404, detail="Product not found")
    try:
        doc = normalize_product(form)
    except ProductFormError as e:
        raise HTTPException(status_code=400, detail=str(e))
    doc["updated_at"] = datetime.utcnow()
    db["products"].update_one({"_id": existing["_id"]}, {"$set": doc})
    return {"id": str(existing["_id"]), "slug": slug, "updated": True}


@app.delete("/admin/products/{slug}/images")
def admin_delete_image(slug: str, url: str, db=Depends(get_db), storage=Depends(get_storage),
                       user: dict = Depends(require_admin)):
    product = db["products"].find_one({"slug": slug})
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    removed = delete_image(storage, url)
    images = [i for i in product.get("images") or [] if i != url]
    db["products"].update_one({"_id": product["_id"]}, {"$set": {
        "images": images,
        "image": images[0] if images else None,
        "updated_at": datetime.utcnow(),
    }})
    return {"images": images, "blob_deleted": removed}


@app.delete("/admin/products/{slug}")
def admin_delete_product(slug: str, db=Depends(get_db), user: dict = Depends(require_admin)):
    result = db["products"].delete_one({"slug": slug})
    if not result.deleted_count:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"slug": slug, "deleted": True}


@app.get("/admin/orders")
def admin_list_orders(db=Depends(get_db), user: dict = Depends(require_admin)):
    return {"orders": [public(o) for o in db["orders"].find({}).sort("created_at", -1)]}


@app.delete("/admin/orders/{order_id}")
def admin_delete_order(order_id: str, db=Depends(get_db), user: dict = Depends(require_admin)):
    result = db["orders"].delete_one({"_id": oid(order_id)})
    if not result.deleted_count:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"id": order_id, "deleted": True}


@app.post("/admin/categories")
def admin_create_category(category: Category, db=Depends(get_db), user: dict = Depends(require_admin)):
    slug = slugify(category.slug or category.name)
    if db["categories"].find_one({"slug": slug}):
        raise HTTPException(status_code=400, detail="Category already exists")
    inserted = create_document("categories", category.model_copy(update={"slug": slug}), database=db)
    return {"id": inserted, "slug": slug}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
