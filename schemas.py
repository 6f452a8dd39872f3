"""
Database Schemas for the Storefront

Each Pydantic model corresponds to a MongoDB collection or an embedded
document. Collections: "products", "orders", "categories", "user".
"""
from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, EmailStr, Field, field_validator

Size = Union[int, str]


class SizeStock(BaseModel):
    size: Size
    stock: int = Field(0, ge=0)


class Product(BaseModel):
    name: str
    price: float = Field(..., ge=0)
    old_price: Optional[float] = Field(None, ge=0, description="Previous price shown as a discount")
    images: List[str] = Field(default_factory=list)
    image: Optional[str] = Field(None, description="Primary image, first entry of images")
    slug: str
    category: Optional[str] = None
    description: str = ""
    sizes: List[SizeStock] = Field(default_factory=list)
    featured: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductIn(BaseModel):
    """Admin product form. Prices arrive as form strings and are coerced."""
    name: str = ""
    price: Union[float, str] = 0
    old_price: Optional[Union[float, str]] = None
    description: str = ""
    category: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    sizes: List[SizeStock] = Field(default_factory=list)
    featured: bool = False


class Category(BaseModel):
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None


class CartItem(BaseModel):
    id: str = Field(..., description="Product id")
    name: str
    price: float = Field(..., ge=0)
    old_price: Optional[float] = None
    image: Optional[str] = None
    slug: Optional[str] = None
    sizes: List[SizeStock] = Field(default_factory=list)
    selected_size: Size
    qty: int = Field(1, ge=1)


class OrderItem(BaseModel):
    product_id: str
    name: str
    qty: int = Field(1, ge=1)
    price: float = Field(..., ge=0)
    selected_size: Size


class Customer(BaseModel):
    firstname: str
    lastname: str
    phone: str
    email: EmailStr
    address: str
    state: str
    newsletter: bool = False
    terms: bool = False

    @field_validator("firstname", "lastname", "phone", "address", "state")
    @classmethod
    def required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("This field is required")
        return v


class Order(BaseModel):
    order_number: str
    items: List[OrderItem]
    customer: Customer
    payment_method: str = Field(..., description="bank | paystack")
    subtotal: float
    shipping_cost: float = 0
    total: float
    status: str = Field("pending", description="pending|paid|payment_received_unfulfilled")
    payment_reference: Optional[str] = None
    created_at: Optional[datetime] = None


class User(BaseModel):
    name: str
    email: EmailStr
    hashed_password: str
    is_active: bool = True
    is_admin: bool = False
