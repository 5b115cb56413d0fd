"""
Database Schemas for the storefront

Each document model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
Request bodies accept the camelCase field names used by storefront clients.
"""
from datetime import datetime
from typing import Annotated, List, Optional

from bson.objectid import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints

PLACEHOLDER_IMAGE = "https://via.placeholder.com/150"


class _Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class User(_Document):
    username: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: str = Field(..., description="Salted password hash")
    is_admin: bool = False


class Review(_Document):
    name: str = Field(..., description="Reviewer username at the time of review")
    rating: float
    comment: str = ""
    user: ObjectId
    created_at: datetime


class Product(_Document):
    user: ObjectId
    name: str
    image: str = PLACEHOLDER_IMAGE
    price: float = Field(..., ge=0)
    description: str
    category: str
    stock: int = Field(0, ge=0)
    reviews: List[Review] = []
    rating: float = 0
    num_reviews: int = 0


class OrderItem(_Document):
    product: ObjectId
    name: str
    quantity: int
    price: float
    image: Optional[str] = None


class ShippingAddress(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1, alias="postalCode")
    country: str = Field(..., min_length=1)


class PaymentResult(BaseModel):
    id: str
    status: str
    update_time: str
    email_address: Optional[str] = None


class Order(_Document):
    user: ObjectId
    order_items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: str
    items_price: float = Field(..., ge=0)
    tax_price: float = Field(..., ge=0)
    shipping_price: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None


# ----------------------- Request bodies -----------------------
class RegisterBody(BaseModel):
    username: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProductCreateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    description: str
    category: str
    stock: int = Field(0, ge=0, alias="countInStock")
    image: Optional[str] = None


class ProductUpdateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0, alias="countInStock")
    image: Optional[str] = None


class ReviewBody(BaseModel):
    rating: float
    comment: str = ""


class CartLine(BaseModel):
    product: str
    quantity: int = Field(..., ge=1)


class OrderCreateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_items: List[CartLine] = Field(..., alias="orderItems")
    shipping_address: ShippingAddress = Field(..., alias="shippingAddress")
    payment_method: str = Field(..., min_length=1, alias="paymentMethod")


class PaymentIntentBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., min_length=1, alias="orderId")
    currency: str = "usd"
