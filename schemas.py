"""
Database Schemas for the Storefront

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name (OrderItem -> order_item).
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

ORDER_STATUSES = ("Pending", "Processing", "Shipped", "Delivered", "Cancelled")
OrderStatus = Literal["Pending", "Processing", "Shipped", "Delivered", "Cancelled"]

DISCOUNT_TYPES = ("Percentage", "Fixed")
DiscountType = Literal["Percentage", "Fixed"]

DEFAULT_PAYMENT_METHOD = "COD"


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    is_admin: bool = False


class Product(BaseModel):
    name: str
    description: str = ""
    price: Decimal = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    weight: Optional[str] = None
    is_active: bool = True


class Cart(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(..., ge=1)


class OrderItem(BaseModel):
    order_id: str
    product_id: str
    product_name: str
    price: Decimal
    quantity: int = Field(..., ge=1)
    total: Decimal


class ShippingDetails(BaseModel):
    shipping_address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    pin_code: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)
    payment_method: Optional[str] = DEFAULT_PAYMENT_METHOD


class Order(BaseModel):
    order_number: str
    user_id: str
    subtotal: Decimal
    discount_amount: Decimal = Decimal("0")
    coupon_code: Optional[str] = None
    total_amount: Decimal
    status: OrderStatus = "Pending"
    shipping_address: str
    city: str
    pin_code: str
    phone_number: str
    payment_method: str = DEFAULT_PAYMENT_METHOD
    payment_status: str = "Pending"
    is_cancelled: bool = False
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None


class Coupon(BaseModel):
    code: str = Field(..., min_length=1)
    discount_type: DiscountType
    discount_value: Decimal = Field(..., ge=0)
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    used_count: int = 0
    expiry_date: datetime
    is_active: bool = True

    @model_validator(mode="after")
    def check_percentage(self):
        if self.discount_type == "Percentage" and self.discount_value > 100:
            raise ValueError("Percentage discount must be between 0 and 100")
        self.code = self.code.strip().upper()
        return self


class Review(BaseModel):
    product_id: str
    user_id: str
    username: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    is_verified_purchase: bool = False


class Wishlist(BaseModel):
    user_id: str
    product_id: str


class DiscountResult(BaseModel):
    coupon_code: str
    discount_type: str
    discount_value: Decimal
    order_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal


class OrderLine(BaseModel):
    product_id: str
    product_name: str
    price: Decimal
    quantity: int
    line_total: Decimal


class PlacedOrder(BaseModel):
    order_id: str
    order_number: str
    subtotal: Decimal
    discount_amount: Decimal
    coupon_code: Optional[str] = None
    total_amount: Decimal
    items: List[OrderLine]


class CancelResult(BaseModel):
    order_id: str
    refund_status: str
