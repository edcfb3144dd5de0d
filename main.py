import logging
import os
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database

import cart as cart_store
import catalog
import checkout
import coupons
import order_lifecycle
import reports
import reviews
import wishlist
from auth import (
    authenticate,
    get_current_user,
    issue_token,
    list_users,
    public_user,
    register_user,
    require_admin,
    set_user_role,
)
from database import get_db, serialize_doc
from errors import ShopError, Unexpected
from schemas import Product as ProductSchema, ShippingDetails

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("storefront")

app = FastAPI(title="Storefront Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------- Errors -----------------------
@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if isinstance(exc, Unexpected):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    content = {"success": False, "message": exc.message, **exc.details}
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(content))


# ----------------------- Models -----------------------
class SignupBody(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProductCreateBody(ProductSchema):
    pass


class ProductUpdateBody(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    image_url: Optional[str] = None
    weight: Optional[str] = None
    is_active: Optional[bool] = None


class StockUpdateBody(BaseModel):
    stock: int = Field(..., ge=0)


class CartAddBody(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartUpdateBody(BaseModel):
    quantity: int = Field(..., ge=1)


class PlaceOrderBody(ShippingDetails):
    coupon_code: Optional[str] = None


class CancelOrderBody(BaseModel):
    cancellation_reason: str = Field(..., min_length=1)


class StatusUpdateBody(BaseModel):
    status: str


class ApplyCouponBody(BaseModel):
    coupon_code: str
    order_amount: Decimal = Field(..., ge=0)


class CouponCreateBody(BaseModel):
    code: str = Field(..., min_length=1)
    discount_type: str
    discount_value: Decimal
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    expiry_date: datetime


class ReviewBody(BaseModel):
    product_id: str
    rating: int
    comment: Optional[str] = None


class WishlistAddBody(BaseModel):
    product_id: str


class MoveToCartBody(BaseModel):
    quantity: int = Field(1, ge=1)


class RoleBody(BaseModel):
    role: str


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_url": "Set" if os.getenv("DATABASE_URL") else "Not Set",
        "database_name": "Set" if os.getenv("DATABASE_NAME") else "Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/auth/signup")
def signup(body: SignupBody, db: Database = Depends(get_db)):
    user = register_user(db, body.name, body.email, body.password)
    return {"token": issue_token(user), "user": user}


@app.post("/auth/login")
def login(body: LoginBody, db: Database = Depends(get_db)):
    user = authenticate(db, body.email, body.password)
    return {"token": issue_token(user), "user": public_user(user)}


# ----------------------- Products -----------------------
@app.get("/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, db: Database = Depends(get_db)):
    return catalog.list_products(db, q=q, category=category)


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return serialize_doc(catalog.require_product(db, product_id))


@app.post("/products")
def create_product(body: ProductCreateBody, user=Depends(require_admin), db: Database = Depends(get_db)):
    return {"id": catalog.create_product(db, body)}


@app.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, user=Depends(require_admin), db: Database = Depends(get_db)):
    catalog.update_product(db, product_id, body.model_dump(exclude_none=True))
    return {"ok": True}


@app.patch("/products/{product_id}/stock")
def update_stock(product_id: str, body: StockUpdateBody, user=Depends(require_admin), db: Database = Depends(get_db)):
    catalog.set_stock(db, product_id, body.stock)
    return {"success": True, "message": "Stock updated successfully"}


@app.delete("/products/{product_id}")
def delete_product(product_id: str, user=Depends(require_admin), db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"ok": True}


# ----------------------- Cart -----------------------
@app.post("/cart")
def add_to_cart(body: CartAddBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    result = cart_store.add_to_cart(db, user["id"], body.product_id, body.quantity)
    message = "Cart updated successfully" if result["updated"] else "Product added to cart successfully"
    return {"success": True, "message": message, "cart_id": result["cart_id"], "quantity": result["quantity"]}


@app.get("/cart")
def view_cart(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return {"success": True, "email": user["email"], **cart_store.view_cart(db, user["id"])}


@app.put("/cart/{cart_id}")
def update_cart(cart_id: str, body: CartUpdateBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart_store.update_cart_line(db, user["id"], cart_id, body.quantity)
    return {"success": True, "message": "Cart updated successfully"}


@app.delete("/cart/{cart_id}")
def remove_from_cart(cart_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart_store.remove_cart_line(db, user["id"], cart_id)
    return {"success": True, "message": "Item removed from cart"}


@app.delete("/cart")
def clear_cart(user=Depends(get_current_user), db: Database = Depends(get_db)):
    cart_store.clear_cart(db, user["id"])
    return {"success": True, "message": "Cart cleared successfully"}


# ----------------------- Orders -----------------------
@app.post("/orders")
def place_order(body: PlaceOrderBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    shipping = ShippingDetails(**body.model_dump(exclude={"coupon_code"}))
    placed = checkout.place_order(db, user["id"], shipping, coupon_code=body.coupon_code)
    return {"success": True, "message": "Order placed successfully", **placed.model_dump()}


@app.post("/orders/{order_id}/cancel")
def cancel_order(order_id: str, body: CancelOrderBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    result = order_lifecycle.cancel_order(db, order_id, user["id"], body.cancellation_reason)
    return {"success": True, "message": "Order cancelled successfully", **result.model_dump()}


@app.get("/orders/mine")
def my_orders(user=Depends(get_current_user), db: Database = Depends(get_db)):
    orders = order_lifecycle.list_user_orders(db, user["id"])
    return {"success": True, "email": user["email"], "order_count": len(orders), "orders": orders}


@app.get("/orders/{order_id}")
def order_details(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order = order_lifecycle.get_order_details(db, order_id, user["id"], is_admin=user.get("is_admin", False))
    return {"success": True, "order": order}


@app.get("/orders")
def all_orders(user=Depends(require_admin), db: Database = Depends(get_db)):
    orders = order_lifecycle.list_all_orders(db)
    return {"success": True, "order_count": len(orders), "orders": orders}


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, body: StatusUpdateBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    order_lifecycle.update_order_status(db, order_id, body.status, is_admin=user.get("is_admin", False))
    return {"success": True, "message": f"Order status updated to {body.status}"}


# ----------------------- Coupons -----------------------
@app.post("/coupons/apply")
def apply_coupon(body: ApplyCouponBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    result = coupons.apply_coupon(db, user["id"], body.coupon_code, body.order_amount)
    return {"success": True, "message": "Coupon applied successfully", **result.model_dump(), "saved": result.discount_amount}


@app.post("/coupons")
def create_coupon(body: CouponCreateBody, user=Depends(require_admin), db: Database = Depends(get_db)):
    coupon = coupons.create_coupon(db, body.model_dump())
    return {"success": True, "message": "Coupon created successfully", "coupon": coupon}


@app.get("/coupons")
def list_coupons(user=Depends(require_admin), db: Database = Depends(get_db)):
    items = coupons.list_coupons(db)
    return {"success": True, "count": len(items), "coupons": items}


@app.put("/coupons/{coupon_id}/deactivate")
def deactivate_coupon(coupon_id: str, user=Depends(require_admin), db: Database = Depends(get_db)):
    coupons.deactivate_coupon(db, coupon_id)
    return {"success": True, "message": "Coupon deactivated successfully"}


# ----------------------- Reviews -----------------------
@app.post("/reviews")
def add_review(body: ReviewBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    result = reviews.add_review(db, user["id"], body.product_id, body.rating, body.comment)
    return {"success": True, "message": "Review added successfully", **result}


@app.get("/products/{product_id}/reviews")
def product_reviews(product_id: str, db: Database = Depends(get_db)):
    return {"success": True, **reviews.product_reviews(db, product_id)}


@app.delete("/reviews/{review_id}")
def delete_review(review_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    reviews.delete_review(db, user["id"], review_id)
    return {"success": True, "message": "Review deleted successfully"}


# ----------------------- Wishlist -----------------------
@app.post("/wishlist")
def add_to_wishlist(body: WishlistAddBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    wishlist_id = wishlist.add_to_wishlist(db, user["id"], body.product_id)
    return {"success": True, "message": "Product added to wishlist", "wishlist_id": wishlist_id}


@app.get("/wishlist")
def view_wishlist(user=Depends(get_current_user), db: Database = Depends(get_db)):
    items = wishlist.view_wishlist(db, user["id"])
    return {"success": True, "email": user["email"], "item_count": len(items), "items": items}


@app.delete("/wishlist/{wishlist_id}")
def remove_from_wishlist(wishlist_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    wishlist.remove_from_wishlist(db, user["id"], wishlist_id)
    return {"success": True, "message": "Item removed from wishlist"}


@app.post("/wishlist/{wishlist_id}/move-to-cart")
def move_to_cart(wishlist_id: str, body: MoveToCartBody, user=Depends(get_current_user), db: Database = Depends(get_db)):
    result = wishlist.move_to_cart(db, user["id"], wishlist_id, body.quantity)
    return {"success": True, "message": "Product moved to cart successfully", "cart_id": result["cart_id"], "quantity": result["quantity"]}


@app.delete("/wishlist")
def clear_wishlist(user=Depends(get_current_user), db: Database = Depends(get_db)):
    wishlist.clear_wishlist(db, user["id"])
    return {"success": True, "message": "Wishlist cleared successfully"}


# ----------------------- Admin -----------------------
@app.get("/admin/users")
def admin_users(user=Depends(require_admin), db: Database = Depends(get_db)):
    users = list_users(db)
    return {"success": True, "count": len(users), "users": users}


@app.put("/admin/users/{user_id}/role")
def admin_set_role(user_id: str, body: RoleBody, user=Depends(require_admin), db: Database = Depends(get_db)):
    updated = set_user_role(db, user_id, body.role)
    return {"success": True, "message": f"User role updated to {body.role}", "user": updated}


@app.get("/admin/stats")
def admin_stats(user=Depends(require_admin), db: Database = Depends(get_db)):
    return {"success": True, **reports.dashboard_stats(db)}


@app.get("/admin/recent-orders")
def admin_recent_orders(limit: int = 10, user=Depends(require_admin), db: Database = Depends(get_db)):
    orders = reports.recent_orders(db, limit=limit)
    return {"success": True, "count": len(orders), "orders": orders}


@app.get("/admin/low-stock")
def admin_low_stock(threshold: int = reports.LOW_STOCK_THRESHOLD, user=Depends(require_admin), db: Database = Depends(get_db)):
    products = reports.low_stock_products(db, threshold)
    return {"success": True, "threshold": threshold, "count": len(products), "products": products}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
