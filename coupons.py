"""
Coupon evaluation and management.

evaluate_coupon is pure: it never changes used_count. Checkout calls
redeem_coupon as a separate step once the discount has been accepted.
"""
import logging
from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any, Optional

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import get_user
from database import as_utc, create_document, get_documents, serialize_doc, to_decimal, to_object_id, utcnow
from errors import InvalidState, NotFound
from schemas import DISCOUNT_TYPES, Coupon as CouponSchema, DiscountResult

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
# Optimistic update attempts for a contended used_count.
REDEEM_ATTEMPTS = 5


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_EVEN)


def evaluate_coupon(coupon: dict[str, Any], order_amount, now: Optional[datetime] = None) -> DiscountResult:
    """Compute the discount a coupon gives on order_amount.

    Raises InvalidState when the coupon is inactive, expired, used up, or the
    amount is below the coupon's minimum. Fixed discounts are capped at the
    order amount so the final amount never goes negative.
    """
    now = as_utc(now) if now else utcnow()
    order_amount = to_decimal(order_amount)
    if order_amount < 0:
        raise InvalidState("Order amount cannot be negative")

    if not coupon.get("is_active", True):
        raise InvalidState("Coupon is no longer active")
    if as_utc(coupon["expiry_date"]) < now:
        raise InvalidState("Coupon has expired")
    usage_limit = coupon.get("usage_limit")
    if usage_limit is not None and coupon.get("used_count", 0) >= usage_limit:
        raise InvalidState("Coupon usage limit reached")
    min_amount = coupon.get("min_order_amount")
    if min_amount is not None and order_amount < to_decimal(min_amount):
        min_amount = to_decimal(min_amount)
        raise InvalidState(
            f"Minimum order amount of {min_amount} required",
            {"min_order_amount": min_amount},
        )

    value = to_decimal(coupon["discount_value"])
    discount_type = coupon["discount_type"]
    if discount_type == "Percentage":
        discount = order_amount * value / 100
        max_discount = coupon.get("max_discount_amount")
        if max_discount is not None and discount > to_decimal(max_discount):
            discount = to_decimal(max_discount)
    elif discount_type == "Fixed":
        discount = min(value, order_amount)
    else:
        raise InvalidState(f"Unsupported discount type: {discount_type}")

    return DiscountResult(
        coupon_code=coupon["code"],
        discount_type=discount_type,
        discount_value=value,
        order_amount=order_amount,
        discount_amount=round_money(discount),
        final_amount=round_money(order_amount - discount),
    )


def find_coupon(db, code):
    return db["coupon"].find_one({"code": code.strip().upper()})


def require_coupon(db: Database, code: str) -> dict[str, Any]:
    coupon = find_coupon(db, code)
    if not coupon:
        raise NotFound("Invalid coupon code")
    return coupon


def apply_coupon(db: Database, user_id: str, code: str, order_amount) -> DiscountResult:
    """Preview a coupon for a user's order amount."""
    get_user(db, user_id)
    return evaluate_coupon(require_coupon(db, code), order_amount)


# ----------------------- Usage tracking -----------------------
def redeem_coupon(db: Database, coupon_id) -> None:
    """Count one use of a coupon, refusing once the usage limit is reached."""
    oid = to_object_id(coupon_id)
    for _ in range(REDEEM_ATTEMPTS):
        coupon = db["coupon"].find_one({"_id": oid}) if oid else None
        if not coupon:
            raise NotFound("Coupon not found")
        used = coupon.get("used_count", 0)
        limit = coupon.get("usage_limit")
        if limit is not None and used >= limit:
            raise InvalidState("Coupon usage limit reached")
        result = db["coupon"].update_one(
            {"_id": oid, "used_count": used},
            {"$inc": {"used_count": 1}},
        )
        if result.modified_count == 1:
            logger.info("Redeemed coupon %s (%d used)", coupon["code"], used + 1)
            return
        logger.warning("Coupon %s changed during redemption, re-reading", coupon["code"])
    raise InvalidState("Coupon is busy, try again")


def release_coupon(db: Database, coupon_id) -> None:
    """Undo one redemption."""
    db["coupon"].update_one(
        {"_id": to_object_id(coupon_id), "used_count": {"$gt": 0}},
        {"$inc": {"used_count": -1}},
    )


# ----------------------- Admin -----------------------
def create_coupon(db: Database, data: dict[str, Any]) -> dict[str, Any]:
    discount_type = data.get("discount_type")
    if discount_type not in DISCOUNT_TYPES:
        raise InvalidState("DiscountType must be 'Percentage' or 'Fixed'")
    value = to_decimal(data.get("discount_value"))
    if value < 0 or (discount_type == "Percentage" and value > 100):
        raise InvalidState("Percentage discount must be between 0 and 100")
    if find_coupon(db, data["code"]):
        raise InvalidState("Coupon code already exists")

    coupon = CouponSchema(**data)
    try:
        coupon_id = create_document(db, "coupon", coupon)
    except DuplicateKeyError:
        raise InvalidState("Coupon code already exists")
    logger.info("Created coupon %s", coupon.code)
    return {"id": coupon_id, **coupon.model_dump()}


def list_coupons(db, now=None):
    now = as_utc(now) if now else utcnow()
    coupons = []
    for doc in get_documents(db, "coupon", sort=[("created_at", -1), ("_id", -1)]):
        coupon = serialize_doc(doc)
        limit = doc.get("usage_limit")
        coupon["remaining_uses"] = limit - doc.get("used_count", 0) if limit is not None else None
        coupon["is_expired"] = as_utc(doc["expiry_date"]) < now
        coupons.append(coupon)
    return coupons


def deactivate_coupon(db, coupon_id):
    oid = to_object_id(coupon_id)
    if oid is None or db["coupon"].update_one({"_id": oid}, {"$set": {"is_active": False}}).matched_count == 0:
        raise NotFound("Coupon not found")
    logger.info("Deactivated coupon %s", coupon_id)
