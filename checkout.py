"""
Order assembly: turns a user's cart into a persisted order.

Placement is all-or-nothing. Stock is reserved with conditional decrements
and every write made before a failure is undone before the error propagates,
so a rejected checkout leaves stock, coupons, orders and the cart untouched.
"""
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from bson.objectid import ObjectId
from pymongo.database import Database
from pymongo.errors import PyMongoError

from auth import get_user
from cart import clear_cart, get_cart_lines
from catalog import get_product, release_stock, reserve_stock
from coupons import evaluate_coupon, redeem_coupon, release_coupon, require_coupon
from database import create_document, to_bson, to_decimal, utcnow
from errors import InsufficientStock, InvalidState, ShopError, Unexpected
from schemas import DEFAULT_PAYMENT_METHOD, Order as OrderSchema, OrderItem, OrderLine, PlacedOrder, ShippingDetails

logger = logging.getLogger(__name__)


def generate_order_number(now: Optional[datetime] = None) -> str:
    """ORD + UTC timestamp to the second, plus a random suffix for uniqueness."""
    now = now or utcnow()
    return f"ORD{now:%Y%m%d%H%M%S}{secrets.token_hex(3).upper()}"


@dataclass
class _Placement:
    """Writes made so far, in the order they have to be undone."""

    db: Database
    reserved: list[OrderLine] = field(default_factory=list)
    coupon_id: Optional[ObjectId] = None
    order_id: Optional[str] = None

    def rollback(self) -> None:
        if self.order_id:
            oid = ObjectId(self.order_id)
            self.db["order_item"].delete_many({"order_id": self.order_id})
            self.db["order"].delete_one({"_id": oid})
            logger.info("Rolled back order %s", self.order_id)
        if self.coupon_id:
            release_coupon(self.db, self.coupon_id)
        for line in reversed(self.reserved):
            release_stock(self.db, line.product_id, line.quantity)
        if self.reserved:
            logger.info("Released stock for %d reserved lines", len(self.reserved))


def _resolve_lines(db: Database, cart_lines: list[dict[str, Any]]) -> list[OrderLine]:
    """Snapshot each cart line against the live catalog."""
    lines = []
    for item in cart_lines:
        product = get_product(db, item["product_id"])
        if product is None:
            logger.warning("Skipping cart line for missing product %s", item["product_id"])
            continue
        if item["quantity"] > product["stock"]:
            raise InsufficientStock(product["name"], product["stock"])
        price = to_decimal(product["price"])
        lines.append(OrderLine(
            product_id=str(product["_id"]),
            product_name=product["name"],
            price=price,
            quantity=item["quantity"],
            line_total=price * item["quantity"],
        ))
    return lines


def _reserve(placement: _Placement, line: OrderLine) -> None:
    if reserve_stock(placement.db, line.product_id, line.quantity):
        placement.reserved.append(line)
        return
    # Someone else took the stock after the snapshot was read.
    product = get_product(placement.db, line.product_id)
    available = product["stock"] if product else 0
    logger.warning(
        "Stock for %s dropped to %d during checkout (wanted %d)",
        line.product_id, available, line.quantity,
    )
    raise InsufficientStock(line.product_name, available)


def _persist(placement: _Placement, order: OrderSchema, lines: list[OrderLine]) -> str:
    placement.order_id = create_document(placement.db, "order", order)
    now = utcnow()
    items = [
        to_bson(OrderItem(
            order_id=placement.order_id,
            product_id=line.product_id,
            product_name=line.product_name,
            price=line.price,
            quantity=line.quantity,
            total=line.line_total,
        )) | {"created_at": now, "updated_at": now}
        for line in lines
    ]
    placement.db["order_item"].insert_many(items)
    return placement.order_id


def place_order(
    db: Database,
    user_id: str,
    shipping: ShippingDetails,
    coupon_code: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PlacedOrder:
    """Place an order from everything in the user's cart.

    Cart lines whose product has been deleted are skipped. Raises NotFound for
    an unknown user, InvalidState for an empty cart or a rejected coupon,
    InsufficientStock when any line asks for more than is available, and
    Unexpected when persistence fails part way (after undoing earlier writes).
    """
    now = now or utcnow()
    user = get_user(db, user_id)

    cart_lines = get_cart_lines(db, user["id"])
    if not cart_lines:
        raise InvalidState("Cart is empty")
    lines = _resolve_lines(db, cart_lines)
    if not lines:
        raise InvalidState("Cart is empty")

    subtotal = sum((line.line_total for line in lines), Decimal("0"))
    discount = Decimal("0")
    total = subtotal
    coupon = None
    if coupon_code:
        coupon = require_coupon(db, coupon_code)
        result = evaluate_coupon(coupon, subtotal, now)
        discount, total = result.discount_amount, result.final_amount

    order = OrderSchema(
        order_number=generate_order_number(now),
        user_id=user["id"],
        subtotal=subtotal,
        discount_amount=discount,
        coupon_code=coupon["code"] if coupon else None,
        total_amount=total,
        status="Pending",
        shipping_address=shipping.shipping_address,
        city=shipping.city,
        pin_code=shipping.pin_code,
        phone_number=shipping.phone_number,
        payment_method=shipping.payment_method or DEFAULT_PAYMENT_METHOD,
        payment_status="Pending",
    )

    placement = _Placement(db)
    try:
        for line in lines:
            _reserve(placement, line)
        if coupon:
            redeem_coupon(db, coupon["_id"])
            placement.coupon_id = coupon["_id"]
        order_id = _persist(placement, order, lines)
        clear_cart(db, user["id"])
    except ShopError:
        placement.rollback()
        raise
    except PyMongoError as exc:
        logger.exception("Persistence failed while placing order for user %s", user["id"])
        try:
            placement.rollback()
        except PyMongoError:
            logger.exception("Rollback failed for order %s", placement.order_id)
        raise Unexpected("Failed to place order") from exc

    logger.info(
        "Placed order %s (%s) for user %s: %d lines, total %s",
        order.order_number, order_id, user["id"], len(lines), total,
    )
    return PlacedOrder(
        order_id=order_id,
        order_number=order.order_number,
        subtotal=subtotal,
        discount_amount=discount,
        coupon_code=order.coupon_code,
        total_amount=total,
        items=lines,
    )
