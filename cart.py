"""
Cart store: one line per (user, product).
"""
import logging
from decimal import Decimal

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from catalog import get_product, require_product
from database import create_document, to_decimal, to_object_id, utcnow
from errors import InvalidState, NotFound
from schemas import Cart as CartSchema

logger = logging.getLogger(__name__)


def get_cart_lines(db: Database, user_id: str) -> list[dict]:
    return list(db["cart"].find({"user_id": user_id}).sort("created_at", 1))


def add_to_cart(db: Database, user_id: str, product_id: str, quantity: int = 1) -> dict:
    if quantity < 1:
        raise InvalidState("Quantity must be at least 1")
    product = require_product(db, product_id)
    product_id = str(product["_id"])
    if product["stock"] < quantity:
        raise InvalidState("Insufficient stock", {"available_stock": product["stock"]})

    key = {"user_id": user_id, "product_id": product_id}
    existing = db["cart"].find_one(key)
    if existing:
        return _increment(db, existing, quantity, product["stock"])

    try:
        cart_id = create_document(db, "cart", CartSchema(user_id=user_id, product_id=product_id, quantity=quantity))
    except DuplicateKeyError:
        # A concurrent add created the line first.
        logger.debug("Cart line for %s/%s already exists, incrementing", user_id, product_id)
        return _increment(db, db["cart"].find_one(key), quantity, product["stock"])
    logger.debug("User %s added %d x %s to cart", user_id, quantity, product_id)
    return {"cart_id": cart_id, "quantity": quantity, "updated": False}


def _increment(db, line, quantity, stock):
    new_quantity = line["quantity"] + quantity
    if new_quantity > stock:
        raise InvalidState(
            "Total quantity exceeds available stock",
            {"current_in_cart": line["quantity"], "available_stock": stock},
        )
    db["cart"].update_one({"_id": line["_id"]}, {"$inc": {"quantity": quantity}, "$set": {"updated_at": utcnow()}})
    return {"cart_id": str(line["_id"]), "quantity": new_quantity, "updated": True}


def view_cart(db: Database, user_id: str) -> dict:
    """Cart lines joined with live prices; lines for deleted products are left out."""
    lines = get_cart_lines(db, user_id)
    items = []
    total = Decimal("0")
    for line in lines:
        product = get_product(db, line["product_id"])
        if product is None:
            continue
        price = to_decimal(product["price"])
        line_total = price * line["quantity"]
        total += line_total
        items.append({
            "cart_id": str(line["_id"]),
            "product_id": line["product_id"],
            "product_name": product["name"],
            "price": price,
            "quantity": line["quantity"],
            "total": line_total,
            "image_url": product.get("image_url"),
            "available_stock": product["stock"],
        })
    return {"item_count": len(lines), "items": items, "total_amount": total}


def _own_line(db: Database, user_id: str, cart_id: str) -> dict:
    oid = to_object_id(cart_id)
    line = db["cart"].find_one({"_id": oid, "user_id": user_id}) if oid else None
    if not line:
        raise NotFound("Cart item not found")
    return line


def update_cart_line(db: Database, user_id: str, cart_id: str, quantity: int) -> None:
    if quantity < 1:
        raise InvalidState("Quantity must be at least 1")
    line = _own_line(db, user_id, cart_id)
    product = require_product(db, line["product_id"])
    if quantity > product["stock"]:
        raise InvalidState("Quantity exceeds available stock", {"available_stock": product["stock"]})
    db["cart"].update_one({"_id": line["_id"]}, {"$set": {"quantity": quantity, "updated_at": utcnow()}})


def remove_cart_line(db: Database, user_id: str, cart_id: str) -> None:
    line = _own_line(db, user_id, cart_id)
    db["cart"].delete_one({"_id": line["_id"]})


def clear_cart(db: Database, user_id: str) -> int:
    return db["cart"].delete_many({"user_id": user_id}).deleted_count
