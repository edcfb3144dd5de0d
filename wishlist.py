"""
Wishlist store: saved products per user, with a move into the cart.
"""
import logging

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import get_user
from cart import add_to_cart
from catalog import get_product, require_product
from database import create_document, serialize_doc, to_decimal, to_object_id
from errors import InvalidState, NotFound
from reviews import average_rating
from schemas import Wishlist as WishlistSchema

logger = logging.getLogger(__name__)


def add_to_wishlist(db: Database, user_id: str, product_id: str) -> str:
    user = get_user(db, user_id)
    product_id = str(require_product(db, product_id)["_id"])
    if db["wishlist"].find_one({"user_id": user["id"], "product_id": product_id}):
        raise InvalidState("Product already in wishlist")
    try:
        return create_document(db, "wishlist", WishlistSchema(user_id=user["id"], product_id=product_id))
    except DuplicateKeyError:
        raise InvalidState("Product already in wishlist")


def view_wishlist(db: Database, user_id: str) -> list[dict]:
    """Wishlist entries joined with live product data; deleted products are left out."""
    user = get_user(db, user_id)
    items = []
    for entry in db["wishlist"].find({"user_id": user["id"]}).sort([("created_at", 1), ("_id", 1)]):
        product = get_product(db, entry["product_id"])
        if product is None:
            continue
        items.append({
            "wishlist_id": str(entry["_id"]),
            "product_id": entry["product_id"],
            "product_name": product["name"],
            "price": to_decimal(product["price"]),
            "image_url": product.get("image_url"),
            "category": product.get("category"),
            "in_stock": product["stock"] > 0,
            "stock": product["stock"],
            "average_rating": average_rating(db, entry["product_id"]),
            "added_at": serialize_doc(entry)["created_at"],
        })
    return items


def _own_entry(db, user_id, wishlist_id):
    oid = to_object_id(wishlist_id)
    entry = db["wishlist"].find_one({"_id": oid, "user_id": user_id}) if oid else None
    if not entry:
        raise NotFound("Wishlist item not found")
    return entry


def remove_from_wishlist(db, user_id, wishlist_id):
    entry = _own_entry(db, user_id, wishlist_id)
    db["wishlist"].delete_one({"_id": entry["_id"]})


def move_to_cart(db: Database, user_id: str, wishlist_id: str, quantity: int = 1) -> dict:
    """Add the saved product to the cart with the usual stock checks, then drop the entry.

    The entry is kept when the cart rejects the add.
    """
    entry = _own_entry(db, user_id, wishlist_id)
    result = add_to_cart(db, user_id, entry["product_id"], quantity)
    db["wishlist"].delete_one({"_id": entry["_id"]})
    logger.debug("User %s moved %s from wishlist to cart", user_id, entry["product_id"])
    return result


def clear_wishlist(db, user_id):
    return db["wishlist"].delete_many({"user_id": user_id}).deleted_count
