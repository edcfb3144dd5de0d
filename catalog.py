"""
Catalog accessor. Owns every write to product price, stock and active flag.

Stock changes go through reserve_stock/release_stock, which are single
atomic updates on the product document.
"""
import logging
import re
from typing import Any, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_document, get_documents, serialize_doc, to_bson, to_object_id, utcnow
from errors import InvalidState, NotFound
from schemas import Product as ProductSchema

logger = logging.getLogger(__name__)


def get_product(db: Database, product_id: str) -> Optional[dict[str, Any]]:
    """Raw product document, or None when missing."""
    return get_document(db, "product", product_id)


def require_product(db: Database, product_id: str) -> dict[str, Any]:
    product = get_product(db, product_id)
    if not product:
        raise NotFound("Product not found")
    return product


def list_products(db, q=None, category=None, limit=100):
    filt: dict[str, Any] = {"is_active": True}
    if q:
        pattern = re.escape(q)
        filt["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        filt["category"] = category
    return [serialize_doc(p) for p in get_documents(db, "product", filt, limit=limit)]


def create_product(db: Database, product: ProductSchema) -> str:
    product_id = create_document(db, "product", product)
    logger.info("Created product %s (%s)", product_id, product.name)
    return product_id


def update_product(db: Database, product_id: str, changes: dict[str, Any]) -> None:
    oid = to_object_id(product_id)
    if "stock" in changes and changes["stock"] is not None and changes["stock"] < 0:
        raise InvalidState("Stock cannot be negative")
    if "price" in changes and changes["price"] is not None and changes["price"] < 0:
        raise InvalidState("Price cannot be negative")
    update = to_bson({k: v for k, v in changes.items() if v is not None})
    update["updated_at"] = utcnow()
    if oid is None or db["product"].update_one({"_id": oid}, {"$set": update}).matched_count == 0:
        raise NotFound("Product not found")


def delete_product(db, product_id):
    """Hard delete. Cart lines and order snapshots that reference it stay behind."""
    oid = to_object_id(product_id)
    if oid is None or db["product"].delete_one({"_id": oid}).deleted_count == 0:
        raise NotFound("Product not found")
    logger.info("Deleted product %s", product_id)


def set_stock(db, product_id, stock):
    if stock < 0:
        raise InvalidState("Stock cannot be negative")
    update_product(db, product_id, {"stock": stock})


def reserve_stock(db: Database, product_id, quantity: int) -> bool:
    """Take quantity out of stock only if that much is available."""
    oid = to_object_id(product_id)
    if oid is None:
        return False
    updated = db["product"].find_one_and_update(
        {"_id": oid, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    return updated is not None


def release_stock(db: Database, product_id, quantity: int) -> bool:
    """Put quantity back. Returns False when the product no longer exists."""
    oid = to_object_id(product_id)
    if oid is None:
        return False
    result = db["product"].update_one(
        {"_id": oid},
        {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
    )
    return result.matched_count == 1
