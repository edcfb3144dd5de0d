"""
MongoDB access for the storefront.

Each pydantic schema in schemas.py is stored in the collection named after it
in lowercase. Money goes in as Decimal128 and comes back out as Decimal.
"""
import logging
import os
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from bson.decimal128 import Decimal128
from bson.errors import InvalidId
from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def get_db() -> Database:
    global _client, _db
    if _db is None:
        _client = MongoClient(DATABASE_URL, tz_aware=True)
        _db = _client[DATABASE_NAME]
        ensure_indexes(_db)
        logger.info("Connected to MongoDB database %s", DATABASE_NAME)
    return _db


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["product"].create_index("category")
    db["cart"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["order"].create_index("order_number", unique=True)
    db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["order_item"].create_index("order_id")
    db["coupon"].create_index("code", unique=True)
    db["review"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["review"].create_index([("product_id", ASCENDING), ("created_at", DESCENDING)])
    db["wishlist"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)


# ----------------------- Conversions -----------------------
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes read back from Mongo as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def to_bson(value: Any) -> Any:
    """Recursively prepare a value for insertion."""
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, dict):
        return {k: to_bson(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_bson(v) for v in value]
    return value


def serialize_doc(doc):
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        else:
            out[k] = _serialize_value(v)
    return out


def _serialize_value(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


# ----------------------- Documents -----------------------
def create_document(db: Database, collection_name: str, data) -> str:
    now = utcnow()
    data_with_meta = {**to_bson(data), "created_at": now, "updated_at": now}
    result = db[collection_name].insert_one(data_with_meta)
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[dict[str, Any]] = None,
    limit: int = 0,
    sort: Optional[list] = None,
) -> list[dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def get_document(db: Database, collection_name: str, doc_id) -> Optional[dict[str, Any]]:
    oid = to_object_id(doc_id)
    if oid is None:
        return None
    return db[collection_name].find_one({"_id": oid})
