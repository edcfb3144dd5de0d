"""
Product reviews. One review per user per product; a review is marked as a
verified purchase when the user has a delivered order containing the product.
"""
import logging

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from auth import get_user
from catalog import require_product
from database import create_document, get_documents, serialize_doc, to_object_id
from errors import InvalidState, NotFound
from schemas import Review as ReviewSchema

logger = logging.getLogger(__name__)


def has_purchased(db: Database, user_id: str, product_id: str) -> bool:
    delivered = db["order"].find({"user_id": user_id, "status": "Delivered"}, {"_id": 1})
    order_ids = [str(o["_id"]) for o in delivered]
    if not order_ids:
        return False
    return db["order_item"].find_one({"order_id": {"$in": order_ids}, "product_id": product_id}) is not None


def add_review(db: Database, user_id: str, product_id: str, rating: int, comment=None) -> dict:
    if rating < 1 or rating > 5:
        raise InvalidState("Rating must be between 1 and 5")
    user = get_user(db, user_id)
    product_id = str(require_product(db, product_id)["_id"])
    if db["review"].find_one({"user_id": user["id"], "product_id": product_id}):
        raise InvalidState("You have already reviewed this product")

    verified = has_purchased(db, user["id"], product_id)
    review = ReviewSchema(
        product_id=product_id,
        user_id=user["id"],
        username=user["name"],
        rating=rating,
        comment=comment,
        is_verified_purchase=verified,
    )
    try:
        review_id = create_document(db, "review", review)
    except DuplicateKeyError:
        raise InvalidState("You have already reviewed this product")
    logger.info("User %s reviewed product %s (%d stars, verified=%s)", user["id"], product_id, rating, verified)
    return {"review_id": review_id, "is_verified_purchase": verified}


def average_rating(db, product_id):
    ratings = [r["rating"] for r in db["review"].find({"product_id": str(product_id)}, {"rating": 1})]
    if not ratings:
        return 0.0
    return round(sum(ratings) / len(ratings), 1)


def product_reviews(db: Database, product_id: str) -> dict:
    """Reviews for a product, newest first, with the average rating."""
    product = require_product(db, product_id)
    product_id = str(product["_id"])
    reviews = get_documents(db, "review", {"product_id": product_id}, sort=[("created_at", -1), ("_id", -1)])
    return {
        "product_id": product_id,
        "product_name": product["name"],
        "total_reviews": len(reviews),
        "average_rating": average_rating(db, product_id),
        "reviews": [serialize_doc(r) for r in reviews],
    }


def delete_review(db, user_id, review_id):
    oid = to_object_id(review_id)
    if oid is None or db["review"].delete_one({"_id": oid, "user_id": user_id}).deleted_count == 0:
        raise NotFound("Review not found or unauthorized")
