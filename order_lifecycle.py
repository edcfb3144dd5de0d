"""
Order lifecycle: cancellation with stock restoration, admin status updates
and order queries.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from auth import get_user
from catalog import release_stock
from database import get_document, get_documents, serialize_doc, utcnow
from errors import InvalidState, NotFound, Unauthorized, Unexpected
from schemas import DEFAULT_PAYMENT_METHOD, ORDER_STATUSES, CancelResult

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("Pending", "Processing", "Shipped", "Delivered")
CANCELLABLE_STATUSES = ("Pending", "Processing")

# Admins may move a live order to any live status, in any order.
# Cancelled is terminal and only reachable through cancel_order.
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    **{status: frozenset(ACTIVE_STATUSES) for status in ACTIVE_STATUSES},
    "Cancelled": frozenset(),
}

NO_REFUND = "No refund required"
REFUND_PENDING = "Refund will be processed in 5-7 business days"


def require_order(db: Database, order_id: str) -> dict[str, Any]:
    order = get_document(db, "order", order_id)
    if not order:
        raise NotFound("Order not found")
    return order


def get_order_items(db, order_id):
    return get_documents(db, "order_item", {"order_id": str(order_id)}, sort=[("created_at", 1)])


def _check_cancellable(order: dict[str, Any]) -> None:
    if order.get("is_cancelled"):
        raise InvalidState("Order is already cancelled")
    if order["status"] == "Delivered":
        raise InvalidState("Cannot cancel delivered order")
    if order["status"] == "Shipped":
        raise InvalidState("Order has already been shipped. Please contact customer support.")
    if order["status"] not in CANCELLABLE_STATUSES:
        raise InvalidState(f"Cannot cancel order in status {order['status']}")


def refund_guidance(payment_method):
    return NO_REFUND if (payment_method or DEFAULT_PAYMENT_METHOD) == "COD" else REFUND_PENDING


def cancel_order(db: Database, order_id: str, user_id: str, reason: str, now: Optional[datetime] = None) -> CancelResult:
    """Cancel a Pending or Processing order owned by user_id and put its stock back."""
    if not reason or not reason.strip():
        raise InvalidState("Cancellation reason is required")
    user = get_user(db, user_id)
    order = require_order(db, order_id)
    if order["user_id"] != user["id"]:
        raise Unauthorized("You are not authorized to cancel this order")
    _check_cancellable(order)

    now = now or utcnow()
    previous = {k: order.get(k) for k in ("status", "is_cancelled", "cancellation_reason", "cancelled_at", "updated_at")}
    cancelled = db["order"].find_one_and_update(
        {"_id": order["_id"], "is_cancelled": False, "status": {"$in": list(CANCELLABLE_STATUSES)}},
        {"$set": {
            "status": "Cancelled",
            "is_cancelled": True,
            "cancellation_reason": reason.strip(),
            "cancelled_at": now,
            "updated_at": now,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if cancelled is None:
        # Lost a race with another cancel or a status update.
        _check_cancellable(require_order(db, order_id))
        raise InvalidState("Order can no longer be cancelled")

    restored = []
    try:
        for item in get_order_items(db, str(order["_id"])):
            if release_stock(db, item["product_id"], item["quantity"]):
                restored.append(item)
            else:
                logger.warning("Product %s is gone, not restoring %d units", item["product_id"], item["quantity"])
    except PyMongoError as exc:
        logger.exception("Stock restore failed for order %s, reverting cancellation", order["_id"])
        for item in restored:
            release_stock(db, item["product_id"], -item["quantity"])
        db["order"].update_one({"_id": order["_id"]}, {"$set": previous})
        raise Unexpected("Failed to cancel order") from exc

    logger.info("Cancelled order %s (%d lines restored)", order["order_number"], len(restored))
    return CancelResult(order_id=str(order["_id"]), refund_status=refund_guidance(order.get("payment_method")))


def update_order_status(db: Database, order_id: str, new_status: str, is_admin: bool) -> dict[str, Any]:
    if not is_admin:
        raise Unauthorized("Admin only")
    if new_status not in ORDER_STATUSES:
        raise InvalidState(f"Unknown order status: {new_status}")
    order = require_order(db, order_id)
    if order.get("is_cancelled"):
        raise InvalidState("Cannot update status of cancelled order")
    if new_status not in STATUS_TRANSITIONS[order["status"]]:
        if new_status == "Cancelled":
            raise InvalidState("Orders can only be cancelled by their owner")
        raise InvalidState(f"Cannot move order from {order['status']} to {new_status}")

    updated = db["order"].find_one_and_update(
        {"_id": order["_id"], "is_cancelled": False},
        {"$set": {"status": new_status, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise InvalidState("Cannot update status of cancelled order")
    logger.info("Order %s status %s -> %s", order["order_number"], order["status"], new_status)
    return serialize_doc(updated)


# ----------------------- Queries -----------------------
def _summary(db, order):
    summary = serialize_doc(order)
    summary["item_count"] = db["order_item"].count_documents({"order_id": str(order["_id"])})
    return summary


def get_order_details(db: Database, order_id: str, user_id: Optional[str] = None, is_admin: bool = False) -> dict[str, Any]:
    order = require_order(db, order_id)
    if not is_admin and order["user_id"] != user_id:
        raise Unauthorized("You are not authorized to view this order")
    details = serialize_doc(order)
    details["items"] = [serialize_doc(i) for i in get_order_items(db, str(order["_id"]))]
    return details


def list_user_orders(db: Database, user_id: str) -> list[dict[str, Any]]:
    user = get_user(db, user_id)
    orders = get_documents(db, "order", {"user_id": user["id"]}, sort=[("created_at", -1), ("_id", -1)])
    return [_summary(db, o) for o in orders]


def list_all_orders(db, limit=0):
    orders = get_documents(db, "order", sort=[("created_at", -1), ("_id", -1)], limit=limit)
    return [_summary(db, o) for o in orders]
