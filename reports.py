"""
Admin dashboard aggregation.
"""
import os
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pymongo.database import Database

from database import as_utc, get_documents, serialize_doc, to_decimal, utcnow
from order_lifecycle import list_all_orders
from schemas import ORDER_STATUSES

LOW_STOCK_THRESHOLD = int(os.getenv("LOW_STOCK_THRESHOLD", "10"))


def low_stock_products(db, threshold=LOW_STOCK_THRESHOLD, inclusive=True):
    cond = "$lte" if inclusive else "$lt"
    docs = get_documents(db, "product", {"is_active": True, "stock": {cond: threshold}}, sort=[("stock", 1)])
    return [serialize_doc(p) for p in docs]


def dashboard_stats(db: Database, now: Optional[datetime] = None) -> dict[str, Any]:
    now = as_utc(now) if now else utcnow()
    orders = get_documents(db, "order")

    def revenue(selected):
        return sum((to_decimal(o["total_amount"]) for o in selected), Decimal("0"))

    today = [o for o in orders if as_utc(o["created_at"]).date() == now.date()]
    this_month = [
        o for o in orders
        if (as_utc(o["created_at"]).year, as_utc(o["created_at"]).month) == (now.year, now.month)
    ]
    low_stock = [
        {"id": p["id"], "name": p["name"], "stock": p["stock"], "category": p.get("category")}
        for p in low_stock_products(db, LOW_STOCK_THRESHOLD, inclusive=False)
    ]

    return {
        "overview": {
            "total_orders": len(orders),
            "total_revenue": revenue(orders),
            "total_products": db["product"].count_documents({"is_active": True}),
            "total_users": db["user"].count_documents({}),
            "low_stock_count": len(low_stock),
        },
        "order_status": {
            status.lower(): sum(1 for o in orders if o["status"] == status) for status in ORDER_STATUSES
        },
        "today": {"orders": len(today), "revenue": revenue(today)},
        "this_month": {"orders": len(this_month), "revenue": revenue(this_month)},
        "low_stock_products": low_stock,
    }


def recent_orders(db, limit=10):
    return list_all_orders(db, limit=limit)
