"""Tests for the admin dashboard."""

from decimal import Decimal

from checkout import place_order
from order_lifecycle import cancel_order, update_order_status
from reports import dashboard_stats, low_stock_products


def test_dashboard_counts_by_status(db, customer, admin, make_product, fill_cart, shipping):
    cheap = make_product("Cheap", price="5.00", stock=20)
    rare = make_product("Rare", price="50.00", stock=11)

    fill_cart(customer, (cheap, 2))
    first = place_order(db, customer["id"], shipping)
    fill_cart(customer, (rare, 2))
    second = place_order(db, customer["id"], shipping)
    fill_cart(customer, (cheap, 1))
    place_order(db, customer["id"], shipping)

    update_order_status(db, first.order_id, "Delivered", is_admin=True)
    cancel_order(db, second.order_id, customer["id"], "changed mind")

    stats = dashboard_stats(db)

    assert stats["overview"]["total_orders"] == 3
    assert stats["overview"]["total_revenue"] == Decimal("115.00")
    assert stats["overview"]["total_users"] == 2
    assert stats["order_status"] == {
        "pending": 1,
        "processing": 0,
        "shipped": 0,
        "delivered": 1,
        "cancelled": 1,
    }
    assert stats["today"]["orders"] == 3
    assert stats["this_month"]["orders"] == 3
    # Rare went 11 -> 9 -> 11 after the cancel, so nothing is below 10.
    assert stats["low_stock_products"] == []


def test_low_stock_threshold_is_inclusive(make_product, db):
    make_product("At", stock=10)
    make_product("Above", stock=11)
    make_product("Below", stock=0)
    assert [p["name"] for p in low_stock_products(db, 10)] == ["Below", "At"]
