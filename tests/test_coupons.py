"""Tests for coupon evaluation and management."""

from datetime import timedelta
from decimal import Decimal

import pytest

from coupons import apply_coupon, create_coupon, deactivate_coupon, evaluate_coupon, find_coupon, list_coupons, redeem_coupon
from database import utcnow
from errors import InvalidState, NotFound


def coupon_doc(**overrides):
    doc = {
        "code": "SAVE10",
        "discount_type": "Percentage",
        "discount_value": Decimal("10"),
        "min_order_amount": None,
        "max_discount_amount": None,
        "usage_limit": None,
        "used_count": 0,
        "expiry_date": utcnow() + timedelta(days=1),
        "is_active": True,
    }
    doc.update(overrides)
    return doc


class TestEvaluateCoupon:
    def test_percentage_without_cap(self):
        result = evaluate_coupon(coupon_doc(), Decimal("250.00"))
        assert result.discount_amount == Decimal("25.00")
        assert result.final_amount == Decimal("225.00")

    def test_percentage_clamped_to_max_discount(self):
        coupon = coupon_doc(discount_value=Decimal("50"), max_discount_amount=Decimal("20.00"))
        result = evaluate_coupon(coupon, Decimal("200.00"))
        assert result.discount_amount == Decimal("20.00")
        assert result.final_amount == Decimal("180.00")

    def test_cap_not_applied_below_limit(self):
        coupon = coupon_doc(discount_value=Decimal("10"), max_discount_amount=Decimal("50.00"))
        result = evaluate_coupon(coupon, Decimal("200.00"))
        assert result.discount_amount == Decimal("20.00")

    def test_fixed_discount(self):
        coupon = coupon_doc(discount_type="Fixed", discount_value=Decimal("15.50"))
        result = evaluate_coupon(coupon, Decimal("100"))
        assert result.discount_amount == Decimal("15.50")
        assert result.final_amount == Decimal("84.50")

    def test_fixed_discount_never_goes_below_zero(self):
        coupon = coupon_doc(discount_type="Fixed", discount_value=Decimal("80"))
        result = evaluate_coupon(coupon, Decimal("50.00"))
        assert result.discount_amount == Decimal("50.00")
        assert result.final_amount == Decimal("0.00")

    def test_rounds_half_to_even(self):
        coupon = coupon_doc(discount_value=Decimal("12.5"))
        result = evaluate_coupon(coupon, Decimal("1.00"))
        # 0.125 off, leaving 0.875
        assert result.discount_amount == Decimal("0.12")
        assert result.final_amount == Decimal("0.88")

    def test_expired(self):
        coupon = coupon_doc(expiry_date=utcnow() - timedelta(minutes=1))
        with pytest.raises(InvalidState, match="expired"):
            evaluate_coupon(coupon, Decimal("100"))

    def test_naive_expiry_is_treated_as_utc(self):
        expired = (utcnow() - timedelta(hours=1)).replace(tzinfo=None)
        with pytest.raises(InvalidState, match="expired"):
            evaluate_coupon(coupon_doc(expiry_date=expired), Decimal("100"))

    def test_inactive(self):
        with pytest.raises(InvalidState, match="no longer active"):
            evaluate_coupon(coupon_doc(is_active=False), Decimal("100"))

    def test_usage_limit_reached(self):
        with pytest.raises(InvalidState, match="usage limit"):
            evaluate_coupon(coupon_doc(usage_limit=3, used_count=3), Decimal("100"))

    def test_below_minimum_order(self):
        coupon = coupon_doc(min_order_amount=Decimal("500"))
        with pytest.raises(InvalidState) as exc_info:
            evaluate_coupon(coupon, Decimal("499.99"))
        assert exc_info.value.details["min_order_amount"] == Decimal("500")

    def test_minimum_order_is_inclusive(self):
        coupon = coupon_doc(min_order_amount=Decimal("500"))
        assert evaluate_coupon(coupon, Decimal("500")).discount_amount == Decimal("50.00")

    def test_unknown_discount_type(self):
        with pytest.raises(InvalidState):
            evaluate_coupon(coupon_doc(discount_type="BuyOneGetOne"), Decimal("100"))

    def test_negative_amount(self):
        with pytest.raises(InvalidState):
            evaluate_coupon(coupon_doc(), Decimal("-1"))

    def test_does_not_touch_used_count(self):
        coupon = coupon_doc(usage_limit=5, used_count=2)
        evaluate_coupon(coupon, Decimal("100"))
        assert coupon["used_count"] == 2


class TestApplyCoupon:
    def test_case_insensitive_lookup(self, db, customer, make_coupon):
        make_coupon(code="Summer20", discount_value="20")
        result = apply_coupon(db, customer["id"], "summer20", Decimal("100"))
        assert result.coupon_code == "SUMMER20"
        assert result.final_amount == Decimal("80.00")

    def test_unknown_code(self, db, customer):
        with pytest.raises(NotFound, match="Invalid coupon code"):
            apply_coupon(db, customer["id"], "NOPE", Decimal("100"))

    def test_unknown_user(self, db, make_coupon):
        make_coupon()
        with pytest.raises(NotFound, match="User not found"):
            apply_coupon(db, "64b7f0f0f0f0f0f0f0f0f0f0", "SAVE10", Decimal("100"))

    def test_preview_does_not_count_usage(self, db, customer, make_coupon):
        make_coupon(usage_limit=1)
        apply_coupon(db, customer["id"], "SAVE10", Decimal("100"))
        apply_coupon(db, customer["id"], "SAVE10", Decimal("100"))
        assert find_coupon(db, "SAVE10")["used_count"] == 0

    def test_deactivated_coupon_is_rejected(self, db, customer, make_coupon):
        coupon = make_coupon()
        deactivate_coupon(db, coupon["id"])
        with pytest.raises(InvalidState, match="no longer active"):
            apply_coupon(db, customer["id"], "SAVE10", Decimal("100"))


class TestRedeemCoupon:
    def test_increments_used_count(self, db, make_coupon):
        coupon = make_coupon(usage_limit=2)
        redeem_coupon(db, coupon["id"])
        assert find_coupon(db, "SAVE10")["used_count"] == 1

    def test_refuses_past_limit(self, db, make_coupon):
        coupon = make_coupon(usage_limit=1)
        redeem_coupon(db, coupon["id"])
        with pytest.raises(InvalidState, match="usage limit"):
            redeem_coupon(db, coupon["id"])
        assert find_coupon(db, "SAVE10")["used_count"] == 1

    def test_unknown_coupon(self, db):
        with pytest.raises(NotFound):
            redeem_coupon(db, "not-an-id")


class TestCreateCoupon:
    def base(self, **overrides):
        data = {
            "code": "new5",
            "discount_type": "Fixed",
            "discount_value": Decimal("5"),
            "expiry_date": utcnow() + timedelta(days=30),
        }
        data.update(overrides)
        return data

    def test_code_is_stored_upper_case(self, db):
        created = create_coupon(db, self.base())
        assert created["code"] == "NEW5"
        assert find_coupon(db, "new5")["is_active"] is True

    def test_rejects_unknown_type(self, db):
        with pytest.raises(InvalidState, match="DiscountType"):
            create_coupon(db, self.base(discount_type="Bogus"))

    def test_rejects_percentage_over_100(self, db):
        with pytest.raises(InvalidState, match="between 0 and 100"):
            create_coupon(db, self.base(discount_type="Percentage", discount_value=Decimal("101")))

    def test_rejects_duplicate_code_any_case(self, db):
        create_coupon(db, self.base())
        with pytest.raises(InvalidState, match="already exists"):
            create_coupon(db, self.base(code="NEW5"))

    def test_list_reports_remaining_uses_and_expiry(self, db):
        create_coupon(db, self.base(code="LIMITED", usage_limit=3))
        create_coupon(db, self.base(code="OLD", expiry_date=utcnow() - timedelta(days=1)))
        by_code = {c["code"]: c for c in list_coupons(db)}
        assert by_code["LIMITED"]["remaining_uses"] == 3
        assert by_code["LIMITED"]["is_expired"] is False
        assert by_code["OLD"]["remaining_uses"] is None
        assert by_code["OLD"]["is_expired"] is True

    def test_deactivate_unknown(self, db):
        with pytest.raises(NotFound):
            deactivate_coupon(db, "64b7f0f0f0f0f0f0f0f0f0f0")
