"""Tests for payment categorization."""
from types import SimpleNamespace

import pytest

from gymledger.accounting.categorization import (
    ALL_CATEGORIES,
    RevenueCategory,
    categorize_payment,
    categorize_payments,
)


def payment(**kwargs):
    values = {"id": "pay_1", "status": "succeeded", "payment_type": "day-pass", "extra_data": {}}
    values.update(kwargs)
    return SimpleNamespace(**values)


class TestCategorizePayment:

    def test_day_pass(self):
        result = categorize_payment(payment())
        assert result.category == RevenueCategory.DAY_PASS
        assert result.description == "Day Pass"
        assert result.warning is None

    @pytest.mark.parametrize("service_type,category,description", [
        ("pt", RevenueCategory.SERVICE_PT, "Personal Training Session"),
        ("specialty_class", RevenueCategory.SERVICE_SPECIALTY_CLASS, "Specialty Class"),
        ("sports_massage", RevenueCategory.SERVICE_SPORTS_MASSAGE, "Sports Massage"),
        ("nutrition", RevenueCategory.SERVICE_NUTRITION, "Nutrition Coaching"),
        ("physio", RevenueCategory.SERVICE_PHYSIO, "Physiotherapy"),
    ])
    def test_service_bookings(self, service_type, category, description):
        result = categorize_payment(payment(
            payment_type="service-booking",
            extra_data={"service_type": service_type},
        ))
        assert result.category == category
        assert result.description == description
        assert result.warning is None

    def test_refund_wins_over_payment_type(self):
        result = categorize_payment(payment(
            status="refunded",
            payment_type="service-booking",
            extra_data={"service_type": "physio"},
        ))
        assert result.category == RevenueCategory.REFUND
        assert result.description == "Refund"

    def test_unknown_service_type_falls_back_with_warning(self):
        result = categorize_payment(payment(
            payment_type="service-booking",
            extra_data={"service_type": "sauna"},
        ))
        assert result.category == RevenueCategory.SERVICE_PT
        assert "sauna" in result.warning

    def test_missing_metadata_falls_back(self):
        result = categorize_payment(payment(payment_type="service-booking", extra_data=None))
        assert result.category == RevenueCategory.SERVICE_PT
        assert result.warning

    def test_unknown_payment_type_falls_back_to_day_pass(self):
        result = categorize_payment(payment(payment_type="merch"))
        assert result.category == RevenueCategory.DAY_PASS
        assert "merch" in result.warning

    def test_batch_preserves_order(self):
        payments = [payment(id="a"), payment(id="b", status="refunded")]
        results = categorize_payments(payments)
        assert [r.payment.id for r in results] == ["a", "b"]
        assert results[1].category == RevenueCategory.REFUND


def test_seven_categories():
    assert len(ALL_CATEGORIES) == 7
    assert "refund" in ALL_CATEGORIES
