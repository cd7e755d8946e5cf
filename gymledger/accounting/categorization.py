"""
Payment to revenue category mapping.

Every payment lands in exactly one revenue category, which decides the ledger
account it posts to. Rules are checked in order and the first match wins:

    1. status "refunded"            -> refund
    2. payment_type "day-pass"      -> day_pass
    3. payment_type "service-booking", dispatched on metadata.service_type
    4. anything else                -> day_pass (with a warning)

Categorization never raises; unrecognised shapes fall back to a default
category and carry a warning that the sync log records.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional


class RevenueCategory(str, Enum):
    """Revenue buckets that map to ledger accounts."""
    DAY_PASS = "day_pass"
    SERVICE_PT = "service_pt"
    SERVICE_SPECIALTY_CLASS = "service_specialty_class"
    SERVICE_SPORTS_MASSAGE = "service_sports_massage"
    SERVICE_NUTRITION = "service_nutrition"
    SERVICE_PHYSIO = "service_physio"
    REFUND = "refund"


ALL_CATEGORIES = [category.value for category in RevenueCategory]

# metadata.service_type -> (category, description)
SERVICE_TYPE_MAPPING = {
    "pt": (RevenueCategory.SERVICE_PT, "Personal Training Session"),
    "specialty_class": (RevenueCategory.SERVICE_SPECIALTY_CLASS, "Specialty Class"),
    "sports_massage": (RevenueCategory.SERVICE_SPORTS_MASSAGE, "Sports Massage"),
    "nutrition": (RevenueCategory.SERVICE_NUTRITION, "Nutrition Coaching"),
    "physio": (RevenueCategory.SERVICE_PHYSIO, "Physiotherapy"),
}


@dataclass
class CategorizedPayment:
    """A payment with its revenue category. Recomputed on every run."""
    payment: Any
    category: RevenueCategory
    description: str
    warning: Optional[str] = None


def _service_type(payment) -> Optional[str]:
    metadata = getattr(payment, "extra_data", None)
    if not isinstance(metadata, dict):
        return None
    value = metadata.get("service_type")
    return value if isinstance(value, str) else None


def categorize_payment(payment) -> CategorizedPayment:
    """
    Categorize a single payment.

    Examples:
        >>> categorize_payment(Payment(status="succeeded", payment_type="day-pass")).category
        <RevenueCategory.DAY_PASS: 'day_pass'>
    """
    status = getattr(payment, "status", None)
    payment_type = getattr(payment, "payment_type", None)
    payment_id = getattr(payment, "id", None)

    if status == "refunded":
        return CategorizedPayment(payment, RevenueCategory.REFUND, "Refund")

    if payment_type == "day-pass":
        return CategorizedPayment(payment, RevenueCategory.DAY_PASS, "Day Pass")

    if payment_type == "service-booking":
        service_type = _service_type(payment)
        if service_type in SERVICE_TYPE_MAPPING:
            category, description = SERVICE_TYPE_MAPPING[service_type]
            return CategorizedPayment(payment, category, description)

        # TODO: route to an "uncategorized" account once admins can map one
        return CategorizedPayment(
            payment,
            RevenueCategory.SERVICE_PT,
            "Service Booking",
            warning=(
                f"Payment {payment_id}: unknown service_type {service_type!r}, "
                f"booked as {RevenueCategory.SERVICE_PT.value}"
            ),
        )

    return CategorizedPayment(
        payment,
        RevenueCategory.DAY_PASS,
        "Payment",
        warning=(
            f"Payment {payment_id}: unknown payment_type {payment_type!r}, "
            f"booked as {RevenueCategory.DAY_PASS.value}"
        ),
    )


def categorize_payments(payments) -> List[CategorizedPayment]:
    """Categorize a batch of payments, preserving order."""
    return [categorize_payment(payment) for payment in payments]
