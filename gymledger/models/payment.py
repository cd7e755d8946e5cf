"""Payment model.

Payments are created by the booking/checkout service. The accounting sync
reads them and writes only the per-provider synced flags and the last
attempt timestamp.
"""
from sqlalchemy import Column, String, DateTime, Integer, Boolean, Index
from sqlalchemy.sql import func

from gymledger.database import Base
from gymledger.models.base import generate_id, JSONType


class Payment(Base):
    """A financial transaction taken from a member."""

    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: generate_id("pay"))
    gym_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True, index=True)

    amount = Column(Integer, nullable=False)  # minor units (pence / cents)
    currency = Column(String, nullable=False, default="gbp")
    payment_type = Column(String, nullable=False)  # "day-pass" | "service-booking"
    payment_intent_id = Column(String, nullable=True)
    status = Column(String, nullable=False)  # "succeeded" | "refunded" | "pending" | "failed"

    # Stored as "metadata" in the table; the name is reserved on declarative classes
    extra_data = Column("metadata", JSONType, nullable=True)

    # Accounting sync state
    accounting_synced_qb = Column(Boolean, nullable=False, default=False)
    accounting_synced_xero = Column(Boolean, nullable=False, default=False)
    accounting_last_sync_attempt = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        Index("ix_payments_synced_qb_created", "accounting_synced_qb", "created_at"),
        Index("ix_payments_synced_xero_created", "accounting_synced_xero", "created_at"),
    )
