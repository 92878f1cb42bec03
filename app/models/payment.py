"""
Payment model: one row per Lightning invoice issued for a subscription tier.
Rows are never deleted: they are the audit trail of issued invoices.
"""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from app.db.base import Base


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True)                     # "payment-<uuid4>"
    pubkey = Column(String, nullable=False, index=True)
    payment_type = Column(String, nullable=False, default="ln")
    tier = Column(String, nullable=False)                     # "premium" / "premium_plus"
    billing_cycle = Column(String, nullable=False)            # "monthly" / "quarterly" / "yearly"
    price_cents = Column(Integer, nullable=False)
    settlement_hash = Column(String, nullable=False, index=True)
    settlement_invoice = Column(Text, nullable=False)
    settlement_amount = Column(Integer, nullable=False)       # sats
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    granted_at = Column(DateTime(timezone=True), nullable=True)  # entitlement grant completed
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    modified_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
