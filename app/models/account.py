"""
Account model: effective subscription of a pubkey.
entitlements is a snapshot taken at grant time, not re-derived from the tier table.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base


class Account(Base):
    __tablename__ = "accounts"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    pubkey = Column(String, unique=True, nullable=False, index=True)
    tier = Column(String, nullable=False, default="free")
    billing_cycle = Column(String, nullable=True)
    subscription_expires_at = Column(DateTime(timezone=True), nullable=True)
    entitlements = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    price_cents = Column(Integer, nullable=True)
    currency = Column(String, nullable=True)
    last_payment_id = Column(String, nullable=True)
    last_paid_at = Column(DateTime(timezone=True), nullable=True)  # paid_at of last_payment_id
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
