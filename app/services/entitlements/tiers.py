"""
Tier table: typed wrappers over app.core.config.settings.tiers_config.
"""
from __future__ import annotations

import json
from datetime import timedelta
from functools import lru_cache

from pydantic import BaseModel, Field

from app.core.config import settings


BILLING_CYCLES = ("monthly", "quarterly", "yearly")

# Subscription length granted per billing cycle.
CYCLE_DAYS = {
    "monthly": 31,
    "quarterly": 92,
    "yearly": 365,
}


class Price(BaseModel):
    price_cents: int = Field(..., gt=0)
    currency: str = "USD"

    model_config = {"frozen": True}


class Entitlements(BaseModel):
    notifications_per_day: int = Field(..., ge=0)
    features: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class TierDetails(BaseModel):
    tier: str
    name: str
    pricing: dict[str, Price] | None = None
    entitlements: Entitlements

    model_config = {"frozen": True}


@lru_cache(maxsize=4)
def _parse_tiers(raw: str) -> dict[str, TierDetails]:
    data = json.loads(raw)
    table: dict[str, TierDetails] = {}
    for key, value in data.items():
        pricing = value.get("pricing")
        if pricing:
            unknown = set(pricing) - set(BILLING_CYCLES)
            if unknown:
                raise ValueError(f"tier {key}: unknown billing cycles {sorted(unknown)}")
        table[key] = TierDetails(tier=key, **value)
    return table


def get_tier_table() -> dict[str, TierDetails]:
    return _parse_tiers(settings.tiers_config)


def get_tier(tier: str) -> TierDetails | None:
    return get_tier_table().get(tier)


def get_price(tier: str, billing_cycle: str) -> Price | None:
    """Price of a tier/cycle pair; None for unknown pairs and unpriced tiers."""
    details = get_tier(tier)
    if details is None or not details.pricing:
        return None
    return details.pricing.get(billing_cycle)


def cycle_duration(billing_cycle: str) -> timedelta:
    return timedelta(days=CYCLE_DAYS[billing_cycle])


def get_invoice_ttl() -> timedelta:
    return timedelta(seconds=settings.invoice_ttl_seconds)
