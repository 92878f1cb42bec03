"""
InvoiceIssuer: prices a tier/cycle in satoshis, requests a Lightning invoice and
records the pending Payment.

The Payment row is written only after the settlement service returned a complete
invoice. If that write fails the call raises, so the caller retries under a fresh
invoice id instead of receiving an unrecorded invoice.
"""
import logging
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable
from uuid import uuid4

from app.core.config import settings
from app.services.entitlements.tiers import BILLING_CYCLES, get_invoice_ttl, get_price, get_tier
from app.services.errors import (
    InvalidBillingCycle,
    InvalidPubkey,
    InvalidSelection,
    InvalidTier,
    PaymentPersistenceError,
    RateUnavailable,
)
from app.services.lightning.base import InvoiceService, RateOracle
from app.storage.base import PaymentRecord, PaymentStore, StoreError
from app.utils.clock import utcnow
from app.utils.metrics import payments_created_total

logger = logging.getLogger(__name__)

PUBKEY_RE = re.compile(r"[0-9a-fA-F]{64}")


def to_settlement_amount(price_cents: int, usd_per_btc: Decimal, sats_per_btc: int | None = None) -> int:
    """
    Convert a USD cent price to whole satoshis, rounding half up.
    Exact decimal arithmetic, so x.5 boundaries are not blurred by float error.
    """
    if usd_per_btc <= 0:
        raise RateUnavailable("rate must be positive", detail={"usd": str(usd_per_btc)})
    scale = Decimal(sats_per_btc if sats_per_btc is not None else settings.sats_per_btc)
    btc = (Decimal(price_cents) / Decimal(100)) / usd_per_btc
    return int((btc * scale).quantize(Decimal(1), rounding=ROUND_HALF_UP))


class InvoiceIssuer:
    def __init__(
        self,
        payments: PaymentStore,
        rates: RateOracle,
        invoices: InvoiceService,
        clock: Callable[[], datetime] = utcnow,
        description: str | None = None,
    ):
        self.payments = payments
        self.rates = rates
        self.invoices = invoices
        self.clock = clock
        self.description = description or settings.settlement_invoice_description

    def issue_invoice(self, pubkey: str, tier: str, billing_cycle: str) -> PaymentRecord:
        if get_tier(tier) is None:
            raise InvalidTier(f"unknown tier {tier!r}", detail={"tier": tier})
        if billing_cycle not in BILLING_CYCLES:
            raise InvalidBillingCycle(
                f"unknown billing cycle {billing_cycle!r}", detail={"billing_cycle": billing_cycle}
            )
        if not PUBKEY_RE.fullmatch(pubkey or ""):
            raise InvalidPubkey("pubkey must be 64 hex chars", detail={"pubkey": pubkey})
        price = get_price(tier, billing_cycle)
        if price is None:
            raise InvalidSelection(
                f"no price for {tier}/{billing_cycle}",
                detail={"tier": tier, "billing_cycle": billing_cycle},
            )

        rate = self.rates.get_usd_btc_rate()
        amount_sat = to_settlement_amount(price.price_cents, rate)
        if amount_sat < 1:
            raise InvalidSelection(
                "price rounds to zero satoshis",
                detail={"tier": tier, "billing_cycle": billing_cycle},
            )

        invoice_id = str(uuid4())
        invoice = self.invoices.create_invoice(amount_sat, invoice_id, self.description)

        now = self.clock()
        payment = PaymentRecord(
            id=f"payment-{invoice_id}",
            pubkey=pubkey,
            tier=tier,
            billing_cycle=billing_cycle,
            price_cents=price.price_cents,
            settlement_hash=invoice.payment_hash,
            settlement_invoice=invoice.serialized,
            settlement_amount=invoice.amount_sat,
            expires_at=now + get_invoice_ttl(),
            created_at=now,
            modified_at=now,
        )
        try:
            self.payments.create(payment)
        except StoreError as e:
            logger.error(
                "orphaned_invoice",
                extra={
                    "payment_id": payment.id,
                    "pubkey": pubkey,
                    "settlement_hash": invoice.payment_hash,
                    "error": str(e),
                },
            )
            raise PaymentPersistenceError(
                "invoice issued but payment not recorded",
                detail={"payment_id": payment.id, "settlement_hash": invoice.payment_hash},
            ) from e

        payments_created_total.labels(tier=tier, billing_cycle=billing_cycle).inc()
        logger.info(
            "payment_invoice_created",
            extra={
                "payment_id": payment.id,
                "pubkey": pubkey,
                "tier": tier,
                "billing_cycle": billing_cycle,
                "price_cents": price.price_cents,
                "amount_sat": invoice.amount_sat,
            },
        )
        return payment
