"""
EntitlementProvisioner: maps a paid Payment to its tier bundle and upserts the Account.

Safe to call repeatedly for the same payment: the subscription window is anchored
on payment.paid_at (set once), and the account fields are overwritten, not stacked.
A late grant of an older payment never replaces a grant of a newer one.
"""
import logging
from datetime import datetime
from typing import Callable

from app.services.entitlements.tiers import BILLING_CYCLES, cycle_duration, get_price, get_tier
from app.services.errors import GrantError
from app.storage.base import AccountRecord, AccountStore, PaymentRecord, StoreError
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


class EntitlementProvisioner:
    def __init__(self, accounts: AccountStore, clock: Callable[[], datetime] = utcnow):
        self.accounts = accounts
        self.clock = clock

    def build_account(self, payment: PaymentRecord) -> AccountRecord:
        """Account state that a grant of this payment produces."""
        details = get_tier(payment.tier)
        if details is None or payment.billing_cycle not in BILLING_CYCLES:
            raise GrantError(
                f"no entitlements for {payment.tier}/{payment.billing_cycle}",
                detail={"payment_id": payment.id, "tier": payment.tier},
            )
        price = get_price(payment.tier, payment.billing_cycle)
        anchor = payment.paid_at or self.clock()
        return AccountRecord(
            pubkey=payment.pubkey,
            tier=payment.tier,
            entitlements=details.entitlements.model_dump(),
            billing_cycle=payment.billing_cycle,
            subscription_expires_at=anchor + cycle_duration(payment.billing_cycle),
            price_cents=payment.price_cents,
            currency=price.currency if price else None,
            last_payment_id=payment.id,
            last_paid_at=anchor,
        )

    def grant(self, payment: PaymentRecord) -> AccountRecord:
        if not payment.is_paid:
            raise GrantError(
                "refusing to grant an unpaid payment",
                detail={"payment_id": payment.id},
            )
        record = self.build_account(payment)
        try:
            account = self.accounts.upsert(record)
        except StoreError as e:
            raise GrantError(
                f"account upsert failed: {e}",
                detail={"payment_id": payment.id, "pubkey": payment.pubkey},
            ) from e
        if account.last_payment_id != payment.id:
            logger.info(
                "entitlements_grant_superseded",
                extra={"payment_id": payment.id, "pubkey": payment.pubkey, "tier": account.tier},
            )
            return account
        logger.info(
            "entitlements_granted",
            extra={
                "payment_id": payment.id,
                "pubkey": payment.pubkey,
                "tier": payment.tier,
                "billing_cycle": payment.billing_cycle,
            },
        )
        return account
