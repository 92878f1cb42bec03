"""
PaymentReconciler: resolves invoice status and performs the one-time paid transition.

Resolution order on every call:
  1. stored is_paid           -> paid     (no external call)
  2. now > expires_at         -> expired  (no external call, late settlement ignored)
  3. settlement oracle        -> paid (after conditional write) | pending

Only the caller whose conditional write applies runs the entitlement grant.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from app.services.entitlements.provisioner import EntitlementProvisioner
from app.services.errors import ConflictError, NotFoundError, PaymentPersistenceError
from app.services.lightning.base import SettlementStatusOracle
from app.storage.base import (
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PaymentRecord,
    PaymentStore,
    StoreError,
)
from app.utils.clock import utcnow
from app.utils.metrics import (
    grant_gaps_total,
    payment_confirm_conflicts_total,
    payment_status_checks_total,
    payments_confirmed_total,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentStatus:
    payment: PaymentRecord
    status: str


class PaymentReconciler:
    def __init__(
        self,
        payments: PaymentStore,
        oracle: SettlementStatusOracle,
        provisioner: EntitlementProvisioner,
        clock: Callable[[], datetime] = utcnow,
        dev_auto_payment_after: int | None = None,
    ):
        self.payments = payments
        self.oracle = oracle
        self.provisioner = provisioner
        self.clock = clock
        self.dev_auto_payment_after = dev_auto_payment_after

    def check_status(self, payment_id: str, pubkey: str) -> PaymentStatus:
        payment = self.payments.get(payment_id, pubkey)
        if payment is None:
            raise NotFoundError(
                "payment not found",
                detail={"payment_id": payment_id, "pubkey": pubkey},
            )

        now = self.clock()
        status = payment.local_status(now)
        if status == PAYMENT_PENDING and self._is_settled(payment, now):
            try:
                payment = self._confirm(payment, now)
            except ConflictError:
                payment_confirm_conflicts_total.inc()
                logger.info(
                    "payment_confirm_conflict",
                    extra={"payment_id": payment.id, "pubkey": payment.pubkey},
                )
                payment = self.payments.get(payment_id, pubkey) or payment
            status = PAYMENT_PAID

        payment_status_checks_total.labels(status=status).inc()
        return PaymentStatus(payment=payment, status=status)

    def list_payments(self, limit: int) -> list[PaymentStatus]:
        """Recent payments with locally derived status; never calls the oracle."""
        now = self.clock()
        return [PaymentStatus(payment=p, status=p.local_status(now)) for p in self.payments.list_recent(limit)]

    def _is_settled(self, payment: PaymentRecord, now: datetime) -> bool:
        settled = self.oracle.is_settled(payment.settlement_hash)
        if not settled and self.dev_auto_payment_after is not None:
            settled = (now - payment.created_at).total_seconds() > self.dev_auto_payment_after
            if settled:
                logger.warning("dev_auto_payment", extra={"payment_id": payment.id})
        return settled

    def _confirm(self, payment: PaymentRecord, now: datetime) -> PaymentRecord:
        """Conditional paid write; raises ConflictError if another caller already won."""
        try:
            won = self.payments.mark_paid(payment, paid_at=now)
        except StoreError as e:
            logger.error(
                "payment_confirm_failed",
                extra={"payment_id": payment.id, "error": str(e)},
            )
            raise PaymentPersistenceError(str(e), detail={"payment_id": payment.id}) from e
        if not won:
            raise ConflictError("payment already confirmed", detail={"payment_id": payment.id})

        payment.is_paid = True
        payment.paid_at = now
        payment.modified_at = now
        payments_confirmed_total.labels(tier=payment.tier).inc()
        logger.info(
            "payment_confirmed",
            extra={"payment_id": payment.id, "pubkey": payment.pubkey, "tier": payment.tier},
        )
        self.grant(payment)
        return payment

    def grant(self, payment: PaymentRecord) -> bool:
        """
        Grant entitlements for a paid payment and record completion.
        A failed grant is logged as a grant gap and left for the repair job.
        """
        try:
            self.provisioner.grant(payment)
        except Exception:
            grant_gaps_total.inc()
            logger.exception(
                "grant_gap",
                extra={
                    "payment_id": payment.id,
                    "pubkey": payment.pubkey,
                    "tier": payment.tier,
                    "billing_cycle": payment.billing_cycle,
                },
            )
            return False

        granted_at = self.clock()
        try:
            self.payments.mark_granted(payment, granted_at)
        except StoreError as e:
            # Grant is done; the repair job re-grants idempotently and retries the marker.
            logger.warning(
                "mark_granted_failed",
                extra={"payment_id": payment.id, "error": str(e)},
            )
            return True
        payment.granted_at = granted_at
        return True
