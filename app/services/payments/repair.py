"""
Grant repair: re-runs the entitlement grant for paid payments whose grant never
completed (grant gaps). Only the grant is retried, never the payment flow.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable

from app.services.entitlements.provisioner import EntitlementProvisioner
from app.storage.base import PaymentStore
from app.utils.clock import utcnow
from app.utils.metrics import grants_repaired_total

logger = logging.getLogger(__name__)


class GrantRepairService:
    def __init__(
        self,
        payments: PaymentStore,
        provisioner: EntitlementProvisioner,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.payments = payments
        self.provisioner = provisioner
        self.clock = clock

    def repair(self, grace_seconds: int, batch_size: int) -> dict:
        """
        Grant every paid, ungranted payment confirmed more than grace_seconds ago.
        The grace window keeps the job away from grants still in flight.
        """
        paid_before = self.clock() - timedelta(seconds=grace_seconds)
        candidates = self.payments.list_ungranted(paid_before, batch_size)
        repaired = 0
        failed = 0
        for payment in candidates:
            try:
                self.provisioner.grant(payment)
                self.payments.mark_granted(payment, self.clock())
            except Exception:
                failed += 1
                logger.exception(
                    "grant_repair_failed",
                    extra={"payment_id": payment.id, "pubkey": payment.pubkey},
                )
                continue
            repaired += 1
            grants_repaired_total.inc()
            logger.info(
                "grant_repaired",
                extra={"payment_id": payment.id, "pubkey": payment.pubkey, "tier": payment.tier},
            )
        return {"candidates": len(candidates), "repaired": repaired, "failed": failed}
