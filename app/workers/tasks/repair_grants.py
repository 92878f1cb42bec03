"""
Celery periodic task: retry entitlement grants for paid payments with a grant gap.
"""
import logging

from app.core.celery_app import celery_app
from app.core.config import settings
from app.db.session import SessionLocal
from app.services.entitlements.provisioner import EntitlementProvisioner
from app.services.payments.repair import GrantRepairService
from app.storage.factory import StoreFactory

logger = logging.getLogger(__name__)


@celery_app.task(name="app.workers.tasks.repair_grants.repair_grant_gaps")
def repair_grant_gaps() -> dict:
    """Grant entitlements for paid payments whose grant never completed."""
    db = SessionLocal()
    try:
        stores = StoreFactory.create_from_settings(settings, db=db)
        service = GrantRepairService(stores.payments, EntitlementProvisioner(stores.accounts))
        result = service.repair(
            grace_seconds=settings.grant_repair_grace_seconds,
            batch_size=settings.grant_repair_batch_size,
        )
        logger.info("repair_grant_gaps_done", extra={"count": result["repaired"]})
        return result
    except Exception:
        db.rollback()
        logger.exception("repair_grant_gaps_error")
        return {"candidates": 0, "repaired": 0, "failed": 0, "error": "exception"}
    finally:
        db.close()
