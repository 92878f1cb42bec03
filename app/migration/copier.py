"""
Offline copy of payments/accounts between store backends (e.g. redis -> sql).
Never runs on the request path. Inserts are conditional: an existing target
record is never overwritten.
"""
import logging
import random
from dataclasses import asdict, dataclass, field
from typing import Any, Iterator

from app.storage.base import (
    AccountRecord,
    AccountStore,
    DuplicateRecordError,
    PaymentRecord,
    PaymentStore,
)

logger = logging.getLogger(__name__)


@dataclass
class MigrationProgress:
    total: int = 0
    migrated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class _Copier:
    kind = "record"

    def _iter_source(self, batch_size: int) -> Iterator[Any]:
        raise NotImplementedError

    def _exists(self, record: Any) -> bool:
        raise NotImplementedError

    def _insert(self, record: Any) -> None:
        raise NotImplementedError

    def _fetch_target(self, record: Any) -> Any:
        raise NotImplementedError

    def _label(self, record: Any) -> str:
        raise NotImplementedError

    def copy(self, batch_size: int = 100, skip_existing: bool = True, dry_run: bool = False) -> MigrationProgress:
        progress = MigrationProgress()
        logger.info(
            f"{self.kind}_migration_started",
            extra={"status": "dry_run" if dry_run else "live"},
        )
        for record in self._iter_source(batch_size):
            progress.total += 1
            label = self._label(record)
            try:
                if skip_existing and self._exists(record):
                    progress.skipped += 1
                    continue
                if not dry_run:
                    self._insert(record)
                progress.migrated += 1
            except DuplicateRecordError:
                progress.skipped += 1
            except Exception as e:
                progress.failed += 1
                message = f"Failed to migrate {self.kind} {label}: {e}"
                progress.errors.append(message)
                logger.error(f"{self.kind}_migration_failed", extra={"error": message})
            if progress.total % batch_size == 0:
                logger.info(
                    f"{self.kind}_migration_progress",
                    extra={"count": progress.total, "status": f"{progress.migrated} migrated"},
                )
        logger.info(
            f"{self.kind}_migration_finished",
            extra={"count": progress.total, "status": f"{progress.migrated} migrated, {progress.failed} failed"},
        )
        return progress

    def verify(self, sample_size: int = 50, batch_size: int = 100, rng: random.Random | None = None) -> list[str]:
        """
        Compare a uniform sample of source records with the target.
        Returns labels of records missing or different in the target.
        """
        rng = rng or random.Random()
        sample: list[Any] = []
        for i, record in enumerate(self._iter_source(batch_size)):
            if len(sample) < sample_size:
                sample.append(record)
            else:
                j = rng.randint(0, i)
                if j < sample_size:
                    sample[j] = record
        mismatched = []
        for record in sample:
            target = self._fetch_target(record)
            if target is None or asdict(target) != asdict(record):
                mismatched.append(self._label(record))
        if mismatched:
            logger.warning(f"{self.kind}_verify_mismatch", extra={"count": len(mismatched)})
        return mismatched


class PaymentCopier(_Copier):
    kind = "payment"

    def __init__(self, source: PaymentStore, target: PaymentStore):
        self.source = source
        self.target = target

    def _iter_source(self, batch_size: int) -> Iterator[PaymentRecord]:
        return self.source.iter_all(batch_size)

    def _exists(self, record: PaymentRecord) -> bool:
        return self.target.exists(record.id, record.pubkey)

    def _insert(self, record: PaymentRecord) -> None:
        self.target.create(record)

    def _fetch_target(self, record: PaymentRecord) -> PaymentRecord | None:
        return self.target.get(record.id, record.pubkey)

    def _label(self, record: PaymentRecord) -> str:
        return record.id


class AccountCopier(_Copier):
    kind = "account"

    def __init__(self, source: AccountStore, target: AccountStore):
        self.source = source
        self.target = target

    def _iter_source(self, batch_size: int) -> Iterator[AccountRecord]:
        return self.source.iter_all(batch_size)

    def _exists(self, record: AccountRecord) -> bool:
        return self.target.get(record.pubkey) is not None

    def _insert(self, record: AccountRecord) -> None:
        self.target.create(record)

    def _fetch_target(self, record: AccountRecord) -> AccountRecord | None:
        return self.target.get(record.pubkey)

    def _label(self, record: AccountRecord) -> str:
        return record.pubkey
