"""
Relational stores on SQLAlchemy sessions.
Every write commits immediately: the paid flag must be durable before any grant runs.
"""
import logging
from datetime import datetime
from typing import Iterator

from sqlalchemy import func, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.account import Account
from app.models.payment import Payment
from app.storage.base import (
    AccountRecord,
    AccountStore,
    DuplicateRecordError,
    PaymentRecord,
    PaymentStore,
    StoreError,
)
from app.utils.clock import as_utc, utcnow

logger = logging.getLogger(__name__)


def _payment_to_record(row: Payment) -> PaymentRecord:
    return PaymentRecord(
        id=row.id,
        pubkey=row.pubkey,
        tier=row.tier,
        billing_cycle=row.billing_cycle,
        price_cents=row.price_cents,
        settlement_hash=row.settlement_hash,
        settlement_invoice=row.settlement_invoice,
        settlement_amount=row.settlement_amount,
        expires_at=as_utc(row.expires_at),
        created_at=as_utc(row.created_at),
        modified_at=as_utc(row.modified_at),
        is_paid=bool(row.is_paid),
        paid_at=as_utc(row.paid_at),
        granted_at=as_utc(row.granted_at),
        payment_type=row.payment_type,
    )


def _account_to_record(row: Account) -> AccountRecord:
    return AccountRecord(
        pubkey=row.pubkey,
        tier=row.tier,
        entitlements=dict(row.entitlements or {}),
        billing_cycle=row.billing_cycle,
        subscription_expires_at=as_utc(row.subscription_expires_at),
        price_cents=row.price_cents,
        currency=row.currency,
        last_payment_id=row.last_payment_id,
        last_paid_at=as_utc(row.last_paid_at),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )



def _is_stale(account: AccountRecord, stored_paid_at: datetime | None) -> bool:
    """True if the stored grant is anchored on a later payment than the incoming one."""
    return (
        stored_paid_at is not None
        and account.last_paid_at is not None
        and stored_paid_at > account.last_paid_at
    )

class SqlPaymentStore(PaymentStore):
    def __init__(self, db: Session):
        self.db = db

    def create(self, payment: PaymentRecord) -> PaymentRecord:
        row = Payment(
            id=payment.id,
            pubkey=payment.pubkey,
            payment_type=payment.payment_type,
            tier=payment.tier,
            billing_cycle=payment.billing_cycle,
            price_cents=payment.price_cents,
            settlement_hash=payment.settlement_hash,
            settlement_invoice=payment.settlement_invoice,
            settlement_amount=payment.settlement_amount,
            is_paid=payment.is_paid,
            paid_at=payment.paid_at,
            granted_at=payment.granted_at,
            expires_at=payment.expires_at,
            created_at=payment.created_at,
            modified_at=payment.modified_at,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateRecordError(f"payment {payment.id} already exists") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"failed to create payment {payment.id}: {e}") from e
        return payment

    def get(self, payment_id: str, pubkey: str) -> PaymentRecord | None:
        row = (
            self.db.query(Payment)
            .filter(Payment.id == payment_id, Payment.pubkey == pubkey)
            .one_or_none()
        )
        return _payment_to_record(row) if row else None

    def mark_paid(self, payment: PaymentRecord, paid_at: datetime) -> bool:
        try:
            result = self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.is_paid.is_(False))
                .values(is_paid=True, paid_at=paid_at, modified_at=paid_at)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"failed to mark payment {payment.id} paid: {e}") from e
        return result.rowcount == 1

    def mark_granted(self, payment: PaymentRecord, granted_at: datetime) -> None:
        try:
            self.db.execute(
                update(Payment)
                .where(Payment.id == payment.id, Payment.granted_at.is_(None))
                .values(granted_at=granted_at, modified_at=granted_at)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"failed to mark payment {payment.id} granted: {e}") from e

    def list_recent(self, limit: int) -> list[PaymentRecord]:
        rows = (
            self.db.query(Payment)
            .order_by(Payment.created_at.desc())
            .limit(limit)
            .all()
        )
        return [_payment_to_record(r) for r in rows]

    def list_ungranted(self, paid_before: datetime, limit: int) -> list[PaymentRecord]:
        rows = (
            self.db.query(Payment)
            .filter(
                Payment.is_paid.is_(True),
                Payment.granted_at.is_(None),
                Payment.paid_at <= paid_before,
            )
            .order_by(Payment.paid_at)
            .limit(limit)
            .all()
        )
        return [_payment_to_record(r) for r in rows]

    def iter_all(self, batch_size: int = 100) -> Iterator[PaymentRecord]:
        offset = 0
        while True:
            rows = (
                self.db.query(Payment)
                .order_by(Payment.created_at, Payment.id)
                .offset(offset)
                .limit(batch_size)
                .all()
            )
            if not rows:
                return
            for row in rows:
                yield _payment_to_record(row)
            if len(rows) < batch_size:
                return
            offset += batch_size

    def exists(self, payment_id: str, pubkey: str) -> bool:
        return (
            self.db.query(Payment.id)
            .filter(Payment.id == payment_id, Payment.pubkey == pubkey)
            .first()
            is not None
        )

    def count(self) -> int:
        return self.db.query(func.count(Payment.id)).scalar() or 0

    def ping(self) -> None:
        self.db.execute(text("SELECT 1"))


class SqlAccountStore(AccountStore):
    def __init__(self, db: Session):
        self.db = db

    def get(self, pubkey: str) -> AccountRecord | None:
        row = self.db.query(Account).filter(Account.pubkey == pubkey).one_or_none()
        return _account_to_record(row) if row else None

    def upsert(self, account: AccountRecord) -> AccountRecord:
        return self._upsert(account, retry=True)

    def _upsert(self, account: AccountRecord, retry: bool) -> AccountRecord:
        now = utcnow()
        try:
            row = (
                self.db.query(Account)
                .filter(Account.pubkey == account.pubkey)
                .with_for_update()
                .one_or_none()
            )
            if row is not None and _is_stale(account, as_utc(row.last_paid_at)):
                self.db.commit()
                logger.info(
                    "account_upsert_stale",
                    extra={"pubkey": account.pubkey, "payment_id": account.last_payment_id},
                )
                return _account_to_record(row)
            if row is None:
                row = Account(pubkey=account.pubkey, created_at=account.created_at or now)
                self.db.add(row)
            row.tier = account.tier
            row.billing_cycle = account.billing_cycle
            row.subscription_expires_at = account.subscription_expires_at
            row.entitlements = dict(account.entitlements)
            row.price_cents = account.price_cents
            row.currency = account.currency
            row.last_payment_id = account.last_payment_id
            row.last_paid_at = account.last_paid_at
            row.updated_at = now
            self.db.commit()
        except IntegrityError as e:
            # Concurrent first grant for the same pubkey created the row; overwrite it once.
            self.db.rollback()
            if not retry:
                raise StoreError(f"failed to upsert account {account.pubkey}: {e}") from e
            return self._upsert(account, retry=False)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"failed to upsert account {account.pubkey}: {e}") from e
        return _account_to_record(row)

    def create(self, account: AccountRecord) -> AccountRecord:
        now = utcnow()
        row = Account(
            pubkey=account.pubkey,
            tier=account.tier,
            billing_cycle=account.billing_cycle,
            subscription_expires_at=account.subscription_expires_at,
            entitlements=dict(account.entitlements),
            price_cents=account.price_cents,
            currency=account.currency,
            last_payment_id=account.last_payment_id,
            last_paid_at=account.last_paid_at,
            created_at=account.created_at or now,
            updated_at=account.updated_at or now,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateRecordError(f"account {account.pubkey} already exists") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError(f"failed to create account {account.pubkey}: {e}") from e
        return _account_to_record(row)

    def iter_all(self, batch_size: int = 100) -> Iterator[AccountRecord]:
        offset = 0
        while True:
            rows = (
                self.db.query(Account)
                .order_by(Account.created_at, Account.pubkey)
                .offset(offset)
                .limit(batch_size)
                .all()
            )
            if not rows:
                return
            for row in rows:
                yield _account_to_record(row)
            if len(rows) < batch_size:
                return
            offset += batch_size

    def count(self) -> int:
        return self.db.query(func.count(Account.id)).scalar() or 0
