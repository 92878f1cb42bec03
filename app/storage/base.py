"""
Backend-neutral records and store interfaces for payments and accounts.
Implementations: app.storage.sql (relational), app.storage.redis_store (documents).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator


PAYMENT_PENDING = "pending"
PAYMENT_EXPIRED = "expired"
PAYMENT_PAID = "paid"


class StoreError(Exception):
    """Backend failure (connection, constraint, serialization)."""


class DuplicateRecordError(StoreError):
    """Insert refused because a record with the same key exists."""


@dataclass
class PaymentRecord:
    id: str
    pubkey: str
    tier: str
    billing_cycle: str
    price_cents: int
    settlement_hash: str
    settlement_invoice: str
    settlement_amount: int
    expires_at: datetime
    created_at: datetime
    modified_at: datetime
    is_paid: bool = False
    paid_at: datetime | None = None
    granted_at: datetime | None = None
    payment_type: str = "ln"

    def local_status(self, now: datetime) -> str:
        """Status derivable without asking the settlement network."""
        if self.is_paid:
            return PAYMENT_PAID
        if now > self.expires_at:
            return PAYMENT_EXPIRED
        return PAYMENT_PENDING


@dataclass
class AccountRecord:
    pubkey: str
    tier: str
    entitlements: dict[str, Any] = field(default_factory=dict)
    billing_cycle: str | None = None
    subscription_expires_at: datetime | None = None
    price_cents: int | None = None
    currency: str | None = None
    last_payment_id: str | None = None
    last_paid_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class PaymentStore(ABC):
    @abstractmethod
    def create(self, payment: PaymentRecord) -> PaymentRecord:
        """Insert a new payment. Raises DuplicateRecordError if the id is taken."""
        raise NotImplementedError

    @abstractmethod
    def get(self, payment_id: str, pubkey: str) -> PaymentRecord | None:
        """Lookup keyed by owner and id; another owner's payment is simply absent."""
        raise NotImplementedError

    @abstractmethod
    def mark_paid(self, payment: PaymentRecord, paid_at: datetime) -> bool:
        """
        Conditional write: set is_paid/paid_at/modified_at only if the stored
        is_paid is still false. Returns True only for the caller whose write applied.
        """
        raise NotImplementedError

    @abstractmethod
    def mark_granted(self, payment: PaymentRecord, granted_at: datetime) -> None:
        """Record that the entitlement grant for this payment completed."""
        raise NotImplementedError

    @abstractmethod
    def list_recent(self, limit: int) -> list[PaymentRecord]:
        """Newest first."""
        raise NotImplementedError

    @abstractmethod
    def list_ungranted(self, paid_before: datetime, limit: int) -> list[PaymentRecord]:
        """Paid payments without a completed grant, paid before the given time."""
        raise NotImplementedError

    @abstractmethod
    def iter_all(self, batch_size: int = 100) -> Iterator[PaymentRecord]:
        """Oldest first, fetched in batches."""
        raise NotImplementedError

    @abstractmethod
    def exists(self, payment_id: str, pubkey: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def count(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def ping(self) -> None:
        """Raise if the backend is unreachable."""
        raise NotImplementedError


class AccountStore(ABC):
    @abstractmethod
    def get(self, pubkey: str) -> AccountRecord | None:
        raise NotImplementedError

    @abstractmethod
    def upsert(self, account: AccountRecord) -> AccountRecord:
        """
        Create the account if absent, else overwrite its subscription fields in place.
        created_at of an existing account is preserved. A grant anchored on an older
        payment than the stored one (last_paid_at) is ignored and the stored account
        is returned unchanged.
        """
        raise NotImplementedError

    @abstractmethod
    def create(self, account: AccountRecord) -> AccountRecord:
        """Insert only. Raises DuplicateRecordError if the pubkey exists."""
        raise NotImplementedError

    @abstractmethod
    def iter_all(self, batch_size: int = 100) -> Iterator[AccountRecord]:
        raise NotImplementedError

    @abstractmethod
    def count(self) -> int:
        raise NotImplementedError
