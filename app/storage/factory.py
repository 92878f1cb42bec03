"""
Factory for payment/account stores based on configuration.
The backend is chosen once per process (settings.storage_backend).
"""
import logging
from dataclasses import dataclass

import redis
from sqlalchemy.orm import Session

from app.storage.base import AccountStore, PaymentStore
from app.storage.redis_store import RedisAccountStore, RedisPaymentStore, get_redis_client
from app.storage.sql import SqlAccountStore, SqlPaymentStore

logger = logging.getLogger(__name__)


@dataclass
class Stores:
    payments: PaymentStore
    accounts: AccountStore


class StoreFactory:
    """Factory for creating store pairs by backend name."""

    BACKENDS = ("sql", "redis")

    @classmethod
    def create(
        cls,
        backend: str,
        db: Session | None = None,
        redis_client: redis.Redis | None = None,
        redis_prefix: str | None = None,
    ) -> Stores:
        """
        Create stores for a backend.

        Raises:
            ValueError: unknown backend, or sql backend without a session
        """
        name = backend.strip().lower()
        if name == "sql":
            if db is None:
                raise ValueError("sql backend requires a database session")
            return Stores(payments=SqlPaymentStore(db), accounts=SqlAccountStore(db))
        if name == "redis":
            client = redis_client or get_redis_client()
            return Stores(
                payments=RedisPaymentStore(client, prefix=redis_prefix),
                accounts=RedisAccountStore(client, prefix=redis_prefix),
            )
        available = ", ".join(cls.BACKENDS)
        raise ValueError(f"Unknown storage backend: {backend}. Available backends: {available}")

    @classmethod
    def create_from_settings(cls, settings, db: Session | None = None) -> Stores:
        return cls.create(settings.storage_backend, db=db)
