"""Tests for the SQLAlchemy stores on in-memory SQLite."""
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.models import account, payment  # noqa: F401
from app.storage.base import AccountRecord, DuplicateRecordError
from app.storage.sql import SqlAccountStore, SqlPaymentStore
from fakes import NOW, PUBKEY, make_payment


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class TestSqlPaymentStore:
    def test_create_and_get(self, db):
        store = SqlPaymentStore(db)
        store.create(make_payment())
        loaded = store.get("payment-1", PUBKEY)
        assert loaded == make_payment()

    def test_get_is_scoped_by_owner(self, db):
        store = SqlPaymentStore(db)
        store.create(make_payment())
        assert store.get("payment-1", "b" * 64) is None
        assert store.exists("payment-1", PUBKEY) is True
        assert store.exists("payment-1", "b" * 64) is False

    def test_duplicate_id(self, db):
        store = SqlPaymentStore(db)
        store.create(make_payment())
        with pytest.raises(DuplicateRecordError):
            store.create(make_payment())

    def test_mark_paid_applies_once(self, db):
        store = SqlPaymentStore(db)
        p = store.create(make_payment())
        assert store.mark_paid(p, NOW) is True
        assert store.mark_paid(p, NOW + timedelta(seconds=5)) is False
        loaded = store.get("payment-1", PUBKEY)
        assert loaded.is_paid is True
        assert loaded.paid_at == NOW

    def test_ungranted_listing(self, db):
        store = SqlPaymentStore(db)
        p = store.create(make_payment())
        store.mark_paid(p, NOW)
        assert [x.id for x in store.list_ungranted(NOW + timedelta(minutes=1), 10)] == ["payment-1"]
        assert store.list_ungranted(NOW - timedelta(minutes=1), 10) == []

        store.mark_granted(p, NOW + timedelta(seconds=1))
        assert store.list_ungranted(NOW + timedelta(minutes=1), 10) == []
        assert store.get("payment-1", PUBKEY).granted_at == NOW + timedelta(seconds=1)

    def test_recent_and_iteration(self, db):
        store = SqlPaymentStore(db)
        for i in range(5):
            store.create(make_payment(id=f"payment-{i}", created_at=NOW + timedelta(minutes=i)))
        assert [p.id for p in store.list_recent(2)] == ["payment-4", "payment-3"]
        assert [p.id for p in store.iter_all(batch_size=2)] == [f"payment-{i}" for i in range(5)]
        assert store.count() == 5

    def test_ping(self, db):
        SqlPaymentStore(db).ping()


class TestSqlAccountStore:
    def _account(self, **kwargs):
        defaults = dict(
            pubkey=PUBKEY,
            tier="premium",
            entitlements={"notifications_per_day": 50, "features": ["BASIC_WEBPUSH"]},
            billing_cycle="monthly",
            subscription_expires_at=NOW + timedelta(days=31),
            price_cents=1000,
            currency="USD",
            last_payment_id="payment-1",
        )
        defaults.update(kwargs)
        return AccountRecord(**defaults)

    def test_upsert_creates_then_overwrites(self, db):
        store = SqlAccountStore(db)
        first = store.upsert(self._account())
        second = store.upsert(self._account(tier="premium_plus", last_payment_id="payment-2"))

        assert second.tier == "premium_plus"
        assert second.created_at == first.created_at
        assert store.count() == 1
        assert store.get(PUBKEY).last_payment_id == "payment-2"

    def test_create_refuses_existing(self, db):
        store = SqlAccountStore(db)
        store.create(self._account(created_at=NOW, updated_at=NOW))
        with pytest.raises(DuplicateRecordError):
            store.create(self._account())

    def test_iter_all(self, db):
        store = SqlAccountStore(db)
        store.create(self._account(pubkey="a" * 64, created_at=NOW))
        store.create(self._account(pubkey="b" * 64, created_at=NOW + timedelta(seconds=1)))
        assert [a.pubkey for a in store.iter_all(batch_size=1)] == ["a" * 64, "b" * 64]

    def test_upsert_ignores_older_grant(self, db):
        store = SqlAccountStore(db)
        store.upsert(self._account(tier="premium_plus", last_payment_id="payment-2", last_paid_at=NOW))

        result = store.upsert(self._account(last_payment_id="payment-1", last_paid_at=NOW - timedelta(hours=1)))

        assert result.tier == "premium_plus"
        assert result.last_payment_id == "payment-2"
        assert store.get(PUBKEY).last_paid_at == NOW

    def test_upsert_same_anchor_overwrites(self, db):
        store = SqlAccountStore(db)
        store.upsert(self._account(last_paid_at=NOW))
        result = store.upsert(self._account(tier="premium_plus", last_paid_at=NOW))
        assert result.tier == "premium_plus"
