"""Tests for the Redis document stores against a mocked client."""
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
import redis

from app.storage.base import AccountRecord, DuplicateRecordError, StoreError
from app.storage.redis_store import (
    CREATE_INDEXED_LUA,
    MARK_GRANTED_LUA,
    MARK_PAID_LUA,
    UPSERT_ACCOUNT_LUA,
    RedisAccountStore,
    RedisPaymentStore,
    _ACCOUNT_DATETIMES,
    _dump,
    _PAYMENT_DATETIMES,
)
from fakes import NOW, PUBKEY, make_payment

KEY = f"test:payment:{PUBKEY}:payment-1"


def _client():
    client = MagicMock()
    scripts = {}

    def register(source):
        scripts[source] = MagicMock()
        return scripts[source]

    client.register_script.side_effect = register
    client.scripts = scripts
    return client


class TestRedisPaymentStore:
    def test_create_writes_document_and_index_in_one_script(self):
        client = _client()
        store = RedisPaymentStore(client, prefix="test")
        script = client.scripts[CREATE_INDEXED_LUA]
        script.return_value = 1
        payment = make_payment()

        store.create(payment)

        script.assert_called_once_with(
            keys=[KEY, "test:payments:created"],
            args=[_dump(payment, _PAYMENT_DATETIMES), KEY, NOW.timestamp()],
        )
        client.set.assert_not_called()
        client.zadd.assert_not_called()

    def test_create_paid_ungranted_is_indexed_for_repair(self):
        client = _client()
        store = RedisPaymentStore(client, prefix="test")
        script = client.scripts[CREATE_INDEXED_LUA]
        script.return_value = 1
        paid_at = NOW + timedelta(minutes=2)

        store.create(make_payment(is_paid=True, paid_at=paid_at))

        kwargs = script.call_args.kwargs
        assert kwargs["keys"] == [KEY, "test:payments:created", "test:payments:ungranted"]
        assert kwargs["args"][2:] == [NOW.timestamp(), paid_at.timestamp()]

    def test_create_duplicate(self):
        client = _client()
        store = RedisPaymentStore(client, prefix="test")
        client.scripts[CREATE_INDEXED_LUA].return_value = 0
        with pytest.raises(DuplicateRecordError):
            store.create(make_payment())

    def test_create_redis_error(self):
        client = _client()
        store = RedisPaymentStore(client, prefix="test")
        client.scripts[CREATE_INDEXED_LUA].side_effect = redis.ConnectionError("down")
        with pytest.raises(StoreError):
            store.create(make_payment())

    def test_get_roundtrip(self):
        client = _client()
        payment = make_payment(is_paid=True, paid_at=NOW)
        client.get.return_value = _dump(payment, _PAYMENT_DATETIMES)
        assert RedisPaymentStore(client, prefix="test").get("payment-1", PUBKEY) == payment
        client.get.assert_called_once_with(KEY)

    def test_get_missing(self):
        client = _client()
        client.get.return_value = None
        assert RedisPaymentStore(client, prefix="test").get("payment-1", PUBKEY) is None

    @pytest.mark.parametrize("result,expected", [(1, True), (0, False)])
    def test_mark_paid_result(self, result, expected):
        client = _client()
        store = RedisPaymentStore(client, prefix="test")
        script = client.scripts[MARK_PAID_LUA]
        script.return_value = result

        assert store.mark_paid(make_payment(), NOW) is expected
        script.assert_called_once_with(
            keys=[KEY, "test:payments:ungranted"],
            args=[NOW.isoformat(), NOW.timestamp()],
        )

    def test_mark_paid_missing_document(self):
        client = _client()
        store = RedisPaymentStore(client, prefix="test")
        client.scripts[MARK_PAID_LUA].return_value = -1
        with pytest.raises(StoreError):
            store.mark_paid(make_payment(), NOW)

    def test_mark_paid_redis_error(self):
        client = _client()
        store = RedisPaymentStore(client, prefix="test")
        client.scripts[MARK_PAID_LUA].side_effect = redis.ConnectionError("down")
        with pytest.raises(StoreError):
            store.mark_paid(make_payment(), NOW)

    def test_mark_granted(self):
        client = _client()
        store = RedisPaymentStore(client, prefix="test")
        store.mark_granted(make_payment(), NOW)
        client.scripts[MARK_GRANTED_LUA].assert_called_once_with(
            keys=[KEY, "test:payments:ungranted"], args=[NOW.isoformat()]
        )

    def test_list_ungranted_by_paid_score(self):
        client = _client()
        payment = make_payment(is_paid=True, paid_at=NOW)
        client.zrangebyscore.return_value = [KEY]
        client.mget.return_value = [_dump(payment, _PAYMENT_DATETIMES)]
        cutoff = NOW + timedelta(minutes=1)

        result = RedisPaymentStore(client, prefix="test").list_ungranted(cutoff, 10)

        assert result == [payment]
        client.zrangebyscore.assert_called_once_with(
            "test:payments:ungranted", "-inf", cutoff.timestamp(), start=0, num=10
        )

    def test_list_recent_empty(self):
        client = _client()
        client.zrevrange.return_value = []
        assert RedisPaymentStore(client, prefix="test").list_recent(5) == []
        client.mget.assert_not_called()


class TestRedisAccountStore:
    def test_upsert_preserves_created_at(self):
        client = _client()
        created = NOW - timedelta(days=30)
        existing = AccountRecord(pubkey=PUBKEY, tier="premium", created_at=created, updated_at=created)
        client.get.return_value = _dump(existing, _ACCOUNT_DATETIMES)
        store = RedisAccountStore(client, prefix="test")
        script = client.scripts[UPSERT_ACCOUNT_LUA]
        script.return_value = 1

        record = store.upsert(
            AccountRecord(
                pubkey=PUBKEY,
                tier="premium_plus",
                entitlements={"notifications_per_day": 500},
                last_paid_at=NOW,
            )
        )

        assert record.tier == "premium_plus"
        assert record.created_at == created
        kwargs = script.call_args.kwargs
        assert kwargs["keys"] == [f"test:account:{PUBKEY}", "test:accounts:created", "test:accounts:paid"]
        assert kwargs["args"][1:] == [PUBKEY, created.timestamp(), NOW.timestamp()]
        client.set.assert_not_called()

    def test_upsert_stale_returns_stored_account(self):
        client = _client()
        stored = AccountRecord(
            pubkey=PUBKEY,
            tier="premium_plus",
            last_payment_id="payment-2",
            last_paid_at=NOW,
            created_at=NOW,
            updated_at=NOW,
        )
        client.get.return_value = _dump(stored, _ACCOUNT_DATETIMES)
        store = RedisAccountStore(client, prefix="test")
        client.scripts[UPSERT_ACCOUNT_LUA].return_value = 0

        result = store.upsert(
            AccountRecord(
                pubkey=PUBKEY,
                tier="premium",
                last_payment_id="payment-1",
                last_paid_at=NOW - timedelta(hours=1),
            )
        )

        assert result == stored

    def test_upsert_without_anchor_passes_empty_score(self):
        client = _client()
        client.get.return_value = None
        store = RedisAccountStore(client, prefix="test")
        script = client.scripts[UPSERT_ACCOUNT_LUA]
        script.return_value = 1
        store.upsert(AccountRecord(pubkey=PUBKEY, tier="premium"))
        assert script.call_args.kwargs["args"][3] == ""

    def test_upsert_redis_error(self):
        client = _client()
        client.get.return_value = None
        store = RedisAccountStore(client, prefix="test")
        client.scripts[UPSERT_ACCOUNT_LUA].side_effect = redis.ConnectionError("down")
        with pytest.raises(StoreError):
            store.upsert(AccountRecord(pubkey=PUBKEY, tier="premium"))

    def test_create_indexes_anchor(self):
        client = _client()
        store = RedisAccountStore(client, prefix="test")
        script = client.scripts[CREATE_INDEXED_LUA]
        script.return_value = 1

        store.create(AccountRecord(pubkey=PUBKEY, tier="premium", last_paid_at=NOW, created_at=NOW))

        kwargs = script.call_args.kwargs
        assert kwargs["keys"] == [f"test:account:{PUBKEY}", "test:accounts:created", "test:accounts:paid"]
        assert kwargs["args"][1:] == [PUBKEY, NOW.timestamp(), NOW.timestamp()]

    def test_create_duplicate(self):
        client = _client()
        store = RedisAccountStore(client, prefix="test")
        client.scripts[CREATE_INDEXED_LUA].return_value = 0
        with pytest.raises(DuplicateRecordError):
            store.create(AccountRecord(pubkey=PUBKEY, tier="premium"))
