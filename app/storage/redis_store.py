"""
Document stores on Redis: one JSON document per payment/account.

Keys (prefix = settings.redis_key_prefix):
  {prefix}:payment:{pubkey}:{id}   payment document (owner is part of the key)
  {prefix}:payments:created        zset, score = created_at, member = document key
  {prefix}:payments:ungranted      zset, score = paid_at, member = document key
  {prefix}:account:{pubkey}        account document
  {prefix}:accounts:created        zset, score = created_at, member = pubkey
  {prefix}:accounts:paid           zset, score = last_paid_at, member = pubkey

Inserts and conditional updates run as Lua scripts together with their index
writes, so each one is atomic on the server.
"""
import json
import logging
from dataclasses import asdict, fields, replace
from datetime import datetime
from typing import Any, Iterator

import redis

from app.core.config import settings
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

# KEYS[1] = document, KEYS[2] = ungranted zset; ARGV[1] = paid_at iso, ARGV[2] = paid_at score
MARK_PAID_LUA = """
local raw = redis.call('GET', KEYS[1])
if not raw then return -1 end
local doc = cjson.decode(raw)
if doc['is_paid'] == true then return 0 end
doc['is_paid'] = true
doc['paid_at'] = ARGV[1]
doc['modified_at'] = ARGV[1]
redis.call('SET', KEYS[1], cjson.encode(doc))
redis.call('ZADD', KEYS[2], ARGV[2], KEYS[1])
return 1
"""

# KEYS[1] = document, KEYS[2] = ungranted zset; ARGV[1] = granted_at iso
MARK_GRANTED_LUA = """
local raw = redis.call('GET', KEYS[1])
if not raw then return 0 end
local doc = cjson.decode(raw)
if doc['granted_at'] == nil or doc['granted_at'] == cjson.null then
  doc['granted_at'] = ARGV[1]
  doc['modified_at'] = ARGV[1]
  redis.call('SET', KEYS[1], cjson.encode(doc))
end
redis.call('ZREM', KEYS[2], KEYS[1])
return 1
"""

# KEYS[1] = document, KEYS[2..n] = index zsets
# ARGV[1] = document json, ARGV[2] = zset member, ARGV[3..n+1] = score per index
CREATE_INDEXED_LUA = """
if not redis.call('SET', KEYS[1], ARGV[1], 'NX') then return 0 end
for i = 2, #KEYS do
  redis.call('ZADD', KEYS[i], ARGV[i + 1], ARGV[2])
end
return 1
"""

# KEYS[1] = account document, KEYS[2] = created zset, KEYS[3] = paid zset
# ARGV[1] = document json, ARGV[2] = pubkey, ARGV[3] = created score, ARGV[4] = last paid score or ''
UPSERT_ACCOUNT_LUA = """
if ARGV[4] ~= '' then
  local current = redis.call('ZSCORE', KEYS[3], ARGV[2])
  if current and tonumber(current) > tonumber(ARGV[4]) then return 0 end
end
redis.call('SET', KEYS[1], ARGV[1])
redis.call('ZADD', KEYS[2], 'NX', ARGV[3], ARGV[2])
if ARGV[4] ~= '' then
  redis.call('ZADD', KEYS[3], ARGV[4], ARGV[2])
end
return 1
"""

_PAYMENT_DATETIMES = ("expires_at", "created_at", "modified_at", "paid_at", "granted_at")
_ACCOUNT_DATETIMES = ("subscription_expires_at", "last_paid_at", "created_at", "updated_at")

_redis_client: redis.Redis | None = None


def get_redis_client() -> redis.Redis:
    """Process-wide connection pool; stores themselves are built per use."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


def _dump(record: Any, datetime_fields: tuple[str, ...]) -> str:
    doc = asdict(record)
    for name in datetime_fields:
        value = doc.get(name)
        doc[name] = value.isoformat() if isinstance(value, datetime) else None
    return json.dumps(doc, ensure_ascii=False)


def _load(raw: str, cls: type, datetime_fields: tuple[str, ...]) -> Any:
    doc = json.loads(raw)
    known = {f.name for f in fields(cls)}
    data = {k: v for k, v in doc.items() if k in known}
    for name in datetime_fields:
        value = data.get(name)
        data[name] = as_utc(datetime.fromisoformat(value)) if value else None
    return cls(**data)


class RedisPaymentStore(PaymentStore):
    def __init__(self, client: redis.Redis | None = None, prefix: str | None = None):
        self.client = client or get_redis_client()
        self.prefix = prefix or settings.redis_key_prefix
        self._created_key = f"{self.prefix}:payments:created"
        self._ungranted_key = f"{self.prefix}:payments:ungranted"
        self._mark_paid = self.client.register_script(MARK_PAID_LUA)
        self._mark_granted = self.client.register_script(MARK_GRANTED_LUA)
        self._create = self.client.register_script(CREATE_INDEXED_LUA)

    def _key(self, payment_id: str, pubkey: str) -> str:
        return f"{self.prefix}:payment:{pubkey}:{payment_id}"

    def _load_many(self, keys: list[str]) -> list[PaymentRecord]:
        if not keys:
            return []
        docs = self.client.mget(keys)
        return [_load(raw, PaymentRecord, _PAYMENT_DATETIMES) for raw in docs if raw]

    def create(self, payment: PaymentRecord) -> PaymentRecord:
        key = self._key(payment.id, payment.pubkey)
        keys = [key, self._created_key]
        args = [_dump(payment, _PAYMENT_DATETIMES), key, payment.created_at.timestamp()]
        if payment.is_paid and payment.granted_at is None and payment.paid_at is not None:
            keys.append(self._ungranted_key)
            args.append(payment.paid_at.timestamp())
        try:
            created = self._create(keys=keys, args=args)
        except redis.RedisError as e:
            raise StoreError(f"failed to create payment {payment.id}: {e}") from e
        if not int(created):
            raise DuplicateRecordError(f"payment {payment.id} already exists")
        return payment

    def get(self, payment_id: str, pubkey: str) -> PaymentRecord | None:
        raw = self.client.get(self._key(payment_id, pubkey))
        return _load(raw, PaymentRecord, _PAYMENT_DATETIMES) if raw else None

    def mark_paid(self, payment: PaymentRecord, paid_at: datetime) -> bool:
        try:
            result = self._mark_paid(
                keys=[self._key(payment.id, payment.pubkey), self._ungranted_key],
                args=[paid_at.isoformat(), paid_at.timestamp()],
            )
        except redis.RedisError as e:
            raise StoreError(f"failed to mark payment {payment.id} paid: {e}") from e
        if int(result) == -1:
            raise StoreError(f"payment {payment.id} disappeared before confirmation")
        return int(result) == 1

    def mark_granted(self, payment: PaymentRecord, granted_at: datetime) -> None:
        try:
            self._mark_granted(
                keys=[self._key(payment.id, payment.pubkey), self._ungranted_key],
                args=[granted_at.isoformat()],
            )
        except redis.RedisError as e:
            raise StoreError(f"failed to mark payment {payment.id} granted: {e}") from e

    def list_recent(self, limit: int) -> list[PaymentRecord]:
        keys = self.client.zrevrange(self._created_key, 0, limit - 1)
        return self._load_many(keys)

    def list_ungranted(self, paid_before: datetime, limit: int) -> list[PaymentRecord]:
        keys = self.client.zrangebyscore(
            self._ungranted_key, "-inf", paid_before.timestamp(), start=0, num=limit
        )
        return self._load_many(keys)

    def iter_all(self, batch_size: int = 100) -> Iterator[PaymentRecord]:
        offset = 0
        while True:
            keys = self.client.zrange(self._created_key, offset, offset + batch_size - 1)
            if not keys:
                return
            yield from self._load_many(keys)
            if len(keys) < batch_size:
                return
            offset += batch_size

    def exists(self, payment_id: str, pubkey: str) -> bool:
        return bool(self.client.exists(self._key(payment_id, pubkey)))

    def count(self) -> int:
        return int(self.client.zcard(self._created_key))

    def ping(self) -> None:
        self.client.ping()


class RedisAccountStore(AccountStore):
    def __init__(self, client: redis.Redis | None = None, prefix: str | None = None):
        self.client = client or get_redis_client()
        self.prefix = prefix or settings.redis_key_prefix
        self._created_key = f"{self.prefix}:accounts:created"
        self._paid_key = f"{self.prefix}:accounts:paid"
        self._create = self.client.register_script(CREATE_INDEXED_LUA)
        self._upsert = self.client.register_script(UPSERT_ACCOUNT_LUA)

    def _key(self, pubkey: str) -> str:
        return f"{self.prefix}:account:{pubkey}"

    def get(self, pubkey: str) -> AccountRecord | None:
        raw = self.client.get(self._key(pubkey))
        return _load(raw, AccountRecord, _ACCOUNT_DATETIMES) if raw else None

    def upsert(self, account: AccountRecord) -> AccountRecord:
        now = utcnow()
        try:
            # created_at never changes once written, so reading it outside the script is safe
            existing = self.get(account.pubkey)
            created_at = existing.created_at if existing else (account.created_at or now)
            record = replace(
                account,
                entitlements=dict(account.entitlements),
                created_at=created_at,
                updated_at=now,
            )
            applied = self._upsert(
                keys=[self._key(account.pubkey), self._created_key, self._paid_key],
                args=[
                    _dump(record, _ACCOUNT_DATETIMES),
                    account.pubkey,
                    created_at.timestamp(),
                    account.last_paid_at.timestamp() if account.last_paid_at else "",
                ],
            )
            if not int(applied):
                logger.info(
                    "account_upsert_stale",
                    extra={"pubkey": account.pubkey, "payment_id": account.last_payment_id},
                )
                return self.get(account.pubkey) or record
        except redis.RedisError as e:
            raise StoreError(f"failed to upsert account {account.pubkey}: {e}") from e
        return record

    def create(self, account: AccountRecord) -> AccountRecord:
        now = utcnow()
        record = replace(
            account,
            created_at=account.created_at or now,
            updated_at=account.updated_at or now,
        )
        keys = [self._key(account.pubkey), self._created_key]
        args = [_dump(record, _ACCOUNT_DATETIMES), account.pubkey, record.created_at.timestamp()]
        if record.last_paid_at is not None:
            keys.append(self._paid_key)
            args.append(record.last_paid_at.timestamp())
        try:
            created = self._create(keys=keys, args=args)
        except redis.RedisError as e:
            raise StoreError(f"failed to create account {account.pubkey}: {e}") from e
        if not int(created):
            raise DuplicateRecordError(f"account {account.pubkey} already exists")
        return record

    def iter_all(self, batch_size: int = 100) -> Iterator[AccountRecord]:
        offset = 0
        while True:
            pubkeys = self.client.zrange(self._created_key, offset, offset + batch_size - 1)
            if not pubkeys:
                return
            docs = self.client.mget([self._key(p) for p in pubkeys])
            for raw in docs:
                if raw:
                    yield _load(raw, AccountRecord, _ACCOUNT_DATETIMES)
            if len(pubkeys) < batch_size:
                return
            offset += batch_size

    def count(self) -> int:
        return int(self.client.zcard(self._created_key))
