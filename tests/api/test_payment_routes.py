"""HTTP tests for the payment routes with in-memory services."""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_issuer, get_reconciler, get_stores
from app.api.rate_limit import payment_rate_limit
from app.core.config import settings
from app.main import app
from app.services.entitlements.provisioner import EntitlementProvisioner
from app.services.errors import RateUnavailable
from app.services.payments.issuer import InvoiceIssuer
from app.services.payments.reconciler import PaymentReconciler
from app.storage.factory import Stores
from fakes import (
    NOW,
    PUBKEY,
    FakeLightning,
    FakeRateOracle,
    InMemoryAccountStore,
    InMemoryPaymentStore,
    make_payment,
)


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setattr(settings, "admin_api_key", "secret")
    store = InMemoryPaymentStore()
    accounts = InMemoryAccountStore()
    lightning = FakeLightning()
    rates = FakeRateOracle()
    clock = lambda: NOW + timedelta(minutes=1)  # noqa: E731

    app.dependency_overrides[payment_rate_limit] = lambda: None
    app.dependency_overrides[get_stores] = lambda: Stores(payments=store, accounts=accounts)
    app.dependency_overrides[get_issuer] = lambda: InvoiceIssuer(store, rates, lightning, clock=lambda: NOW)
    app.dependency_overrides[get_reconciler] = lambda: PaymentReconciler(
        store, lightning, EntitlementProvisioner(accounts, clock=clock), clock=clock
    )
    try:
        yield {"store": store, "accounts": accounts, "lightning": lightning, "rates": rates}
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def client(env):
    return TestClient(app)


def _create(client, **overrides):
    body = {"tierName": "premium", "billingCycle": "monthly", "pubkey": PUBKEY}
    body.update(overrides)
    return client.post("/payment", json=body)


class TestCreatePayment:
    def test_created(self, client):
        resp = _create(client)
        assert resp.status_code == 201
        data = resp.json()
        assert data["id"].startswith("payment-")
        assert data["status"] == "pending"
        assert data["invoice"].startswith("lnbc22222")
        assert data["expires"].startswith("2026-01-15T12:15:00")

    def test_invalid_tier(self, client):
        resp = _create(client, tierName="gold")
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Invalid tier name"}

    def test_invalid_cycle(self, client):
        resp = _create(client, billingCycle="weekly")
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Invalid billing cycle"}

    @pytest.mark.parametrize("pubkey", ["", "npub1xyz", "g" * 64, "a" * 63, "a" * 64 + "\n"])
    def test_invalid_pubkey(self, client, pubkey):
        resp = _create(client, pubkey=pubkey)
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Invalid pubkey format"}

    def test_tier_checked_before_pubkey(self, client):
        resp = _create(client, tierName="gold", pubkey="npub1xyz")
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Invalid tier name"}

    def test_cycle_checked_before_pubkey(self, client):
        resp = _create(client, billingCycle="weekly", pubkey="npub1xyz")
        assert resp.json() == {"detail": "Invalid billing cycle"}

    def test_oracle_failure_hides_detail(self, client, env):
        env["rates"].error = RateUnavailable("upstream said 502", detail={"usd": None})
        resp = _create(client)
        assert resp.status_code == 500
        assert resp.json() == {"detail": "Internal server error"}
        assert env["store"].count() == 0


class TestGetPayment:
    def test_not_found(self, client):
        resp = client.get(f"/payment/{PUBKEY}/payment-missing")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Payment not found"}

    def test_pending_then_paid(self, client, env):
        payment_id = _create(client).json()["id"]
        assert client.get(f"/payment/{PUBKEY}/{payment_id}").json()["status"] == "pending"

        env["lightning"].settled = True
        resp = client.get(f"/payment/{PUBKEY}/{payment_id}")
        assert resp.status_code == 200
        assert resp.json()["status"] == "paid"
        assert env["accounts"].get(PUBKEY).tier == "premium"


class TestListPayments:
    def test_requires_admin_key(self, client):
        assert client.get("/payment").status_code == 401
        assert client.get("/payment", headers={"X-Admin-Key": "wrong"}).status_code == 401

    @pytest.mark.parametrize("limit", [0, 1001])
    def test_limit_bounds(self, client, limit):
        resp = client.get(f"/payment?limit={limit}", headers={"X-Admin-Key": "secret"})
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Limit must be between 1 and 1000"}

    def test_lists_newest_first(self, client, env):
        env["store"].create(make_payment(id="payment-a", created_at=NOW - timedelta(hours=1)))
        env["store"].create(make_payment(id="payment-b", created_at=NOW))
        resp = client.get("/payment?limit=10", headers={"X-Admin-Key": "secret"})
        assert resp.status_code == 200
        assert [(p["id"], p["status"]) for p in resp.json()] == [
            ("payment-b", "pending"),
            ("payment-a", "expired"),
        ]
        assert env["lightning"].status_calls == 0


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_ready(client):
    assert client.get("/ready").json() == {"status": "ready"}
