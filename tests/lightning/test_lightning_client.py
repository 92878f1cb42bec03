"""Tests for the Lightning HTTP clients using httpx.MockTransport."""
from decimal import Decimal

import httpx
import pybreaker
import pytest

from app.services.errors import RateUnavailable, SettlementServiceError, SettlementStatusError
from app.services.lightning.client import RateOracleClient, SettlementClient

BASE = "http://ln.test"


def _client(cls, handler, breaker=None):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return cls(base_url=BASE, http_client=http, breaker=breaker)


def _json(payload, status=200):
    return lambda request: httpx.Response(status, json=payload)


class TestRateOracleClient:
    def test_rate(self):
        assert _client(RateOracleClient, _json({"usd": 45000})).get_usd_btc_rate() == Decimal("45000")

    def test_float_rate_kept_exact(self):
        assert _client(RateOracleClient, _json({"usd": 61234.56})).get_usd_btc_rate() == Decimal("61234.56")

    @pytest.mark.parametrize("payload", [{}, {"usd": "45000"}, {"usd": 0}, {"usd": -1}, {"usd": True}, [1, 2]])
    def test_invalid_payload(self, payload):
        with pytest.raises(RateUnavailable):
            _client(RateOracleClient, _json(payload)).get_usd_btc_rate()

    def test_http_error(self):
        with pytest.raises(RateUnavailable):
            _client(RateOracleClient, _json({"error": "x"}, status=503)).get_usd_btc_rate()

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(RateUnavailable):
            _client(RateOracleClient, handler).get_usd_btc_rate()

    def test_open_breaker_skips_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        breaker = pybreaker.CircuitBreaker(fail_max=2, reset_timeout=60)
        client = _client(RateOracleClient, handler, breaker=breaker)
        for _ in range(3):
            with pytest.raises(RateUnavailable):
                client.get_usd_btc_rate()
        assert len(calls) == 2
        assert breaker.current_state == pybreaker.STATE_OPEN


class TestSettlementClient:
    def test_create_invoice(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"serialized": "lnbc1", "paymentHash": "ph", "amountSat": 22222})

        invoice = _client(SettlementClient, handler).create_invoice(22222, "inv-1", "NostriaPremium")

        assert invoice.serialized == "lnbc1"
        assert invoice.payment_hash == "ph"
        assert invoice.amount_sat == 22222
        assert seen["path"] == "/invoice"
        assert seen["params"] == {"description": "NostriaPremium", "amount": "22222", "id": "inv-1"}

    @pytest.mark.parametrize(
        "payload",
        [
            {"paymentHash": "ph", "amountSat": 1},
            {"serialized": "lnbc1", "amountSat": 1},
            {"serialized": "lnbc1", "paymentHash": "ph"},
            {"serialized": "", "paymentHash": "ph", "amountSat": 1},
            {"serialized": "lnbc1", "paymentHash": "ph", "amountSat": 1.5},
        ],
    )
    def test_incomplete_invoice(self, payload):
        with pytest.raises(SettlementServiceError):
            _client(SettlementClient, _json(payload)).create_invoice(1, "inv-1", "d")

    @pytest.mark.parametrize("paid", [True, False])
    def test_is_settled(self, paid):
        def handler(request):
            assert request.url.path == "/paid"
            assert request.url.params["hash"] == "ph"
            return httpx.Response(200, json={"paid": paid})

        assert _client(SettlementClient, handler).is_settled("ph") is paid

    def test_status_not_boolean(self):
        with pytest.raises(SettlementStatusError):
            _client(SettlementClient, _json({"paid": "yes"})).is_settled("ph")

    def test_status_http_error(self):
        with pytest.raises(SettlementStatusError):
            _client(SettlementClient, _json({}, status=500)).is_settled("ph")
