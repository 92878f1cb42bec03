"""
Lightning service client using httpx sync client.
One request per call: no retries here, failures are terminal for the invocation.
"""
import logging
import math
import time
from decimal import Decimal
from typing import Any

import httpx
import pybreaker

from app.core.config import settings
from app.services.errors import (
    ExternalServiceError,
    RateUnavailable,
    SettlementServiceError,
    SettlementStatusError,
)
from app.services.lightning.base import (
    Invoice,
    InvoiceService,
    RateOracle,
    SettlementStatusOracle,
)
from app.utils.metrics import (
    lightning_request_duration_seconds,
    lightning_requests_total,
)


logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class LightningClient:
    """Shared transport for the price, invoice and settlement endpoints."""

    error_cls: type[ExternalServiceError] = ExternalServiceError

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.Client | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self._base_url = (base_url or settings.lightning_api_base).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.http_client_timeout
        self._client = http_client
        self._breaker = breaker

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self._timeout)
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _record_request(self, method: str, status: str, duration: float) -> None:
        lightning_requests_total.labels(method=method, status=status).inc()
        lightning_request_duration_seconds.labels(method=method).observe(duration)

    def _request(self, path: str, params: dict | None) -> dict:
        resp = self.client.get(f"{self._base_url}{path}", params=params)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError("response body is not a JSON object")
        return data

    def _get_json(self, method: str, path: str, params: dict | None = None) -> dict:
        """GET path and return the JSON object; any failure raises self.error_cls."""
        start = time.time()
        try:
            if self._breaker is not None:
                data = self._breaker.call(self._request, path, params)
            else:
                data = self._request(path, params)
        except pybreaker.CircuitBreakerError as e:
            self._record_request(method, "circuit_open", time.time() - start)
            raise self.error_cls(f"{method}: circuit open", detail={"method": method}) from e
        except (httpx.HTTPError, ValueError) as e:
            self._record_request(method, "error", time.time() - start)
            logger.warning(
                "lightning_request_failed",
                extra={"method": method, "error": f"{type(e).__name__}: {e}"},
            )
            raise self.error_cls(f"{method} failed: {e}", detail={"method": method}) from e
        self._record_request(method, "success", time.time() - start)
        return data


class RateOracleClient(LightningClient, RateOracle):
    error_cls = RateUnavailable

    def get_usd_btc_rate(self) -> Decimal:
        data = self._get_json("price", "/price")
        usd = data.get("usd")
        if not _is_number(usd) or not math.isfinite(usd) or usd <= 0:
            logger.error("invalid_rate_data", extra={"error": repr(usd)})
            raise RateUnavailable("Invalid exchange rate data received", detail={"usd": usd})
        return Decimal(str(usd))


class SettlementClient(LightningClient, InvoiceService, SettlementStatusOracle):
    error_cls = SettlementServiceError

    def create_invoice(self, amount_sat: int, invoice_id: str, description: str) -> Invoice:
        data = self._get_json(
            "invoice",
            "/invoice",
            {"description": description, "amount": amount_sat, "id": invoice_id},
        )
        serialized = data.get("serialized")
        payment_hash = data.get("paymentHash")
        amount = data.get("amountSat")
        if (
            not isinstance(serialized, str) or not serialized
            or not isinstance(payment_hash, str) or not payment_hash
            or not _is_number(amount) or amount <= 0 or int(amount) != amount
        ):
            logger.error("invalid_invoice_data", extra={"error": sorted(data.keys())})
            raise SettlementServiceError(
                "Invalid invoice data received", detail={"invoice_id": invoice_id}
            )
        return Invoice(serialized=serialized, payment_hash=payment_hash, amount_sat=int(amount))

    def is_settled(self, payment_hash: str) -> bool:
        try:
            data = self._get_json("paid", "/paid", {"hash": payment_hash})
        except SettlementServiceError as e:
            raise SettlementStatusError(str(e), detail={"settlement_hash": payment_hash}) from e
        paid = data.get("paid")
        if not isinstance(paid, bool):
            raise SettlementStatusError(
                "Invalid payment status data received",
                detail={"settlement_hash": payment_hash},
            )
        return paid
