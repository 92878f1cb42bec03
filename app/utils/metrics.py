"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
payments_created_total = Counter(
    "payments_created_total",
    "Total number of invoices issued and recorded",
    ["tier", "billing_cycle"],
)

payments_confirmed_total = Counter(
    "payments_confirmed_total",
    "Total number of payments flipped to paid by this instance",
    ["tier"],
)

payment_status_checks_total = Counter(
    "payment_status_checks_total",
    "Total status checks by resolved status",
    ["status"],
)

payment_confirm_conflicts_total = Counter(
    "payment_confirm_conflicts_total",
    "Confirmations that lost the conditional write race",
)

grant_gaps_total = Counter(
    "grant_gaps_total",
    "Paid payments whose entitlement grant failed",
)

grants_repaired_total = Counter(
    "grants_repaired_total",
    "Grant gaps closed by the repair job",
)

lightning_requests_total = Counter(
    "lightning_requests_total",
    "Total Lightning service requests",
    ["method", "status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
lightning_request_duration_seconds = Histogram(
    "lightning_request_duration_seconds",
    "Lightning service request duration",
    ["method"],
    buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
