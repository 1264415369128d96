"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
orders_created_total = Counter(
    "orders_created_total",
    "Total number of PENDING order/payment pairs created",
    ["product_type"],
)

payment_transitions_total = Counter(
    "payment_transitions_total",
    "Payment status transitions applied",
    ["source", "status"],  # source: webhook / poll / user / cancel
)

payment_amount_mismatch_total = Counter(
    "payment_amount_mismatch_total",
    "Confirmations whose amount or currency disagreed with the stored order",
    ["source"],
)

payment_reference_mismatch_total = Counter(
    "payment_reference_mismatch_total",
    "Gateway records that did not belong to the order they were looked up for",
    ["source"],
)

webhook_rejected_total = Counter(
    "webhook_rejected_total",
    "Webhook calls rejected before any mutation",
    ["reason"],
)

payment_poll_attempts_total = Counter(
    "payment_poll_attempts_total",
    "Gateway lookups made by the polling fallback",
    ["outcome"],  # confirmed / pending / error
)

sessions_created_total = Counter(
    "sessions_created_total",
    "Sessions created",
    ["mode", "source"],  # source: payment / free_allowance
)

credit_purchases_total = Counter(
    "credit_purchases_total",
    "Purchased time credit units",
    ["unit", "extended"],
)

artifact_generation_failures_total = Counter(
    "artifact_generation_failures_total",
    "Artifact generation failures after a session was committed",
    ["category"],
)

gateway_requests_total = Counter(
    "gateway_requests_total",
    "Payment gateway API requests",
    ["method", "status"],
)

openai_requests_total = Counter(
    "openai_requests_total",
    "Total OpenAI API requests",
    ["status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway request duration",
    ["method"],
    buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10],
)

openai_request_duration_seconds = Histogram(
    "openai_request_duration_seconds",
    "OpenAI API request duration",
    buckets=[1, 5, 10, 30, 60, 120],
)

# Gauges
sessions_expired_last_sweep = Gauge(
    "sessions_expired_last_sweep",
    "Sessions closed by the most recent expiry sweep",
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
