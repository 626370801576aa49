"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
referral_codes_generated_total = Counter(
    "referral_codes_generated_total",
    "Total number of referral codes minted",
)

referral_validations_total = Counter(
    "referral_validations_total",
    "Referral code validations by result",
    ["result"],  # valid, NOT_FOUND, EXPIRED, ...
)

referral_redemptions_total = Counter(
    "referral_redemptions_total",
    "Referral redemption attempts by result",
    ["result"],  # success, ALREADY_REFERRED, EXHAUSTED, ...
)

referral_credit_deliveries_total = Counter(
    "referral_credit_deliveries_total",
    "Loyalty point credit deliveries by status",
    ["status"],  # settled, retry, failed
)

loyalty_requests_total = Counter(
    "loyalty_requests_total",
    "Total loyalty service API requests",
    ["status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
loyalty_request_duration_seconds = Histogram(
    "loyalty_request_duration_seconds",
    "Loyalty service API request duration",
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2, 5],
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
