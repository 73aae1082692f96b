"""Prometheus metrics for monitoring approval rates, routing mix, settlement and issuer health"""

from prometheus_client import Counter, Histogram

# Decision metrics
decision_counter = Counter(
    "card_router_decision_total",
    "Total authorization decisions made",
    ["status"],  # approved | declined
)

category_counter = Counter(
    "card_router_routed_category_total",
    "Authorizations routed by spend category",
    ["category", "instrument"],
)

reconciliation_counter = Counter(
    "card_router_reconciliation_flags_total",
    "Decisions flagged for manual reconciliation",
    ["reason"],
)

# Settlement metrics
settlement_latency_histogram = Histogram(
    "settlement_latency_seconds",
    "Settlement call duration",
    buckets=[0.05, 0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0],
)

settlement_failure_counter = Counter(
    "settlement_failures_total",
    "Failed settlement attempts",
    ["kind"],  # timeout | rejected | unavailable | error
)

# Issuer metrics
resolution_failure_counter = Counter(
    "resolution_failures_total",
    "Failed approve/decline calls to the issuing network",
    ["action"],  # approve | decline
)

# Decision Log metrics
decision_log_failure_counter = Counter(
    "decision_log_failures_total",
    "Failed Decision Log writes",
)

decision_log_duplicate_counter = Counter(
    "decision_log_duplicates_total",
    "Decision Log writes rejected as duplicate authorization ids",
)

# Webhook metrics
webhook_rejection_counter = Counter(
    "webhook_rejections_total",
    "Webhook requests rejected before routing",
    ["reason"],  # signature | malformed
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_decision(final_status: str, category: str, instrument_id: str) -> None:
    """Record decision metrics for monitoring approval rates and routing mix"""
    decision_counter.labels(status=final_status).inc()
    category_counter.labels(category=category, instrument=instrument_id).inc()
