"""Prometheus metric definitions shared across services."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


intents_created_total = Counter("intents_created_total", "Payment intents created", ["service"])
intents_settled_total = Counter("intents_settled_total", "Payment intents settled", ["service"])
intents_failed_total = Counter("intents_failed_total", "Payment intents failed", ["service", "reason"])
confirm_latency_seconds = Histogram("confirm_latency_seconds", "Confirm request latency seconds", ["service"])
intent_e2e_seconds = Histogram(
    "intent_e2e_seconds",
    "Intent duration seconds from pending to a terminal state",
    ["service", "terminal_state"],
)
chain_submissions_total = Counter(
    "chain_submissions_total",
    "Swap/settlement transaction outcomes",
    ["service", "kind", "result"],
)
cas_conflicts_total = Counter(
    "cas_conflicts_total",
    "Compare-and-swap writes lost to a concurrent worker",
    ["service", "state"],
)
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
event_queue_delay_seconds = Histogram(
    "event_queue_delay_seconds",
    "Seconds between event occurred_at and consume time",
    ["service", "topic"],
)
outbox_pending_total = Gauge(
    "outbox_pending_total",
    "Current count of outbox events not yet sent",
    ["service"],
)
outbox_oldest_pending_age_seconds = Gauge(
    "outbox_oldest_pending_age_seconds",
    "Age in seconds of the oldest pending outbox event",
    ["service"],
)
duplicate_events_skipped_total = Counter(
    "duplicate_events_skipped_total",
    "Duplicate inbox events skipped",
    ["service", "topic"],
)
webhook_deliveries_total = Counter(
    "webhook_deliveries_total",
    "Merchant callback deliveries",
    ["service", "outcome"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
