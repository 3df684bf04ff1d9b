"""Prometheus metric definitions for the fortune service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


fortune_requests_total = Counter(
    "fortune_requests_total",
    "Total fortune submissions",
    ["service", "policy"],
)
fortune_transitions_total = Counter(
    "fortune_transitions_total",
    "Applied fortune status transitions",
    ["service", "from_state", "to_state"],
)
fortune_transition_conflicts_total = Counter(
    "fortune_transition_conflicts_total",
    "Conditional transitions lost to a concurrent writer",
    ["service", "from_state", "to_state"],
)
prediction_latency_seconds = Histogram(
    "prediction_latency_seconds",
    "Prediction service latency seconds",
    ["service"],
)
prediction_failures_total = Counter(
    "prediction_failures_total",
    "Prediction attempts that ended in FAILED",
    ["service", "reason"],
)
payment_intents_total = Counter(
    "payment_intents_total",
    "Payment intents created",
    ["service", "currency"],
)
payment_status_updates_total = Counter(
    "payment_status_updates_total",
    "Payment status updates applied",
    ["service", "status", "source"],
)
emails_sent_total = Counter("emails_sent_total", "Reading emails sent", ["service"])
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


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
