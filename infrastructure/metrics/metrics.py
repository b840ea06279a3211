# infrastructure/metrics/metrics.py
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

plans_generated_total = Counter(
    "plans_generated_total",
    "Payment plan generation attempts",
    ["outcome"]  # created|replaced|invalid|conflict|error
)

settlement_requests_total = Counter(
    "settlement_requests_total",
    "QR settlement requests",
    ["outcome"]  # issued|reused|in_progress|already_paid|gateway_failed|gateway_timeout|gateway_unavailable|error
)

settlement_confirmations_total = Counter(
    "settlement_confirmations_total",
    "Settlement confirmations by path",
    ["path", "outcome"]  # path: callback|poll|manual
)

gateway_auth_total = Counter(
    "gateway_auth_total",
    "Gateway login attempts",
    ["outcome"]  # success|failure
)

gateway_request_failures_total = Counter(
    "gateway_request_failures_total",
    "Gateway request failures",
    ["operation"]  # login|list_methods|generate_qr|query_transaction
)

gateway_request_latency_seconds = Histogram(
    "gateway_request_latency_seconds",
    "Gateway request latency in seconds",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1, 2.5, 5, 10, 15]
)

notification_latency_seconds = Histogram(
    "notification_latency_seconds",
    "Notification sink latency in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5]
)


def metrics_endpoint():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
