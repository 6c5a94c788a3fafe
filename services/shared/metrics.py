"""
Shared Prometheus metrics registry.

Route handlers and services import and increment these counters.
The billing API exposes them with prometheus_client.generate_latest() on /metrics.
"""

from prometheus_client import Counter, Histogram

# Webhook
webhook_events_total = Counter(
    "creditsync_webhook_events_total",
    "Total Stripe webhook events received",
    ["event_type", "result"],  # processed | duplicate | failed | unhandled
)

webhook_signature_failures_total = Counter(
    "creditsync_webhook_signature_failures_total",
    "Total webhook deliveries rejected by signature verification",
)

# Credit ledger
credits_granted_total = Counter(
    "creditsync_credits_granted_total",
    "Total credits granted by subscription payments",
    ["plan"],
)

credit_grants_skipped_total = Counter(
    "creditsync_credit_grants_skipped_total",
    "Credit grants skipped because the same plan was granted inside the window",
    ["plan"],
)

credit_deductions_total = Counter(
    "creditsync_credit_deductions_total",
    "Credit deduction attempts",
    ["result"],  # success | insufficient | failed
)

# Checkout
checkout_requests_total = Counter(
    "creditsync_checkout_requests_total",
    "Checkout endpoint requests by action and result",
    ["action", "result"],
)

# HTTP request metrics
http_request_duration_seconds = Histogram(
    "creditsync_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path_template", "status_code"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

http_requests_total = Counter(
    "creditsync_http_requests_total",
    "Total HTTP requests",
    ["method", "path_template", "status_code"],
)
