from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

http_requests_total = Counter(
    "http_requests_total", "Total HTTP requests", ["method", "path", "status"]
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds", "HTTP request duration", ["method", "path"]
)
webhook_events_total = Counter(
    "webhook_events_total", "Webhook events processed", ["type", "outcome"]
)
security_events_total = Counter(
    "security_events_total", "Security events logged", ["event"]
)
rate_limit_decisions_total = Counter(
    "rate_limit_decisions_total", "Rate limiter decisions", ["endpoint_class", "outcome"]
)
subscriptions_activated_total = Counter(
    "subscriptions_activated_total", "Paid subscriptions activated", ["tier", "source"]
)


def observe_request(method, path_template, status, seconds):
    http_requests_total.labels(method, path_template, status).inc()
    http_request_duration_seconds.labels(method, path_template).observe(seconds)


def increment_webhook_event(event_type, outcome):
    webhook_events_total.labels(event_type, outcome).inc()


def increment_security_event(event):
    security_events_total.labels(event).inc()


def increment_rate_limit(endpoint_class, allowed):
    rate_limit_decisions_total.labels(endpoint_class, "allowed" if allowed else "rejected").inc()


def increment_activation(tier, source):
    subscriptions_activated_total.labels(tier, source).inc()


def metrics_endpoint():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
