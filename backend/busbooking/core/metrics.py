"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Online booking attempts',
    ['outcome']  # created, updated, rejected, retried
)

counter_sales = Counter(
    'counter_sales_total',
    'Counter and replacement sales',
    ['kind']  # counter, replacement
)

# Seat ledger metrics
seat_ledger_operations = Counter(
    'seat_ledger_operations_total',
    'Seat ledger mutations',
    ['operation']  # take, release, overflow
)

auto_halt_triggers = Counter(
    'auto_halt_triggers_total',
    'Trips whose online booking was halted automatically'
)

# Settlement metrics
settlements = Counter(
    'payment_settlements_total',
    'Payment settlement outcomes',
    ['channel', 'outcome']  # demo/webhook/cash, success/failed/replayed
)

webhook_rejections = Counter(
    'payment_webhook_rejections_total',
    'Webhook payloads rejected before any state change',
    ['reason']  # ip, signature, expired, not_found, amount
)

# Transaction metrics
transaction_timeouts = Counter(
    'db_transaction_timeouts_total',
    'Scoped transactions rolled back on deadline'
)

transaction_latency = Histogram(
    'db_transaction_latency_seconds',
    'Scoped transaction duration',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0]
)

# HTTP metrics
request_latency = Histogram(
    'http_request_latency_seconds',
    'Request latency by method and status class',
    ['method', 'status_class'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set/invalidate, hit/miss/stale/error
)

# Side-effect delivery
side_effect_failures = Counter(
    'side_effect_failures_total',
    'Post-commit side effects that failed to deliver',
    ['kind']  # audit, notification, task
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_booking_attempt(outcome: str):
    """Record online booking attempt. Outcome: created, updated, rejected, retried"""
    booking_attempts.labels(outcome=outcome).inc()


def record_settlement(channel: str, outcome: str):
    """Record a settlement. Channel: demo, webhook, cash. Outcome: success, failed, replayed"""
    settlements.labels(channel=channel, outcome=outcome).inc()


def record_ledger_operation(operation: str):
    seat_ledger_operations.labels(operation=operation).inc()


def record_cache_operation(operation: str, result: str):
    cache_operations.labels(operation=operation, result=result).inc()
