"""Prometheus metrics for the fleet manager.

Metric naming follows Prometheus conventions. All metrics live on the
default global registry so the built-in process collectors are exported
alongside them.

Usage::

    from fleet_manager.observability.metrics import INSTANCE_TRANSITIONS_TOTAL

    INSTANCE_TRANSITIONS_TOTAL.labels(source="instance", status="READY").inc()
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "fleet_http_requests_total",
    "Total HTTP requests by method, path pattern, and status code.",
    labelnames=["method", "path", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "fleet_http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    "fleet_http_requests_in_flight",
    "Number of HTTP requests currently being processed.",
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Instance lifecycle metrics
# ---------------------------------------------------------------------------

INSTANCE_TRANSITIONS_TOTAL = Counter(
    "fleet_instance_transitions_total",
    "Instance status transitions by reporting source and target status.",
    labelnames=["source", "status"],
    registry=REGISTRY,
)

INSTANCE_OUT_OF_ORDER_TOTAL = Counter(
    "fleet_instance_out_of_order_transitions_total",
    "Transitions applied outside the canonical status order.",
    labelnames=["source", "from_status", "to_status"],
    registry=REGISTRY,
)

CREATE_CALLBACKS_RESOLVED_TOTAL = Counter(
    "fleet_create_callbacks_resolved_total",
    "Create callbacks fired, by outcome.",
    labelnames=["outcome"],
    registry=REGISTRY,
)

JOIN_REJECTIONS_TOTAL = Counter(
    "fleet_join_rejections_total",
    "Join requests rejected, by reason code.",
    labelnames=["reason"],
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Background sweep metrics
# ---------------------------------------------------------------------------

SWEEP_REMOVED_INSTANCES_TOTAL = Counter(
    "fleet_sweep_removed_instances_total",
    "Local instance records removed because the fabric no longer knows them.",
    registry=REGISTRY,
)

SWEEP_EXPIRED_RESERVATIONS_TOTAL = Counter(
    "fleet_sweep_expired_reservations_total",
    "Seat reservations dropped after exceeding the maximum hold duration.",
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
