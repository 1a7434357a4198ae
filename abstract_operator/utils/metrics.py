"""Prometheus metrics for operator observability."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

EVENTS_TOTAL = Counter(
    "operator_events_total",
    "Watch events received, by outcome",
    ["kind", "action", "result"],
)

WATCH_RECONNECTS_TOTAL = Counter(
    "operator_watch_reconnects_total",
    "Watch resubscriptions after a stream failure",
    ["kind"],
)

RECONCILIATION_TOTAL = Counter(
    "operator_reconciliation_total",
    "Total full reconciliation runs",
    ["operator", "result"],
)

RECONCILIATION_DURATION = Histogram(
    "operator_reconciliation_duration_seconds",
    "Time spent in full reconciliation",
    ["operator"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

MANAGED_RESOURCES = Gauge(
    "operator_managed_resources",
    "Number of desired entities found by the last reconciliation, by kind",
    ["kind"],
)

OPERATOR_INFO = Gauge(
    "operator_info",
    "Basic information about the abstract operator runtime",
    ["version", "crd", "watch_namespace", "reconciliation_interval_s"],
)


def start_metrics_server(port: int = 9090) -> None:
    """Start the Prometheus metrics HTTP server."""
    start_http_server(port)
