"""Prometheus metrics collectors and helpers.

This module exposes counters and gauges for tracking scans, sessions, orders
and profit as well as a utility for starting the metrics HTTP server.
"""

from prometheus_client import Counter, Gauge, Histogram, start_http_server

# Metric collectors
SCANS_TOTAL = Counter("scans_total", "Scan ticks processed", ["result"])
OPPORTUNITIES_TOTAL = Counter(
    "opportunities_total", "Opportunities detected", ["kind"]
)
REJECTIONS_TOTAL = Counter(
    "rejections_total", "Opportunities rejected by risk gating", ["reason"]
)
SESSIONS_TOTAL = Counter("sessions_total", "Terminal execution sessions", ["status"])
ORDERS_TOTAL = Counter("orders_total", "Total orders processed", ["venue", "result"])
ROLLBACKS_TOTAL = Counter(
    "rollbacks_total", "Compensating orders placed", ["venue", "result"]
)
PROFIT_TOTAL = Gauge(
    "profit_total", "Realized profit in start-asset units", ["asset"]
)
ERRORS_TOTAL = Counter("errors_total", "Total errors encountered", ["venue", "stage"])
SCAN_LATENCY = Histogram("scan_latency_seconds", "Per-tick detection latency")


def start_metrics_server(port: int) -> None:
    """Start the Prometheus metrics server on the provided ``port``."""

    # Be tolerant of env-sourced strings like "9109".
    start_http_server(int(port))
