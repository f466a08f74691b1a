"""
Prometheus metrics for the order pipeline.

Metrics live at module level in the default registry so every consumer in
the process reports into the same series.

Quick Start:
    >>> from orderflow.monitoring.prometheus import start_metrics_server
    >>> start_metrics_server(port=8000)
"""

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from orderflow.core.logger import get_logger

logger = get_logger(__name__)

# Counters
MESSAGES_HANDLED = Counter(
    "orderflow_messages_total",
    "Deliveries handled, by queue and outcome",
    ["queue", "outcome"],
)

TRANSITIONS = Counter(
    "orderflow_transitions_total",
    "Persisted order status transitions",
    ["from_status", "to_status"],
)

RETRIES = Counter(
    "orderflow_retries_total",
    "Deliveries requeued with backoff after a retryable error",
    ["queue", "error_type"],
)

LEASES_RECLAIMED = Counter(
    "orderflow_leases_reclaimed_total",
    "Abandoned leases force-released by the sweeper or taken over on acquire",
)

# Gauges
ACTIVE_LEASES = Gauge(
    "orderflow_active_leases",
    "Processing leases currently held by this process",
)

# Histograms
PROCESSING_DURATION = Histogram(
    "orderflow_processing_duration_seconds",
    "Time from receiving a delivery to settling it with the broker",
    ["queue"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0],
)


def record_transition(from_status: str, to_status: str) -> None:
    TRANSITIONS.labels(from_status=from_status, to_status=to_status).inc()


def start_metrics_server(port: int = 8000, addr: str = "0.0.0.0") -> None:  # pragma: no cover
    """Expose /metrics over HTTP."""
    start_http_server(port, addr=addr)
    logger.info(f"Prometheus metrics server listening on {addr}:{port}")
