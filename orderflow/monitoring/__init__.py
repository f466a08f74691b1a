"""
Monitoring for the order pipeline: structured logging and Prometheus metrics.
"""

from orderflow.monitoring.logging import (
    OrderContextFilter,
    OrderJsonFormatter,
    order_context,
    order_logging_context,
    setup_order_logging,
)
from orderflow.monitoring.prometheus import start_metrics_server

__all__ = [
    "OrderContextFilter",
    "OrderJsonFormatter",
    "order_context",
    "order_logging_context",
    "setup_order_logging",
    "start_metrics_server",
]
