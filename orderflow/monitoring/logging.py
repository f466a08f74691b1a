"""
Structured logging for order processing.

Consumers set an order context (order id, queue, consumer id, attempt) for
the duration of each delivery; the formatter and filter below attach it to
every record emitted meanwhile.
"""

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

order_context: ContextVar[dict[str, Any]] = ContextVar("order_context", default={})


class OrderJsonFormatter(logging.Formatter):
    """JSON formatter that includes the current order context."""

    _EXTRA_FIELDS = (
        "order_id",
        "queue",
        "consumer_id",
        "attempt",
        "outcome",
        "error_type",
        "duration_ms",
    )

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        context = order_context.get()
        if context:
            log_entry.update(context)

        for field in self._EXTRA_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class OrderContextFilter(logging.Filter):
    """Copies the order context onto each record for plain-text formats."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = order_context.get()
        record.order_id = context.get("order_id", "-")
        record.queue = context.get("queue", "-")
        record.consumer_id = context.get("consumer_id", "-")
        record.attempt = context.get("attempt", 0)
        return True


@contextmanager
def order_logging_context(**fields: Any) -> Iterator[None]:
    """Bind order fields to all log records emitted inside the block."""
    token = order_context.set({**order_context.get(), **fields})
    try:
        yield
    finally:
        order_context.reset(token)


def setup_order_logging(
    log_level: str = "INFO", json_format: bool = True, include_console: bool = True
) -> logging.Logger:
    """
    Set up structured logging for the 'orderflow' namespace.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON lines instead of plain text
        include_console: Attach a console handler

    Returns:
        The configured 'orderflow' logger
    """
    root_logger = logging.getLogger("orderflow")
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if include_console:
        console_handler = logging.StreamHandler()
        console_handler.addFilter(OrderContextFilter())

        if json_format:
            console_handler.setFormatter(OrderJsonFormatter())
        else:
            console_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - "
                    "[%(queue)s:%(order_id)s#%(attempt)s] - %(message)s"
                )
            )

        root_logger.addHandler(console_handler)

    return root_logger
