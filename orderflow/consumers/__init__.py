"""
Queue consumers and the dispatcher that runs them.
"""

from orderflow.consumers.consumer import (
    HandleOutcome,
    OrderConsumer,
    OrderHandler,
    PaymentConsumer,
    QueueConsumer,
)
from orderflow.consumers.dispatcher import Dispatcher

__all__ = [
    "Dispatcher",
    "HandleOutcome",
    "OrderConsumer",
    "OrderHandler",
    "PaymentConsumer",
    "QueueConsumer",
]
