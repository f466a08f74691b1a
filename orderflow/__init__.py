"""
Orderflow - asynchronous order fulfillment pipeline.

Queue-backed consumers advance orders through

    PENDING → PROCESSING → COMPLETED | FAILED

with per-order leases, optimistic-concurrency writes and a retry/terminal
split for every failure.

Quick Start:
    >>> from orderflow import (
    ...     Dispatcher, InMemoryBroker, InMemoryOrderStore, OrderEventPublisher,
    ... )
    >>>
    >>> broker = InMemoryBroker()
    >>> await broker.connect()
    >>> store = InMemoryOrderStore()
    >>>
    >>> dispatcher = Dispatcher(broker, store)
    >>> await dispatcher.start()
    >>>
    >>> publisher = OrderEventPublisher(broker)
    >>> await publisher.submit_order_event("O1", {"quantity": 1})
    >>> await publisher.submit_payment_event("O1", {"status": "confirmed"})
"""

from orderflow.brokers import InMemoryBroker, MessageBroker, create_broker
from orderflow.consumers import (
    Dispatcher,
    HandleOutcome,
    OrderConsumer,
    PaymentConsumer,
    QueueConsumer,
)
from orderflow.core import (
    AlreadyInFlightError,
    BusinessRuleViolation,
    FailureClass,
    InvalidTransitionError,
    Order,
    OrderEvent,
    OrderStateMachine,
    OrderStatus,
    PipelineConfig,
    QueueMessage,
    QueueType,
    RetryPolicy,
    TransientDependencyError,
    VersionConflictError,
    classify,
)
from orderflow.core.guard import AcquireResult, IdempotencyGuard
from orderflow.leases import InMemoryLeaseBackend, ProcessingLease
from orderflow.publisher import OrderEventPublisher, submit_order_event, submit_payment_event
from orderflow.store import InMemoryOrderStore, OrderStore

__version__ = "0.1.0"

__all__ = [
    "AcquireResult",
    "AlreadyInFlightError",
    "BusinessRuleViolation",
    "Dispatcher",
    "FailureClass",
    "HandleOutcome",
    "IdempotencyGuard",
    "InMemoryBroker",
    "InMemoryLeaseBackend",
    "InMemoryOrderStore",
    "InvalidTransitionError",
    "MessageBroker",
    "Order",
    "OrderConsumer",
    "OrderEvent",
    "OrderEventPublisher",
    "OrderStateMachine",
    "OrderStatus",
    "OrderStore",
    "PaymentConsumer",
    "PipelineConfig",
    "ProcessingLease",
    "QueueConsumer",
    "QueueMessage",
    "QueueType",
    "RetryPolicy",
    "TransientDependencyError",
    "VersionConflictError",
    "classify",
    "create_broker",
    "submit_order_event",
    "submit_payment_event",
]
