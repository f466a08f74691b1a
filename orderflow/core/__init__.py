"""
Core order pipeline logic: data model, errors, state machine, failure
classification, configuration and the idempotency guard.
"""

from orderflow.core.classifier import FailureClass, RetryPolicy, classify
from orderflow.core.config import PipelineConfig
from orderflow.core.exceptions import (
    AlreadyInFlightError,
    BrokerError,
    BusinessRuleViolation,
    InvalidTransitionError,
    MessageFormatError,
    MissingDependencyError,
    OrderflowError,
    OrderNotFoundError,
    OrderStoreError,
    OutOfOrderEventError,
    RetryBudgetExhaustedError,
    StoreUnavailableError,
    TransientDependencyError,
    VersionConflictError,
)
from orderflow.core.state_machine import OrderStateMachine
from orderflow.core.types import (
    Delivery,
    Order,
    OrderEvent,
    OrderStatus,
    QueueMessage,
    QueueType,
)

__all__ = [
    "AlreadyInFlightError",
    "BrokerError",
    "BusinessRuleViolation",
    "Delivery",
    "FailureClass",
    "InvalidTransitionError",
    "MessageFormatError",
    "MissingDependencyError",
    "Order",
    "OrderEvent",
    "OrderNotFoundError",
    "OrderStateMachine",
    "OrderStatus",
    "OrderStoreError",
    "OrderflowError",
    "OutOfOrderEventError",
    "PipelineConfig",
    "QueueMessage",
    "QueueType",
    "RetryBudgetExhaustedError",
    "RetryPolicy",
    "StoreUnavailableError",
    "TransientDependencyError",
    "VersionConflictError",
    "classify",
]
