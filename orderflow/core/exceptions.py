"""
All order pipeline exceptions.

The classifier in ``orderflow.core.classifier`` decides what each of these
means for a delivery (acknowledge, requeue, dead-letter). Nothing here
carries retry semantics of its own.
"""

from typing import Any


class OrderflowError(Exception):
    """Base orderflow error"""


class MessageFormatError(OrderflowError):
    """Queue message body could not be decoded"""


class InvalidTransitionError(OrderflowError):
    """Raised when an event is not allowed from the order's current status."""

    def __init__(self, status: Any, event: Any):
        self.status = status
        self.event = event
        status_name = getattr(status, "value", status)
        event_name = getattr(event, "value", event)
        super().__init__(f"Invalid transition: {event_name} is not allowed from {status_name}")


class AlreadyInFlightError(OrderflowError):
    """Another consumer currently holds the processing lease for this order."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} is already being processed")


class OutOfOrderEventError(OrderflowError):
    """Event arrived before the order reached the status it applies to."""

    def __init__(self, order_id: str, status: Any, event: Any):
        self.order_id = order_id
        self.status = status
        self.event = event
        status_name = getattr(status, "value", status) if status is not None else "missing"
        super().__init__(
            f"Event {getattr(event, 'value', event)} for order {order_id} arrived early "
            f"(order is {status_name})"
        )


class BusinessRuleViolation(OrderflowError):
    """
    A completed business decision that retrying cannot change.

    Examples: insufficient stock, card permanently declined.
    """


class TransientDependencyError(OrderflowError):
    """An external dependency failed in a way that may succeed later."""


class RetryBudgetExhaustedError(OrderflowError):
    """A retryable failure kept happening past the configured attempt limit."""

    def __init__(self, attempts: int, cause: BaseException):
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Retry budget exhausted after {attempts} attempts: {cause}")


class BrokerError(OrderflowError):
    """Base exception for broker errors."""


class BrokerConnectionError(BrokerError):
    """Error connecting to the broker."""


class BrokerPublishError(BrokerError):
    """Error publishing a message."""


class OrderStoreError(OrderflowError):
    """Base exception for order store operations."""


class OrderNotFoundError(OrderStoreError):
    """Order does not exist in the store."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class VersionConflictError(OrderStoreError):
    """Persisted version did not match the version the writer read."""

    def __init__(self, order_id: str, expected_version: int | None, actual_version: int | None):
        self.order_id = order_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on order {order_id}: "
            f"expected {expected_version}, found {actual_version}"
        )


class StoreUnavailableError(OrderStoreError):
    """Order store could not be reached."""


class MissingDependencyError(OrderflowError):
    """
    Raised when an optional dependency is not installed.

    Carries the install command so the fix is obvious from the traceback.
    """

    INSTALL_COMMANDS = {
        "redis": "pip install redis",
        "aio-pika": "pip install aio-pika",
    }

    def __init__(self, package: str, feature: str | None = None):
        self.package = package
        self.feature = feature

        install_cmd = self.INSTALL_COMMANDS.get(package, f"pip install {package}")

        if feature:
            message = (
                f"\n╔══════════════════════════════════════════════════════════════╗\n"
                f"║  Missing Dependency: {package:<40} ║\n"
                f"╠══════════════════════════════════════════════════════════════╣\n"
                f"║  Required for: {feature:<45} ║\n"
                f"║  Install with: {install_cmd:<45} ║\n"
                f"╚══════════════════════════════════════════════════════════════╝"
            )
        else:
            message = (
                f"\n╔══════════════════════════════════════════════════════════════╗\n"
                f"║  Missing Dependency: {package:<40} ║\n"
                f"╠══════════════════════════════════════════════════════════════╣\n"
                f"║  Install with: {install_cmd:<45} ║\n"
                f"╚══════════════════════════════════════════════════════════════╝"
            )

        super().__init__(message)
