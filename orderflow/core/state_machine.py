"""
Order State Machine - Pure transition logic over the order lifecycle.

State Diagram:

    ┌─────────┐
    │ PENDING │
    └────┬────┘
         │ START_PROCESSING
         ▼
    ┌────────────┐
    │ PROCESSING │
    └─────┬──────┘
          │
    ┌─────┴──────────────────────────┐
    │ PAYMENT_CONFIRMED              │ PAYMENT_REJECTED
    ▼                                │ BUSINESS_RULE_VIOLATION
┌───────────┐                        ▼
│ COMPLETED │                   ┌────────┐
└───────────┘                   │ FAILED │
                                └────────┘

No I/O happens here. The consumer reads and writes the store; this module
only answers "what comes next".
"""

from collections.abc import Callable
from typing import Any

from orderflow.core.exceptions import InvalidTransitionError
from orderflow.core.types import OrderEvent, OrderStatus

# Position of each status along the lifecycle; terminal statuses share a rank.
_RANK = {
    None: 0,
    OrderStatus.PENDING: 1,
    OrderStatus.PROCESSING: 2,
    OrderStatus.COMPLETED: 3,
    OrderStatus.FAILED: 3,
}

# Status each event must find the order in.
_SOURCE_STATUS = {
    OrderEvent.START_PROCESSING: OrderStatus.PENDING,
    OrderEvent.PAYMENT_CONFIRMED: OrderStatus.PROCESSING,
    OrderEvent.PAYMENT_REJECTED: OrderStatus.PROCESSING,
    OrderEvent.BUSINESS_RULE_VIOLATION: OrderStatus.PROCESSING,
}


class OrderStateMachine:
    """
    State machine for the order lifecycle.

    Valid Transitions:
        PENDING → PROCESSING (START_PROCESSING)
        PROCESSING → COMPLETED (PAYMENT_CONFIRMED)
        PROCESSING → FAILED (PAYMENT_REJECTED, BUSINESS_RULE_VIOLATION)

    COMPLETED and FAILED are terminal: every event raises.

    Usage:
        >>> sm = OrderStateMachine()
        >>> sm.try_transition(OrderStatus.PENDING, OrderEvent.START_PROCESSING)
        <OrderStatus.PROCESSING: 'processing'>
    """

    VALID_TRANSITIONS = {
        (OrderStatus.PENDING, OrderEvent.START_PROCESSING): OrderStatus.PROCESSING,
        (OrderStatus.PROCESSING, OrderEvent.PAYMENT_CONFIRMED): OrderStatus.COMPLETED,
        (OrderStatus.PROCESSING, OrderEvent.PAYMENT_REJECTED): OrderStatus.FAILED,
        (OrderStatus.PROCESSING, OrderEvent.BUSINESS_RULE_VIOLATION): OrderStatus.FAILED,
    }

    def __init__(
        self,
        on_transition: Callable[[OrderStatus, OrderEvent, OrderStatus], Any] | None = None,
    ):
        """
        Initialize the state machine.

        Args:
            on_transition: Optional callback invoked for every transition the
                caller reports as persisted through transition_committed()
        """
        self._on_transition = on_transition

    def try_transition(self, current_status: OrderStatus, event: OrderEvent) -> OrderStatus:
        """
        Compute the next status for an event.

        Raises:
            InvalidTransitionError: If the event is not allowed from current_status
        """
        next_status = self.VALID_TRANSITIONS.get((current_status, event))
        if next_status is None:
            raise InvalidTransitionError(current_status, event)
        return next_status

    def transition_committed(
        self, previous_status: OrderStatus, event: OrderEvent, new_status: OrderStatus
    ) -> None:
        """Report a transition that has been written to the store."""
        if self._on_transition:
            self._on_transition(previous_status, event, new_status)

    def is_premature(self, current_status: OrderStatus | None, event: OrderEvent) -> bool:
        """
        Check whether an event arrived before the order could accept it.

        A payment event against a PENDING (or not yet created) order is
        premature and should be retried later. An event whose source status
        the order has already moved past is stale and is never premature.
        """
        return _RANK[current_status] < _RANK[_SOURCE_STATUS[event]]

    def failure_path(self, current_status: OrderStatus) -> list[OrderEvent]:
        """Events that take a non-terminal order to FAILED along valid edges."""
        if current_status is OrderStatus.PENDING:
            return [OrderEvent.START_PROCESSING, OrderEvent.BUSINESS_RULE_VIOLATION]
        if current_status is OrderStatus.PROCESSING:
            return [OrderEvent.BUSINESS_RULE_VIOLATION]
        return []

    def can_transition(self, current_status: OrderStatus, event: OrderEvent) -> bool:
        return (current_status, event) in self.VALID_TRANSITIONS
