"""
Core data model for the order pipeline.

Orders move through a fixed lifecycle:

    PENDING → PROCESSING → COMPLETED
                        ↘ FAILED

Queue messages travel as JSON with camelCase keys:

    {"orderId": "O1", "queueType": "order_queue", "payload": {...},
     "attemptCount": 1, "messageId": "..."}
"""

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from orderflow.core.exceptions import MessageFormatError


class OrderStatus(Enum):
    """Status of an order in its lifecycle."""

    PENDING = "pending"
    """Order created, waiting for the order queue to pick it up"""

    PROCESSING = "processing"
    """Order accepted, waiting for the payment outcome"""

    COMPLETED = "completed"
    """Payment confirmed (terminal)"""

    FAILED = "failed"
    """Payment rejected or a business rule failed (terminal)"""

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.FAILED)


class QueueType(Enum):
    """Logical channels; the values double as broker queue names."""

    ORDER_QUEUE = "order_queue"
    PAYMENT_QUEUE = "payment_queue"


class OrderEvent(Enum):
    """Inputs to the order state machine."""

    START_PROCESSING = "start_processing"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_REJECTED = "payment_rejected"
    BUSINESS_RULE_VIOLATION = "business_rule_violation"


PAYMENT_CONFIRMED = "confirmed"
PAYMENT_REJECTED = "rejected"

_PAYMENT_EVENTS = {
    PAYMENT_CONFIRMED: OrderEvent.PAYMENT_CONFIRMED,
    PAYMENT_REJECTED: OrderEvent.PAYMENT_REJECTED,
}


@dataclass
class Order:
    """
    Persisted order record.

    Attributes:
        order_id: Unique identifier, immutable after creation
        status: Current lifecycle status
        version: Incremented on every persisted transition (optimistic concurrency)
        last_error: Terminal error description, set only when the order fails
        created_at: When the order was first persisted
        updated_at: When the order was last written
    """

    order_id: str
    status: OrderStatus = OrderStatus.PENDING
    version: int = 1
    last_error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert order to dictionary for serialization."""
        return {
            "order_id": self.order_id,
            "status": self.status.value,
            "version": self.version,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        """Create order from dictionary."""
        return cls(
            order_id=data["order_id"],
            status=OrderStatus(data.get("status", OrderStatus.PENDING.value)),
            version=int(data.get("version", 1)),
            last_error=data.get("last_error") or None,
            created_at=cls._parse_datetime(data.get("created_at")),
            updated_at=cls._parse_datetime(data.get("updated_at")),
        )

    @staticmethod
    def _parse_datetime(value: str | datetime | None) -> datetime:
        if isinstance(value, str):
            return datetime.fromisoformat(value)
        return value or datetime.now(UTC)


@dataclass
class QueueMessage:
    """
    A decoded message from one of the two channels.

    Attributes:
        order_id: Order the message refers to
        queue_type: Channel the message belongs to
        payload: Business data (order details or payment outcome)
        attempt_count: Delivery attempt, starting at 1
        delivery_token: Broker handle for ack/requeue/dead-letter (never serialized)
        message_id: Stable id shared by all redeliveries of this message
    """

    order_id: str
    queue_type: QueueType
    payload: dict[str, Any] = field(default_factory=dict)
    attempt_count: int = 1
    delivery_token: str | None = None
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def event(self) -> OrderEvent:
        """The state machine event this message represents."""
        if self.queue_type is QueueType.ORDER_QUEUE:
            return OrderEvent.START_PROCESSING

        outcome = str(self.payload.get("status", "")).lower()
        try:
            return _PAYMENT_EVENTS[outcome]
        except KeyError:
            msg = f"Payment message for order {self.order_id} has unknown status {outcome!r}"
            raise MessageFormatError(msg) from None

    def next_attempt(self) -> "QueueMessage":
        """Copy of this message for the next redelivery."""
        return replace(self, attempt_count=self.attempt_count + 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": self.order_id,
            "queueType": self.queue_type.value,
            "payload": self.payload,
            "attemptCount": self.attempt_count,
            "messageId": self.message_id,
        }

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict()).encode("utf-8")

    @classmethod
    def from_bytes(cls, body: bytes, delivery_token: str | None = None) -> "QueueMessage":
        """
        Decode a message body.

        Raises:
            MessageFormatError: If the body is not valid JSON or misses required fields
        """
        try:
            data = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            msg = f"Message body is not valid JSON: {e}"
            raise MessageFormatError(msg) from e

        if not isinstance(data, dict):
            msg = "Message body must be a JSON object"
            raise MessageFormatError(msg)

        try:
            order_id = data["orderId"]
            queue_type = QueueType(data["queueType"])
        except KeyError as e:
            msg = f"Message is missing required field {e.args[0]!r}"
            raise MessageFormatError(msg) from e
        except ValueError as e:
            msg = f"Unknown queue type: {data.get('queueType')!r}"
            raise MessageFormatError(msg) from e

        if not isinstance(order_id, str) or not order_id:
            msg = f"orderId must be a non-empty string, got {order_id!r}"
            raise MessageFormatError(msg)

        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            msg = "Message payload must be a JSON object"
            raise MessageFormatError(msg)

        raw_attempt = data.get("attemptCount", 1)
        try:
            if isinstance(raw_attempt, bool):
                raise TypeError(raw_attempt)
            attempt_count = int(raw_attempt)
        except (TypeError, ValueError) as e:
            msg = f"attemptCount must be an integer, got {raw_attempt!r}"
            raise MessageFormatError(msg) from e
        if attempt_count < 1:
            msg = f"attemptCount must be at least 1, got {attempt_count}"
            raise MessageFormatError(msg)

        return cls(
            order_id=order_id,
            queue_type=queue_type,
            payload=payload,
            attempt_count=attempt_count,
            delivery_token=delivery_token,
            message_id=data.get("messageId") or uuid.uuid4().hex,
        )


@dataclass
class Delivery:
    """Raw delivery handed out by a broker."""

    delivery_token: str
    channel: str
    body: bytes
    redelivered: bool = False
