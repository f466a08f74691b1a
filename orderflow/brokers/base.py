"""
Message Broker Protocol - Abstract interface for the two order channels.

Delivery is at-least-once: a delivery stays outstanding until the consumer
acknowledges, requeues or dead-letters it by its delivery token.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from orderflow.core.exceptions import BrokerConnectionError, BrokerError, BrokerPublishError
from orderflow.core.types import Delivery

__all__ = [
    "BaseBroker",
    "BrokerConfig",
    "BrokerConnectionError",
    "BrokerError",
    "BrokerPublishError",
    "MessageBroker",
    "UnknownDeliveryError",
]


class UnknownDeliveryError(BrokerError):
    """Delivery token is not outstanding (already settled or never issued)."""


@runtime_checkable
class MessageBroker(Protocol):
    """
    Protocol for message broker implementations.
    """

    async def connect(self) -> None:
        """
        Connect to the message broker.

        Raises:
            BrokerConnectionError: If connection fails
        """
        ...

    async def publish(self, channel: str, body: bytes) -> None:
        """
        Publish a message body to a channel.

        Raises:
            BrokerError: If publishing fails
        """
        ...

    async def consume(self, channel: str, timeout: float | None = None) -> Delivery | None:
        """
        Receive one delivery, waiting up to ``timeout`` seconds.

        Returns:
            The delivery, or None if nothing arrived in time
        """
        ...

    async def ack(self, delivery_token: str) -> None:
        """Acknowledge a delivery; it will not be redelivered."""
        ...

    async def requeue(self, delivery_token: str, delay: float, body: bytes | None = None) -> None:
        """
        Settle a delivery and redeliver it after ``delay`` seconds.

        Args:
            delivery_token: Delivery to requeue
            delay: Seconds before the message becomes visible again
            body: Replacement body for the redelivery (defaults to the original)
        """
        ...

    async def dead_letter(self, delivery_token: str, reason: str) -> None:
        """Settle a delivery by moving it to the channel's dead letter queue."""
        ...

    async def close(self) -> None:
        """Close the broker connection."""
        ...

    async def health_check(self) -> bool:
        """
        Check if the broker connection is healthy.

        Returns:
            True if healthy, False otherwise
        """
        ...


@dataclass
class BrokerConfig:
    """
    Base configuration for message brokers.

    Subclass for broker-specific config.
    """

    connection_timeout_seconds: float = 30.0
    publish_timeout_seconds: float = 10.0
    prefetch_count: int = 1


class BaseBroker(ABC):
    """
    Abstract base class for message broker implementations.

    Provides common functionality and enforces the MessageBroker protocol.
    """

    def __init__(self, config: BrokerConfig | None = None):
        self.config = config or BrokerConfig()
        self._connected = False

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def publish(self, channel: str, body: bytes) -> None: ...

    @abstractmethod
    async def consume(self, channel: str, timeout: float | None = None) -> Delivery | None: ...

    @abstractmethod
    async def ack(self, delivery_token: str) -> None: ...

    @abstractmethod
    async def requeue(
        self, delivery_token: str, delay: float, body: bytes | None = None
    ) -> None: ...

    @abstractmethod
    async def dead_letter(self, delivery_token: str, reason: str) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    @abstractmethod
    async def health_check(self) -> bool: ...

    @property
    def is_connected(self) -> bool:
        """Check if broker is connected."""
        return self._connected

    def _ensure_connected(self) -> None:
        if not self._connected:
            msg = f"{type(self).__name__} not connected"
            raise BrokerConnectionError(msg)
