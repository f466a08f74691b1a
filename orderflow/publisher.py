"""
Entry points for callers that enqueue work.

Both calls are fire-and-forget: they publish and return. Callers learn the
outcome by reading the order's status and last_error from the order store.

Usage:
    >>> publisher = OrderEventPublisher(broker)
    >>> await publisher.submit_order_event("O1", {"productVariantId": 7, "quantity": 2})
    >>> await publisher.submit_payment_event("O1", {"status": "confirmed", "amount": 40})
"""

from typing import Any

from orderflow.brokers.base import MessageBroker
from orderflow.core.logger import get_logger
from orderflow.core.types import QueueMessage, QueueType

logger = get_logger(__name__)


class OrderEventPublisher:
    """Publishes order and payment events onto their channels."""

    def __init__(self, broker: MessageBroker):
        self.broker = broker

    async def _submit(self, queue_type: QueueType, order_id: str, payload: dict[str, Any] | None) -> None:
        message = QueueMessage(order_id=order_id, queue_type=queue_type, payload=payload or {})
        await self.broker.publish(queue_type.value, message.to_bytes())
        logger.info(f"Submitted {queue_type.value} message {message.message_id} for order {order_id}")

    async def submit_order_event(self, order_id: str, payload: dict[str, Any] | None = None) -> None:
        """Enqueue an order for processing."""
        await self._submit(QueueType.ORDER_QUEUE, order_id, payload)

    async def submit_payment_event(self, order_id: str, payload: dict[str, Any]) -> None:
        """
        Enqueue a payment outcome.

        ``payload["status"]`` must be "confirmed" or "rejected"; a rejected
        payment may carry a "reason" that ends up in the order's last_error.
        """
        await self._submit(QueueType.PAYMENT_QUEUE, order_id, payload)


async def submit_order_event(
    broker: MessageBroker, order_id: str, payload: dict[str, Any] | None = None
) -> None:
    await OrderEventPublisher(broker).submit_order_event(order_id, payload)


async def submit_payment_event(broker: MessageBroker, order_id: str, payload: dict[str, Any]) -> None:
    await OrderEventPublisher(broker).submit_payment_event(order_id, payload)
