"""
In-Memory Message Broker - For testing and development.
"""

import asyncio
import uuid
from dataclasses import dataclass

from orderflow.brokers.base import BaseBroker, BrokerConfig, UnknownDeliveryError
from orderflow.core.types import Delivery


@dataclass
class DeadLetter:
    channel: str
    body: bytes
    reason: str


class InMemoryBroker(BaseBroker):
    """
    In-memory message broker for testing and development.

    Each channel is an asyncio.Queue. Outstanding deliveries are tracked by
    token until settled, and settled deliveries can be inspected in tests.

    Usage:
        >>> broker = InMemoryBroker()
        >>> await broker.connect()
        >>> await broker.publish("order_queue", b'{"orderId": "O1", ...}')
        >>> delivery = await broker.consume("order_queue", timeout=1.0)
        >>> await broker.ack(delivery.delivery_token)
    """

    def __init__(self, config: BrokerConfig | None = None):
        super().__init__(config)
        self._queues: dict[str, asyncio.Queue] = {}
        self._unacked: dict[str, Delivery] = {}
        self._delayed: set[asyncio.TimerHandle] = set()
        self.published: dict[str, list[bytes]] = {}
        self.acked: list[Delivery] = []
        self.requeued: list[tuple[Delivery, float]] = []
        self.dead_letters: list[DeadLetter] = []

    def _queue(self, channel: str) -> asyncio.Queue:
        if channel not in self._queues:
            self._queues[channel] = asyncio.Queue()
        return self._queues[channel]

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True

    async def publish(self, channel: str, body: bytes) -> None:
        self._ensure_connected()
        self.published.setdefault(channel, []).append(body)
        self._queue(channel).put_nowait((body, False))

    async def consume(self, channel: str, timeout: float | None = None) -> Delivery | None:
        self._ensure_connected()
        queue = self._queue(channel)

        try:
            if timeout is None:
                body, redelivered = await queue.get()
            else:
                body, redelivered = await asyncio.wait_for(queue.get(), timeout)
        except TimeoutError:
            return None

        delivery = Delivery(
            delivery_token=uuid.uuid4().hex,
            channel=channel,
            body=body,
            redelivered=redelivered,
        )
        self._unacked[delivery.delivery_token] = delivery
        return delivery

    def _settle(self, delivery_token: str) -> Delivery:
        try:
            return self._unacked.pop(delivery_token)
        except KeyError:
            msg = f"Unknown delivery token: {delivery_token}"
            raise UnknownDeliveryError(msg) from None

    async def ack(self, delivery_token: str) -> None:
        self.acked.append(self._settle(delivery_token))

    async def requeue(self, delivery_token: str, delay: float, body: bytes | None = None) -> None:
        delivery = self._settle(delivery_token)
        self.requeued.append((delivery, delay))
        item = (body if body is not None else delivery.body, True)
        queue = self._queue(delivery.channel)

        if delay <= 0:
            queue.put_nowait(item)
            return

        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle

        def _redeliver() -> None:
            self._delayed.discard(handle)
            queue.put_nowait(item)

        handle = loop.call_later(delay, _redeliver)
        self._delayed.add(handle)

    async def dead_letter(self, delivery_token: str, reason: str) -> None:
        delivery = self._settle(delivery_token)
        self.dead_letters.append(DeadLetter(delivery.channel, delivery.body, reason))

    async def close(self) -> None:
        """Close connection and drop pending delayed redeliveries."""
        for handle in self._delayed:
            handle.cancel()
        self._delayed.clear()
        self._connected = False

    async def health_check(self) -> bool:
        """Check health (always healthy for in-memory)."""
        return self._connected

    def pending(self, channel: str) -> int:
        """Messages waiting in a channel, excluding delayed redeliveries (for testing)."""
        return self._queue(channel).qsize()

    @property
    def delayed_count(self) -> int:
        """Requeued messages not yet visible again (for testing)."""
        return len(self._delayed)

    @property
    def unacked_count(self) -> int:
        return len(self._unacked)

    def clear(self) -> None:
        """Clear all state (for testing)."""
        for handle in self._delayed:
            handle.cancel()
        self._delayed.clear()
        self._queues.clear()
        self._unacked.clear()
        self.published.clear()
        self.acked.clear()
        self.requeued.clear()
        self.dead_letters.clear()
