"""
Queue Consumers - turn deliveries into committed order transitions.

One consumer pulls from one channel. For each delivery it:

    1. Decodes the message (undecodable bodies are dead-lettered)
    2. Acquires the order's lease (in flight elsewhere → short requeue;
       already terminal → acknowledge)
    3. Validates the transition, runs the business handler, and persists
       the new status with a version-checked write
    4. On error, classifies it: RETRYABLE → requeue with backoff,
       TERMINAL → persist FAILED and acknowledge
    5. Releases the lease, then settles the delivery with the broker

Usage:
    >>> consumer = PaymentConsumer(broker, store, guard, handler=verify_payment)
    >>> await consumer.run()      # until stop()
    >>> # or
    >>> await consumer.process_one(timeout=1.0)
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from orderflow.brokers.base import MessageBroker
from orderflow.core.classifier import FailureClass, classify
from orderflow.core.config import PipelineConfig
from orderflow.core.exceptions import (
    AlreadyInFlightError,
    InvalidTransitionError,
    MessageFormatError,
    OrderNotFoundError,
    OutOfOrderEventError,
    RetryBudgetExhaustedError,
)
from orderflow.core.guard import IdempotencyGuard
from orderflow.core.logger import get_logger
from orderflow.core.state_machine import OrderStateMachine
from orderflow.core.types import Delivery, Order, OrderEvent, OrderStatus, QueueMessage, QueueType
from orderflow.monitoring.logging import order_logging_context
from orderflow.monitoring.prometheus import (
    MESSAGES_HANDLED,
    PROCESSING_DURATION,
    RETRIES,
    record_transition,
)
from orderflow.store.base import OrderStore

logger = get_logger(__name__)

OrderHandler = Callable[[Order, QueueMessage], Awaitable[None]]


class HandleOutcome(Enum):
    """How a delivery was settled."""

    ACKED = "acked"
    """A transition was persisted and the delivery acknowledged"""

    SKIPPED = "skipped"
    """Duplicate, stale or terminal: acknowledged without touching the order"""

    REQUEUED = "requeued"
    """Returned to the channel for a later attempt"""

    DEAD_LETTERED = "dead_lettered"
    """Moved to the dead letter queue"""


@dataclass
class _Settlement:
    outcome: HandleOutcome
    delay: float = 0.0
    body: bytes | None = None
    reason: str = ""


async def _noop_handler(order: Order, message: QueueMessage) -> None:
    return None


class QueueConsumer:
    """
    Consumes one channel and drives orders through the state machine.

    Args:
        queue_type: Channel to consume
        broker: Message broker
        store: Order store
        guard: Idempotency guard shared by every consumer in the pool
        handler: Business call-out run before each transition is committed;
            may raise BusinessRuleViolation or TransientDependencyError
        config: Pipeline configuration
        state_machine: Transition rules (a fresh OrderStateMachine by default)
        consumer_id: Name used in logs and stats
    """

    def __init__(
        self,
        queue_type: QueueType,
        broker: MessageBroker,
        store: OrderStore,
        guard: IdempotencyGuard,
        handler: OrderHandler | None = None,
        config: PipelineConfig | None = None,
        state_machine: OrderStateMachine | None = None,
        consumer_id: str | None = None,
    ):
        self.queue_type = queue_type
        self.channel = queue_type.value
        self.broker = broker
        self.store = store
        self.guard = guard
        self.handler = handler or _noop_handler
        self.config = config or PipelineConfig()
        self.policy = self.config.retry_policy()
        self.state_machine = state_machine or OrderStateMachine()
        self.consumer_id = consumer_id or f"{self.channel}-{uuid.uuid4().hex[:8]}"

        self._running = False
        self._shutdown_event = asyncio.Event()
        self._stats = dict.fromkeys((outcome.value for outcome in HandleOutcome), 0)

    @property
    def is_running(self) -> bool:
        return self._running

    def prepare(self) -> None:
        """
        Mark the consumer running before its task gets scheduled.

        A stop() that already happened wins: stopping is final.
        """
        if not self._shutdown_event.is_set():
            self._running = True

    async def run(self) -> None:
        """Pull and handle deliveries until stop() is called."""
        self.prepare()
        if not self._running:
            logger.info(f"Consumer {self.consumer_id} stopped before it started")
            return

        logger.info(f"Consumer {self.consumer_id} starting on {self.channel}")

        try:
            while self._running:
                await self._poll_once()
        finally:
            self._running = False
            logger.info(f"Consumer {self.consumer_id} stopped")

    async def stop(self) -> None:
        """Stop pulling new deliveries; the one being handled still completes."""
        self._running = False
        self._shutdown_event.set()

    async def _poll_once(self) -> None:
        try:
            delivery = await self._receive()
            if delivery is not None:
                await self.handle_delivery(delivery)
        except Exception as e:
            logger.error(f"Consumer {self.consumer_id} error: {e}", exc_info=True)
            await self._pause(self.config.poll_interval_seconds)

    async def _receive(self) -> Delivery | None:
        """Wait for a delivery, giving up as soon as a stop is requested."""
        if self._shutdown_event.is_set():
            return None

        consume_task = asyncio.ensure_future(
            self.broker.consume(self.channel, timeout=self.config.poll_interval_seconds)
        )
        stop_task = asyncio.ensure_future(self._shutdown_event.wait())

        try:
            await asyncio.wait({consume_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            consume_task.cancel()
            raise
        finally:
            stop_task.cancel()

        if not consume_task.done():
            consume_task.cancel()
            try:
                delivery = await consume_task
            except asyncio.CancelledError:
                return None
        else:
            delivery = consume_task.result()

        if delivery is not None and not self._running:
            # Pulled in the same instant as the stop; hand it straight back.
            await self.broker.requeue(delivery.delivery_token, 0)
            return None

        return delivery

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def process_one(self, timeout: float | None = None) -> HandleOutcome | None:
        """
        Receive and handle a single delivery.

        Returns:
            The outcome, or None if nothing arrived within ``timeout``
        """
        delivery = await self.broker.consume(self.channel, timeout=timeout)
        if delivery is None:
            return None
        return await self.handle_delivery(delivery)

    async def handle_delivery(self, delivery: Delivery) -> HandleOutcome:
        """Handle one delivery end to end and settle it with the broker."""
        start_time = time.perf_counter()

        try:
            message = self._decode(delivery)
        except MessageFormatError as e:
            logger.error(f"{self.channel}: undecodable message dead-lettered: {e}")
            settlement = _Settlement(HandleOutcome.DEAD_LETTERED, reason=str(e))
            await self._settle(delivery, settlement)
        else:
            with order_logging_context(
                order_id=message.order_id,
                queue=self.channel,
                consumer_id=self.consumer_id,
                attempt=message.attempt_count,
            ):
                logger.info(
                    f"{self.channel}: received {message.event.value} for order "
                    f"{message.order_id} (attempt {message.attempt_count})"
                )
                settlement = await self._handle_message(message)
                await self._settle(delivery, settlement)

        outcome = settlement.outcome
        self._stats[outcome.value] += 1
        MESSAGES_HANDLED.labels(queue=self.channel, outcome=outcome.value).inc()
        PROCESSING_DURATION.labels(queue=self.channel).observe(time.perf_counter() - start_time)
        return outcome

    def _decode(self, delivery: Delivery) -> QueueMessage:
        message = QueueMessage.from_bytes(delivery.body, delivery_token=delivery.delivery_token)
        if message.queue_type is not self.queue_type:
            msg = (
                f"Message for {message.queue_type.value} delivered on {self.channel} "
                f"(order {message.order_id})"
            )
            raise MessageFormatError(msg)
        message.event  # noqa: B018 - rejects payment messages with an unknown status
        return message

    async def _handle_message(self, message: QueueMessage) -> _Settlement:
        try:
            acquired = await self.guard.acquire(message.order_id)
        except AlreadyInFlightError:
            logger.info(
                f"Order {message.order_id} is in flight on another consumer, "
                f"requeueing in {self.config.in_flight_delay_seconds}s"
            )
            return _Settlement(HandleOutcome.REQUEUED, delay=self.config.in_flight_delay_seconds)
        except Exception as e:
            return self._retry_without_lease(message, e)

        if acquired.already_terminal:
            logger.info(
                f"Order {message.order_id} already {acquired.status.value}, "
                f"acknowledging {message.event.value} without reprocessing"
            )
            return _Settlement(HandleOutcome.SKIPPED)

        try:
            try:
                return await self._process(message)
            except Exception as e:
                return await self._on_failure(message, e)
        finally:
            await self.guard.release(acquired.lease)

    async def _process(self, message: QueueMessage) -> _Settlement:
        event = message.event
        order = await self.store.get(message.order_id)

        if order is None and event is OrderEvent.START_PROCESSING:
            order = await self.store.create(message.order_id)
            logger.info(f"Order {order.order_id} created ({order.status.value})")

        status = order.status if order else None
        try:
            next_status = self.state_machine.try_transition(status, event)
        except InvalidTransitionError:
            if self.state_machine.is_premature(status, event):
                raise OutOfOrderEventError(message.order_id, status, event) from None
            logger.info(
                f"Dropping {event.value} for order {message.order_id}: "
                f"order is already {status.value}"
            )
            return _Settlement(HandleOutcome.SKIPPED)

        await self.handler(order, message)

        last_error = self._rejection_reason(message) if next_status is OrderStatus.FAILED else None
        await self._commit(order, event, next_status, last_error)
        return _Settlement(HandleOutcome.ACKED)

    @staticmethod
    def _rejection_reason(message: QueueMessage) -> str:
        reason = message.payload.get("reason")
        return f"Payment rejected: {reason}" if reason else "Payment rejected"

    async def _commit(
        self, order: Order, event: OrderEvent, next_status: OrderStatus, last_error: str | None
    ) -> Order:
        updated = await self.store.compare_and_set(
            order.order_id,
            expected_version=order.version,
            new_status=next_status,
            new_version=order.version + 1,
            last_error=last_error,
        )
        self.state_machine.transition_committed(order.status, event, next_status)
        record_transition(order.status.value, next_status.value)
        logger.info(
            f"Order {order.order_id}: {order.status.value} → {next_status.value} "
            f"(v{updated.version})"
        )
        return updated

    def _requeue_with_backoff(self, message: QueueMessage, error: BaseException) -> _Settlement:
        delay = self.policy.backoff(message.attempt_count)
        RETRIES.labels(queue=self.channel, error_type=type(error).__name__).inc()
        logger.warning(
            f"Order {message.order_id} attempt {message.attempt_count}/"
            f"{self.policy.max_attempts} failed: {error}; retrying in {delay:.2f}s"
        )
        return _Settlement(
            HandleOutcome.REQUEUED,
            delay=delay,
            body=message.next_attempt().to_bytes(),
        )

    def _retry_without_lease(self, message: QueueMessage, error: BaseException) -> _Settlement:
        """Failure before a lease was held; the order cannot be touched."""
        if self.policy.exhausted(message.attempt_count):
            reason = str(RetryBudgetExhaustedError(message.attempt_count, error))
            logger.error(f"Order {message.order_id}: {reason}")
            return _Settlement(HandleOutcome.DEAD_LETTERED, reason=reason)
        return self._requeue_with_backoff(message, error)

    async def _on_failure(self, message: QueueMessage, error: Exception) -> _Settlement:
        failure_class = self.policy.decide(error, message.attempt_count)

        if failure_class is FailureClass.RETRYABLE:
            return self._requeue_with_backoff(message, error)

        if classify(error) is FailureClass.RETRYABLE:
            error = RetryBudgetExhaustedError(message.attempt_count, error)

        reason = str(error)
        logger.warning(f"Order {message.order_id} failed permanently: {reason}")

        try:
            changed = await self._mark_failed(message.order_id, reason)
        except OrderNotFoundError:
            logger.error(f"Order {message.order_id} does not exist; dead-lettering: {reason}")
            return _Settlement(HandleOutcome.DEAD_LETTERED, reason=reason)
        except Exception as e:
            logger.error(f"Could not persist FAILED for order {message.order_id}: {e}")
            return self._requeue_with_backoff(message, e)

        return _Settlement(HandleOutcome.ACKED if changed else HandleOutcome.SKIPPED)

    async def _mark_failed(self, order_id: str, reason: str) -> bool:
        """
        Walk the order to FAILED, recording ``reason``.

        Returns:
            False if the order was already terminal
        """
        order = await self.store.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)

        path = self.state_machine.failure_path(order.status)
        for event in path:
            next_status = self.state_machine.try_transition(order.status, event)
            last_error = reason if next_status is OrderStatus.FAILED else None
            order = await self._commit(order, event, next_status, last_error)

        return bool(path)

    async def _settle(self, delivery: Delivery, settlement: _Settlement) -> None:
        token = delivery.delivery_token

        if settlement.outcome is HandleOutcome.REQUEUED:
            await self.broker.requeue(token, settlement.delay, settlement.body)
        elif settlement.outcome is HandleOutcome.DEAD_LETTERED:
            await self.broker.dead_letter(token, settlement.reason)
        else:
            await self.broker.ack(token)
            logger.info(f"{self.channel}: message {settlement.outcome.value}")

    def get_stats(self) -> dict:
        return {
            "consumer_id": self.consumer_id,
            "queue": self.channel,
            "running": self._running,
            **self._stats,
        }


class OrderConsumer(QueueConsumer):
    """Consumer for the order queue (order creation / start processing)."""

    def __init__(self, broker, store, guard, handler=None, config=None, **kwargs):
        super().__init__(QueueType.ORDER_QUEUE, broker, store, guard, handler, config, **kwargs)


class PaymentConsumer(QueueConsumer):
    """Consumer for the payment queue (payment confirmed / rejected)."""

    def __init__(self, broker, store, guard, handler=None, config=None, **kwargs):
        super().__init__(QueueType.PAYMENT_QUEUE, broker, store, guard, handler, config, **kwargs)
