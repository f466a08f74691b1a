"""
Tests for queue consumers: end-to-end order scenarios, retry and terminal
handling, idempotency and event ordering.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest
from prometheus_client import REGISTRY

from orderflow.consumers import HandleOutcome, OrderConsumer, PaymentConsumer
from orderflow.core.config import PipelineConfig
from orderflow.core.exceptions import (
    BusinessRuleViolation,
    StoreUnavailableError,
    TransientDependencyError,
)
from orderflow.core.state_machine import OrderStateMachine
from orderflow.core.types import Order, OrderEvent, OrderStatus, QueueMessage, QueueType


async def deliver(consumer, broker, message: QueueMessage) -> HandleOutcome:
    """Publish a message on the consumer's channel and handle it."""
    await broker.publish(consumer.channel, message.to_bytes())
    return await consumer.process_one(timeout=0.1)


@pytest.fixture
def make_consumers(broker, store, guard, fast_config):
    def _make(order_handler=None, payment_handler=None, config=None):
        config = config or fast_config
        return (
            OrderConsumer(broker, store, guard, handler=order_handler, config=config),
            PaymentConsumer(broker, store, guard, handler=payment_handler, config=config),
        )

    return _make


class TestOrderLifecycle:
    @pytest.mark.asyncio
    async def test_order_then_payment_completes(
        self, make_consumers, broker, store, order_message, payment_message
    ):
        """O1: Processing at v2, Completed at v3, duplicate payment acknowledged"""
        orders, payments = make_consumers()

        assert await deliver(orders, broker, order_message("O1", sku="A")) is HandleOutcome.ACKED
        order = await store.get("O1")
        assert (order.status, order.version) == (OrderStatus.PROCESSING, 2)

        confirmed = payment_message("O1", "confirmed", amount=40)
        assert await deliver(payments, broker, confirmed) is HandleOutcome.ACKED
        order = await store.get("O1")
        assert (order.status, order.version) == (OrderStatus.COMPLETED, 3)

        writes = store.writes
        assert await deliver(payments, broker, confirmed) is HandleOutcome.SKIPPED
        order = await store.get("O1")
        assert (order.status, order.version) == (OrderStatus.COMPLETED, 3)
        assert store.writes == writes
        assert broker.unacked_count == 0
        assert broker.requeued == []

    @pytest.mark.asyncio
    async def test_business_rule_violation_fails_without_requeue(
        self, make_consumers, broker, store, order_message, payment_message
    ):
        """O2: a business rule violation is terminal on the first attempt"""

        async def decline(order, message):
            raise BusinessRuleViolation("card permanently declined")

        orders, payments = make_consumers(payment_handler=decline)
        await deliver(orders, broker, order_message("O2"))

        outcome = await deliver(payments, broker, payment_message("O2"))

        order = await store.get("O2")
        assert outcome is HandleOutcome.ACKED
        assert order.status is OrderStatus.FAILED
        assert order.version == 3
        assert order.last_error == "card permanently declined"
        assert broker.requeued == []
        assert broker.pending("payment_queue") == 0

    @pytest.mark.asyncio
    async def test_transient_failures_retry_until_success(
        self, make_consumers, broker, store, order_message, payment_message
    ):
        """O3: three timeouts on attempts 1-3, success on attempt 4"""
        attempts = []

        async def flaky_gateway(order, message):
            attempts.append(message.attempt_count)
            if message.attempt_count <= 3:
                raise TransientDependencyError("payment gateway timeout")

        orders, payments = make_consumers(payment_handler=flaky_gateway)
        await deliver(orders, broker, order_message("O3"))
        await broker.publish("payment_queue", payment_message("O3").to_bytes())

        outcomes = []
        for _ in range(4):
            outcomes.append(await payments.process_one(timeout=0.1))
            if outcomes[-1] is HandleOutcome.REQUEUED:
                order = await store.get("O3")
                assert (order.status, order.version) == (OrderStatus.PROCESSING, 2)

        order = await store.get("O3")
        assert outcomes == [HandleOutcome.REQUEUED] * 3 + [HandleOutcome.ACKED]
        assert attempts == [1, 2, 3, 4]
        assert (order.status, order.version) == (OrderStatus.COMPLETED, 3)
        assert order.last_error is None

    @pytest.mark.asyncio
    async def test_transition_callback_skips_rolled_back_attempts(
        self, broker, store, guard, fast_config, order_message
    ):
        seen = []
        calls = []

        async def flaky_reserve(order, message):
            calls.append(message.attempt_count)
            if len(calls) == 1:
                raise TransientDependencyError("inventory timeout")

        orders = OrderConsumer(
            broker,
            store,
            guard,
            handler=flaky_reserve,
            config=fast_config,
            state_machine=OrderStateMachine(on_transition=lambda *args: seen.append(args)),
        )

        assert await deliver(orders, broker, order_message("O1")) is HandleOutcome.REQUEUED
        assert seen == []

        assert await orders.process_one(timeout=0.1) is HandleOutcome.ACKED
        assert seen == [(OrderStatus.PENDING, OrderEvent.START_PROCESSING, OrderStatus.PROCESSING)]

    @pytest.mark.asyncio
    async def test_rejected_payment_records_reason(
        self, make_consumers, broker, store, order_message, payment_message
    ):
        orders, payments = make_consumers()
        await deliver(orders, broker, order_message("O5"))

        outcome = await deliver(payments, broker, payment_message("O5", "rejected", reason="insufficient funds"))

        order = await store.get("O5")
        assert outcome is HandleOutcome.ACKED
        assert order.status is OrderStatus.FAILED
        assert order.last_error == "Payment rejected: insufficient funds"

    @pytest.mark.asyncio
    async def test_handler_receives_current_order(self, make_consumers, broker, order_message):
        seen = []

        async def reserve_stock(order, message):
            seen.append((order.status, order.version, message.payload))

        orders, _ = make_consumers(order_handler=reserve_stock)
        await deliver(orders, broker, order_message("O6", quantity=2))

        assert seen == [(OrderStatus.PENDING, 1, {"quantity": 2})]

    @pytest.mark.asyncio
    async def test_order_handler_violation_fails_pending_order(
        self, make_consumers, broker, store, order_message
    ):
        """A terminal failure on a pending order walks it through PROCESSING to FAILED"""

        async def out_of_stock(order, message):
            raise BusinessRuleViolation("insufficient stock")

        orders, _ = make_consumers(order_handler=out_of_stock)

        outcome = await deliver(orders, broker, order_message("O7"))

        order = await store.get("O7")
        assert outcome is HandleOutcome.ACKED
        assert order.status is OrderStatus.FAILED
        assert order.version == 3
        assert order.last_error == "insufficient stock"


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_duplicate_start_is_skipped(self, make_consumers, broker, store, order_message):
        orders, _ = make_consumers()
        message = order_message("O1")
        await deliver(orders, broker, message)

        outcome = await deliver(orders, broker, message)

        assert outcome is HandleOutcome.SKIPPED
        assert (await store.get("O1")).version == 2

    @pytest.mark.asyncio
    async def test_terminal_orders_are_immutable(self, make_consumers, broker, store, payment_message, order_message):
        await store.put(Order(order_id="O1", status=OrderStatus.COMPLETED, version=3))
        orders, payments = make_consumers()
        writes = store.writes

        assert await deliver(payments, broker, payment_message("O1", "rejected")) is HandleOutcome.SKIPPED
        assert await deliver(orders, broker, order_message("O1")) is HandleOutcome.SKIPPED

        order = await store.get("O1")
        assert (order.status, order.version, order.last_error) == (OrderStatus.COMPLETED, 3, None)
        assert store.writes == writes

    @pytest.mark.asyncio
    async def test_in_flight_order_is_requeued_unchanged(self, make_consumers, broker, leases, order_message):
        orders, _ = make_consumers()
        await leases.try_acquire("O1")

        outcome = await deliver(orders, broker, order_message("O1"))

        assert outcome is HandleOutcome.REQUEUED
        redelivery = await broker.consume("order_queue", timeout=0.1)
        assert QueueMessage.from_bytes(redelivery.body).attempt_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_process_once(self, broker, store, guard, fast_config, order_message):
        calls = []

        async def slow_reserve(order, message):
            calls.append(order.order_id)
            await asyncio.sleep(0.02)

        first = OrderConsumer(broker, store, guard, handler=slow_reserve, config=fast_config)
        second = OrderConsumer(broker, store, guard, handler=slow_reserve, config=fast_config)
        message = order_message("O1")
        await broker.publish("order_queue", message.to_bytes())
        await broker.publish("order_queue", message.to_bytes())

        outcomes = await asyncio.gather(first.process_one(timeout=0.1), second.process_one(timeout=0.1))

        assert sorted(o.value for o in outcomes) == ["acked", "requeued"]
        assert calls == ["O1"]
        assert await first.process_one(timeout=0.1) is HandleOutcome.SKIPPED
        assert (await store.get("O1")).version == 2

    @pytest.mark.asyncio
    async def test_lease_released_after_every_outcome(
        self, make_consumers, broker, leases, order_message, payment_message
    ):
        async def boom(order, message):
            raise TransientDependencyError("down")

        orders, payments = make_consumers(payment_handler=boom)
        await deliver(orders, broker, order_message("O1"))
        await deliver(payments, broker, payment_message("O1"))

        assert await leases.active_count() == 0

    @pytest.mark.asyncio
    async def test_concurrent_writer_causes_retry_then_skip(
        self, make_consumers, broker, store, order_message, payment_message
    ):
        async def racing_writer(order, message):
            if message.attempt_count == 1:
                await store.compare_and_set("O1", 2, OrderStatus.COMPLETED, 3)

        orders, payments = make_consumers(payment_handler=racing_writer)
        await deliver(orders, broker, order_message("O1"))

        assert await deliver(payments, broker, payment_message("O1", "rejected")) is HandleOutcome.REQUEUED
        assert await payments.process_one(timeout=0.1) is HandleOutcome.SKIPPED
        order = await store.get("O1")
        assert (order.status, order.version) == (OrderStatus.COMPLETED, 3)


class TestEventOrdering:
    @pytest.mark.asyncio
    async def test_payment_before_order_is_retried(
        self, make_consumers, broker, store, order_message, payment_message
    ):
        orders, payments = make_consumers()

        assert await deliver(payments, broker, payment_message("O1")) is HandleOutcome.REQUEUED
        assert await store.get("O1") is None

        await deliver(orders, broker, order_message("O1"))
        outcome = await payments.process_one(timeout=0.1)

        order = await store.get("O1")
        assert outcome is HandleOutcome.ACKED
        assert (order.status, order.version) == (OrderStatus.COMPLETED, 3)

    @pytest.mark.asyncio
    async def test_payment_for_pending_order_is_retried(self, make_consumers, broker, store, payment_message):
        await store.put(Order(order_id="O1"))
        _, payments = make_consumers()

        outcome = await deliver(payments, broker, payment_message("O1"))

        assert outcome is HandleOutcome.REQUEUED
        assert (await store.get("O1")).status is OrderStatus.PENDING
        redelivery = await broker.consume("payment_queue", timeout=0.1)
        assert QueueMessage.from_bytes(redelivery.body).attempt_count == 2


class TestRetryExhaustion:
    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_the_order(
        self, make_consumers, broker, store, fast_config, order_message, payment_message
    ):
        config = PipelineConfig(**{**fast_config.__dict__, "max_attempts": 3})

        async def always_down(order, message):
            raise TransientDependencyError("gateway timeout")

        orders, payments = make_consumers(payment_handler=always_down, config=config)
        await deliver(orders, broker, order_message("O1"))
        await broker.publish("payment_queue", payment_message("O1").to_bytes())

        outcomes = [await payments.process_one(timeout=0.1) for _ in range(3)]

        order = await store.get("O1")
        assert outcomes == [HandleOutcome.REQUEUED, HandleOutcome.REQUEUED, HandleOutcome.ACKED]
        assert order.status is OrderStatus.FAILED
        assert "Retry budget exhausted after 3 attempts" in order.last_error
        assert "gateway timeout" in order.last_error
        assert broker.pending("payment_queue") == 0

    @pytest.mark.asyncio
    async def test_exhausted_payment_for_missing_order_is_dead_lettered(
        self, make_consumers, broker, store, fast_config, payment_message
    ):
        config = PipelineConfig(**{**fast_config.__dict__, "max_attempts": 2})
        _, payments = make_consumers(config=config)
        await broker.publish("payment_queue", payment_message("ghost").to_bytes())

        outcomes = [await payments.process_one(timeout=0.1) for _ in range(2)]

        assert outcomes == [HandleOutcome.REQUEUED, HandleOutcome.DEAD_LETTERED]
        assert await store.get("ghost") is None
        assert "Retry budget exhausted" in broker.dead_letters[0].reason

    @pytest.mark.asyncio
    async def test_store_outage_before_lease_is_retried_then_dead_lettered(
        self, make_consumers, broker, store, fast_config, order_message
    ):
        config = PipelineConfig(**{**fast_config.__dict__, "max_attempts": 2})
        store.get = AsyncMock(side_effect=StoreUnavailableError("redis down"))
        orders, _ = make_consumers(config=config)
        await broker.publish("order_queue", order_message("O1").to_bytes())

        outcomes = [await orders.process_one(timeout=0.1) for _ in range(2)]

        assert outcomes == [HandleOutcome.REQUEUED, HandleOutcome.DEAD_LETTERED]
        assert store.writes == 0


class TestMalformedMessages:
    @pytest.mark.asyncio
    async def test_undecodable_body_is_dead_lettered(self, make_consumers, broker):
        orders, _ = make_consumers()
        await broker.publish("order_queue", b"{not json")

        assert await orders.process_one(timeout=0.1) is HandleOutcome.DEAD_LETTERED
        assert broker.dead_letters[0].channel == "order_queue"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("attempt_count", ['"abc"', "null", "[1]"])
    async def test_bad_attempt_count_is_dead_lettered(self, make_consumers, broker, store, attempt_count):
        orders, _ = make_consumers()
        body = f'{{"orderId": "O1", "queueType": "order_queue", "attemptCount": {attempt_count}}}'
        await broker.publish("order_queue", body.encode())

        assert await orders.process_one(timeout=0.1) is HandleOutcome.DEAD_LETTERED
        assert broker.unacked_count == 0
        assert len(broker.dead_letters) == 1
        assert await store.get("O1") is None

    @pytest.mark.asyncio
    async def test_message_on_wrong_channel_is_dead_lettered(self, make_consumers, broker, payment_message):
        orders, _ = make_consumers()
        await broker.publish("order_queue", payment_message("O1").to_bytes())

        assert await orders.process_one(timeout=0.1) is HandleOutcome.DEAD_LETTERED

    @pytest.mark.asyncio
    async def test_unknown_payment_status_is_dead_lettered(self, make_consumers, broker, store, payment_message):
        _, payments = make_consumers()

        outcome = await deliver(payments, broker, payment_message("O1", "pending-review"))

        assert outcome is HandleOutcome.DEAD_LETTERED
        assert store.writes == 0

    @pytest.mark.asyncio
    async def test_dead_letters_are_counted(self, make_consumers, broker):
        orders, _ = make_consumers()
        labels = {"queue": "order_queue", "outcome": "dead_lettered"}
        before = REGISTRY.get_sample_value("orderflow_messages_total", labels) or 0.0
        await broker.publish("order_queue", b"garbage")

        await orders.process_one(timeout=0.1)

        assert REGISTRY.get_sample_value("orderflow_messages_total", labels) == before + 1
        assert orders.get_stats()["dead_lettered"] == 1


class TestConsumerLoop:
    @pytest.mark.asyncio
    async def test_run_until_stopped(self, make_consumers, broker, store, order_message):
        orders, _ = make_consumers()
        task = asyncio.create_task(orders.run())
        await broker.publish("order_queue", order_message("O1").to_bytes())

        for _ in range(50):
            order = await store.get("O1")
            if order and order.status is OrderStatus.PROCESSING:
                break
            await asyncio.sleep(0.01)

        await orders.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert not orders.is_running
        assert (await store.get("O1")).status is OrderStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_stop_before_run_is_not_undone(self, make_consumers, broker, store, order_message):
        orders, _ = make_consumers()
        orders.prepare()
        await orders.stop()
        await broker.publish("order_queue", order_message("O1").to_bytes())

        await asyncio.wait_for(orders.run(), timeout=1.0)

        assert not orders.is_running
        assert await store.get("O1") is None
        assert broker.pending("order_queue") == 1

    @pytest.mark.asyncio
    async def test_process_one_returns_none_when_idle(self, make_consumers):
        orders, _ = make_consumers()

        assert await orders.process_one(timeout=0.01) is None

    def test_consumers_bind_their_channel(self, make_consumers):
        orders, payments = make_consumers()

        assert orders.queue_type is QueueType.ORDER_QUEUE
        assert payments.channel == "payment_queue"
