"""
Dispatcher - runs a fixed-size consumer pool per channel.

Usage:
    >>> dispatcher = Dispatcher(
    ...     broker,
    ...     store,
    ...     order_handler=reserve_stock,
    ...     payment_handler=verify_payment,
    ...     config=PipelineConfig(order_workers=4, payment_workers=2),
    ... )
    >>> await dispatcher.start()
    >>> ...
    >>> await dispatcher.drain()     # stop pulling, let in-flight work finish

Lifecycle:
    1. start() spawns the consumers and the abandoned-lease sweeper
    2. drain() stops new pulls immediately, waits up to drain_timeout for
       in-flight deliveries to settle, then cancels whatever is left
    3. run_forever() does both, draining on SIGTERM/SIGINT
"""

import asyncio
import signal

from orderflow.brokers.base import MessageBroker
from orderflow.consumers.consumer import (
    OrderConsumer,
    OrderHandler,
    PaymentConsumer,
    QueueConsumer,
)
from orderflow.core.config import PipelineConfig
from orderflow.core.guard import IdempotencyGuard
from orderflow.core.logger import get_logger
from orderflow.core.state_machine import OrderStateMachine
from orderflow.leases.memory import InMemoryLeaseBackend
from orderflow.store.base import OrderStore

logger = get_logger(__name__)


class Dispatcher:
    """
    Owns the consumer pool for both channels.

    Consumers share one IdempotencyGuard (and therefore one lease table)
    and one OrderStore; nothing else is shared between them.
    """

    def __init__(
        self,
        broker: MessageBroker,
        store: OrderStore,
        guard: IdempotencyGuard | None = None,
        order_handler: OrderHandler | None = None,
        payment_handler: OrderHandler | None = None,
        config: PipelineConfig | None = None,
        state_machine: OrderStateMachine | None = None,
    ):
        self.broker = broker
        self.store = store
        self.config = config or PipelineConfig()
        self.guard = guard or IdempotencyGuard(
            store, InMemoryLeaseBackend(self.config.lease_timeout_seconds)
        )
        self.order_handler = order_handler
        self.payment_handler = payment_handler
        self.state_machine = state_machine or OrderStateMachine()

        self.consumers: list[QueueConsumer] = []
        self._tasks: list[asyncio.Task] = []
        self._sweeper: asyncio.Task | None = None
        self._stop_requested = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    def _build_consumers(self) -> list[QueueConsumer]:
        consumers: list[QueueConsumer] = [
            OrderConsumer(
                self.broker,
                self.store,
                self.guard,
                handler=self.order_handler,
                config=self.config,
                state_machine=self.state_machine,
                consumer_id=f"order-{i}",
            )
            for i in range(self.config.order_workers)
        ]
        consumers.extend(
            PaymentConsumer(
                self.broker,
                self.store,
                self.guard,
                handler=self.payment_handler,
                config=self.config,
                state_machine=self.state_machine,
                consumer_id=f"payment-{i}",
            )
            for i in range(self.config.payment_workers)
        )
        return consumers

    async def start(self) -> None:
        """Spawn the consumer pool and the lease sweeper."""
        if self._tasks:
            msg = "Dispatcher already started"
            raise RuntimeError(msg)

        self._stop_requested.clear()
        self.consumers = self._build_consumers()
        for consumer in self.consumers:
            consumer.prepare()
        self._tasks = [
            asyncio.create_task(consumer.run(), name=consumer.consumer_id)
            for consumer in self.consumers
        ]
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="lease-sweeper")

        logger.info(
            f"Dispatcher started: {self.config.order_workers} order consumers, "
            f"{self.config.payment_workers} payment consumers"
        )

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval_seconds)
            try:
                await self.guard.sweep()
            except Exception as e:
                logger.error(f"Lease sweep failed: {e}")

    async def drain(self, timeout: float | None = None) -> bool:
        """
        Stop pulling new deliveries and wait for in-flight ones to settle.

        Args:
            timeout: Seconds to wait before cancelling (config.drain_timeout_seconds)

        Returns:
            True if every consumer finished on its own
        """
        if not self._tasks:
            return True

        timeout = self.config.drain_timeout_seconds if timeout is None else timeout
        logger.info(f"Draining {len(self._tasks)} consumers (timeout {timeout}s)")

        for consumer in self.consumers:
            await consumer.stop()

        _, pending = await asyncio.wait(self._tasks, timeout=timeout)

        for task in pending:
            logger.warning(f"Consumer {task.get_name()} did not drain in time, cancelling")
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

        if self._sweeper is not None:
            self._sweeper.cancel()
            await asyncio.gather(self._sweeper, return_exceptions=True)
            self._sweeper = None

        self._tasks = []
        logger.info("Dispatcher drained")
        return not pending

    async def stop(self) -> bool:
        """Drain with the configured timeout."""
        return await self.drain()

    def request_stop(self) -> None:
        """Ask run_forever() to drain and return."""
        self._stop_requested.set()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:  # pragma: no cover
                pass  # Windows doesn't support add_signal_handler

    def _handle_shutdown(self) -> None:
        logger.info("Shutdown signal received, draining")
        self.request_stop()

    async def run_forever(self) -> None:
        """Run until request_stop() or a shutdown signal, then drain."""
        await self.start()
        self._setup_signal_handlers()
        try:
            await self._stop_requested.wait()
        finally:
            await self.drain()

    def get_stats(self) -> dict:
        consumers = [consumer.get_stats() for consumer in self.consumers]
        totals: dict[str, int] = {}
        for stats in consumers:
            for key, value in stats.items():
                if isinstance(value, int) and not isinstance(value, bool):
                    totals[key] = totals.get(key, 0) + value
        return {"running": self.is_running, "totals": totals, "consumers": consumers}
