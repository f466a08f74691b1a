"""
Pytest configuration and shared fixtures for order pipeline tests
"""

import pytest
import pytest_asyncio

from orderflow.brokers.memory import InMemoryBroker
from orderflow.core.config import PipelineConfig
from orderflow.core.guard import IdempotencyGuard
from orderflow.core.types import QueueMessage, QueueType
from orderflow.leases.memory import InMemoryLeaseBackend
from orderflow.store.memory import InMemoryOrderStore


class FakeClock:
    """Manually advanced replacement for time.monotonic."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fast_config():
    """Config with zero backoff and short polls so tests never wait on timers."""
    return PipelineConfig(
        order_workers=2,
        payment_workers=2,
        poll_interval_seconds=0.05,
        in_flight_delay_seconds=0.0,
        lease_timeout_seconds=30.0,
        sweep_interval_seconds=0.05,
        drain_timeout_seconds=2.0,
        max_attempts=5,
        backoff_base_seconds=0.0,
        backoff_multiplier=2.0,
        backoff_max_seconds=0.0,
    )


@pytest.fixture
def store():
    return InMemoryOrderStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def leases(clock):
    return InMemoryLeaseBackend(lease_timeout_seconds=30.0, clock=clock)


@pytest.fixture
def guard(store, leases):
    return IdempotencyGuard(store, leases)


@pytest_asyncio.fixture
async def broker():
    broker = InMemoryBroker()
    await broker.connect()
    yield broker
    await broker.close()


def _order_message(order_id: str, attempt_count: int = 1, **payload) -> QueueMessage:
    return QueueMessage(
        order_id=order_id,
        queue_type=QueueType.ORDER_QUEUE,
        payload=payload,
        attempt_count=attempt_count,
    )


def _payment_message(
    order_id: str, status: str = "confirmed", attempt_count: int = 1, **payload
) -> QueueMessage:
    return QueueMessage(
        order_id=order_id,
        queue_type=QueueType.PAYMENT_QUEUE,
        payload={"status": status, **payload},
        attempt_count=attempt_count,
    )


@pytest.fixture
def order_message():
    """Factory for order queue messages."""
    return _order_message


@pytest.fixture
def payment_message():
    """Factory for payment queue messages; status defaults to confirmed."""
    return _payment_message
