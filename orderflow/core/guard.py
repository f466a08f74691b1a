"""
Idempotency Guard - at most one in-flight attempt per order.

Usage:
    >>> guard = IdempotencyGuard(store, InMemoryLeaseBackend(lease_timeout_seconds=60))
    >>>
    >>> result = await guard.acquire("O1")      # may raise AlreadyInFlightError
    >>> if result.already_terminal:
    ...     ...                                  # acknowledge, nothing to do
    >>> try:
    ...     ...                                  # process under the lease
    ... finally:
    ...     await guard.release(result.lease)
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from orderflow.core.exceptions import AlreadyInFlightError
from orderflow.core.logger import get_logger
from orderflow.core.types import OrderStatus
from orderflow.leases.base import LeaseBackend, ProcessingLease
from orderflow.monitoring.prometheus import ACTIVE_LEASES, LEASES_RECLAIMED
from orderflow.store.base import OrderStore

logger = get_logger(__name__)


@dataclass
class AcquireResult:
    """
    Outcome of IdempotencyGuard.acquire.

    Exactly one of the two holds: ``lease`` is set, or the order was
    already terminal and no lease was taken.
    """

    lease: ProcessingLease | None
    status: OrderStatus | None = None

    @property
    def already_terminal(self) -> bool:
        return self.lease is None and self.status is not None and self.status.is_terminal


class IdempotencyGuard:
    """
    Serializes handling of a single order across all consumers.

    Terminal orders short-circuit before any lease is taken. Consumers must
    still re-read the order after acquiring, since it may have moved on
    between this check and the lease grant.
    """

    def __init__(self, store: OrderStore, leases: LeaseBackend):
        self.store = store
        self.leases = leases

    async def acquire(self, order_id: str) -> AcquireResult:
        """
        Claim exclusive processing rights over an order.

        Raises:
            AlreadyInFlightError: If another consumer holds a live lease
        """
        order = await self.store.get(order_id)
        status = order.status if order else None

        if status is not None and status.is_terminal:
            logger.debug(f"Order {order_id} already {status.value}, no lease taken")
            return AcquireResult(lease=None, status=status)

        lease = await self.leases.try_acquire(order_id)
        if lease is None:
            raise AlreadyInFlightError(order_id)

        if lease.reclaimed:
            LEASES_RECLAIMED.inc()
        ACTIVE_LEASES.inc()
        return AcquireResult(lease=lease, status=status)

    async def release(self, lease: ProcessingLease | None) -> None:
        if lease is None:
            return

        ACTIVE_LEASES.dec()
        if not await self.leases.release(lease):
            logger.warning(
                f"Lease on order {lease.order_id} was reclaimed before release "
                f"(timeout {lease.timeout_seconds}s)"
            )

    @asynccontextmanager
    async def lease(self, order_id: str) -> AsyncIterator[AcquireResult]:
        """Acquire for the duration of a block."""
        result = await self.acquire(order_id)
        try:
            yield result
        finally:
            await self.release(result.lease)

    async def sweep(self) -> int:
        """Force-release abandoned leases."""
        reclaimed = await self.leases.sweep_expired()
        if reclaimed:
            LEASES_RECLAIMED.inc(reclaimed)
        return reclaimed
