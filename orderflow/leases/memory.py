"""
In-process lease backend.
"""

import asyncio
import time
from collections.abc import Callable

from orderflow.core.logger import get_logger
from orderflow.leases.base import LeaseBackend, ProcessingLease

logger = get_logger(__name__)


class InMemoryLeaseBackend(LeaseBackend):
    """
    Lease table guarded by a single asyncio.Lock.

    Enough for one process running the whole consumer pool. Abandoned
    leases are reclaimed both by sweep_expired() and lazily when a new
    acquire finds one.
    """

    def __init__(
        self,
        lease_timeout_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(lease_timeout_seconds)
        self._leases: dict[str, ProcessingLease] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def try_acquire(self, order_id: str) -> ProcessingLease | None:
        async with self._lock:
            now = self._clock()
            current = self._leases.get(order_id)

            if current is not None:
                if not current.is_expired(now):
                    return None
                logger.warning(
                    f"Reclaiming abandoned lease on order {order_id} "
                    f"(held {now - current.acquired_at:.1f}s)"
                )

            lease = ProcessingLease(
                order_id=order_id,
                timeout_seconds=self.lease_timeout_seconds,
                acquired_at=now,
                reclaimed=current is not None,
            )
            self._leases[order_id] = lease
            return lease

    async def release(self, lease: ProcessingLease) -> bool:
        async with self._lock:
            current = self._leases.get(lease.order_id)
            if current is None or current.token != lease.token:
                return False
            del self._leases[lease.order_id]
            return True

    async def sweep_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [
                order_id for order_id, lease in self._leases.items() if lease.is_expired(now)
            ]
            for order_id in expired:
                del self._leases[order_id]

        if expired:
            logger.warning(f"Swept {len(expired)} abandoned leases: {', '.join(expired)}")
        return len(expired)

    async def active_count(self) -> int:
        async with self._lock:
            return len(self._leases)

    def holder(self, order_id: str) -> ProcessingLease | None:
        """Current lease on an order (for testing)."""
        return self._leases.get(order_id)
