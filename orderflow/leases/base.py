"""
Lease backends - keyed, expiring claims on order ids.

A lease grants one consumer exclusive processing rights over one order.
Leases are never persisted; after a crash the broker redelivers and the
order store's status decides what happens next.
"""

import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class ProcessingLease:
    """
    Exclusive, expiring claim on an order id.

    Attributes:
        order_id: Order the lease covers
        timeout_seconds: Age after which the lease counts as abandoned
        token: Random token identifying this particular holder
        acquired_at: time.monotonic() when the lease was granted
        reclaimed: True if the lease took over an abandoned one
    """

    order_id: str
    timeout_seconds: float
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: float = field(default_factory=time.monotonic)
    reclaimed: bool = False

    @property
    def expires_at(self) -> float:
        return self.acquired_at + self.timeout_seconds

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.monotonic()) >= self.expires_at


class LeaseBackend(ABC):
    """
    Abstract base class for lease backends.

    The in-memory backend covers a single process; RedisLeaseBackend covers
    a pool spread over several processes.
    """

    def __init__(self, lease_timeout_seconds: float = 300.0):
        self.lease_timeout_seconds = lease_timeout_seconds

    @abstractmethod
    async def try_acquire(self, order_id: str) -> ProcessingLease | None:
        """Grant a lease, or return None if a live lease already exists."""

    @abstractmethod
    async def release(self, lease: ProcessingLease) -> bool:
        """
        Release a lease.

        Returns:
            False if the lease had already expired and been reclaimed
        """

    @abstractmethod
    async def sweep_expired(self) -> int:
        """Force-release abandoned leases. Returns how many were reclaimed."""

    @abstractmethod
    async def active_count(self) -> int:
        """Number of live leases known to this backend."""
