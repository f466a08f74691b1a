"""
Lease backends for the idempotency guard.

    - InMemoryLeaseBackend: single process
    - RedisLeaseBackend: several processes sharing one Redis (requires redis)
"""

from orderflow.leases.base import LeaseBackend, ProcessingLease
from orderflow.leases.memory import InMemoryLeaseBackend


def RedisLeaseBackend(*args, **kwargs):
    """Redis lease backend (requires redis)."""
    from orderflow.leases.redis import RedisLeaseBackend as _Impl

    return _Impl(*args, **kwargs)


__all__ = [
    "InMemoryLeaseBackend",
    "LeaseBackend",
    "ProcessingLease",
    "RedisLeaseBackend",
]
