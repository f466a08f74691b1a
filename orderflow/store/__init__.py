"""
Order store backends.

Available backends:
    - InMemoryOrderStore: For testing and development
    - RedisOrderStore: Redis hashes with WATCH/MULTI compare-and-set (requires redis)
"""

from orderflow.store.base import (
    OrderNotFoundError,
    OrderStore,
    OrderStoreError,
    StoreUnavailableError,
    VersionConflictError,
)
from orderflow.store.memory import InMemoryOrderStore


def RedisOrderStore(*args, **kwargs):
    """Redis order store (requires redis)."""
    from orderflow.store.redis import RedisOrderStore as _Impl

    return _Impl(*args, **kwargs)


__all__ = [
    "InMemoryOrderStore",
    "OrderNotFoundError",
    "OrderStore",
    "OrderStoreError",
    "RedisOrderStore",
    "StoreUnavailableError",
    "VersionConflictError",
]
