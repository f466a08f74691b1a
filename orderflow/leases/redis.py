"""
Redis lease backend for consumer pools spread over several processes.

Each lease is one key set with NX and a PX expiry, holding the holder's token.
Release deletes the key only if the token still matches, so a holder whose
lease already expired cannot free its successor's lease.

Requires: pip install redis
"""

from typing import Any

from orderflow.core.exceptions import MissingDependencyError, StoreUnavailableError
from orderflow.core.logger import get_logger
from orderflow.leases.base import LeaseBackend, ProcessingLease

try:
    import redis.asyncio as redis
    from redis.exceptions import ConnectionError as RedisConnectionError
    from redis.exceptions import TimeoutError as RedisTimeoutError

    REDIS_AVAILABLE = True
except ImportError:  # pragma: no cover
    REDIS_AVAILABLE = False
    redis: Any = None  # type: ignore[no-redef]


logger = get_logger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisLeaseBackend(LeaseBackend):
    """
    Distributed lease table on Redis.

    Expiry is handled by Redis itself, so sweep_expired() has nothing to do.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        lease_timeout_seconds: float = 300.0,
        key_prefix: str = "orderflow:lease:",
        client: Any = None,
    ):
        if not REDIS_AVAILABLE:
            msg = "redis"
            raise MissingDependencyError(msg, "Redis lease backend")

        super().__init__(lease_timeout_seconds)
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self._redis = client

    async def _get_redis(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    def _lease_key(self, order_id: str) -> str:
        return f"{self.key_prefix}{order_id}"

    async def try_acquire(self, order_id: str) -> ProcessingLease | None:
        client = await self._get_redis()
        lease = ProcessingLease(order_id=order_id, timeout_seconds=self.lease_timeout_seconds)

        try:
            acquired = await client.set(
                self._lease_key(order_id),
                lease.token,
                nx=True,
                px=int(self.lease_timeout_seconds * 1000),
            )
        except (RedisConnectionError, RedisTimeoutError) as e:
            msg = f"Lease acquire failed for order {order_id}: {e}"
            raise StoreUnavailableError(msg) from e

        return lease if acquired else None

    async def release(self, lease: ProcessingLease) -> bool:
        client = await self._get_redis()
        try:
            deleted = await client.eval(_RELEASE_SCRIPT, 1, self._lease_key(lease.order_id), lease.token)
        except (RedisConnectionError, RedisTimeoutError) as e:
            # The key still expires on its own.
            logger.error(f"Lease release failed for order {lease.order_id}: {e}")
            return False
        return bool(deleted)

    async def sweep_expired(self) -> int:
        return 0

    async def active_count(self) -> int:
        client = await self._get_redis()
        count = 0
        async for _ in client.scan_iter(match=f"{self.key_prefix}*"):
            count += 1
        return count

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
