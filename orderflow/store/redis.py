"""
Redis order store.

Each order is one hash. Compare-and-set uses WATCH/MULTI so a concurrent
writer invalidates the transaction instead of being overwritten.

Requires: pip install redis
"""

from datetime import UTC, datetime
from typing import Any

from orderflow.core.exceptions import (
    MissingDependencyError,
    OrderNotFoundError,
    StoreUnavailableError,
    VersionConflictError,
)
from orderflow.core.logger import get_logger
from orderflow.core.types import Order, OrderStatus
from orderflow.store.base import OrderStore

try:
    import redis.asyncio as redis
    from redis.exceptions import ConnectionError as RedisConnectionError
    from redis.exceptions import TimeoutError as RedisTimeoutError
    from redis.exceptions import WatchError

    REDIS_AVAILABLE = True
except ImportError:  # pragma: no cover
    REDIS_AVAILABLE = False
    redis: Any = None  # type: ignore[no-redef]


logger = get_logger(__name__)


class RedisOrderStore(OrderStore):
    """
    Redis implementation of the order store.

    Example:
        >>> async with RedisOrderStore("redis://localhost:6379") as store:
        ...     order = await store.create("O1")
        ...     await store.compare_and_set("O1", 1, OrderStatus.PROCESSING, 2)
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "orderflow:order:",
        client: Any = None,
        **redis_kwargs,
    ):
        if not REDIS_AVAILABLE:
            msg = "redis"
            raise MissingDependencyError(msg, "Redis order store")

        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.redis_kwargs = redis_kwargs
        self._redis = client

    @classmethod
    def from_env(cls) -> "RedisOrderStore":
        import os

        return cls(
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            key_prefix=os.getenv("ORDERFLOW_REDIS_PREFIX", "orderflow:order:"),
        )

    async def initialize(self) -> None:
        await self._get_redis()

    async def _get_redis(self):
        """Get Redis connection, creating if necessary"""
        if self._redis is None:
            try:
                self._redis = redis.from_url(
                    self.redis_url, decode_responses=True, **self.redis_kwargs
                )
                await self._redis.ping()
            except (RedisConnectionError, RedisTimeoutError, OSError) as e:
                self._redis = None
                msg = f"Failed to connect to Redis: {e}"
                raise StoreUnavailableError(msg) from e

        return self._redis

    def _order_key(self, order_id: str) -> str:
        return f"{self.key_prefix}{order_id}"

    @staticmethod
    def _decode(data: dict[str, Any]) -> Order | None:
        if not data:
            return None
        return Order.from_dict(data)

    @staticmethod
    def _encode(order: Order) -> dict[str, str]:
        encoded = order.to_dict()
        encoded["version"] = str(order.version)
        encoded["last_error"] = order.last_error or ""
        return encoded

    async def get(self, order_id: str) -> Order | None:
        client = await self._get_redis()
        try:
            data = await client.hgetall(self._order_key(order_id))
        except (RedisConnectionError, RedisTimeoutError) as e:
            msg = f"Redis read failed for order {order_id}: {e}"
            raise StoreUnavailableError(msg) from e
        return self._decode(data)

    async def create(self, order_id: str) -> Order:
        client = await self._get_redis()
        key = self._order_key(order_id)
        order = Order(order_id=order_id)

        try:
            async with client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                existing = self._decode(await pipe.hgetall(key))
                if existing is not None:
                    raise VersionConflictError(order_id, None, existing.version)

                pipe.multi()
                pipe.hset(key, mapping=self._encode(order))
                await pipe.execute()
        except WatchError as e:
            raise VersionConflictError(order_id, None, None) from e
        except (RedisConnectionError, RedisTimeoutError) as e:
            msg = f"Redis write failed for order {order_id}: {e}"
            raise StoreUnavailableError(msg) from e

        logger.debug(f"Created order {order_id}")
        return order

    async def compare_and_set(
        self,
        order_id: str,
        expected_version: int,
        new_status: OrderStatus,
        new_version: int,
        last_error: str | None = None,
    ) -> Order:
        client = await self._get_redis()
        key = self._order_key(order_id)

        try:
            async with client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                order = self._decode(await pipe.hgetall(key))
                if order is None:
                    raise OrderNotFoundError(order_id)
                if order.version != expected_version:
                    raise VersionConflictError(order_id, expected_version, order.version)

                order.status = new_status
                order.version = new_version
                if new_status is OrderStatus.FAILED:
                    order.last_error = last_error
                order.updated_at = datetime.now(UTC)

                pipe.multi()
                pipe.hset(key, mapping=self._encode(order))
                await pipe.execute()
        except WatchError as e:
            raise VersionConflictError(order_id, expected_version, None) from e
        except (RedisConnectionError, RedisTimeoutError) as e:
            msg = f"Redis write failed for order {order_id}: {e}"
            raise StoreUnavailableError(msg) from e

        return order

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def health_check(self) -> bool:
        try:
            client = await self._get_redis()
            return bool(await client.ping())
        except (StoreUnavailableError, RedisConnectionError, RedisTimeoutError):
            return False
