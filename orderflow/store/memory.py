"""
In-memory order store for development and testing.

State is lost on process restart.
"""

import asyncio
from dataclasses import replace
from datetime import UTC, datetime

from orderflow.core.exceptions import OrderNotFoundError, VersionConflictError
from orderflow.core.types import Order, OrderStatus
from orderflow.store.base import OrderStore


class InMemoryOrderStore(OrderStore):
    """
    Dictionary-backed order store.

    All reads return copies so callers cannot mutate stored state.
    """

    def __init__(self):
        self._orders: dict[str, Order] = {}
        self._lock = asyncio.Lock()
        self.writes = 0

    async def get(self, order_id: str) -> Order | None:
        async with self._lock:
            order = self._orders.get(order_id)
            return replace(order) if order else None

    async def create(self, order_id: str) -> Order:
        async with self._lock:
            existing = self._orders.get(order_id)
            if existing is not None:
                raise VersionConflictError(order_id, None, existing.version)

            order = Order(order_id=order_id)
            self._orders[order_id] = order
            self.writes += 1
            return replace(order)

    async def compare_and_set(
        self,
        order_id: str,
        expected_version: int,
        new_status: OrderStatus,
        new_version: int,
        last_error: str | None = None,
    ) -> Order:
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            if order.version != expected_version:
                raise VersionConflictError(order_id, expected_version, order.version)

            order.status = new_status
            order.version = new_version
            if new_status is OrderStatus.FAILED:
                order.last_error = last_error
            order.updated_at = datetime.now(UTC)
            self.writes += 1
            return replace(order)

    async def put(self, order: Order) -> None:
        """Seed an order directly (for testing)."""
        async with self._lock:
            self._orders[order.order_id] = replace(order)

    def clear(self) -> None:
        """Remove all orders (for testing)."""
        self._orders.clear()
        self.writes = 0
