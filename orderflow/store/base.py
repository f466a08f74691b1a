"""
Order Store - Abstract interface for durable order records.

Writes are optimistic: every update names the version it read, and the store
rejects it if another writer got there first.
"""

from abc import ABC, abstractmethod

from orderflow.core.exceptions import (
    OrderNotFoundError,
    OrderStoreError,
    StoreUnavailableError,
    VersionConflictError,
)
from orderflow.core.types import Order, OrderStatus

__all__ = [
    "OrderNotFoundError",
    "OrderStore",
    "OrderStoreError",
    "StoreUnavailableError",
    "VersionConflictError",
]


class OrderStore(ABC):
    """
    Abstract base class for order storage backends.

    Implementations must make compare_and_set atomic with respect to other
    writers of the same order.
    """

    @abstractmethod
    async def get(self, order_id: str) -> Order | None:
        """Load an order, or None if it does not exist."""

    @abstractmethod
    async def create(self, order_id: str) -> Order:
        """
        Insert a new PENDING order at version 1.

        Raises:
            VersionConflictError: If the order already exists
        """

    @abstractmethod
    async def compare_and_set(
        self,
        order_id: str,
        expected_version: int,
        new_status: OrderStatus,
        new_version: int,
        last_error: str | None = None,
    ) -> Order:
        """
        Write a transition if the persisted version still equals expected_version.

        Args:
            order_id: Order to update
            expected_version: Version read before the transition was computed
            new_status: Status to persist
            new_version: Version to persist (normally expected_version + 1)
            last_error: Terminal error, only stored when new_status is FAILED

        Returns:
            The updated order

        Raises:
            OrderNotFoundError: If the order does not exist
            VersionConflictError: If the persisted version differs
        """

    async def initialize(self) -> None:  # noqa: B027
        """Prepare connections (no-op by default)."""

    async def close(self) -> None:  # noqa: B027
        """Release connections (no-op by default)."""

    async def health_check(self) -> bool:
        return True

    async def __aenter__(self) -> "OrderStore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
