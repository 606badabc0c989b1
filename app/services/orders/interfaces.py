"""
Interfaces/Protocols for order services (Dependency Inversion Principle).

These protocols define contracts that services must implement,
allowing for loose coupling and easy testing.
"""

from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Protocol

from app.domain.models import ReplaceResult, StoredOrder, SyncOptions, SyncResult


class IOrderStore(Protocol):
    """Protocol for the keyed order document store."""

    name: str

    async def find_one(self, order_id: int) -> StoredOrder | None:
        """Fresh read of one order; None when it does not exist."""
        ...

    async def find_by_waybill(self, waybill: str) -> StoredOrder | None:
        """Read the order carrying ``waybill``; None when no order has it."""
        ...

    async def insert_one(self, document: dict[str, Any]) -> Any:
        """Insert a new order, return its storage id. Conflicts if the order exists."""
        ...

    async def replace_one(
        self, storage_id: Any, document: dict[str, Any], expected_revision: int | None = None
    ) -> ReplaceResult:
        """Replace the whole document, conditioned on the revision that was read."""
        ...

    async def find_many(
        self,
        status: str | None = None,
        skip: int = 0,
        limit: int = 10,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Newest-first page of documents, optionally filtered by order status and created_at bounds."""
        ...

    async def count(self, status: str | None = None, start: datetime | None = None, end: datetime | None = None) -> int:
        """Number of stored orders, with the same filters as find_many."""
        ...

    async def status_breakdown(self) -> dict[str, int]:
        """Order count per order status."""
        ...

    async def health_check(self) -> dict[str, Any]:
        """Connectivity information for health endpoints."""
        ...


class IOrderLockFactory(Protocol):
    """Protocol for per-order mutual exclusion."""

    def __call__(self, order_id: int) -> AbstractAsyncContextManager[Any]:
        """Return an async context manager holding the lock for ``order_id``."""
        ...


class IOrderSynchronizer(Protocol):
    """Protocol for the order state synchronizer."""

    async def sync(
        self,
        order_id: Any,
        desired_state: dict[str, Any],
        source: str,
        options: SyncOptions | None = None,
    ) -> SyncResult:
        """Reconcile a partial order against the stored document."""
        ...
