"""
Collaborator contracts for the order engine.

The engine talks to the catalog, the promo code store, the order store and the
cache only through these protocols. The SQLAlchemy repositories implement them
for production; tests substitute in-memory fakes.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Optional, Protocol, TypeVar

from storefront.core.exceptions import StoreUnavailableError
from storefront.core.logging import get_logger
from storefront.database.models import Order, Product, PromoCode
from storefront.services.orders.enums import OrderStatus, PaymentStatus

logger = get_logger(__name__)

T = TypeVar("T")

SORTABLE_ORDER_FIELDS = frozenset({"created_at", "final_amount", "order_number", "status"})


@dataclass(frozen=True)
class OrderListFilters:
    """Filters and paging for order listings."""

    buyer_id: Optional[uuid.UUID] = None
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    search: Optional[str] = None
    page: int = 1
    limit: int = 10
    sort_by: str = "created_at"
    sort_order: str = "desc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def cache_fragment(self) -> str:
        """Stable string identifying this filter combination in cache keys."""
        parts = [
            f"status={self.status.value if self.status else ''}",
            f"payment={self.payment_status.value if self.payment_status else ''}",
            f"from={self.start_date.isoformat() if self.start_date else ''}",
            f"to={self.end_date.isoformat() if self.end_date else ''}",
            f"q={self.search or ''}",
            f"page={self.page}",
            f"limit={self.limit}",
            f"sort={self.sort_by}:{self.sort_order}",
        ]
        return "|".join(parts)


class CatalogStore(Protocol):
    async def get_product(self, product_id: uuid.UUID) -> Optional[Product]:
        """Live product, including soft-deleted and blocked ones."""
        ...

    async def apply_stock_delta(self, product_id: uuid.UUID, delta: int) -> bool:
        """
        Atomically add ``delta`` to a product's stock.

        A negative delta only applies when the product is orderable and has at
        least ``-delta`` units; the return value says whether it applied.
        ``is_in_stock`` is recomputed in the same step.
        """
        ...


class PromoCodeStore(Protocol):
    async def find_active_promo_code(self, code: str) -> Optional[PromoCode]:
        """Case-insensitive lookup excluding soft-deleted codes."""
        ...

    async def increment_usage(self, promo_code_id: uuid.UUID) -> bool:
        """Redeem once if the usage limit allows it, in one atomic step."""
        ...

    async def release_usage(self, promo_code_id: uuid.UUID) -> None:
        """Undo one redemption."""
        ...


class OrderStore(Protocol):
    async def order_number_exists(self, order_number: str) -> bool:
        ...

    async def add_order(self, order: Order) -> Order:
        """
        Insert a new order with its items and history.

        Raises:
            DuplicateOrderNumberError: If the order number is already taken
        """
        ...

    async def get_order(
        self,
        order_id: uuid.UUID,
        for_update: bool = False,
        include_deleted: bool = False,
    ) -> Optional[Order]:
        ...

    async def list_orders(self, filters: OrderListFilters) -> tuple[list[Order], int]:
        """Page of orders plus the total count matching the filters."""
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


class CacheInvalidator(Protocol):
    async def invalidate(self, pattern: str) -> None:
        """Best-effort; implementations never raise."""
        ...


class ListingCache(CacheInvalidator, Protocol):
    """Read-through cache for rendered order listings. Misses on any failure."""

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        ...


async def bounded(awaitable: Awaitable[T], operation: str, timeout: float, **context: Any) -> T:
    """
    Await a store call with an upper time bound.

    Raises:
        StoreUnavailableError: If the call does not finish within ``timeout``
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning(
            "Store call timed out",
            operation=operation,
            timeout_seconds=timeout,
            **context,
        )
        raise StoreUnavailableError(
            f"{operation} timed out after {timeout}s",
            operation=operation,
            **context,
        ) from e


async def run_shielded(awaitable: Awaitable[T]) -> T:
    """
    Run ``awaitable`` to completion even if the caller is cancelled meanwhile.

    Cancellation requests that arrive while the work is in flight are held
    back and re-raised as ``CancelledError`` once it has finished.
    """
    task = asyncio.ensure_future(awaitable)
    cancelled = False
    while True:
        try:
            result = await asyncio.shield(task)
            break
        except asyncio.CancelledError:
            if task.done():
                raise
            cancelled = True

    if cancelled:
        raise asyncio.CancelledError()
    return result
