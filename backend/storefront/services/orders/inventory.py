"""
Inventory ledger: availability checks, stock reservation and release.

Reservation is all-or-nothing across every line of an order. Each product is
decremented with one atomic conditional update; if any line cannot be
reserved, every line already reserved is released before the error reaches
the caller, including when the surrounding task is cancelled.
"""

from typing import Iterable, Sequence

from storefront.core.exceptions import (
    ConsistencyError,
    OutOfStockError,
    ProductNotFoundError,
    ReconciliationRequiredError,
)
from storefront.core.logging import get_logger
from storefront.database.models import OrderItem
from storefront.services.orders.stores import CatalogStore, bounded, run_shielded

logger = get_logger(__name__)


class InventoryLedger:
    """
    Stock bookkeeping for order line items.

    Each line's ``inventory_reserved`` flag records whether it currently
    holds decremented stock. Reserving sets it, releasing clears it, so a
    line is restored at most once per reservation.
    """

    def __init__(self, catalog: CatalogStore, timeout: float = 5.0):
        self.catalog = catalog
        self.timeout = timeout

    async def check_availability(self, items: Iterable[OrderItem]) -> list[str]:
        """
        Names of products that cannot cover their line quantity.

        Deleted and blocked products count as unavailable. Products that do
        not track inventory are only checked for being orderable. Nothing is
        mutated.

        Raises:
            ProductNotFoundError: If a line references an unknown product
        """
        out_of_stock: list[str] = []
        for item in items:
            product = await bounded(
                self.catalog.get_product(item.product_id),
                "get_product",
                self.timeout,
                product_id=str(item.product_id),
            )
            if product is None:
                raise ProductNotFoundError(item.product_id)
            if not product.can_fulfill(item.quantity):
                out_of_stock.append(product.name)
        return out_of_stock

    async def reserve(self, items: Sequence[OrderItem]) -> list[OrderItem]:
        """
        Reserve stock for every line, or for none.

        Returns:
            Lines whose stock was decremented

        Raises:
            OutOfStockError: Lists every unavailable product; nothing remains
                reserved
            ReconciliationRequiredError: Compensation after a partial
                reservation failed
        """
        out_of_stock = await self.check_availability(items)
        if out_of_stock:
            raise OutOfStockError(out_of_stock)

        reserved: list[OrderItem] = []
        try:
            for item in items:
                if not item.track_inventory:
                    continue
                applied = await self._apply_delta(item, -item.quantity, "reserve_stock")
                if not applied:
                    # Lost a race for the last units since the availability check
                    raise OutOfStockError([item.name_snapshot])
                item.inventory_reserved = True
                reserved.append(item)
        except BaseException as e:
            if reserved:
                logger.warning(
                    "Stock reservation failed, releasing reserved lines",
                    reserved_lines=len(reserved),
                    error_type=type(e).__name__,
                )
                await self._compensate(reserved)
            raise

        logger.info(
            "Stock reserved",
            lines=len(reserved),
            units=sum(item.quantity for item in reserved),
        )
        return reserved

    async def release(self, items: Iterable[OrderItem]) -> list[OrderItem]:
        """
        Return stock for every line that currently holds a reservation.

        Lines without a reservation are skipped, so releasing an order twice
        restores its stock only once.

        Raises:
            ConsistencyError: A reserved line's product no longer exists
        """
        released: list[OrderItem] = []
        for item in items:
            if not item.inventory_reserved:
                continue
            applied = await self._apply_delta(item, item.quantity, "release_stock")
            if not applied:
                raise ConsistencyError(
                    "Stock release found no matching product",
                    code="RELEASE_WITHOUT_RESERVE",
                    product_id=str(item.product_id),
                    quantity=item.quantity,
                )
            item.inventory_reserved = False
            released.append(item)

        if released:
            logger.info(
                "Stock released",
                lines=len(released),
                units=sum(item.quantity for item in released),
            )
        return released

    async def _compensate(self, reserved: list[OrderItem]) -> None:
        try:
            await run_shielded(self.release(reserved))
        except Exception as e:
            logger.critical(
                "Stock compensation failed, manual reconciliation required",
                product_ids=[str(item.product_id) for item in reserved if item.inventory_reserved],
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ReconciliationRequiredError(
                "Failed to release reserved stock after a failed reservation",
                product_ids=[str(item.product_id) for item in reserved if item.inventory_reserved],
            ) from e

    async def _apply_delta(self, item: OrderItem, delta: int, operation: str) -> bool:
        return await bounded(
            self.catalog.apply_stock_delta(item.product_id, delta),
            operation,
            self.timeout,
            product_id=str(item.product_id),
            delta=delta,
        )
