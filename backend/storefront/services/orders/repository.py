"""
SQLAlchemy data access for orders, products, promo codes and users.

Stock and promo usage counters only change through single conditional UPDATE
statements, so concurrent requests never lose updates. Order inserts run in a
savepoint so a duplicate order number can be retried without discarding the
rest of the request's transaction. Driver failures surface as
StoreUnavailableError.
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import String, cast, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from storefront.core.exceptions import (
    ConsistencyError,
    DuplicateOrderNumberError,
    StoreUnavailableError,
)
from storefront.core.logging import get_logger
from storefront.database.models import Order, Product, PromoCode, User
from storefront.services.orders.promo_codes import normalize_code
from storefront.services.orders.stores import SORTABLE_ORDER_FIELDS, OrderListFilters

logger = get_logger(__name__)


@asynccontextmanager
async def store_errors(operation: str, **context: Any) -> AsyncIterator[None]:
    """Translate SQLAlchemy failures into StoreUnavailableError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(
            "Database operation failed",
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
            **context,
        )
        raise StoreUnavailableError(
            f"Database operation failed: {operation}",
            operation=operation,
            **context,
        ) from e


class ProductRepository:
    """Catalog access used by the inventory ledger."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_product(self, product_id: uuid.UUID) -> Optional[Product]:
        async with store_errors("get_product", product_id=str(product_id)):
            # Stock is changed by bulk UPDATEs, so never trust the identity map
            return await self.session.get(Product, product_id, populate_existing=True)

    async def apply_stock_delta(self, product_id: uuid.UUID, delta: int) -> bool:
        new_stock = Product.stock + delta
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(stock=new_stock, is_in_stock=new_stock > 0)
            .execution_options(synchronize_session=False)
        )
        if delta < 0:
            stmt = stmt.where(
                Product.deleted_at.is_(None),
                Product.is_blocked.is_(False),
                Product.stock >= -delta,
            )

        async with store_errors("apply_stock_delta", product_id=str(product_id), delta=delta):
            result = await self.session.execute(stmt)

        applied = result.rowcount == 1
        logger.debug(
            "Stock delta applied" if applied else "Stock delta refused",
            product_id=str(product_id),
            delta=delta,
        )
        return applied


class PromoCodeRepository:
    """Promo code lookup and atomic usage counting."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_active_promo_code(self, code: str) -> Optional[PromoCode]:
        stmt = (
            select(PromoCode)
            .where(
                func.upper(PromoCode.code) == normalize_code(code),
                PromoCode.deleted_at.is_(None),
            )
            .execution_options(populate_existing=True)
        )
        async with store_errors("find_active_promo_code", promo_code=code):
            result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def increment_usage(self, promo_code_id: uuid.UUID) -> bool:
        stmt = (
            update(PromoCode)
            .where(
                PromoCode.id == promo_code_id,
                PromoCode.deleted_at.is_(None),
                PromoCode.is_active.is_(True),
                or_(
                    PromoCode.usage_limit.is_(None),
                    PromoCode.usage_count < PromoCode.usage_limit,
                ),
            )
            .values(usage_count=PromoCode.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        async with store_errors("increment_promo_usage", promo_code_id=str(promo_code_id)):
            result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def release_usage(self, promo_code_id: uuid.UUID) -> None:
        stmt = (
            update(PromoCode)
            .where(PromoCode.id == promo_code_id, PromoCode.usage_count > 0)
            .values(usage_count=PromoCode.usage_count - 1)
            .execution_options(synchronize_session=False)
        )
        async with store_errors("release_promo_usage", promo_code_id=str(promo_code_id)):
            await self.session.execute(stmt)


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        async with store_errors("get_user", user_id=str(user_id)):
            return await self.session.get(User, user_id)


class OrderRepository:
    """
    Repository for order persistence and queries.

    Soft-deleted orders are excluded from listings and lookups unless asked
    for explicitly.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def order_number_exists(self, order_number: str) -> bool:
        stmt = select(Order.id).where(Order.order_number == order_number).limit(1)
        async with store_errors("order_number_exists", order_number=order_number):
            result = await self.session.execute(stmt)
        return result.first() is not None

    async def add_order(self, order: Order) -> Order:
        """
        Insert an order with its items and history inside a savepoint.

        Raises:
            DuplicateOrderNumberError: If the order number is already taken
            ConsistencyError: If another integrity constraint rejects the order
        """
        try:
            async with self.session.begin_nested():
                self.session.add(order)
                await self.session.flush()
        except IntegrityError as e:
            if "uq_orders_order_number" in str(e.orig):
                logger.warning("Order number collision on insert", order_number=order.order_number)
                raise DuplicateOrderNumberError(order.order_number) from e
            logger.error(
                "Order insert violated an integrity constraint",
                order_number=order.order_number,
                error=str(e.orig),
            )
            raise ConsistencyError(
                "Order could not be stored",
                code="ORDER_INTEGRITY_VIOLATION",
                order_number=order.order_number,
            ) from e
        except SQLAlchemyError as e:
            logger.error(
                "Order insert failed",
                order_number=order.order_number,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StoreUnavailableError(
                "Database operation failed: add_order",
                operation="add_order",
                order_number=order.order_number,
            ) from e

        logger.info(
            "Order stored",
            order_id=str(order.id),
            order_number=order.order_number,
            item_count=len(order.items),
        )
        return order

    async def get_order(
        self,
        order_id: uuid.UUID,
        for_update: bool = False,
        include_deleted: bool = False,
    ) -> Optional[Order]:
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .options(selectinload(Order.items), selectinload(Order.status_history))
            .execution_options(populate_existing=True)
        )
        if not include_deleted:
            stmt = stmt.where(Order.deleted_at.is_(None))
        if for_update:
            stmt = stmt.with_for_update(of=Order)

        async with store_errors("get_order", order_id=str(order_id)):
            result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_orders(self, filters: OrderListFilters) -> tuple[list[Order], int]:
        conditions = [Order.deleted_at.is_(None)]
        if filters.buyer_id is not None:
            conditions.append(Order.buyer_id == filters.buyer_id)
        if filters.status is not None:
            conditions.append(Order.status == filters.status)
        if filters.payment_status is not None:
            conditions.append(Order.payment_status == filters.payment_status)
        if filters.start_date is not None:
            conditions.append(Order.created_at >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(Order.created_at <= filters.end_date)
        if filters.search:
            conditions.append(
                or_(
                    Order.order_number.ilike(f"%{filters.search}%"),
                    cast(Order.buyer_id, String) == filters.search,
                )
            )

        sort_field = filters.sort_by if filters.sort_by in SORTABLE_ORDER_FIELDS else "created_at"
        sort_column = getattr(Order, sort_field)
        ordering = sort_column.asc() if filters.sort_order == "asc" else sort_column.desc()

        stmt = (
            select(Order)
            .where(*conditions)
            .options(selectinload(Order.items), selectinload(Order.status_history))
            .order_by(ordering)
            .offset(filters.offset)
            .limit(filters.limit)
        )
        count_stmt = select(func.count()).select_from(Order).where(*conditions)

        async with store_errors("list_orders"):
            result = await self.session.execute(stmt)
            count_result = await self.session.execute(count_stmt)

        orders = list(result.scalars().all())
        total = count_result.scalar_one()

        logger.debug("Orders listed", count=len(orders), total=total, page=filters.page)
        return orders, total

    async def commit(self) -> None:
        async with store_errors("commit"):
            await self.session.commit()

    async def rollback(self) -> None:
        async with store_errors("rollback"):
            await self.session.rollback()
