"""
Order service orchestrating placement and lifecycle operations.

Placement runs validate, price, number, reserve, redeem, persist, commit. Once
stock is reserved, any failure (including cancellation of the request task)
releases the reservation and the promo redemption before the error reaches
the caller. Lifecycle operations lock the order row, apply the change through
OrderLifecycle, commit, and only then invalidate cached listings.
"""

import asyncio
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import Settings, get_settings
from storefront.core.exceptions import (
    BuyerNotEligibleError,
    DuplicateOrderNumberError,
    OrderNotFoundError,
    OrderNumberConflictError,
    OrderValidationError,
    OutOfStockError,
    ProductNotFoundError,
    PromoCodeRejectedError,
    ReconciliationRequiredError,
)
from storefront.core.logging import get_logger, log_performance
from storefront.database.base import utc_now
from storefront.database.models import Order, OrderItem, Product, User
from storefront.schemas.orders import (
    OrderListResponse,
    OrderResponse,
    OrderSummaryResponse,
)
from storefront.services.cache.cache_keys import OrderCacheKeys
from storefront.services.orders.enums import (
    CancelledBy,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from storefront.services.orders.inventory import InventoryLedger
from storefront.services.orders.order_numbers import OrderNumberGenerator
from storefront.services.orders.pricing import ZERO, PricingCalculator
from storefront.services.orders.promo_codes import PromoCodeQuote, PromoCodeValidator
from storefront.services.orders.repository import (
    OrderRepository,
    ProductRepository,
    PromoCodeRepository,
)
from storefront.services.orders.state_machine import (
    OrderLifecycle,
    TransitionContext,
    get_order_lifecycle,
)
from storefront.services.orders.stores import (
    CatalogStore,
    ListingCache,
    OrderListFilters,
    OrderStore,
    PromoCodeStore,
    bounded,
    run_shielded,
)

logger = get_logger(__name__)

REQUIRED_ADDRESS_FIELDS = (
    "address_line1",
    "city",
    "state",
    "postal_code",
    "country",
    "contact_name",
    "contact_phone",
)
OPTIONAL_ADDRESS_FIELDS = ("address_line2",)

DEFAULT_CANCEL_REASON = "Customer cancelled"


@dataclass(frozen=True)
class CartLine:
    product_id: uuid.UUID
    quantity: int


class OrderService:
    """
    Business logic for placing orders and driving them through their lifecycle.

    Collaborators default to the SQLAlchemy repositories over ``session``;
    tests pass in-memory stores instead.
    """

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        catalog: Optional[CatalogStore] = None,
        promo_codes: Optional[PromoCodeStore] = None,
        orders: Optional[OrderStore] = None,
        cache: Optional[ListingCache] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        if session is None and None in (catalog, promo_codes, orders):
            raise ValueError("OrderService needs a session or all three stores")

        self.settings = settings or get_settings()
        self.catalog = catalog or ProductRepository(session)
        self.promo_codes = promo_codes or PromoCodeRepository(session)
        self.orders = orders or OrderRepository(session)
        self.cache = cache
        self.clock = clock
        self.timeout = self.settings.store_timeout_seconds

        self.pricing = PricingCalculator.from_settings(self.settings)
        self.promo_validator = PromoCodeValidator()
        self.ledger = InventoryLedger(self.catalog, timeout=self.timeout)
        self.order_numbers = OrderNumberGenerator(
            self.orders,
            max_attempts=self.settings.order_number_max_attempts,
            timeout=self.timeout,
        )
        self.lifecycle: OrderLifecycle = get_order_lifecycle(self.ledger, self.settings, clock)
        self.cache_keys = OrderCacheKeys()

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    async def create_order(
        self,
        buyer: User,
        lines: Sequence[Union[CartLine, dict[str, Any]]],
        shipping_address: dict[str, Any],
        payment_method: Union[PaymentMethod, str],
        promo_code: Optional[str] = None,
        delivery_notes: Optional[str] = None,
        gift_wrap: bool = False,
    ) -> OrderResponse:
        """
        Place an order for ``buyer``.

        Returns:
            The persisted order, status pending, payment pending

        Raises:
            OrderValidationError: Empty cart, bad quantity, incomplete address
                or unsupported payment method
            BuyerNotEligibleError: Buyer is inactive, blocked or deleted
            ProductNotFoundError: A line references an unknown product
            OutOfStockError: Lists every product that cannot be supplied
            PromoCodeNotFoundError: Unknown promo code
            PromoCodeRejectedError: Promo code cannot be applied
            OrderNumberConflictError: No free order number could be stored
            ReconciliationRequiredError: Compensation after a failure failed
            StoreUnavailableError: A store failed or timed out
        """
        cart = self._normalize_cart(lines)
        address = self._validate_address(shipping_address)
        method = self._validate_payment_method(payment_method)
        self._ensure_buyer_eligible(buyer)

        now = self.clock()

        with log_performance(logger, "create_order", buyer_id=str(buyer.id)):
            items = await self._snapshot_items(cart)
            subtotal = self.pricing.compute_subtotal(items)

            quote = None
            if promo_code:
                quote = await self._quote_promo_code(promo_code, subtotal, now)
            discount = min(quote.discount_amount, subtotal) if quote else ZERO

            breakdown = self.pricing.price_order(items, discount)
            order_number = await self.order_numbers.next(now)

            order = Order(
                id=uuid.uuid4(),
                order_number=order_number,
                buyer_id=buyer.id,
                items=items,
                subtotal=breakdown.subtotal,
                shipping_charge=breakdown.shipping_charge,
                tax_rate_percent=breakdown.tax_rate_percent,
                tax_amount=breakdown.tax_amount,
                discount_amount=breakdown.discount_amount,
                final_amount=breakdown.final_amount,
                promo_code_id=quote.snapshot.id if quote else None,
                promo_code_snapshot=quote.snapshot.to_dict() if quote else None,
                status=OrderStatus.PENDING,
                payment_method=method,
                payment_status=PaymentStatus.PENDING,
                payment_details={},
                shipping_address=address,
                delivery_notes=delivery_notes,
                gift_wrap=gift_wrap,
                estimated_delivery=now + timedelta(days=self.settings.estimated_delivery_days),
                created_at=now,
                updated_at=now,
            )
            order.add_history(
                OrderStatus.PENDING,
                note="Order created",
                changed_by=str(buyer.id),
                at=now,
            )

            await self.ledger.reserve(order.items)

            redeemed_promo_id = None
            try:
                if quote is not None:
                    await self._redeem_promo_code(quote)
                    redeemed_promo_id = quote.snapshot.id
                await self._persist_new_order(order)
                await bounded(self.orders.commit(), "commit", self.timeout)
            except BaseException as e:
                await self._compensate_placement(order, redeemed_promo_id, e)
                raise

        logger.info(
            "Order placed",
            order_id=str(order.id),
            order_number=order.order_number,
            buyer_id=str(buyer.id),
            final_amount=str(order.final_amount),
            promo_code=quote.snapshot.code if quote else None,
        )

        await self._invalidate_listings(order)
        return OrderResponse.model_validate(order)

    def _normalize_cart(self, lines: Sequence[Union[CartLine, dict[str, Any]]]) -> list[CartLine]:
        """Validate quantities and merge duplicate product lines, keeping first-seen order."""
        if not lines:
            raise OrderValidationError("Cart is empty", code="EMPTY_CART")

        merged: dict[uuid.UUID, int] = {}
        for position, line in enumerate(lines, start=1):
            if isinstance(line, dict):
                product_id, quantity = line.get("product_id"), line.get("quantity")
            else:
                product_id, quantity = line.product_id, line.quantity

            if product_id is None:
                raise OrderValidationError(
                    "Cart line is missing a product",
                    code="INVALID_CART_LINE",
                    line=position,
                )
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
                raise OrderValidationError(
                    "Quantity must be a positive whole number",
                    code="INVALID_QUANTITY",
                    line=position,
                    product_id=str(product_id),
                    quantity=quantity,
                )
            try:
                product_id = uuid.UUID(str(product_id))
            except ValueError as e:
                raise OrderValidationError(
                    "Cart line has an invalid product id",
                    code="INVALID_CART_LINE",
                    line=position,
                    product_id=str(product_id),
                ) from e
            merged[product_id] = merged.get(product_id, 0) + quantity

        return [CartLine(product_id=pid, quantity=qty) for pid, qty in merged.items()]

    @staticmethod
    def _validate_address(shipping_address: Optional[dict[str, Any]]) -> dict[str, Any]:
        shipping_address = shipping_address or {}
        address: dict[str, Any] = {}
        missing = []

        for name in REQUIRED_ADDRESS_FIELDS:
            value = shipping_address.get(name)
            if not isinstance(value, str) or not value.strip():
                missing.append(name)
            else:
                address[name] = value.strip()

        if missing:
            raise OrderValidationError(
                "Shipping address is incomplete",
                code="INCOMPLETE_ADDRESS",
                missing_fields=missing,
            )

        for name in OPTIONAL_ADDRESS_FIELDS:
            value = shipping_address.get(name)
            if isinstance(value, str) and value.strip():
                address[name] = value.strip()
        return address

    @staticmethod
    def _validate_payment_method(payment_method: Union[PaymentMethod, str]) -> PaymentMethod:
        if isinstance(payment_method, PaymentMethod):
            return payment_method
        try:
            return PaymentMethod.from_string(payment_method or "")
        except ValueError as e:
            raise OrderValidationError(
                str(e),
                code="UNSUPPORTED_PAYMENT_METHOD",
                payment_method=payment_method,
                supported=[m.value for m in PaymentMethod],
            ) from e

    @staticmethod
    def _ensure_buyer_eligible(buyer: User) -> None:
        if not buyer.can_place_orders:
            raise BuyerNotEligibleError(
                "Account is not allowed to place orders",
                user_id=str(buyer.id),
                is_active=buyer.is_active,
                is_blocked=buyer.is_blocked,
                is_deleted=buyer.is_deleted,
            )

    async def _snapshot_items(self, cart: list[CartLine]) -> list[OrderItem]:
        """
        Snapshot price, name and weight of every line from the live catalog.

        Raises:
            ProductNotFoundError: Unknown product id
            OutOfStockError: Every product that is deleted, blocked or short
        """
        items: list[OrderItem] = []
        out_of_stock: list[str] = []

        for position, line in enumerate(cart, start=1):
            product: Optional[Product] = await bounded(
                self.catalog.get_product(line.product_id),
                "get_product",
                self.timeout,
                product_id=str(line.product_id),
            )
            if product is None:
                raise ProductNotFoundError(line.product_id)
            if not product.can_fulfill(line.quantity):
                out_of_stock.append(product.name)
                continue

            unit_price = product.selling_price
            items.append(
                OrderItem(
                    id=uuid.uuid4(),
                    position=position,
                    product_id=product.id,
                    name_snapshot=product.name,
                    sku_snapshot=product.sku,
                    unit_price_snapshot=unit_price,
                    quantity=line.quantity,
                    weight_snapshot=product.weight if product.weight is not None else Decimal("0"),
                    line_subtotal=self.pricing.compute_line_subtotal(unit_price, line.quantity),
                    track_inventory=product.track_inventory,
                    inventory_reserved=False,
                )
            )

        if out_of_stock:
            logger.info("Order rejected, products unavailable", out_of_stock=out_of_stock)
            raise OutOfStockError(out_of_stock)
        return items

    async def _quote_promo_code(self, code: str, subtotal: Decimal, now: datetime) -> PromoCodeQuote:
        promo = await bounded(
            self.promo_codes.find_active_promo_code(code),
            "find_active_promo_code",
            self.timeout,
            promo_code=code,
        )
        return self.promo_validator.validate(promo, subtotal, now, code=code)

    async def _redeem_promo_code(self, quote: PromoCodeQuote) -> None:
        redeemed = await bounded(
            self.promo_codes.increment_usage(quote.snapshot.id),
            "increment_promo_usage",
            self.timeout,
            promo_code=quote.snapshot.code,
        )
        if not redeemed:
            # Another order took the last redemption since validation
            raise PromoCodeRejectedError(
                "Promo code usage limit reached",
                code="PROMO_CODE_EXHAUSTED",
                promo_code=quote.snapshot.code,
            )

    async def _persist_new_order(self, order: Order) -> None:
        attempts = self.settings.order_number_insert_attempts
        for attempt in range(1, attempts + 1):
            try:
                await bounded(
                    self.orders.add_order(order),
                    "add_order",
                    self.timeout,
                    order_number=order.order_number,
                )
                return
            except DuplicateOrderNumberError:
                logger.warning(
                    "Order number taken at insert, regenerating",
                    order_number=order.order_number,
                    attempt=attempt,
                )
                if attempt == attempts:
                    break
                order.order_number = await self.order_numbers.next(self.clock())

        raise OrderNumberConflictError(
            "Could not allocate a unique order number",
            attempts=attempts,
        )

    async def _compensate_placement(
        self,
        order: Order,
        redeemed_promo_id: Optional[uuid.UUID],
        error: BaseException,
    ) -> None:
        """Undo the reservation and redemption of a placement that failed."""
        logger.warning(
            "Order placement failed after reserving stock, compensating",
            order_number=order.order_number,
            error_type=type(error).__name__,
        )
        steps: list[tuple[str, Callable[[], Awaitable[Any]]]] = [
            ("stock", lambda: self.ledger.release(order.items)),
        ]
        if redeemed_promo_id is not None:
            steps.append(
                (
                    "promo usage",
                    lambda: bounded(
                        self.promo_codes.release_usage(redeemed_promo_id),
                        "release_promo_usage",
                        self.timeout,
                    ),
                )
            )

        failures: list[str] = []
        cancelled = False
        try:
            for label, step in steps:
                try:
                    await run_shielded(step())
                except asyncio.CancelledError:
                    # The step ran to completion; cancellation is re-raised below
                    cancelled = True
                except Exception as e:
                    failures.append(f"{label}: {e}")
        finally:
            try:
                await self._rollback()
            except asyncio.CancelledError:
                cancelled = True

        if failures:
            logger.critical(
                "Order placement compensation failed, manual reconciliation required",
                order_number=order.order_number,
                product_ids=[str(item.product_id) for item in order.reserved_items],
                promo_code_id=str(redeemed_promo_id) if redeemed_promo_id else None,
                failures=failures,
            )
            raise ReconciliationRequiredError(
                "Failed to undo a failed order placement",
                order_number=order.order_number,
                product_ids=[str(item.product_id) for item in order.reserved_items],
                promo_code_id=redeemed_promo_id,
            ) from error
        if cancelled and not isinstance(error, asyncio.CancelledError):
            raise asyncio.CancelledError() from error

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_order(self, order_id: uuid.UUID, requester: User) -> OrderResponse:
        """
        Raises:
            OrderNotFoundError: Unknown, deleted, or owned by someone else
        """
        cache_key = self.cache_keys.order_detail_key(order_id)
        response = None
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                response = OrderResponse.model_validate(cached)

        if response is None:
            order = await self._load_order(order_id)
            response = OrderResponse.model_validate(order)
            if self.cache is not None:
                await self.cache.set(
                    cache_key,
                    response.model_dump(mode="json"),
                    self.settings.cache_ttl_order_detail,
                )

        if not requester.is_admin and response.buyer_id != requester.id:
            raise OrderNotFoundError(order_id)
        return response

    async def list_user_orders(
        self,
        buyer: User,
        status: Optional[OrderStatus] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> OrderListResponse:
        filters = OrderListFilters(
            buyer_id=buyer.id,
            status=status,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return await self._list_cached(
            filters,
            self.cache_keys.user_orders_key(buyer.id, filters),
            self.settings.cache_ttl_user_orders,
        )

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> OrderListResponse:
        """Admin listing. ``end_date`` is inclusive of the whole day."""
        filters = OrderListFilters(
            status=status,
            payment_status=payment_status,
            start_date=_start_of_day(start_date),
            end_date=_end_of_day(end_date),
            search=search.strip() if search and search.strip() else None,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return await self._list_cached(
            filters,
            self.cache_keys.admin_orders_key(filters),
            self.settings.cache_ttl_admin_orders,
        )

    async def _list_cached(
        self,
        filters: OrderListFilters,
        cache_key: str,
        ttl: int,
    ) -> OrderListResponse:
        if self.cache is not None:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.debug("Order listing served from cache", cache_key=cache_key)
                return OrderListResponse.model_validate(cached)

        orders, total = await bounded(self.orders.list_orders(filters), "list_orders", self.timeout)
        response = OrderListResponse(
            items=[OrderSummaryResponse.model_validate(order) for order in orders],
            total=total,
            page=filters.page,
            limit=filters.limit,
            total_pages=math.ceil(total / filters.limit) if filters.limit else 0,
        )

        if self.cache is not None:
            await self.cache.set(cache_key, response.model_dump(mode="json"), ttl)
        return response

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def update_order_status(
        self,
        order_id: uuid.UUID,
        target_status: OrderStatus,
        actor: User,
        tracking_id: Optional[str] = None,
        tracking_url: Optional[str] = None,
        delivery_partner: Optional[str] = None,
        note: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> OrderResponse:
        """Admin status change; cancellations here are recorded as by admin."""
        context = TransitionContext(
            actor_id=str(actor.id),
            note=note,
            reason=reason,
            cancelled_by=CancelledBy.ADMIN,
            tracking_id=tracking_id,
            tracking_url=tracking_url,
            delivery_partner=delivery_partner,
        )
        return await self._mutate(
            order_id,
            "update_order_status",
            lambda order: self.lifecycle.transition(order, target_status, context),
        )

    async def cancel_order(
        self,
        order_id: uuid.UUID,
        buyer: User,
        reason: Optional[str] = None,
    ) -> OrderResponse:
        """
        Buyer cancellation of their own pending or processing order.

        Raises:
            OrderNotFoundError: Unknown order or not the buyer's
            StateTransitionError: Order can no longer be cancelled
        """
        reason = reason.strip() if reason and reason.strip() else DEFAULT_CANCEL_REASON
        context = TransitionContext(
            actor_id=str(buyer.id),
            note=f"Cancelled by customer: {reason}",
            reason=reason,
            cancelled_by=CancelledBy.USER,
        )
        return await self._mutate(
            order_id,
            "cancel_order",
            lambda order: self.lifecycle.transition(order, OrderStatus.CANCELLED, context),
            owner_id=buyer.id,
        )

    async def update_payment_status(
        self,
        order_id: uuid.UUID,
        payment_status: PaymentStatus,
        actor: Optional[User] = None,
        transaction_id: Optional[str] = None,
        payment_details: Optional[dict[str, Any]] = None,
    ) -> OrderResponse:
        context = TransitionContext(
            actor_id=str(actor.id) if actor else None,
            transaction_id=transaction_id,
            payment_details=dict(payment_details or {}),
        )
        return await self._mutate(
            order_id,
            "update_payment_status",
            lambda order: self.lifecycle.apply_payment_status(order, payment_status, context),
        )

    async def delete_order(self, order_id: uuid.UUID, actor: User) -> None:
        """Soft delete; the order stays stored for audit and can no longer change."""

        async def soft_delete(order: Order) -> Order:
            order.soft_delete(self.clock())
            return order

        await self._mutate(order_id, "delete_order", soft_delete)
        logger.info("Order deleted", order_id=str(order_id), actor_id=str(actor.id))

    async def _mutate(
        self,
        order_id: uuid.UUID,
        operation: str,
        change: Callable[[Order], Awaitable[Order]],
        owner_id: Optional[uuid.UUID] = None,
    ) -> OrderResponse:
        """Lock the order, apply ``change``, commit, then invalidate caches."""
        try:
            order = await self._load_order(order_id, for_update=True)
            if owner_id is not None and order.buyer_id != owner_id:
                raise OrderNotFoundError(order_id)
            await change(order)
            order.updated_at = self.clock()
            await bounded(
                self.orders.commit(),
                "commit",
                self.timeout,
                order_id=str(order_id),
                action=operation,
            )
        except BaseException:
            await self._rollback()
            raise

        await self._invalidate_listings(order)
        return OrderResponse.model_validate(order)

    async def _load_order(self, order_id: uuid.UUID, for_update: bool = False) -> Order:
        order = await bounded(
            self.orders.get_order(order_id, for_update=for_update),
            "get_order",
            self.timeout,
            order_id=str(order_id),
        )
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def _rollback(self) -> None:
        try:
            await run_shielded(bounded(self.orders.rollback(), "rollback", self.timeout))
        except Exception as e:
            # The original error is already propagating
            logger.error("Rollback failed", error=str(e), error_type=type(e).__name__)

    async def _invalidate_listings(self, order: Order) -> None:
        if self.cache is None:
            return
        for pattern in self._invalidation_patterns(order):
            await self.cache.invalidate(pattern)

    def _invalidation_patterns(self, order: Order) -> Iterable[str]:
        yield self.cache_keys.order_detail_key(order.id)
        yield self.cache_keys.user_orders_pattern(order.buyer_id)
        yield self.cache_keys.admin_orders_pattern()


def _start_of_day(value: Optional[date]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _end_of_day(value: Optional[date]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.max, tzinfo=timezone.utc)
