"""
Tests for OrderService placement, compensation, queries and lifecycle.

The service runs against the in-memory stores from tests.fakes, so stock,
promo usage and persisted orders can be asserted directly after every
failure path.
"""

import asyncio
import re
from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.core.exceptions import (
    BuyerNotEligibleError,
    OrderNotFoundError,
    OrderNumberConflictError,
    OrderValidationError,
    OutOfStockError,
    ProductNotFoundError,
    PromoCodeNotFoundError,
    PromoCodeRejectedError,
    ReconciliationRequiredError,
    StateTransitionError,
    StoreUnavailableError,
)
from storefront.database.models import DiscountType, Product
from storefront.schemas.orders import OrderResponse
from storefront.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from storefront.services.orders.service import CartLine, OrderService
from tests.fakes import (
    ADDRESS,
    FIXED_NOW,
    FakeOrderStore,
    ScriptedRandom,
    make_item,
    make_order,
    make_product,
    make_promo_code,
    make_user,
)


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def product(catalog) -> Product:
    """Product priced 300 weighing 1.5 kg per unit, ten in stock."""
    return catalog.add(make_product(name="Blender", price="300", weight="1.5", stock=10))


@pytest.fixture
def save10(promo_store):
    promo = make_promo_code(code="SAVE10", value="50", min_purchase="100", usage_limit=100)
    promo_store.by_code[promo.code] = promo
    return promo


async def place(service: OrderService, buyer, product: Product, quantity: int = 2, **kwargs):
    kwargs.setdefault("shipping_address", dict(ADDRESS))
    kwargs.setdefault("payment_method", "cod")
    return await service.create_order(
        buyer=buyer,
        lines=[CartLine(product_id=product.id, quantity=quantity)],
        **kwargs,
    )


def test_requires_session_or_all_stores(catalog, promo_store):
    with pytest.raises(ValueError):
        OrderService(catalog=catalog, promo_codes=promo_store)


# ============================================================================
# Placement
# ============================================================================


class TestCreateOrder:
    @pytest.mark.asyncio
    async def test_places_priced_order(self, service, buyer, product, order_db, cache):
        response = await place(service, buyer, product)

        assert isinstance(response, OrderResponse)
        assert response.subtotal == Decimal("600.00")
        assert response.shipping_charge == Decimal("50.00")
        assert response.tax_amount == Decimal("60.00")
        assert response.discount_amount == Decimal("0.00")
        assert response.final_amount == Decimal("710.00")
        assert response.status == OrderStatus.PENDING
        assert response.payment_status == PaymentStatus.PENDING
        assert response.payment_method == PaymentMethod.COD
        assert re.match(r"^ORD-20240315-\d{4}$", response.order_number)
        assert response.estimated_delivery == FIXED_NOW + timedelta(days=7)
        assert [(h.status, h.note) for h in response.status_history] == [
            (OrderStatus.PENDING, "Order created")
        ]

        assert product.stock == 8
        stored = order_db.orders[response.id]
        assert stored.items[0].inventory_reserved is True
        assert stored.items[0].unit_price_snapshot == Decimal("300")
        assert stored.items[0].line_subtotal == Decimal("600.00")
        assert cache.invalidated == [
            f"orders:v1:order:{response.id}",
            f"orders:v1:user:{buyer.id}:*",
            "orders:v1:admin:*",
        ]

    @pytest.mark.asyncio
    async def test_free_shipping_from_one_thousand(self, service, buyer, catalog):
        product = catalog.add(make_product(price="500", weight="1.5"))

        response = await place(service, buyer, product)

        assert response.subtotal == Decimal("1000.00")
        assert response.shipping_charge == Decimal("0.00")
        assert response.final_amount == Decimal("1100.00")

    @pytest.mark.asyncio
    async def test_promo_code_discount(self, service, buyer, product, save10):
        response = await place(service, buyer, product, promo_code="save10")

        assert response.discount_amount == Decimal("50.00")
        assert response.final_amount == Decimal("660.00")
        assert response.promo_code_snapshot["code"] == "SAVE10"
        assert save10.usage_count == 1

    @pytest.mark.asyncio
    async def test_fixed_discount_is_clamped_to_subtotal(self, service, buyer, product, promo_store):
        promo = make_promo_code(code="BIG", value="1000")
        promo_store.by_code["BIG"] = promo

        response = await place(service, buyer, product, promo_code="BIG")

        assert response.discount_amount == Decimal("600.00")
        assert response.final_amount == Decimal("110.00")

    @pytest.mark.asyncio
    async def test_percentage_discount_is_capped(self, service, buyer, catalog, promo_store):
        product = catalog.add(make_product(price="500", weight="0"))
        promo_store.by_code["HALF"] = make_promo_code(
            code="HALF",
            discount_type=DiscountType.PERCENTAGE,
            value="50",
            max_discount="100",
        )

        response = await place(service, buyer, product, promo_code="HALF")

        assert response.discount_amount == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_duplicate_lines_are_merged(self, service, buyer, product):
        response = await service.create_order(
            buyer=buyer,
            lines=[
                {"product_id": product.id, "quantity": 1},
                {"product_id": str(product.id), "quantity": 2},
            ],
            shipping_address=dict(ADDRESS),
            payment_method="Credit Card",
        )

        assert len(response.items) == 1
        assert response.items[0].quantity == 3
        assert response.payment_method == PaymentMethod.CREDIT_CARD
        assert product.stock == 7

    @pytest.mark.asyncio
    async def test_discounted_price_is_snapshotted(self, service, buyer, catalog):
        product = catalog.add(make_product(price="300", discounted_price="250", weight="0"))

        response = await place(service, buyer, product, quantity=1)
        product.discounted_price = Decimal("10")

        assert response.items[0].unit_price_snapshot == Decimal("250")
        assert response.subtotal == Decimal("250.00")


class TestCreateOrderValidation:
    @pytest.mark.asyncio
    async def test_empty_cart(self, service, buyer):
        with pytest.raises(OrderValidationError) as exc_info:
            await service.create_order(buyer, [], dict(ADDRESS), "cod")
        assert exc_info.value.code == "EMPTY_CART"
        assert exc_info.value.http_status == 400

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "2", None])
    async def test_invalid_quantity(self, service, buyer, product, quantity):
        with pytest.raises(OrderValidationError) as exc_info:
            await service.create_order(
                buyer,
                [{"product_id": product.id, "quantity": quantity}],
                dict(ADDRESS),
                "cod",
            )
        assert exc_info.value.code == "INVALID_QUANTITY"
        assert product.stock == 10

    @pytest.mark.asyncio
    async def test_malformed_product_id(self, service, buyer, product):
        with pytest.raises(OrderValidationError) as exc_info:
            await service.create_order(
                buyer,
                [
                    {"product_id": product.id, "quantity": 1},
                    {"product_id": "not-a-uuid", "quantity": 1},
                ],
                dict(ADDRESS),
                "cod",
            )

        assert exc_info.value.code == "INVALID_CART_LINE"
        assert exc_info.value.context["line"] == 2
        assert product.stock == 10

    @pytest.mark.asyncio
    async def test_incomplete_address_lists_missing_fields(self, service, buyer, product):
        address = dict(ADDRESS, city="  ")
        del address["contact_phone"]

        with pytest.raises(OrderValidationError) as exc_info:
            await place(service, buyer, product, shipping_address=address)

        assert exc_info.value.code == "INCOMPLETE_ADDRESS"
        assert exc_info.value.context["missing_fields"] == ["city", "contact_phone"]

    @pytest.mark.asyncio
    async def test_unsupported_payment_method(self, service, buyer, product):
        with pytest.raises(OrderValidationError) as exc_info:
            await place(service, buyer, product, payment_method="bitcoin")
        assert exc_info.value.code == "UNSUPPORTED_PAYMENT_METHOD"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "buyer_kwargs",
        [{"is_active": False}, {"is_blocked": True}, {"deleted_at": FIXED_NOW}],
    )
    async def test_ineligible_buyer(self, service, product, buyer_kwargs):
        with pytest.raises(BuyerNotEligibleError) as exc_info:
            await place(service, make_user(**buyer_kwargs), product)
        assert exc_info.value.http_status == 403
        assert product.stock == 10

    @pytest.mark.asyncio
    async def test_unknown_product(self, service, buyer):
        with pytest.raises(ProductNotFoundError):
            await place(service, buyer, make_product())

    @pytest.mark.asyncio
    async def test_out_of_stock_names_every_product(self, service, buyer, catalog, order_db):
        lamp = catalog.add(make_product(name="Lamp", stock=1))
        desk = catalog.add(make_product(name="Desk", stock=5, is_blocked=True))
        mug = catalog.add(make_product(name="Mug", stock=5))

        with pytest.raises(OutOfStockError) as exc_info:
            await service.create_order(
                buyer,
                [
                    CartLine(lamp.id, 2),
                    CartLine(desk.id, 1),
                    CartLine(mug.id, 1),
                ],
                dict(ADDRESS),
                "cod",
            )

        assert exc_info.value.product_names == ["Lamp", "Desk"]
        assert exc_info.value.to_dict()["details"]["out_of_stock"] == ["Lamp", "Desk"]
        assert (lamp.stock, desk.stock, mug.stock) == (1, 5, 5)
        assert order_db.orders == {}

    @pytest.mark.asyncio
    async def test_unknown_promo_code_reserves_nothing(self, service, buyer, product):
        with pytest.raises(PromoCodeNotFoundError):
            await place(service, buyer, product, promo_code="NOPE")
        assert product.stock == 10

    @pytest.mark.asyncio
    async def test_promo_minimum_not_met(self, service, buyer, catalog, save10):
        cheap = catalog.add(make_product(price="20"))

        with pytest.raises(PromoCodeRejectedError) as exc_info:
            await place(service, buyer, cheap, promo_code="SAVE10")

        assert exc_info.value.code == "PROMO_CODE_MINIMUM_NOT_MET"
        assert cheap.stock == 10
        assert save10.usage_count == 0


# ============================================================================
# Compensation
# ============================================================================


class TestPlacementCompensation:
    @pytest.mark.asyncio
    async def test_commit_failure_restores_stock_and_promo_usage(
        self, make_service, order_db, buyer, product, save10
    ):
        store = FakeOrderStore(order_db)
        store.commit_error = StoreUnavailableError("database down", operation="commit")
        service = make_service(store)

        with pytest.raises(StoreUnavailableError):
            await place(service, buyer, product, promo_code="SAVE10")

        assert product.stock == 10
        assert save10.usage_count == 0
        assert store.rollbacks == 1
        assert order_db.orders == {}
        assert order_db.claimed_numbers == set()

    @pytest.mark.asyncio
    async def test_failed_compensation_requires_reconciliation(
        self, make_service, order_db, catalog, buyer, product
    ):
        store = FakeOrderStore(order_db)
        store.commit_error = StoreUnavailableError("database down", operation="commit")
        catalog.fail_increments = True
        service = make_service(store)

        with pytest.raises(ReconciliationRequiredError) as exc_info:
            await place(service, buyer, product)

        assert isinstance(exc_info.value.__cause__, StoreUnavailableError)
        assert exc_info.value.context["product_ids"] == [str(product.id)]
        assert store.rollbacks == 1

    @pytest.mark.asyncio
    async def test_cancelled_request_restores_stock(self, make_service, order_db, buyer, product):
        store = FakeOrderStore(order_db)
        store.add_gate = asyncio.Event()
        service = make_service(store)

        task = asyncio.create_task(place(service, buyer, product))
        while product.stock == 10:
            await asyncio.sleep(0)
        # Let the placement reach the blocked insert
        for _ in range(5):
            await asyncio.sleep(0)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        for _ in range(10):
            await asyncio.sleep(0)

        assert product.stock == 10
        assert order_db.orders == {}
        assert store.rollbacks == 1

    @pytest.mark.asyncio
    async def test_order_number_taken_at_insert_is_regenerated(
        self, service, order_store, order_db, buyer, product
    ):
        async def never_taken(order_number):
            return False

        order_store.order_number_exists = never_taken
        order_db.claimed_numbers.add("ORD-20240315-0005")
        service.order_numbers.rng = ScriptedRandom([5, 6])

        response = await place(service, buyer, product)

        assert response.order_number == "ORD-20240315-0006"

    @pytest.mark.asyncio
    async def test_timestamp_fallback_advances_between_insert_attempts(
        self, service, order_store, order_db, buyer, product
    ):
        async def always_taken(order_number):
            return True

        order_store.order_number_exists = always_taken
        millis = int(FIXED_NOW.timestamp() * 1000)
        # Competing requests already hold the first two fallback numbers
        order_db.claimed_numbers.update(
            f"ORD-20240315-{(millis + offset) % 1_000_000:06d}" for offset in range(2)
        )

        response = await place(service, buyer, product)

        assert response.order_number == f"ORD-20240315-{(millis + 2) % 1_000_000:06d}"
        assert product.stock == 8

    @pytest.mark.asyncio
    async def test_second_cancellation_during_compensation(
        self, make_service, order_db, catalog, buyer, product, save10
    ):
        store = FakeOrderStore(order_db)
        store.commit_error = StoreUnavailableError("database down", operation="commit")
        catalog.increment_gate = asyncio.Event()
        service = make_service(store)

        task = asyncio.create_task(place(service, buyer, product, promo_code="SAVE10"))
        while catalog.waiting_increments == 0:
            await asyncio.sleep(0)
        task.cancel()
        for _ in range(5):
            await asyncio.sleep(0)
        catalog.increment_gate.set()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert product.stock == 10
        assert save10.usage_count == 0
        assert store.rollbacks == 1
        assert order_db.orders == {}

    @pytest.mark.asyncio
    async def test_order_number_exhaustion_is_a_conflict(
        self, service, order_store, order_db, buyer, product
    ):
        async def never_taken(order_number):
            return False

        order_store.order_number_exists = never_taken
        order_db.claimed_numbers.add("ORD-20240315-0005")
        service.order_numbers.rng = ScriptedRandom([5])

        with pytest.raises(OrderNumberConflictError) as exc_info:
            await place(service, buyer, product)

        assert exc_info.value.http_status == 409
        assert product.stock == 10


# ============================================================================
# Concurrency
# ============================================================================


class TestConcurrentPlacement:
    @pytest.mark.asyncio
    async def test_last_unit_goes_to_exactly_one_buyer(self, make_service, catalog, order_db):
        product = catalog.add(make_product(name="Last one", stock=1))
        first, second = make_service(), make_service()

        results = await asyncio.gather(
            place(first, make_user(), product, quantity=1),
            place(second, make_user(), product, quantity=1),
            return_exceptions=True,
        )

        placed = [r for r in results if isinstance(r, OrderResponse)]
        rejected = [r for r in results if isinstance(r, BaseException)]
        assert len(placed) == 1
        assert len(rejected) == 1
        assert isinstance(rejected[0], OutOfStockError)
        assert rejected[0].product_names == ["Last one"]
        assert product.stock == 0
        assert len(order_db.orders) == 1

    @pytest.mark.asyncio
    async def test_last_promo_redemption_goes_to_exactly_one_buyer(
        self, make_service, promo_store, product, order_db
    ):
        promo = make_promo_code(code="ONCE", usage_limit=1)
        promo_store.by_code["ONCE"] = promo
        first, second = make_service(), make_service()

        results = await asyncio.gather(
            place(first, make_user(), product, promo_code="ONCE"),
            place(second, make_user(), product, promo_code="ONCE"),
            return_exceptions=True,
        )

        rejected = [r for r in results if isinstance(r, BaseException)]
        assert len(rejected) == 1
        assert isinstance(rejected[0], PromoCodeRejectedError)
        assert rejected[0].code == "PROMO_CODE_EXHAUSTED"
        assert promo.usage_count == 1
        assert product.stock == 8
        assert len(order_db.orders) == 1


# ============================================================================
# Queries
# ============================================================================


class TestGetOrder:
    @pytest.mark.asyncio
    async def test_owner_and_admin_can_read(self, service, buyer, admin, product):
        placed = await place(service, buyer, product)

        assert (await service.get_order(placed.id, buyer)).id == placed.id
        assert (await service.get_order(placed.id, admin)).id == placed.id

    @pytest.mark.asyncio
    async def test_other_buyer_gets_not_found(self, service, buyer, other_buyer, product):
        placed = await place(service, buyer, product)

        with pytest.raises(OrderNotFoundError):
            await service.get_order(placed.id, other_buyer)

    @pytest.mark.asyncio
    async def test_other_buyer_gets_not_found_from_cache(
        self, service, buyer, other_buyer, product
    ):
        placed = await place(service, buyer, product)
        await service.get_order(placed.id, buyer)

        with pytest.raises(OrderNotFoundError):
            await service.get_order(placed.id, other_buyer)

    @pytest.mark.asyncio
    async def test_detail_is_cached(self, service, buyer, product, cache, order_db):
        placed = await place(service, buyer, product)
        await service.get_order(placed.id, buyer)

        order_db.orders[placed.id].delivery_notes = "changed behind the cache"

        assert (await service.get_order(placed.id, buyer)).delivery_notes is None
        assert f"orders:v1:order:{placed.id}" in cache.data


class TestListOrders:
    @pytest.mark.asyncio
    async def test_buyer_sees_only_own_orders(self, service, buyer, other_buyer, product):
        await place(service, buyer, product, quantity=1)
        await place(service, buyer, product, quantity=1)
        await place(service, other_buyer, product, quantity=1)

        listing = await service.list_user_orders(buyer, limit=1)

        assert listing.total == 2
        assert listing.total_pages == 2
        assert len(listing.items) == 1
        assert listing.items[0].buyer_id == buyer.id

    @pytest.mark.asyncio
    async def test_listing_cache_is_invalidated_by_new_order(self, service, buyer, product, order_db):
        await place(service, buyer, product, quantity=1)
        assert (await service.list_user_orders(buyer)).total == 1

        sneaked = make_order([make_item(product, 1)], buyer=buyer)
        order_db.orders[sneaked.id] = sneaked
        assert (await service.list_user_orders(buyer)).total == 1

        await place(service, buyer, product, quantity=1)
        assert (await service.list_user_orders(buyer)).total == 3

    @pytest.mark.asyncio
    async def test_admin_listing_filters_by_status(self, service, buyer, other_buyer, admin, product):
        first = await place(service, buyer, product, quantity=1)
        await place(service, other_buyer, product, quantity=1)
        await service.cancel_order(first.id, buyer)

        listing = await service.list_orders(status=OrderStatus.CANCELLED)

        assert listing.total == 1
        assert listing.items[0].id == first.id
        assert listing.items[0].total_quantity == 1

    @pytest.mark.asyncio
    async def test_empty_listing(self, service, buyer):
        listing = await service.list_user_orders(buyer)

        assert listing.total == 0
        assert listing.total_pages == 0
        assert listing.items == []


# ============================================================================
# Lifecycle
# ============================================================================


class TestCancelOrder:
    @pytest.mark.asyncio
    async def test_buyer_cancels_and_stock_returns(self, service, buyer, product, save10):
        placed = await place(service, buyer, product, promo_code="SAVE10")

        response = await service.cancel_order(placed.id, buyer, reason="Found it cheaper")

        assert response.status == OrderStatus.CANCELLED
        assert response.cancel_details["cancelled_by"] == "user"
        assert response.cancel_details["reason"] == "Found it cheaper"
        assert response.status_history[-1].note == "Cancelled by customer: Found it cheaper"
        assert product.stock == 10
        # Redemptions are kept on cancellation
        assert save10.usage_count == 1

    @pytest.mark.asyncio
    async def test_cancellation_is_committed(self, service, buyer, product, order_store, order_db):
        placed = await place(service, buyer, product)

        await service.cancel_order(placed.id, buyer)

        assert order_store.commits == 2
        assert order_store.rollbacks == 0
        assert order_db.orders[placed.id].status == OrderStatus.CANCELLED
        assert product.stock == 10

    @pytest.mark.asyncio
    async def test_default_reason(self, service, buyer, product):
        placed = await place(service, buyer, product)

        response = await service.cancel_order(placed.id, buyer)

        assert response.cancel_details["reason"] == "Customer cancelled"

    @pytest.mark.asyncio
    async def test_cannot_cancel_someone_elses_order(self, service, buyer, other_buyer, product):
        placed = await place(service, buyer, product)

        with pytest.raises(OrderNotFoundError):
            await service.cancel_order(placed.id, other_buyer)
        assert product.stock == 8

    @pytest.mark.asyncio
    async def test_cannot_cancel_shipped_order(self, service, buyer, admin, product, order_store):
        placed = await place(service, buyer, product)
        await service.update_order_status(placed.id, OrderStatus.PROCESSING, admin)
        await service.update_order_status(
            placed.id, OrderStatus.SHIPPED, admin, tracking_id="TRK-1"
        )

        with pytest.raises(StateTransitionError):
            await service.cancel_order(placed.id, buyer)

        assert product.stock == 8
        assert order_store.rollbacks == 1

    @pytest.mark.asyncio
    async def test_cancel_invalidates_cached_detail(self, service, buyer, product):
        placed = await place(service, buyer, product)
        await service.get_order(placed.id, buyer)

        await service.cancel_order(placed.id, buyer)

        assert (await service.get_order(placed.id, buyer)).status == OrderStatus.CANCELLED


class TestUpdateOrderStatus:
    @pytest.mark.asyncio
    async def test_full_fulfillment_path(self, service, buyer, admin, product):
        placed = await place(service, buyer, product)

        await service.update_order_status(placed.id, OrderStatus.PROCESSING, admin)
        shipped = await service.update_order_status(
            placed.id,
            OrderStatus.SHIPPED,
            admin,
            tracking_id="TRK-42",
            delivery_partner="FastShip",
        )
        delivered = await service.update_order_status(placed.id, OrderStatus.DELIVERED, admin)

        assert shipped.tracking_info["tracking_id"] == "TRK-42"
        assert delivered.status == OrderStatus.DELIVERED
        assert delivered.delivered_at == FIXED_NOW
        assert [h.status for h in delivered.status_history] == [
            OrderStatus.PENDING,
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
        ]
        assert delivered.status_history[-1].changed_by == str(admin.id)

    @pytest.mark.asyncio
    async def test_admin_cancellation_is_recorded_as_admin(self, service, buyer, admin, product):
        placed = await place(service, buyer, product)

        response = await service.update_order_status(
            placed.id, OrderStatus.CANCELLED, admin, reason="Fraud check"
        )

        assert response.cancel_details["cancelled_by"] == "admin"
        assert product.stock == 10

    @pytest.mark.asyncio
    async def test_commit_failure_rolls_back_and_keeps_cache(
        self, service, buyer, admin, product, order_store, cache
    ):
        placed = await place(service, buyer, product)
        cache.invalidated.clear()
        order_store.commit_error = StoreUnavailableError("database down", operation="commit")

        with pytest.raises(StoreUnavailableError):
            await service.update_order_status(placed.id, OrderStatus.PROCESSING, admin)

        assert order_store.rollbacks == 1
        assert cache.invalidated == []

    @pytest.mark.asyncio
    async def test_unknown_order(self, service, admin):
        with pytest.raises(OrderNotFoundError):
            await service.update_order_status(
                make_order([]).id, OrderStatus.PROCESSING, admin
            )


class TestUpdatePaymentStatus:
    @pytest.mark.asyncio
    async def test_paid_moves_order_to_processing(self, service, buyer, admin, product):
        placed = await place(service, buyer, product)

        response = await service.update_payment_status(
            placed.id, PaymentStatus.PAID, admin, transaction_id="txn_9"
        )

        assert response.payment_status == PaymentStatus.PAID
        assert response.status == OrderStatus.PROCESSING
        assert response.payment_details["transaction_id"] == "txn_9"

    @pytest.mark.asyncio
    async def test_failed_payment_cancels_and_restores_stock(self, service, buyer, product):
        placed = await place(service, buyer, product)
        assert product.stock == 8

        response = await service.update_payment_status(placed.id, PaymentStatus.FAILED)

        assert response.status == OrderStatus.CANCELLED
        assert response.cancel_details["cancelled_by"] == "system"
        assert product.stock == 10

    @pytest.mark.asyncio
    async def test_refund_of_paid_cancelled_order(self, service, buyer, admin, product):
        placed = await place(service, buyer, product)
        await service.update_payment_status(placed.id, PaymentStatus.PAID, admin)
        cancelled = await service.update_order_status(placed.id, OrderStatus.CANCELLED, admin)
        assert cancelled.refund_status.value == "pending"

        refunded = await service.update_payment_status(
            placed.id, PaymentStatus.REFUNDED, admin, transaction_id="re_1"
        )

        assert refunded.refund_status.value == "completed"
        assert refunded.refund_details["refund_amount"] == "710.00"
        assert refunded.status == OrderStatus.CANCELLED


class TestDeleteOrder:
    @pytest.mark.asyncio
    async def test_deleted_order_disappears(self, service, buyer, admin, product, order_db):
        placed = await place(service, buyer, product)

        await service.delete_order(placed.id, admin)

        assert order_db.orders[placed.id].deleted_at == FIXED_NOW
        with pytest.raises(OrderNotFoundError):
            await service.get_order(placed.id, admin)
        assert (await service.list_user_orders(buyer)).total == 0
        assert product.stock == 8

    @pytest.mark.asyncio
    async def test_deleted_order_cannot_change(self, service, buyer, admin, product):
        placed = await place(service, buyer, product)
        await service.delete_order(placed.id, admin)

        with pytest.raises(OrderNotFoundError):
            await service.update_order_status(placed.id, OrderStatus.PROCESSING, admin)
