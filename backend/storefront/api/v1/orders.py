"""
Order API endpoints.

Routes stay thin: they translate requests into OrderService calls and let
OrderEngineError propagate to the application's exception handler, which
maps each error family to its HTTP status.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from storefront.api.deps import AdminUser, CurrentUser, OrderServiceDep
from storefront.core.logging import get_logger
from storefront.schemas.orders import (
    OrderCancelRequest,
    OrderCreateRequest,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdateRequest,
    PaymentStatusUpdateRequest,
)
from storefront.services.orders.enums import OrderStatus, PaymentStatus
from storefront.services.orders.service import CartLine

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

SortOrder = Query("desc", pattern="^(asc|desc)$")


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
)
async def create_order(
    request: OrderCreateRequest,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    logger.info(
        "Creating order",
        user_id=str(current_user.id),
        item_count=len(request.items),
        promo_code=request.promo_code,
    )
    return await service.create_order(
        buyer=current_user,
        lines=[CartLine(product_id=line.product_id, quantity=line.quantity) for line in request.items],
        shipping_address=request.shipping_address.model_dump(),
        payment_method=request.payment_method,
        promo_code=request.promo_code,
        delivery_notes=request.delivery_notes,
        gift_wrap=request.gift_wrap,
    )


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List the current user's orders",
)
async def list_my_orders(
    current_user: CurrentUser,
    service: OrderServiceDep,
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("created_at"),
    sort_order: str = SortOrder,
) -> OrderListResponse:
    return await service.list_user_orders(
        current_user,
        status=order_status,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get(
    "/admin",
    response_model=OrderListResponse,
    summary="List all orders",
)
async def list_all_orders(
    admin: AdminUser,
    service: OrderServiceDep,
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    payment_status: Optional[PaymentStatus] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("created_at"),
    sort_order: str = SortOrder,
) -> OrderListResponse:
    return await service.list_orders(
        status=order_status,
        payment_status=payment_status,
        start_date=start_date,
        end_date=end_date,
        search=search,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get an order",
)
async def get_order(
    order_id: UUID,
    current_user: CurrentUser,
    service: OrderServiceDep,
) -> OrderResponse:
    return await service.get_order(order_id, current_user)


@router.patch(
    "/{order_id}/status",
    response_model=OrderResponse,
    summary="Update order status",
)
async def update_order_status(
    order_id: UUID,
    request: OrderStatusUpdateRequest,
    admin: AdminUser,
    service: OrderServiceDep,
) -> OrderResponse:
    logger.info(
        "Updating order status",
        order_id=str(order_id),
        target_status=request.status.value,
        admin_id=str(admin.id),
    )
    return await service.update_order_status(
        order_id,
        request.status,
        actor=admin,
        tracking_id=request.tracking_id,
        tracking_url=request.tracking_url,
        delivery_partner=request.delivery_partner,
        note=request.note,
        reason=request.reason,
    )


@router.post(
    "/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel own order",
)
async def cancel_order(
    order_id: UUID,
    current_user: CurrentUser,
    service: OrderServiceDep,
    request: Optional[OrderCancelRequest] = None,
) -> OrderResponse:
    return await service.cancel_order(
        order_id,
        current_user,
        reason=request.reason if request else None,
    )


@router.patch(
    "/{order_id}/payment",
    response_model=OrderResponse,
    summary="Update payment status",
)
async def update_payment_status(
    order_id: UUID,
    request: PaymentStatusUpdateRequest,
    admin: AdminUser,
    service: OrderServiceDep,
) -> OrderResponse:
    return await service.update_payment_status(
        order_id,
        request.payment_status,
        actor=admin,
        transaction_id=request.transaction_id,
        payment_details=request.payment_details,
    )


@router.delete(
    "/{order_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Soft delete an order",
)
async def delete_order(
    order_id: UUID,
    admin: AdminUser,
    service: OrderServiceDep,
) -> Response:
    await service.delete_order(order_id, admin)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
