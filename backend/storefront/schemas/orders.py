"""
Order Pydantic schemas for API request/response validation.

Request schemas only check shape and types. Business validation (empty cart,
quantities, address completeness, payment method) is done by OrderService so
that every rejection carries the same error codes whichever caller submits it.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
)


class CartLineRequest(BaseModel):
    """One product and quantity in a submitted cart."""

    model_config = ConfigDict(validate_assignment=True)

    product_id: UUID = Field(..., description="Product ID")
    quantity: int = Field(..., description="Requested quantity")


class ShippingAddressRequest(BaseModel):
    """Shipping address; completeness is checked when the order is placed."""

    model_config = ConfigDict(str_strip_whitespace=True)

    address_line1: Optional[str] = Field(None, max_length=255)
    address_line2: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)
    contact_name: Optional[str] = Field(None, max_length=200)
    contact_phone: Optional[str] = Field(None, max_length=30)


class OrderCreateRequest(BaseModel):
    """Request schema for placing an order."""

    model_config = ConfigDict(validate_assignment=True)

    items: list[CartLineRequest] = Field(
        ...,
        max_length=100,
        description="Cart lines",
    )
    shipping_address: ShippingAddressRequest = Field(
        ...,
        description="Shipping address",
    )
    payment_method: str = Field(
        ...,
        max_length=50,
        description="Payment method",
    )
    promo_code: Optional[str] = Field(
        None,
        max_length=50,
        description="Promo code",
    )
    delivery_notes: Optional[str] = Field(
        None,
        max_length=500,
        description="Delivery instructions",
    )
    gift_wrap: bool = Field(default=False, description="Gift wrap requested")

    @field_validator("promo_code")
    @classmethod
    def blank_promo_code_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class OrderStatusUpdateRequest(BaseModel):
    """Admin request to move an order to a new status."""

    model_config = ConfigDict(str_strip_whitespace=True)

    status: OrderStatus = Field(..., description="Target order status")
    tracking_id: Optional[str] = Field(
        None,
        max_length=100,
        description="Carrier tracking id, required when shipping",
    )
    tracking_url: Optional[str] = Field(None, max_length=500)
    delivery_partner: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = Field(None, max_length=500)
    reason: Optional[str] = Field(
        None,
        max_length=500,
        description="Cancellation or return reason",
    )


class OrderCancelRequest(BaseModel):
    """Buyer request to cancel an order."""

    reason: Optional[str] = Field(None, max_length=500)


class PaymentStatusUpdateRequest(BaseModel):
    """Payment status update from an admin or a payment callback."""

    payment_status: PaymentStatus = Field(..., description="New payment status")
    transaction_id: Optional[str] = Field(None, max_length=100)
    payment_details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional gateway metadata merged into the order",
    )


class OrderItemResponse(BaseModel):
    """Order line item response."""

    model_config = ConfigDict(from_attributes=True)

    product_id: UUID
    position: int
    name_snapshot: str
    sku_snapshot: Optional[str] = None
    unit_price_snapshot: Decimal
    quantity: int
    weight_snapshot: Decimal
    line_subtotal: Decimal


class StatusHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    status: OrderStatus
    note: Optional[str] = None
    changed_by: Optional[str] = None
    created_at: datetime


class OrderSummaryResponse(BaseModel):
    """Order as shown in listings."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    buyer_id: UUID
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    final_amount: Decimal
    total_quantity: int
    estimated_delivery: Optional[datetime] = None
    created_at: Optional[datetime] = None


class OrderResponse(BaseModel):
    """Complete order response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    buyer_id: UUID
    items: list[OrderItemResponse]
    subtotal: Decimal
    shipping_charge: Decimal
    tax_rate_percent: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    promo_code_snapshot: Optional[dict[str, Any]] = None
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_details: dict[str, Any] = Field(default_factory=dict)
    refund_status: Optional[RefundStatus] = None
    shipping_address: dict[str, Any]
    delivery_notes: Optional[str] = None
    gift_wrap: bool = False
    estimated_delivery: Optional[datetime] = None
    tracking_info: Optional[dict[str, Any]] = None
    cancel_details: Optional[dict[str, Any]] = None
    refund_details: Optional[dict[str, Any]] = None
    delivered_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    return_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    status_history: list[StatusHistoryResponse]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderListResponse(BaseModel):
    """Paginated order listing."""

    items: list[OrderSummaryResponse]
    total: int
    page: int
    limit: int
    total_pages: int
