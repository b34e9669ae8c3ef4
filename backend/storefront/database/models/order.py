"""
Order models for order placement and lifecycle tracking.

An Order owns its line items and an append-only status history. Prices, names
and weights on line items are snapshots taken when the order is created and are
never re-derived from the live catalog.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database.base import Base, SoftDeleteModel, UUIDMixin, utc_now
from storefront.services.orders.enums import (
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    RefundStatus,
)


def _enum_column(enum_cls: type, name: str) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda e: [m.value for m in e],
    )


class Order(SoftDeleteModel):
    """
    Order aggregate root.

    Attributes:
        order_number: Unique human-readable number, ORD-YYYYMMDD-NNNN
        buyer_id: User who placed the order
        subtotal: Sum of line subtotals
        shipping_charge: Shipping charge at placement
        tax_rate_percent: Tax rate applied at placement
        tax_amount: Tax on the subtotal, rounded to cents
        discount_amount: Promo discount, never above the subtotal
        final_amount: subtotal - discount + tax + shipping, rounded to cents
        promo_code_snapshot: Frozen id/code/type/value of the applied promo code
        status: Fulfillment lifecycle status
        payment_method: Method chosen at checkout
        payment_status: Payment lifecycle status
        payment_details: Gateway-agnostic payment metadata (transaction id, ...)
        shipping_address: Complete postal address
        tracking_info: Set when the order ships
        cancel_details: Set when the order is cancelled
        refund_details: Set when a refund completes
        refund_status: Pending refund marker / completion flag
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="Human-readable order number",
    )

    buyer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        comment="User who placed the order",
    )

    # Pricing
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Sum of line subtotals",
    )

    shipping_charge: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Shipping charge",
    )

    tax_rate_percent: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        comment="Tax rate applied at placement",
    )

    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Tax amount",
    )

    discount_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Applied discount amount",
    )

    final_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Amount payable",
    )

    # Promo code
    promo_code_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("promo_codes.id", ondelete="SET NULL"),
        nullable=True,
        comment="Applied promo code",
    )

    promo_code_snapshot: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=True,
        comment="Promo code id/code/type/value at time of use",
    )

    # Status
    status: Mapped[OrderStatus] = mapped_column(
        _enum_column(OrderStatus, "order_status"),
        nullable=False,
        default=OrderStatus.PENDING,
        comment="Current order status",
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        _enum_column(PaymentMethod, "payment_method"),
        nullable=False,
        comment="Payment method chosen at checkout",
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        nullable=False,
        default=PaymentStatus.PENDING,
        comment="Current payment status",
    )

    payment_details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        comment="Payment metadata such as the transaction id",
    )

    refund_status: Mapped[Optional[RefundStatus]] = mapped_column(
        _enum_column(RefundStatus, "refund_status"),
        nullable=True,
        comment="Refund marker for cancelled or returned paid orders",
    )

    # Delivery
    shipping_address: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        comment="Shipping address",
    )

    delivery_notes: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Buyer delivery instructions",
    )

    gift_wrap: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Gift wrap requested",
    )

    estimated_delivery: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Estimated delivery date",
    )

    tracking_info: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=True,
        comment="Tracking id, URL, delivery partner and ship time",
    )

    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    returned_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    return_reason: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )

    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    cancel_details: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=True,
        comment="Cancellation time, reason and actor",
    )

    refund_details: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=True,
        comment="Refund time, amount and transaction id",
    )

    # Relationships
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderItem.position",
    )

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.sequence",
    )

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_orders_order_number"),
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint(
            "shipping_charge >= 0", name="ck_orders_shipping_charge_non_negative"
        ),
        CheckConstraint("tax_amount >= 0", name="ck_orders_tax_amount_non_negative"),
        CheckConstraint(
            "discount_amount >= 0 AND discount_amount <= subtotal",
            name="ck_orders_discount_amount_valid",
        ),
        CheckConstraint("final_amount >= 0", name="ck_orders_final_amount_non_negative"),
        Index("ix_orders_buyer_created", "buyer_id", "created_at"),
        Index("ix_orders_status", "status"),
        Index("ix_orders_payment_status", "payment_status"),
        {"comment": "Customer orders"},
    )

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, order_number={self.order_number!r}, "
            f"status={self.status!r}, payment_status={self.payment_status!r})>"
        )

    @property
    def reserved_items(self) -> list["OrderItem"]:
        """Line items currently holding decremented stock."""
        return [item for item in self.items if item.inventory_reserved]

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def add_history(
        self,
        status: OrderStatus,
        note: Optional[str] = None,
        changed_by: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> "OrderStatusHistory":
        """Append one status history entry."""
        entry = OrderStatusHistory(
            sequence=len(self.status_history) + 1,
            status=status,
            note=note,
            changed_by=changed_by,
            created_at=at or utc_now(),
        )
        self.status_history.append(entry)
        return entry


class OrderItem(Base, UUIDMixin):
    """
    Order line item with catalog snapshot.

    ``inventory_reserved`` records whether this line currently holds
    decremented stock, so stock is released at most once per reservation.
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Line position within the order",
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    name_snapshot: Mapped[str] = mapped_column(String(255), nullable=False)

    sku_snapshot: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    unit_price_snapshot: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    weight_snapshot: Mapped[Decimal] = mapped_column(
        Numeric(10, 3),
        nullable=False,
        default=Decimal("0"),
        comment="Unit weight in kilograms",
    )

    line_subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    track_inventory: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether the product tracked stock at placement",
    )

    inventory_reserved: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether this line currently holds decremented stock",
    )

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint(
            "unit_price_snapshot >= 0", name="ck_order_items_unit_price_non_negative"
        ),
        UniqueConstraint("order_id", "position", name="uq_order_items_position"),
        Index("ix_order_items_product", "product_id"),
        {"comment": "Order line items with catalog snapshots"},
    )

    def __repr__(self) -> str:
        return (
            f"<OrderItem(product_id={self.product_id}, "
            f"quantity={self.quantity}, reserved={self.inventory_reserved})>"
        )


class OrderStatusHistory(Base, UUIDMixin):
    """Append-only order status audit entry."""

    __tablename__ = "order_status_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="1-based position in the order's history",
    )

    status: Mapped[OrderStatus] = mapped_column(
        _enum_column(OrderStatus, "order_status"),
        nullable=False,
    )

    note: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    changed_by: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment="User id of the actor, or 'system'",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    __table_args__ = (
        UniqueConstraint("order_id", "sequence", name="uq_order_status_history_sequence"),
        {"comment": "Order status change history for audit trail"},
    )

    def __repr__(self) -> str:
        return f"<OrderStatusHistory(sequence={self.sequence}, status={self.status!r})>"
