"""
Product model referenced by orders.

Only the fields the order engine reads or mutates are modelled here: selling
price, weight, availability flags and the stock counter.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import SoftDeleteModel


class Product(SoftDeleteModel):
    """
    Sellable product.

    Attributes:
        name: Display name, snapshotted onto order lines
        sku: Stock keeping unit
        actual_price: List price
        discounted_price: Sale price; takes precedence over actual_price when set
        stock: Units on hand
        is_in_stock: Denormalized ``stock > 0`` flag kept in sync on every delta
        track_inventory: When false, stock is neither checked nor decremented
        weight: Unit weight in kilograms
        is_blocked: Blocked products cannot be ordered
    """

    __tablename__ = "products"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        comment="Product display name",
    )

    sku: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        unique=True,
        comment="Stock keeping unit",
    )

    actual_price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="List price",
    )

    discounted_price: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Sale price, used instead of the list price when set",
    )

    stock: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Units on hand",
    )

    is_in_stock: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether at least one unit is on hand",
    )

    track_inventory: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether orders reserve stock for this product",
    )

    weight: Mapped[Decimal] = mapped_column(
        Numeric(10, 3),
        nullable=False,
        default=Decimal("0"),
        comment="Unit weight in kilograms",
    )

    is_blocked: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Blocked products cannot be ordered",
    )

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint("actual_price >= 0", name="ck_products_actual_price_non_negative"),
        CheckConstraint(
            "discounted_price IS NULL OR discounted_price >= 0",
            name="ck_products_discounted_price_non_negative",
        ),
        CheckConstraint("weight >= 0", name="ck_products_weight_non_negative"),
        Index("ix_products_is_in_stock", "is_in_stock"),
        {"comment": "Sellable products"},
    )

    @property
    def selling_price(self) -> Decimal:
        if self.discounted_price is not None:
            return self.discounted_price
        return self.actual_price

    @property
    def is_orderable(self) -> bool:
        return not self.is_deleted and not self.is_blocked

    def can_fulfill(self, quantity: int) -> bool:
        """Orderable and, for tracked products, enough stock on hand."""
        if not self.is_orderable:
            return False
        return not self.track_inventory or self.stock >= quantity
