"""
Promo code database model for discount management.

Codes are stored uppercase and matched case-insensitively. Validation and
discount computation live in the order engine's PromoCodeValidator; the model
only carries the data and a few convenience properties.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from storefront.database.base import SoftDeleteModel


class DiscountType(str, Enum):
    """Enumeration of discount types."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PromoCode(SoftDeleteModel):
    """
    Promo code applied at checkout.

    Attributes:
        code: Unique code, stored uppercase
        discount_type: percentage or fixed
        discount_value: Percentage points or currency amount
        max_discount_amount: Cap for percentage discounts (NULL = uncapped)
        min_purchase_amount: Minimum cart subtotal required
        start_date: Start of the active window (inclusive)
        end_date: End of the active window (exclusive)
        usage_limit: Maximum redemptions (NULL = unlimited)
        usage_count: Redemptions so far, only changed by conditional updates
        is_active: Administrative on/off switch
    """

    __tablename__ = "promo_codes"
    __table_args__ = (
        CheckConstraint(
            "discount_value > 0",
            name="ck_promo_codes_discount_value_positive",
        ),
        CheckConstraint(
            "min_purchase_amount >= 0",
            name="ck_promo_codes_min_purchase_non_negative",
        ),
        CheckConstraint(
            "max_discount_amount IS NULL OR max_discount_amount > 0",
            name="ck_promo_codes_max_discount_positive",
        ),
        CheckConstraint(
            "usage_limit IS NULL OR usage_limit > 0",
            name="ck_promo_codes_usage_limit_positive",
        ),
        CheckConstraint(
            "usage_count >= 0",
            name="ck_promo_codes_usage_count_non_negative",
        ),
        CheckConstraint(
            "end_date > start_date",
            name="ck_promo_codes_valid_date_range",
        ),
        Index("ix_promo_codes_active_window", "is_active", "start_date", "end_date"),
        {"comment": "Promo codes for order discounts"},
    )

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
        comment="Unique promo code, stored uppercase",
    )

    discount_type: Mapped[DiscountType] = mapped_column(
        SQLEnum(
            DiscountType,
            name="discount_type",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        comment="Type of discount: percentage or fixed",
    )

    discount_value: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="Discount value (percentage or fixed amount)",
    )

    max_discount_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2),
        nullable=True,
        comment="Maximum discount amount for percentage discounts",
    )

    min_purchase_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Minimum cart subtotal required to use the code",
    )

    start_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Start of validity window (inclusive)",
    )

    end_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="End of validity window (exclusive)",
    )

    usage_limit: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Maximum number of redemptions (NULL = unlimited)",
    )

    usage_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Current number of redemptions",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Whether code is currently active",
    )

    @validates("code")
    def _normalize_code(self, key: str, value: str) -> str:
        return value.strip().upper()

    @property
    def is_usage_exhausted(self) -> bool:
        return self.usage_limit is not None and self.usage_count >= self.usage_limit

    def __repr__(self) -> str:
        return (
            f"<PromoCode(code={self.code!r}, "
            f"discount_type={self.discount_type!r}, "
            f"discount_value={self.discount_value}, "
            f"is_active={self.is_active})>"
        )
