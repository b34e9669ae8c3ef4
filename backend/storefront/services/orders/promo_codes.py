"""
Promo code validation and discount computation.

The validator is pure: the caller looks the code up and passes the result in
together with the cart subtotal and the current time.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from storefront.core.exceptions import PromoCodeNotFoundError, PromoCodeRejectedError
from storefront.core.logging import get_logger
from storefront.database.models import DiscountType, PromoCode
from storefront.services.orders.pricing import round_money

logger = get_logger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


@dataclass(frozen=True)
class PromoCodeSnapshot:
    """Promo code as it was when an order used it."""

    id: uuid.UUID
    code: str
    discount_type: DiscountType
    discount_value: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "code": self.code,
            "discount_type": self.discount_type.value,
            "discount_value": str(self.discount_value),
        }


@dataclass(frozen=True)
class PromoCodeQuote:
    discount_amount: Decimal
    snapshot: PromoCodeSnapshot


class PromoCodeValidator:
    """Checks a promo code against a subtotal and prices the discount."""

    def validate(
        self,
        promo: Optional[PromoCode],
        subtotal: Decimal,
        now: datetime,
        code: Optional[str] = None,
    ) -> PromoCodeQuote:
        """
        Validate a promo code for a cart subtotal.

        The active window is half-open: a code is usable from ``start_date``
        up to but excluding ``end_date``.

        Raises:
            PromoCodeNotFoundError: Unknown or soft-deleted code
            PromoCodeRejectedError: Inactive, outside its window, below the
                minimum purchase, or out of redemptions
        """
        requested = normalize_code(code) if code else getattr(promo, "code", "")
        if promo is None or promo.is_deleted:
            raise PromoCodeNotFoundError(requested)

        if not promo.is_active:
            raise PromoCodeRejectedError(
                "Promo code is not active",
                code="PROMO_CODE_INACTIVE",
                promo_code=promo.code,
            )

        if now < promo.start_date:
            raise PromoCodeRejectedError(
                "Promo code is not active yet",
                code="PROMO_CODE_NOT_ACTIVE_YET",
                promo_code=promo.code,
                start_date=promo.start_date.isoformat(),
            )

        if now >= promo.end_date:
            raise PromoCodeRejectedError(
                "Promo code has expired",
                code="PROMO_CODE_EXPIRED",
                promo_code=promo.code,
                end_date=promo.end_date.isoformat(),
            )

        if subtotal < promo.min_purchase_amount:
            raise PromoCodeRejectedError(
                f"Minimum purchase amount of {promo.min_purchase_amount} required",
                code="PROMO_CODE_MINIMUM_NOT_MET",
                promo_code=promo.code,
                min_purchase_amount=str(promo.min_purchase_amount),
                subtotal=str(subtotal),
            )

        if promo.is_usage_exhausted:
            raise PromoCodeRejectedError(
                "Promo code usage limit reached",
                code="PROMO_CODE_EXHAUSTED",
                promo_code=promo.code,
                usage_limit=promo.usage_limit,
            )

        discount = self.compute_discount(promo, subtotal)

        logger.debug(
            "Promo code validated",
            promo_code=promo.code,
            subtotal=str(subtotal),
            discount_amount=str(discount),
        )

        return PromoCodeQuote(
            discount_amount=discount,
            snapshot=PromoCodeSnapshot(
                id=promo.id,
                code=promo.code,
                discount_type=promo.discount_type,
                discount_value=promo.discount_value,
            ),
        )

    @staticmethod
    def compute_discount(promo: PromoCode, subtotal: Decimal) -> Decimal:
        """
        Percentage discounts are rounded to cents and then capped by
        ``max_discount_amount``. Fixed discounts are the code's value; the
        caller clamps them to the subtotal.
        """
        if promo.discount_type == DiscountType.PERCENTAGE:
            discount = round_money(subtotal * promo.discount_value / Decimal("100"))
            if promo.max_discount_amount is not None:
                discount = min(discount, promo.max_discount_amount)
            return discount
        return round_money(promo.discount_value)
