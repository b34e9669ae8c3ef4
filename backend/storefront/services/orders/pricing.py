"""
Order pricing: shipping, tax, discount application and final amount.

All arithmetic uses Decimal. Amounts are rounded to cents with ROUND_HALF_UP
at the point each stored component is produced (line subtotal, discount, tax),
and the final amount is computed from those rounded components and rounded
once more. Nothing in this module performs I/O.
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Protocol

from storefront.core.config import Settings
from storefront.core.exceptions import PricingInvariantError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(amount: Decimal) -> Decimal:
    """Round a currency amount to cents, halves away from zero."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


class PricedLine(Protocol):
    unit_price_snapshot: Decimal
    quantity: int
    weight_snapshot: Decimal


@dataclass(frozen=True)
class ShippingPolicy:
    """Flat charge below the free shipping threshold plus a weight surcharge."""

    free_shipping_threshold: Decimal = Decimal("1000")
    base_charge: Decimal = Decimal("50")
    weight_threshold_kg: Decimal = Decimal("5")
    charge_per_kg: Decimal = Decimal("10")

    @classmethod
    def from_settings(cls, settings: Settings) -> "ShippingPolicy":
        return cls(
            free_shipping_threshold=settings.free_shipping_threshold,
            base_charge=settings.base_shipping_charge,
            weight_threshold_kg=settings.shipping_weight_threshold_kg,
            charge_per_kg=settings.shipping_charge_per_kg,
        )


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    total_weight: Decimal
    shipping_charge: Decimal
    tax_rate_percent: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal


class PricingCalculator:
    """
    Computes every monetary component of an order.

    The calculator is deterministic: the same inputs always produce the same
    breakdown. The tax rate and shipping policy are constructor parameters so
    deployments can configure them.
    """

    def __init__(
        self,
        shipping_policy: Optional[ShippingPolicy] = None,
        tax_rate_percent: Decimal = Decimal("10"),
    ):
        self.shipping_policy = shipping_policy or ShippingPolicy()
        self.tax_rate_percent = Decimal(tax_rate_percent)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PricingCalculator":
        return cls(
            shipping_policy=ShippingPolicy.from_settings(settings),
            tax_rate_percent=settings.tax_rate_percent,
        )

    @staticmethod
    def compute_line_subtotal(unit_price: Decimal, quantity: int) -> Decimal:
        return round_money(Decimal(unit_price) * quantity)

    def compute_subtotal(self, lines: Iterable[PricedLine]) -> Decimal:
        return sum(
            (self.compute_line_subtotal(line.unit_price_snapshot, line.quantity) for line in lines),
            ZERO,
        )

    @staticmethod
    def compute_total_weight(lines: Iterable[PricedLine]) -> Decimal:
        """Unit weight times quantity, summed over lines, in kilograms."""
        return sum(
            (Decimal(line.weight_snapshot or 0) * line.quantity for line in lines),
            Decimal("0"),
        )

    def compute_shipping(self, subtotal: Decimal, total_weight: Decimal) -> Decimal:
        """
        Shipping charge for a cart.

        Free at or above the threshold. Otherwise the base charge, plus the
        per-kilogram charge for every started kilogram above the weight
        threshold.
        """
        policy = self.shipping_policy
        if subtotal >= policy.free_shipping_threshold:
            return ZERO

        charge = policy.base_charge
        excess = Decimal(total_weight) - policy.weight_threshold_kg
        if excess > 0:
            started_kg = excess.to_integral_value(rounding=ROUND_CEILING)
            charge += started_kg * policy.charge_per_kg
        return round_money(charge)

    def compute_tax(self, subtotal: Decimal, rate_percent: Optional[Decimal] = None) -> Decimal:
        rate = self.tax_rate_percent if rate_percent is None else Decimal(rate_percent)
        return round_money(Decimal(subtotal) * rate / Decimal("100"))

    @staticmethod
    def compute_final(
        subtotal: Decimal,
        discount: Decimal,
        tax: Decimal,
        shipping: Decimal,
    ) -> Decimal:
        """
        subtotal - discount + tax + shipping, rounded to cents.

        Raises:
            PricingInvariantError: If the result is negative; the amount is
                never clamped.
        """
        final = round_money(subtotal - discount + tax + shipping)
        if final < 0:
            raise PricingInvariantError(
                "Final amount would be negative",
                subtotal=subtotal,
                discount=discount,
                tax=tax,
                shipping=shipping,
            )
        return final

    def price_order(
        self,
        lines: Iterable[PricedLine],
        discount: Decimal = ZERO,
    ) -> PriceBreakdown:
        lines = list(lines)
        subtotal = self.compute_subtotal(lines)
        total_weight = self.compute_total_weight(lines)
        discount = round_money(discount)
        shipping = self.compute_shipping(subtotal, total_weight)
        tax = self.compute_tax(subtotal)
        final = self.compute_final(subtotal, discount, tax, shipping)

        return PriceBreakdown(
            subtotal=subtotal,
            total_weight=total_weight,
            shipping_charge=shipping,
            tax_rate_percent=self.tax_rate_percent,
            tax_amount=tax,
            discount_amount=discount,
            final_amount=final,
        )
