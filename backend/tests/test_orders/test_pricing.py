"""
Tests for PricingCalculator: shipping tiers, tax, final amount and rounding.
"""

from dataclasses import dataclass
from decimal import Decimal

import pytest

from storefront.core.exceptions import PricingInvariantError
from storefront.services.orders.pricing import (
    PricingCalculator,
    ShippingPolicy,
    round_money,
)


@dataclass
class Line:
    unit_price_snapshot: Decimal
    quantity: int
    weight_snapshot: Decimal = Decimal("0")


@pytest.fixture
def calculator() -> PricingCalculator:
    return PricingCalculator()


# ============================================================================
# Rounding
# ============================================================================


class TestRoundMoney:
    def test_half_rounds_up(self):
        assert round_money(Decimal("0.005")) == Decimal("0.01")
        assert round_money(Decimal("2.675")) == Decimal("2.68")

    def test_below_half_rounds_down(self):
        assert round_money(Decimal("1.004")) == Decimal("1.00")

    def test_always_two_places(self):
        assert str(round_money(Decimal("12"))) == "12.00"


# ============================================================================
# Shipping
# ============================================================================


class TestComputeShipping:
    def test_free_at_threshold(self, calculator):
        assert calculator.compute_shipping(Decimal("1000"), Decimal("50")) == Decimal("0.00")

    def test_free_above_threshold(self, calculator):
        assert calculator.compute_shipping(Decimal("1500.50"), Decimal("0")) == Decimal("0.00")

    def test_base_charge_below_threshold(self, calculator):
        assert calculator.compute_shipping(Decimal("999.99"), Decimal("2")) == Decimal("50.00")

    def test_weight_exactly_at_threshold_has_no_surcharge(self, calculator):
        assert calculator.compute_shipping(Decimal("100"), Decimal("5")) == Decimal("50.00")

    def test_started_kilogram_is_charged(self, calculator):
        assert calculator.compute_shipping(Decimal("100"), Decimal("5.2")) == Decimal("60.00")

    def test_several_kilograms_over(self, calculator):
        # ceil(12.5 - 5) = 8 started kilograms
        assert calculator.compute_shipping(Decimal("100"), Decimal("12.5")) == Decimal("130.00")

    def test_custom_policy(self):
        calculator = PricingCalculator(
            shipping_policy=ShippingPolicy(
                free_shipping_threshold=Decimal("200"),
                base_charge=Decimal("15"),
                weight_threshold_kg=Decimal("1"),
                charge_per_kg=Decimal("2.50"),
            )
        )
        assert calculator.compute_shipping(Decimal("100"), Decimal("3")) == Decimal("20.00")
        assert calculator.compute_shipping(Decimal("200"), Decimal("3")) == Decimal("0.00")


# ============================================================================
# Tax and final amount
# ============================================================================


class TestComputeTax:
    def test_default_rate(self, calculator):
        assert calculator.compute_tax(Decimal("600")) == Decimal("60.00")

    def test_explicit_rate(self, calculator):
        assert calculator.compute_tax(Decimal("600"), Decimal("18")) == Decimal("108.00")

    def test_rounds_half_up(self, calculator):
        # 10% of 0.05 is 0.005
        assert calculator.compute_tax(Decimal("0.05")) == Decimal("0.01")

    def test_rate_from_settings(self, settings):
        settings = settings.model_copy(update={"tax_rate_percent": Decimal("5")})
        calculator = PricingCalculator.from_settings(settings)
        assert calculator.compute_tax(Decimal("200")) == Decimal("10.00")


class TestComputeFinal:
    def test_formula(self, calculator):
        final = calculator.compute_final(
            Decimal("600"), Decimal("50"), Decimal("60"), Decimal("50")
        )
        assert final == Decimal("660.00")

    def test_zero_is_allowed(self, calculator):
        final = calculator.compute_final(
            Decimal("100"), Decimal("100"), Decimal("0"), Decimal("0")
        )
        assert final == Decimal("0.00")

    def test_negative_result_is_rejected_not_clamped(self, calculator):
        with pytest.raises(PricingInvariantError) as exc_info:
            calculator.compute_final(Decimal("100"), Decimal("200"), Decimal("0"), Decimal("0"))
        assert exc_info.value.code == "NEGATIVE_FINAL_AMOUNT"
        assert exc_info.value.http_status == 500


# ============================================================================
# Whole order
# ============================================================================


class TestPriceOrder:
    def test_single_line_below_free_shipping(self, calculator):
        lines = [Line(Decimal("300"), 2, Decimal("1.5"))]

        breakdown = calculator.price_order(lines)

        assert breakdown.subtotal == Decimal("600.00")
        assert breakdown.total_weight == Decimal("3.0")
        assert breakdown.shipping_charge == Decimal("50.00")
        assert breakdown.tax_amount == Decimal("60.00")
        assert breakdown.discount_amount == Decimal("0.00")
        assert breakdown.final_amount == Decimal("710.00")

    def test_free_shipping_at_one_thousand(self, calculator):
        lines = [Line(Decimal("500"), 2, Decimal("1.5"))]

        breakdown = calculator.price_order(lines)

        assert breakdown.shipping_charge == Decimal("0.00")
        assert breakdown.final_amount == Decimal("1100.00")

    def test_discount_is_subtracted(self, calculator):
        lines = [Line(Decimal("300"), 2, Decimal("1.5"))]

        breakdown = calculator.price_order(lines, Decimal("50"))

        assert breakdown.final_amount == Decimal("660.00")

    def test_weight_is_per_unit_times_quantity(self, calculator):
        lines = [Line(Decimal("10"), 3, Decimal("2")), Line(Decimal("5"), 1, Decimal("0.5"))]

        breakdown = calculator.price_order(lines)

        assert breakdown.total_weight == Decimal("6.5")
        # 50 base + 2 started kilograms above 5 kg
        assert breakdown.shipping_charge == Decimal("70.00")

    def test_line_subtotals_are_rounded_before_summing(self, calculator):
        lines = [Line(Decimal("0.335"), 1), Line(Decimal("0.335"), 1)]

        breakdown = calculator.price_order(lines)

        assert breakdown.subtotal == Decimal("0.68")

    def test_deterministic(self, calculator):
        lines = [Line(Decimal("19.99"), 3, Decimal("2.2"))]
        assert calculator.price_order(lines) == calculator.price_order(lines)
