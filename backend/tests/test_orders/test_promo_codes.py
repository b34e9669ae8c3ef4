"""
Tests for PromoCodeValidator.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from storefront.core.exceptions import PromoCodeNotFoundError, PromoCodeRejectedError
from storefront.database.models import DiscountType
from storefront.services.orders.promo_codes import PromoCodeValidator, normalize_code
from tests.fakes import FIXED_NOW, make_promo_code


@pytest.fixture
def validator() -> PromoCodeValidator:
    return PromoCodeValidator()


class TestValidPromoCodes:
    def test_fixed_discount(self, validator):
        promo = make_promo_code(code="SAVE10", value="50", min_purchase="100")

        quote = validator.validate(promo, Decimal("600"), FIXED_NOW)

        assert quote.discount_amount == Decimal("50.00")
        assert quote.snapshot.code == "SAVE10"
        assert quote.snapshot.id == promo.id
        assert quote.snapshot.discount_type == DiscountType.FIXED

    def test_percentage_discount(self, validator):
        promo = make_promo_code(discount_type=DiscountType.PERCENTAGE, value="15")

        quote = validator.validate(promo, Decimal("200"), FIXED_NOW)

        assert quote.discount_amount == Decimal("30.00")

    def test_percentage_discount_is_capped(self, validator):
        promo = make_promo_code(
            discount_type=DiscountType.PERCENTAGE,
            value="50",
            max_discount="100",
        )

        quote = validator.validate(promo, Decimal("1000"), FIXED_NOW)

        assert quote.discount_amount == Decimal("100")

    def test_percentage_discount_rounds_half_up(self, validator):
        promo = make_promo_code(discount_type=DiscountType.PERCENTAGE, value="10")

        quote = validator.validate(promo, Decimal("0.05"), FIXED_NOW)

        assert quote.discount_amount == Decimal("0.01")

    def test_window_start_is_inclusive(self, validator):
        promo = make_promo_code(start=FIXED_NOW)

        validator.validate(promo, Decimal("100"), FIXED_NOW)

    def test_minimum_purchase_is_inclusive(self, validator):
        promo = make_promo_code(min_purchase="100")

        validator.validate(promo, Decimal("100"), FIXED_NOW)

    def test_unlimited_usage(self, validator):
        promo = make_promo_code(usage_limit=None, usage_count=10_000)

        validator.validate(promo, Decimal("100"), FIXED_NOW)

    def test_snapshot_serializes_to_plain_values(self, validator):
        promo = make_promo_code(code="SAVE10", value="50")

        snapshot = validator.validate(promo, Decimal("600"), FIXED_NOW).snapshot.to_dict()

        assert snapshot == {
            "id": str(promo.id),
            "code": "SAVE10",
            "discount_type": "fixed",
            "discount_value": "50",
        }


class TestRejectedPromoCodes:
    def test_unknown_code(self, validator):
        with pytest.raises(PromoCodeNotFoundError) as exc_info:
            validator.validate(None, Decimal("100"), FIXED_NOW, code=" nope ")
        assert exc_info.value.http_status == 404
        assert exc_info.value.context["promo_code"] == "NOPE"

    def test_soft_deleted_code_is_unknown(self, validator):
        promo = make_promo_code(deleted_at=FIXED_NOW - timedelta(days=1))

        with pytest.raises(PromoCodeNotFoundError):
            validator.validate(promo, Decimal("100"), FIXED_NOW)

    @pytest.mark.parametrize(
        "overrides, expected_code",
        [
            ({"is_active": False}, "PROMO_CODE_INACTIVE"),
            ({"start": FIXED_NOW + timedelta(seconds=1)}, "PROMO_CODE_NOT_ACTIVE_YET"),
            (
                {"start": FIXED_NOW - timedelta(days=10), "end": FIXED_NOW},
                "PROMO_CODE_EXPIRED",
            ),
            ({"min_purchase": "100.01"}, "PROMO_CODE_MINIMUM_NOT_MET"),
            ({"usage_limit": 5, "usage_count": 5}, "PROMO_CODE_EXHAUSTED"),
        ],
    )
    def test_rejection_reasons(self, validator, overrides, expected_code):
        promo = make_promo_code(**overrides)

        with pytest.raises(PromoCodeRejectedError) as exc_info:
            validator.validate(promo, Decimal("100"), FIXED_NOW)

        assert exc_info.value.code == expected_code
        assert exc_info.value.http_status == 409


def test_normalize_code():
    assert normalize_code("  save10 ") == "SAVE10"
