"""
Unit Tests for points accrual

Tests cover:
1. Flat points-per-unit products
2. Price x percentage products
3. Malformed catalog values
"""

import pytest
from decimal import Decimal
from uuid import UUID

from loyalty.accrual import compute_points, points_per_unit
from loyalty.models import Product


PRODUCT_ID = UUID("11111111-1111-1111-1111-111111111111")


class TestFlatRewards:
    """Products that specify points_per_unit directly."""

    def test_points_per_unit_times_quantity(self):
        product = {"points_per_unit": 500}
        assert compute_points(product, 3) == 1500

    def test_flat_form_wins_over_price_form(self):
        product = {"points_per_unit": 40, "base_price": 2000, "reward_percentage": 5}
        assert points_per_unit(product) == 40

    def test_zero_points_per_unit(self):
        assert compute_points({"points_per_unit": 0}, 25) == 0

    def test_accepts_product_model(self):
        product = Product(id=PRODUCT_ID, product_name="Biofinity", points_per_unit=250)
        assert compute_points(product, 4) == 1000


class TestPriceRewards:
    """Products rewarded as a percentage of base price."""

    def test_price_percentage_scenario(self):
        """2000 at 5% is 100 points per unit, 10 units earn 1000."""
        product = {"base_price": Decimal("2000"), "reward_percentage": 5}
        assert points_per_unit(product) == 100
        assert compute_points(product, 10) == 1000

    def test_per_unit_points_are_floored_before_multiplying(self):
        # 999 * 3% = 29.97 -> 29 per unit
        product = {"base_price": Decimal("999"), "reward_percentage": 3}
        assert compute_points(product, 10) == 290

    def test_string_numbers_are_accepted(self):
        product = {"base_price": "1500.50", "reward_percentage": "8"}
        assert points_per_unit(product) == 120

    def test_product_model_with_price_form(self):
        product = Product(
            id=PRODUCT_ID, product_name="MyDay Toric",
            base_price=Decimal("2000"), reward_percentage=5,
        )
        assert compute_points(product, 2) == 200


class TestMalformedCatalogValues:
    """Bad catalog data yields 0 instead of NaN or an exception."""

    @pytest.mark.parametrize("value", [None, "", "abc", float("nan"), float("inf"), "NaN", "-Infinity"])
    def test_bad_points_per_unit_counts_as_zero(self, value):
        product = {"points_per_unit": value} if value is not None else {}
        assert compute_points(product, 5) == 0

    def test_missing_percentage_counts_as_zero(self):
        assert compute_points({"base_price": 2000}, 5) == 0

    def test_missing_price_counts_as_zero(self):
        assert compute_points({"reward_percentage": 5}, 5) == 0

    def test_negative_values_clamp_to_zero(self):
        assert compute_points({"points_per_unit": -50}, 4) == 0
        assert compute_points({"base_price": -2000, "reward_percentage": 5}, 4) == 0

    def test_bad_quantity_counts_as_zero(self):
        assert compute_points({"points_per_unit": 100}, "many") == 0
        assert compute_points({"points_per_unit": 100}, None) == 0

    def test_result_is_always_an_int(self):
        result = compute_points({"base_price": "1234.56", "reward_percentage": 7}, 3)
        assert isinstance(result, int)
        assert result == 86 * 3

    def test_deterministic(self):
        product = {"base_price": Decimal("2000"), "reward_percentage": 5}
        assert compute_points(product, 7) == compute_points(product, 7)
