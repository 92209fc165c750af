"""
test_pricing.py - Unit tests for pricing sources and NAV conversion
"""

import pytest
from datetime import datetime
from decimal import Decimal

from tranches import (
    StaticPricingSource, TimeSeriesPricingSource, MissingPrice, PricingSource,
    NAV, TrancheAmount, to_nav, to_tranche_units,
)


T0 = datetime(2025, 1, 1)
T1 = datetime(2025, 1, 2)
T2 = datetime(2025, 1, 3)


class TestStaticPricingSource:

    def test_base_currency_is_one(self):
        pricing = StaticPricingSource({"sUSDe": Decimal("1.05")})
        assert pricing.get_price("USD", T0) == Decimal("1")
        assert pricing.get_price("sUSDe", T0) == Decimal("1.05")

    def test_unknown_asset(self):
        assert StaticPricingSource({}).get_price("ETH", T0) is None

    def test_update_price(self):
        pricing = StaticPricingSource({"sUSDe": 1})
        pricing.update_price("sUSDe", "0.9")
        assert pricing.get_price("sUSDe", T1) == Decimal("0.9")

    def test_satisfies_protocol(self):
        assert isinstance(StaticPricingSource({}), PricingSource)


class TestTimeSeriesPricingSource:

    @pytest.fixture
    def pricing(self):
        return TimeSeriesPricingSource({
            "sUSDe": [(T1, Decimal("1.01")), (T0, Decimal("1.00"))],
        })

    def test_uses_latest_at_or_before(self, pricing):
        assert pricing.get_price("sUSDe", T0) == Decimal("1.00")
        assert pricing.get_price("sUSDe", T1) == Decimal("1.01")
        assert pricing.get_price("sUSDe", T2) == Decimal("1.01")

    def test_none_before_first_observation(self, pricing):
        assert pricing.get_price("sUSDe", datetime(2024, 12, 31)) is None

    def test_add_price_keeps_order(self, pricing):
        pricing.add_price("sUSDe", T2, Decimal("1.02"))
        pricing.add_price("sUSDe", datetime(2025, 1, 1, 12), Decimal("1.005"))
        assert pricing.get_price("sUSDe", datetime(2025, 1, 1, 18)) == Decimal("1.005")
        assert pricing.get_price("sUSDe", T2) == Decimal("1.02")


class TestConversion:

    def test_to_nav_floors(self):
        pricing = StaticPricingSource({"X": Decimal("1") / Decimal("3")})
        nav = to_nav(pricing, "X", TrancheAmount(Decimal("1"), 6), T0)
        assert nav.value == Decimal("0.333333333333333333")

    def test_to_tranche_units_floors(self):
        pricing = StaticPricingSource({"X": Decimal("3")})
        amount = to_tranche_units(pricing, "X", NAV(Decimal("10")), 6, T0)
        assert amount == TrancheAmount(Decimal("3.333333"), 6)

    def test_missing_price(self):
        with pytest.raises(MissingPrice):
            to_nav(StaticPricingSource({}), "X", TrancheAmount(Decimal("1"), 6), T0)

    def test_zero_price_cannot_convert_back(self):
        pricing = StaticPricingSource({"X": Decimal("0")})
        assert to_nav(pricing, "X", TrancheAmount(Decimal("5"), 6), T0) == NAV(Decimal("0"))
        with pytest.raises(MissingPrice):
            to_tranche_units(pricing, "X", NAV(Decimal("1")), 6, T0)
