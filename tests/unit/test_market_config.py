"""
test_market_config.py - Unit tests for MarketConfig validation
"""

import pytest
from decimal import Decimal

from tranches import MarketConfig, ConfigurationError, TrancheType, MAX_PROTOCOL_FEE_RATE


BASE = dict(
    coverage_ratio=Decimal("0.2"),
    beta=Decimal("0.5"),
    st_protocol_fee_rate=Decimal("0.1"),
    jt_protocol_fee_rate=Decimal("0.05"),
    jt_redemption_delay=86400,
    fixed_term_duration=604800,
    lltv=Decimal("0.9"),
)


def config(**overrides) -> MarketConfig:
    params = dict(BASE)
    params.update(overrides)
    return MarketConfig(**params)


class TestMarketConfig:

    def test_valid(self):
        cfg = config()
        assert cfg.coverage_ratio == Decimal("0.2")
        assert cfg.forgive_coverage_debt_on_term_end

    def test_floats_become_decimal(self):
        cfg = config(coverage_ratio=0.25, beta=1.0)
        assert cfg.coverage_ratio == Decimal("0.25")
        assert isinstance(cfg.beta, Decimal)

    @pytest.mark.parametrize("value", [Decimal("0"), Decimal("-0.1"), Decimal("1.01")])
    def test_coverage_range(self, value):
        with pytest.raises(ConfigurationError):
            config(coverage_ratio=value)

    def test_full_coverage_allowed(self):
        assert config(coverage_ratio=Decimal("1")).coverage_ratio == 1

    @pytest.mark.parametrize("value", [Decimal("-0.01"), Decimal("1.5")])
    def test_beta_range(self, value):
        with pytest.raises(ConfigurationError):
            config(beta=value)

    def test_fee_cap(self):
        assert config(st_protocol_fee_rate=MAX_PROTOCOL_FEE_RATE).st_protocol_fee_rate == MAX_PROTOCOL_FEE_RATE
        with pytest.raises(ConfigurationError):
            config(jt_protocol_fee_rate=Decimal("0.51"))
        with pytest.raises(ConfigurationError):
            config(st_protocol_fee_rate=Decimal("-0.01"))

    def test_negative_durations(self):
        with pytest.raises(ConfigurationError):
            config(jt_redemption_delay=-1)
        with pytest.raises(ConfigurationError):
            config(fixed_term_duration=-1)

    def test_lltv_positive(self):
        with pytest.raises(ConfigurationError):
            config(lltv=Decimal("0"))

    def test_fee_rate_by_tranche(self):
        cfg = config()
        assert cfg.fee_rate(TrancheType.SENIOR) == Decimal("0.1")
        assert cfg.fee_rate(TrancheType.JUNIOR) == Decimal("0.05")

    def test_immutable(self):
        with pytest.raises(AttributeError):
            config().beta = Decimal("0")

    def test_to_dict_round_trip(self):
        cfg = config(forgive_coverage_debt_on_term_end=False)
        assert MarketConfig(**cfg.to_dict()) == cfg
