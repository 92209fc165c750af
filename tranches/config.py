"""
config.py - Immutable per-market configuration

A market's risk parameters are fixed when the market is created. They are
validated once, here, so the accountant and the kernel can rely on them
without re-checking.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict

from .core import ConfigurationError, TrancheType


# Protocol fees above half of a tranche's yield are rejected.
MAX_PROTOCOL_FEE_RATE = Decimal("0.5")

_DECIMAL_FIELDS = ('coverage_ratio', 'beta', 'st_protocol_fee_rate', 'jt_protocol_fee_rate', 'lltv')


@dataclass(frozen=True, slots=True)
class MarketConfig:
    """
    Term sheet of a two-tranche market.

    coverage_ratio: fraction of senior exposure the junior must cover, in (0, 1]
    beta: how much of the junior's own raw NAV counts as exposure, in [0, 1]
    st_protocol_fee_rate / jt_protocol_fee_rate: share of new yield taken as fee
    jt_redemption_delay: seconds between a junior redeem request and its claim
    fixed_term_duration: seconds a FIXED_TERM lasts before the market reopens
    lltv: liquidation LTV; above it the junior does not lock the market
    forgive_coverage_debt_on_term_end: clear outstanding junior coverage debt
        when a fixed term expires
    """
    coverage_ratio: Decimal
    beta: Decimal
    st_protocol_fee_rate: Decimal
    jt_protocol_fee_rate: Decimal
    jt_redemption_delay: int
    fixed_term_duration: int
    lltv: Decimal
    forgive_coverage_debt_on_term_end: bool = True

    def __post_init__(self):
        """Convert float values to Decimal, then validate ranges."""
        for name in _DECIMAL_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))

        if not Decimal(0) < self.coverage_ratio <= Decimal(1):
            raise ConfigurationError(f"coverage_ratio must be in (0, 1], got {self.coverage_ratio}")
        if not Decimal(0) <= self.beta <= Decimal(1):
            raise ConfigurationError(f"beta must be in [0, 1], got {self.beta}")
        for name in ('st_protocol_fee_rate', 'jt_protocol_fee_rate'):
            rate = getattr(self, name)
            if not Decimal(0) <= rate <= MAX_PROTOCOL_FEE_RATE:
                raise ConfigurationError(
                    f"{name} must be in [0, {MAX_PROTOCOL_FEE_RATE}], got {rate}"
                )
        if self.jt_redemption_delay < 0:
            raise ConfigurationError(f"jt_redemption_delay must be >= 0, got {self.jt_redemption_delay}")
        if self.fixed_term_duration < 0:
            raise ConfigurationError(f"fixed_term_duration must be >= 0, got {self.fixed_term_duration}")
        if self.lltv <= 0:
            raise ConfigurationError(f"lltv must be positive, got {self.lltv}")

    def fee_rate(self, tranche) -> Decimal:
        if tranche is TrancheType.SENIOR:
            return self.st_protocol_fee_rate
        return self.jt_protocol_fee_rate

    def to_dict(self) -> Dict[str, Any]:
        return {
            'coverage_ratio': self.coverage_ratio,
            'beta': self.beta,
            'st_protocol_fee_rate': self.st_protocol_fee_rate,
            'jt_protocol_fee_rate': self.jt_protocol_fee_rate,
            'jt_redemption_delay': self.jt_redemption_delay,
            'fixed_term_duration': self.fixed_term_duration,
            'lltv': self.lltv,
            'forgive_coverage_debt_on_term_end': self.forgive_coverage_debt_on_term_end,
        }
