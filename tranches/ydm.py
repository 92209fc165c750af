"""
ydm.py - Yield distribution models

A yield distribution model (YDM) decides what fraction of the senior
tranche's yield is paid to the junior tranche for the protection it sells.
The accountant consults it once per sync, before any mutation, and
integrates the answer over time.

Classes:
- YieldDistributionModel: Protocol defining the interface
- StaticYDM: a constant share
- KinkedCurveYDM: share rises with coverage utilization, steeply past a kink
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol, runtime_checkable

from .core import ConfigurationError, MarketState
from .units import NAV


ONE = Decimal(1)
ZERO = Decimal(0)


def _clamp_share(share: Decimal) -> Decimal:
    return min(max(share, ZERO), ONE)


@runtime_checkable
class YieldDistributionModel(Protocol):
    """
    Protocol for yield distribution models.

    Implementations must be pure functions of their arguments and return a
    fraction in [0, 1].
    """

    def junior_yield_share(
        self,
        market_state: MarketState,
        st_effective_nav: NAV,
        jt_effective_nav: NAV,
        beta: Decimal,
        coverage_ratio: Decimal,
        utilization: Decimal,
    ) -> Decimal:
        ...


@dataclass(frozen=True, slots=True)
class StaticYDM:
    """The junior always receives the same share of senior yield."""
    share: Decimal

    def __post_init__(self):
        if not isinstance(self.share, Decimal):
            object.__setattr__(self, 'share', Decimal(str(self.share)))
        if not ZERO <= self.share <= ONE:
            raise ConfigurationError(f"YDM share must be in [0, 1], got {self.share}")

    def junior_yield_share(self, market_state, st_effective_nav, jt_effective_nav,
                           beta, coverage_ratio, utilization) -> Decimal:
        return self.share


@dataclass(frozen=True, slots=True)
class KinkedCurveYDM:
    """
    Piecewise-linear share over coverage utilization.

        share(u) = base + slope_below * min(u, kink) + slope_above * max(0, u - kink)

    clamped to [0, 1]. While FIXED_TERM the junior is owed coverage and is
    paid at the kink rate or better, so the share never drops below the
    value at the kink.

    Example:
        ydm = KinkedCurveYDM(base=Decimal("0.05"), kink=Decimal("0.8"),
                             slope_below=Decimal("0.25"), slope_above=Decimal("2"))
        ydm.junior_yield_share(MarketState.PERPETUAL, st, jt, beta, cov, Decimal("0.5"))
        # -> 0.175
    """
    base: Decimal
    kink: Decimal
    slope_below: Decimal
    slope_above: Decimal

    def __post_init__(self):
        for name in ('base', 'kink', 'slope_below', 'slope_above'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        if not ZERO <= self.base <= ONE:
            raise ConfigurationError(f"YDM base must be in [0, 1], got {self.base}")
        if not ZERO < self.kink <= ONE:
            raise ConfigurationError(f"YDM kink must be in (0, 1], got {self.kink}")
        if self.slope_below < 0 or self.slope_above < 0:
            raise ConfigurationError("YDM slopes must be non-negative")

    def share_at(self, utilization: Decimal) -> Decimal:
        if utilization.is_infinite():
            return ONE
        u = max(utilization, ZERO)
        share = (
            self.base
            + self.slope_below * min(u, self.kink)
            + self.slope_above * max(ZERO, u - self.kink)
        )
        return _clamp_share(share)

    def junior_yield_share(self, market_state, st_effective_nav, jt_effective_nav,
                           beta, coverage_ratio, utilization) -> Decimal:
        share = self.share_at(utilization)
        if market_state is MarketState.FIXED_TERM:
            share = max(share, self.share_at(self.kink))
        return share
