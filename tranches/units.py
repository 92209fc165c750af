"""
units.py - Fixed-point NAV and tranche-unit amounts

Two disjoint Decimal-backed value types:

    NAV            common valuation unit, NAV_DECIMALS fractional digits
    TrancheAmount  native precision of a tranche's deposit asset

Arithmetic is only defined within a type (and, for TrancheAmount, within
one precision). Mixing the two raises TypeError, so a NAV can never be
added to a token amount by accident. Scaling by a plain Decimal ratio is
allowed and always states its rounding direction.

Every constructed value is quantized to its precision (ROUND_DOWN unless
stated) and checked against the representable range; leaving the range
raises FixedPointOverflow.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, ROUND_FLOOR
from typing import Union

from .core import FixedPointOverflow


NAV_DECIMALS = 18

# Magnitude bound for any fixed-point value.
MAX_FIXED_POINT = Decimal(10) ** 40

Number = Union[Decimal, int, str]


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # Floats go through str() to avoid binary expansion noise
        return Decimal(str(value))
    return Decimal(value)


def _quantize(value: Decimal, decimals: int, rounding: str) -> Decimal:
    if value.is_nan() or value.is_infinite():
        raise FixedPointOverflow(f"Non-finite fixed-point value: {value}")
    if abs(value) >= MAX_FIXED_POINT:
        raise FixedPointOverflow(f"Fixed-point value out of range: {value}")
    return value.quantize(Decimal(10) ** -decimals, rounding=rounding)


@dataclass(frozen=True, slots=True, order=True)
class NAV:
    """
    A value in the common valuation unit.

    NAV may be negative when it represents a delta; stored NAVs
    (effective NAV, debts) are kept non-negative by the accountant.
    """
    value: Decimal

    def __post_init__(self):
        object.__setattr__(self, 'value', _quantize(_to_decimal(self.value), NAV_DECIMALS, ROUND_DOWN))

    @classmethod
    def of(cls, value: Number, rounding: str = ROUND_DOWN) -> NAV:
        """Build a NAV with an explicit rounding direction."""
        return cls(_quantize(_to_decimal(value), NAV_DECIMALS, rounding))

    @classmethod
    def zero(cls) -> NAV:
        return cls(Decimal(0))

    def _check(self, other) -> None:
        if not isinstance(other, NAV):
            raise TypeError(f"Cannot combine NAV with {type(other).__name__}")

    def __add__(self, other: NAV) -> NAV:
        self._check(other)
        return NAV(self.value + other.value)

    def __sub__(self, other: NAV) -> NAV:
        self._check(other)
        return NAV(self.value - other.value)

    def __neg__(self) -> NAV:
        return NAV(-self.value)

    def __abs__(self) -> NAV:
        return NAV(abs(self.value))

    def __bool__(self) -> bool:
        return self.value != 0

    def is_positive(self) -> bool:
        return self.value > 0

    def is_negative(self) -> bool:
        return self.value < 0

    def saturating_sub(self, other: NAV) -> NAV:
        """self - other, floored at zero."""
        self._check(other)
        return NAV(max(self.value - other.value, Decimal(0)))

    def scale(self, ratio: Number, rounding: str = ROUND_FLOOR) -> NAV:
        """self * ratio, rounded to NAV precision in the given direction."""
        return NAV.of(self.value * _to_decimal(ratio), rounding)

    def mul_div(self, numerator: Number, denominator: Number, rounding: str = ROUND_FLOOR) -> NAV:
        """
        self * numerator / denominator with a single rounding step.

        Raises:
            ZeroDivisionError: if denominator is zero
        """
        denominator = _to_decimal(denominator)
        if denominator == 0:
            raise ZeroDivisionError("mul_div by zero")
        return NAV.of(self.value * _to_decimal(numerator) / denominator, rounding)

    def ratio_to(self, other: NAV) -> Decimal:
        """Unrounded self / other as a plain Decimal."""
        self._check(other)
        if other.value == 0:
            raise ZeroDivisionError("ratio to zero NAV")
        return self.value / other.value

    def __repr__(self) -> str:
        return f"NAV({self.value.normalize():f})"


@dataclass(frozen=True, slots=True, order=True)
class TrancheAmount:
    """
    An amount of a tranche's deposit asset, in the asset's native precision.

    Amounts of different precision are different denominations and do not mix.
    """
    value: Decimal
    decimals: int = NAV_DECIMALS

    def __post_init__(self):
        if self.decimals < 0:
            raise ValueError(f"decimals must be non-negative, got {self.decimals}")
        object.__setattr__(self, 'value', _quantize(_to_decimal(self.value), self.decimals, ROUND_DOWN))

    @classmethod
    def of(cls, value: Number, decimals: int, rounding: str = ROUND_DOWN) -> TrancheAmount:
        return cls(_quantize(_to_decimal(value), decimals, rounding), decimals)

    @classmethod
    def zero(cls, decimals: int) -> TrancheAmount:
        return cls(Decimal(0), decimals)

    def _check(self, other) -> None:
        if not isinstance(other, TrancheAmount):
            raise TypeError(f"Cannot combine TrancheAmount with {type(other).__name__}")
        if other.decimals != self.decimals:
            raise TypeError(
                f"Cannot combine amounts of {self.decimals} and {other.decimals} decimals"
            )

    def __add__(self, other: TrancheAmount) -> TrancheAmount:
        self._check(other)
        return TrancheAmount(self.value + other.value, self.decimals)

    def __sub__(self, other: TrancheAmount) -> TrancheAmount:
        self._check(other)
        return TrancheAmount(self.value - other.value, self.decimals)

    def __bool__(self) -> bool:
        return self.value != 0

    def is_positive(self) -> bool:
        return self.value > 0

    def saturating_sub(self, other: TrancheAmount) -> TrancheAmount:
        self._check(other)
        return TrancheAmount(max(self.value - other.value, Decimal(0)), self.decimals)

    def min(self, other: TrancheAmount) -> TrancheAmount:
        self._check(other)
        return self if self.value <= other.value else other

    def scale(self, ratio: Number, rounding: str = ROUND_FLOOR) -> TrancheAmount:
        return TrancheAmount.of(self.value * _to_decimal(ratio), self.decimals, rounding)

    def __repr__(self) -> str:
        return f"TrancheAmount({self.value.normalize():f}, decimals={self.decimals})"


def nav_min(a: NAV, b: NAV) -> NAV:
    return a if a <= b else b


def nav_max(a: NAV, b: NAV) -> NAV:
    return a if a >= b else b


ZERO_NAV = NAV(Decimal(0))
