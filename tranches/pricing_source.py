"""
pricing_source.py - Prices of tranche assets in the NAV unit

Venues report value in their tranche's native units; the kernel converts
those amounts into the common NAV unit with a pricing source.

Classes:
- PricingSource: Protocol defining the pricing interface
- StaticPricingSource: Time-independent prices
- TimeSeriesPricingSource: Time-varying prices with historical data

Functions:
- to_nav: tranche units -> NAV
- to_tranche_units: NAV -> tranche units
"""

from bisect import bisect_right
from datetime import datetime
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable

from .core import LedgerError
from .units import NAV, TrancheAmount


class MissingPrice(LedgerError):
    """No price is available for an asset at the requested time."""
    code = "MISSING_PRICE"


@runtime_checkable
class PricingSource(Protocol):
    """
    Protocol for pricing sources.

    get_price() returns the NAV value of one whole unit of the asset at
    the timestamp, or None when unknown.
    """
    base_currency: str

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        ...


class StaticPricingSource:
    """
    Pricing source with static prices (time-independent).

    The base currency always has a price of 1.
    """

    def __init__(self, prices: Dict[str, Decimal], base_currency: str = "USD"):
        self.base_currency = base_currency
        self.prices = {symbol: Decimal(str(price)) for symbol, price in prices.items()}
        self.prices[base_currency] = Decimal("1")

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        """Get static price (timestamp is ignored)."""
        return self.prices.get(unit_symbol)

    def update_price(self, unit_symbol: str, price: Decimal):
        """Reprice an asset, e.g. to mark a depeg of a tranche's collateral."""
        self.prices[unit_symbol] = Decimal(str(price))

    def __repr__(self):
        return f"StaticPricingSource({len(self.prices)} prices, base={self.base_currency})"


class TimeSeriesPricingSource:
    """
    Pricing source with time-varying prices.

    Uses the most recent price at or before the requested timestamp.
    """

    def __init__(
        self,
        price_paths: Optional[Dict[str, List[Tuple[datetime, Decimal]]]] = None,
        base_currency: str = "USD"
    ):
        """
        Args:
            price_paths: Optional dict mapping asset symbols to (timestamp, price) lists.
            base_currency: Base currency for prices

        Example:
            pricer = TimeSeriesPricingSource({
                'sUSDe': [(t0, Decimal("1.00")), (t1, Decimal("1.01"))],
            })
        """
        self.base_currency = base_currency
        self.price_history: Dict[str, List[Tuple[datetime, Decimal]]] = {}
        if price_paths:
            for unit, path in price_paths.items():
                if path:
                    self.price_history[unit] = sorted(path, key=lambda x: x[0])

    def add_price(self, unit_symbol: str, timestamp: datetime, price: Decimal):
        self.price_history.setdefault(unit_symbol, []).append((timestamp, Decimal(str(price))))
        self.price_history[unit_symbol].sort(key=lambda x: x[0])

    def get_price(self, unit_symbol: str, timestamp: datetime) -> Optional[Decimal]:
        """
        Get price at or before the specified timestamp (binary search).

        Returns None if no price data is available before the timestamp.
        """
        if unit_symbol == self.base_currency:
            return Decimal("1")
        history = self.price_history.get(unit_symbol)
        if not history:
            return None
        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None
        return history[idx - 1][1]

    def __repr__(self):
        total_observations = sum(len(history) for history in self.price_history.values())
        return f"TimeSeriesPricingSource({len(self.price_history)} units, {total_observations} observations, base={self.base_currency})"


def _require_price(pricing: PricingSource, asset: str, timestamp: datetime) -> Decimal:
    price = pricing.get_price(asset, timestamp)
    if price is None:
        raise MissingPrice(f"No price for {asset} at {timestamp}")
    if price < 0:
        raise MissingPrice(f"Negative price for {asset} at {timestamp}: {price}")
    return price


def to_nav(pricing: PricingSource, asset: str, amount: TrancheAmount, timestamp: datetime) -> NAV:
    """Value an amount of a tranche asset in NAV (floored)."""
    return NAV.of(amount.value * _require_price(pricing, asset, timestamp), ROUND_FLOOR)


def to_tranche_units(
    pricing: PricingSource,
    asset: str,
    nav: NAV,
    decimals: int,
    timestamp: datetime,
    rounding: str = ROUND_FLOOR,
) -> TrancheAmount:
    """
    Convert a NAV into units of a tranche asset.

    Floors by default: a payout never exceeds the NAV it represents.

    Raises:
        MissingPrice: if the asset has no price, or a zero price
    """
    price = _require_price(pricing, asset, timestamp)
    if price == 0:
        raise MissingPrice(f"Zero price for {asset} at {timestamp}")
    return TrancheAmount.of(nav.value / price, decimals, rounding)
