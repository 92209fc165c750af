"""
simulation.py - Random Price Paths for Tranche Assets

Vectorized generation of venue price paths for stress tests and demos.
Log-returns are Gaussian per step; an optional one-off shock models a
depeg or a venue exploit at a chosen step.

Provides:
- log_return_paths: (n_paths, n_steps) array of per-step log returns
- price_paths: cumulative prices from a start price
- to_pricing_source: wrap one path per asset as a TimeSeriesPricingSource
"""

import numpy as np
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Union

from .pricing_source import TimeSeriesPricingSource


Numeric = Union[float, np.ndarray]

# Digits kept when a float price becomes a Decimal.
PRICE_DIGITS = 12


def log_return_paths(
    n_paths: int,
    n_steps: int,
    drift: float,
    volatility: float,
    seed: Optional[int] = None,
    shock_step: Optional[int] = None,
    shock: float = 0.0,
) -> np.ndarray:
    """
    Per-step log returns, shape (n_paths, n_steps).

    drift and volatility are per step. shock is a simple return applied
    once at shock_step (e.g. -0.2 for a 20% drawdown).

    Raises:
        ValueError: for non-positive sizes, negative volatility, or a shock at or below -100%
    """
    if n_paths <= 0 or n_steps <= 0:
        raise ValueError("n_paths and n_steps must be positive")
    if not np.isfinite(volatility) or volatility < 0:
        raise ValueError("volatility must be non-negative and finite")
    if shock <= -1.0:
        raise ValueError("shock must be above -100%")

    rng = np.random.default_rng(seed)
    returns = drift - 0.5 * volatility ** 2 + volatility * rng.standard_normal((n_paths, n_steps))
    if shock_step is not None:
        if not 0 <= shock_step < n_steps:
            raise ValueError(f"shock_step must be in [0, {n_steps}), got {shock_step}")
        returns[:, shock_step] += np.log1p(shock)
    return returns


def price_paths(start_price: float, log_returns: np.ndarray) -> np.ndarray:
    """Prices after each step: start * exp(cumsum(log_returns))."""
    if start_price <= 0:
        raise ValueError("start_price must be positive")
    return start_price * np.exp(np.cumsum(log_returns, axis=-1))


def to_decimal_prices(prices: np.ndarray) -> List[Decimal]:
    return [Decimal(f"{p:.{PRICE_DIGITS}f}") for p in np.asarray(prices, dtype=float)]


def to_pricing_source(
    paths: Dict[str, np.ndarray],
    timestamps: List[datetime],
    base_currency: str = "USD",
) -> TimeSeriesPricingSource:
    """
    Build a pricing source from one price path per asset.

    paths[asset][i] is the price at timestamps[i].

    Raises:
        ValueError: if a path and the timestamps differ in length
    """
    price_history = {}
    for asset, path in paths.items():
        path = np.asarray(path, dtype=float)
        if path.ndim != 1 or len(path) != len(timestamps):
            raise ValueError(f"Path for {asset} must be 1-D with {len(timestamps)} points")
        price_history[asset] = list(zip(timestamps, to_decimal_prices(path)))
    return TimeSeriesPricingSource(price_history, base_currency=base_currency)
