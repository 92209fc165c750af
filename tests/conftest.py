"""
conftest.py - Shared pytest fixtures for tranche market tests

Provides common fixtures used across unit, functional and conformance tests:
- A ledger with a 6-decimal USDC asset, funded LP wallets and venue wallets
- Market configuration and kernel factories
- A market already holding junior and senior deposits
- Helpers that simulate venue yield and losses by minting or burning assets
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from tranches import (
    Ledger, Move, Kernel, MarketConfig, SyncVaultAdapter, StaticPricingSource,
    StaticYDM, TrancheType, asset, build_transaction, SYSTEM_WALLET,
)


T0 = datetime(2025, 1, 1)
DAY = timedelta(days=1)

LP_WALLETS = ("alice", "bob", "carol", "dave")
VENUE_WALLETS = ("st_vault", "jt_vault")
LP_FUNDING = Decimal("10000000")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def mint_asset(ledger: Ledger, wallet: str, amount, unit: str = "USDC") -> None:
    """Issue assets into a wallet (also how venue yield is simulated)."""
    ledger.execute_or_raise(build_transaction(ledger, [
        Move(Decimal(str(amount)), unit, SYSTEM_WALLET, wallet, "faucet")
    ]))


def burn_asset(ledger: Ledger, wallet: str, amount, unit: str = "USDC") -> None:
    """Destroy assets held by a wallet (how venue losses are simulated)."""
    ledger.execute_or_raise(build_transaction(ledger, [
        Move(Decimal(str(amount)), unit, wallet, SYSTEM_WALLET, "loss")
    ]))


def make_config(**overrides) -> MarketConfig:
    params = dict(
        coverage_ratio=Decimal("0.2"),
        beta=Decimal("0"),
        st_protocol_fee_rate=Decimal("0"),
        jt_protocol_fee_rate=Decimal("0"),
        jt_redemption_delay=int(DAY.total_seconds()),
        fixed_term_duration=int((7 * DAY).total_seconds()),
        lltv=Decimal("0.9"),
    )
    params.update(overrides)
    return MarketConfig(**params)


def make_ledger(name: str = "test") -> Ledger:
    ledger = Ledger(name, T0, verbose=False)
    ledger.register_unit(asset("USDC", "USD Coin", decimal_places=6))
    for wallet in LP_WALLETS + VENUE_WALLETS + ("treasury",):
        ledger.register_wallet(wallet)
    for wallet in LP_WALLETS:
        mint_asset(ledger, wallet, LP_FUNDING)
    return ledger


def make_kernel(
    ledger: Ledger,
    config: MarketConfig = None,
    ydm=None,
    market: str = "MKT",
    pricing=None,
    st_venue=None,
    jt_venue=None,
) -> Kernel:
    return Kernel(
        ledger,
        market,
        config or make_config(),
        st_venue=st_venue or SyncVaultAdapter(ledger, "USDC", "st_vault", decimals=6),
        jt_venue=jt_venue or SyncVaultAdapter(ledger, "USDC", "jt_vault", decimals=6),
        pricing=pricing or StaticPricingSource({"USDC": Decimal("1")}),
        ydm=ydm or StaticYDM(Decimal("0.3")),
        fee_recipient="treasury",
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ledger() -> Ledger:
    """Ledger at T0 with USDC, funded LPs and empty venue wallets."""
    return make_ledger()


@pytest.fixture
def kernel(ledger) -> Kernel:
    """Empty market: coverage 0.2, beta 0, no fees, 1 day delay, 7 day term."""
    return make_kernel(ledger)


@pytest.fixture
def funded_market(kernel) -> Kernel:
    """Market holding 1,000,000 junior (alice) and 300,000 senior (bob)."""
    kernel.deposit(TrancheType.JUNIOR, Decimal("1000000"), "alice", "alice")
    kernel.deposit(TrancheType.SENIOR, Decimal("300000"), "bob", "bob")
    return kernel


@pytest.fixture
def config_factory() -> Callable[..., MarketConfig]:
    return make_config


@pytest.fixture
def kernel_factory() -> Callable[..., Kernel]:
    return make_kernel


@pytest.fixture
def ledger_factory() -> Callable[..., Ledger]:
    return make_ledger


@pytest.fixture
def mint() -> Callable:
    return mint_asset


@pytest.fixture
def burn() -> Callable:
    return burn_asset


@pytest.fixture
def advance() -> Callable:
    """advance(ledger, delta): move the ledger clock forward by a timedelta."""
    def _advance(ledger: Ledger, delta: timedelta) -> datetime:
        ledger.advance_time(ledger.current_time + delta)
        return ledger.current_time
    return _advance
