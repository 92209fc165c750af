"""
test_adapters.py - Unit tests for yield venues

Tests:
- SyncVaultAdapter: value, capacity, moves, value after pending moves
- LendingMarketAdapter: interest accrual, liquidity limits, write-offs
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from tranches import (
    SyncVaultAdapter, LendingMarketAdapter, TrancheVenue, TrancheAmount, Move,
    ConfigurationError, SYSTEM_WALLET,
)
from tranches.adapters import UNLIMITED


def usdc(x) -> TrancheAmount:
    return TrancheAmount(Decimal(str(x)), 6)


class TestSyncVaultAdapter:

    def test_total_assets_is_wallet_balance(self, ledger, mint):
        venue = SyncVaultAdapter(ledger, "USDC", "st_vault", decimals=6)
        mint(ledger, "st_vault", "1234.5")
        assert venue.total_assets() == usdc("1234.5")
        assert venue.max_withdraw() == usdc("1234.5")

    def test_uncapped_deposit(self, ledger):
        venue = SyncVaultAdapter(ledger, "USDC", "st_vault", decimals=6)
        assert venue.max_deposit().value == UNLIMITED

    def test_capped_deposit(self, ledger, mint):
        venue = SyncVaultAdapter(ledger, "USDC", "st_vault", decimals=6, deposit_cap=Decimal("1000"))
        mint(ledger, "st_vault", "400")
        assert venue.max_deposit() == usdc("600")
        mint(ledger, "st_vault", "700")
        assert venue.max_deposit() == usdc("0")

    def test_moves(self, ledger):
        venue = SyncVaultAdapter(ledger, "USDC", "st_vault", decimals=6)
        [deposit] = venue.deposit_moves(usdc("10"), "alice", "op")
        assert (deposit.source, deposit.dest, deposit.quantity) == ("alice", "st_vault", Decimal("10"))
        [withdraw] = venue.withdraw_moves(usdc("4"), "bob", "op")
        assert (withdraw.source, withdraw.dest, withdraw.quantity) == ("st_vault", "bob", Decimal("4"))

    def test_zero_amount_produces_no_moves(self, ledger):
        venue = SyncVaultAdapter(ledger, "USDC", "st_vault", decimals=6)
        assert venue.withdraw_moves(usdc("0"), "bob", "op") == []

    def test_system_wallet_rejected(self, ledger):
        with pytest.raises(ConfigurationError):
            SyncVaultAdapter(ledger, "USDC", SYSTEM_WALLET)

    def test_satisfies_protocol(self, ledger):
        assert isinstance(SyncVaultAdapter(ledger, "USDC", "st_vault"), TrancheVenue)

    def test_total_assets_after_pending_moves(self, ledger, mint):
        venue = SyncVaultAdapter(ledger, "USDC", "st_vault", decimals=6)
        mint(ledger, "st_vault", "100")
        moves = (
            venue.deposit_moves(usdc("10"), "alice", "op")
            + venue.withdraw_moves(usdc("4"), "bob", "op")
            + [Move(Decimal("5"), "MKT-ST", SYSTEM_WALLET, "st_vault", "op")]
        )
        assert venue.total_assets_after(moves) == usdc("106")
        assert venue.total_assets() == usdc("100")


class TestLendingMarketAdapter:

    @pytest.fixture
    def venue(self, ledger, mint):
        venue = LendingMarketAdapter(ledger, "USDC", "jt_vault", decimals=6, borrow_rate=Decimal("0.10"))
        mint(ledger, "jt_vault", "1000000")
        return venue

    def test_borrow_moves_cash_but_not_value(self, ledger, venue):
        venue.borrow("carol", Decimal("600000"))
        assert venue.idle_liquidity() == Decimal("400000")
        assert venue.total_assets() == usdc("1000000")
        assert venue.max_withdraw() == usdc("400000")
        assert venue.utilization() == Decimal("0.6")

    def test_total_assets_after_keeps_the_loan_book(self, venue):
        venue.borrow("carol", Decimal("600000"))
        moves = venue.withdraw_moves(usdc("100000"), "bob", "op")
        assert venue.total_assets_after(moves) == usdc("900000")
        assert venue.total_assets() == usdc("1000000")

    def test_interest_accrues_into_value(self, ledger, venue, advance):
        venue.borrow("carol", Decimal("365000"))
        advance(ledger, timedelta(days=1))
        # 365,000 * 10% / 365 = 100 per day
        assert venue.total_assets() == usdc("1000100")

    def test_repay_interest_first(self, ledger, venue, advance):
        venue.borrow("carol", Decimal("365000"))
        advance(ledger, timedelta(days=1))
        venue.repay("carol", Decimal("1100"))
        assert venue.accrued_interest == Decimal("0")
        assert venue.principal == Decimal("364000")
        assert venue.total_assets() == usdc("1000100")

    def test_borrow_above_liquidity_rejected(self, venue):
        with pytest.raises(ValueError):
            venue.borrow("carol", Decimal("1000001"))

    def test_write_off_is_a_loss(self, venue):
        venue.borrow("carol", Decimal("500000"))
        venue.write_off(Decimal("200000"))
        assert venue.total_assets() == usdc("800000")

    def test_write_off_above_debt_rejected(self, venue):
        venue.borrow("carol", Decimal("100"))
        with pytest.raises(ValueError):
            venue.write_off(Decimal("101"))

    def test_negative_rate_rejected(self, ledger):
        with pytest.raises(ConfigurationError):
            LendingMarketAdapter(ledger, "USDC", "jt_vault", borrow_rate=Decimal("-0.01"))
