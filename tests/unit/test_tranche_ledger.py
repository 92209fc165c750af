"""
test_tranche_ledger.py - Unit tests for the share/asset ledger

Tests:
- Registration of units and wallets
- Atomic execution and rejection
- Optimistic concurrency on unit state
- Logical clock
- Supply, double entry, clone and replay
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from tranches import (
    Ledger, Move, UnitStateChange, ExecuteResult, TransactionRejected,
    UnitNotRegistered, WalletNotRegistered, asset, market_unit, build_transaction,
    SYSTEM_WALLET,
)


T0 = datetime(2025, 1, 1)


@pytest.fixture
def bare():
    ledger = Ledger("bare", T0, verbose=False)
    ledger.register_unit(asset("USDC", "USD Coin", decimal_places=6))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


def issue(ledger, wallet, amount):
    return ledger.execute(build_transaction(ledger, [
        Move(Decimal(amount), "USDC", SYSTEM_WALLET, wallet, "faucet")
    ]))


class TestRegistration:

    def test_duplicate_wallet(self, bare):
        with pytest.raises(ValueError):
            bare.register_wallet("alice")

    def test_empty_wallet(self, bare):
        with pytest.raises(ValueError):
            bare.register_wallet("  ")

    def test_ensure_wallet_is_idempotent(self, bare):
        bare.ensure_wallet("carol")
        bare.ensure_wallet("carol")
        assert "carol" in bare.list_wallets()

    def test_duplicate_unit(self, bare):
        with pytest.raises(ValueError):
            bare.register_unit(asset("USDC", "again"))

    def test_unknown_lookups(self, bare):
        with pytest.raises(WalletNotRegistered):
            bare.get_balance("nobody", "USDC")
        with pytest.raises(UnitNotRegistered):
            bare.get_balance("alice", "ETH")
        with pytest.raises(UnitNotRegistered):
            bare.get_unit_state("ETH")


class TestExecution:

    def test_issue_and_transfer(self, bare):
        assert issue(bare, "alice", "100") is ExecuteResult.APPLIED
        result = bare.execute(build_transaction(bare, [Move(Decimal("40"), "USDC", "alice", "bob", "pay")]))
        assert result is ExecuteResult.APPLIED
        assert bare.get_balance("alice", "USDC") == Decimal("60")
        assert bare.get_balance("bob", "USDC") == Decimal("40")
        assert bare.total_supply("USDC") == Decimal("100")

    def test_overdraft_rejected_atomically(self, bare):
        issue(bare, "alice", "100")
        result = bare.execute(build_transaction(bare, [
            Move(Decimal("50"), "USDC", "alice", "bob", "a"),
            Move(Decimal("60"), "USDC", "alice", "bob", "b"),
        ]))
        assert result is ExecuteResult.REJECTED
        assert bare.get_balance("alice", "USDC") == Decimal("100")
        assert bare.get_balance("bob", "USDC") == Decimal("0")

    def test_execute_or_raise(self, bare):
        with pytest.raises(TransactionRejected) as exc:
            bare.execute_or_raise(build_transaction(bare, [Move(Decimal("1"), "USDC", "alice", "bob", "x")]))
        assert "alice" in exc.value.reason

    def test_unregistered_wallet_rejected(self, bare):
        result = bare.execute(build_transaction(bare, [Move(Decimal("1"), "USDC", SYSTEM_WALLET, "zed", "x")]))
        assert result is ExecuteResult.REJECTED

    def test_rounds_to_unit_precision(self, bare):
        issue(bare, "alice", "1.0000009")
        assert bare.get_balance("alice", "USDC") == Decimal("1.000000")

    def test_identical_transactions_are_not_deduplicated(self, bare):
        issue(bare, "alice", "10")
        issue(bare, "alice", "10")
        assert bare.get_balance("alice", "USDC") == Decimal("20")
        assert len(bare.transaction_log) == 2

    def test_future_timestamp_rejected(self, bare):
        pending = build_transaction(bare, [Move(Decimal("1"), "USDC", SYSTEM_WALLET, "alice", "x")])
        early = Ledger("early", T0 - timedelta(days=1), verbose=False)
        early.register_unit(asset("USDC", "USD Coin", decimal_places=6))
        early.register_wallet("alice")
        assert early.execute(pending) is ExecuteResult.REJECTED


class TestUnitState:

    def test_state_change_applies(self, bare):
        bare.register_unit(market_unit("MKT", {"version": 1}))
        old = bare.get_unit_state("MKT")
        bare.execute(build_transaction(bare, [], [UnitStateChange("MKT", old, {"version": 2})]))
        assert bare.get_unit_state("MKT") == {"version": 2}

    def test_stale_state_rejected(self, bare):
        bare.register_unit(market_unit("MKT", {"version": 1}))
        stale = bare.get_unit_state("MKT")
        bare.execute(build_transaction(bare, [], [UnitStateChange("MKT", stale, {"version": 2})]))
        result = bare.execute(build_transaction(bare, [], [UnitStateChange("MKT", stale, {"version": 3})]))
        assert result is ExecuteResult.REJECTED
        assert bare.get_unit_state("MKT") == {"version": 2}

    def test_returned_state_is_a_copy(self, bare):
        bare.register_unit(market_unit("MKT", {"nested": {"a": 1}}))
        state = bare.get_unit_state("MKT")
        state["nested"]["a"] = 99
        assert bare.get_unit_state("MKT") == {"nested": {"a": 1}}

    def test_changed_fields(self):
        change = UnitStateChange("MKT", {"a": 1, "b": 2}, {"a": 1, "b": 3, "c": 4})
        assert change.changed_fields() == {"b": (2, 3), "c": (None, 4)}


class TestClock:

    def test_time_only_moves_forward(self, bare):
        bare.advance_time(T0 + timedelta(hours=1))
        with pytest.raises(ValueError):
            bare.advance_time(T0)
        assert bare.current_time == T0 + timedelta(hours=1)


class TestIntegrity:

    def test_double_entry(self, bare):
        issue(bare, "alice", "100")
        bare.execute(build_transaction(bare, [Move(Decimal("30"), "USDC", "alice", SYSTEM_WALLET, "burn")]))
        check = bare.verify_double_entry()
        assert check['valid']
        assert bare.total_supply("USDC") == Decimal("70")

    def test_clone_is_independent(self, bare):
        issue(bare, "alice", "100")
        cloned = bare.clone()
        issue(cloned, "alice", "5")
        assert bare.get_balance("alice", "USDC") == Decimal("100")
        assert cloned.get_balance("alice", "USDC") == Decimal("105")

    def test_replay_reproduces_balances_and_state(self, bare):
        bare.register_unit(market_unit("MKT", {"version": 1}))
        issue(bare, "alice", "100")
        bare.advance_time(T0 + timedelta(days=2))
        old = bare.get_unit_state("MKT")
        bare.execute(build_transaction(bare, [Move(Decimal("25"), "USDC", "alice", "bob", "pay")],
                                       [UnitStateChange("MKT", old, {"version": 2})]))
        replayed = bare.replay()
        assert replayed.get_balance("alice", "USDC") == Decimal("75")
        assert replayed.get_balance("bob", "USDC") == Decimal("25")
        assert replayed.get_unit_state("MKT") == {"version": 2}
        assert replayed.current_time == bare.current_time

    def test_positions_index(self, bare):
        issue(bare, "alice", "100")
        issue(bare, "bob", "1")
        assert bare.get_positions("USDC") == {
            "alice": Decimal("100"), "bob": Decimal("1"), SYSTEM_WALLET: Decimal("-101"),
        }
