"""
adapters.py - Yield venues holding each tranche's capital

A venue is where a tranche's deposits are invested. The kernel only needs
four things from it: how much it holds (its raw value, in tranche units),
how much it can take, how much it can release, and the moves that put
assets in or take them out. Queries never mutate; deposits and
withdrawals are returned as Moves so the kernel can fold them into a
single atomic transaction.

Classes:
- TrancheVenue: Protocol defining the venue interface
- SyncVaultAdapter: a synchronous vault, fully liquid, optional capacity
- LendingMarketAdapter: a lending market; supplied assets are lent out,
  earn interest, and are only withdrawable up to idle liquidity
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Protocol, runtime_checkable

from .core import (
    LedgerView, Move, SYSTEM_WALLET, ConfigurationError, QUANTITY_EPSILON,
    build_transaction,
)
from .units import TrancheAmount


# Capacity reported by venues without a deposit cap.
UNLIMITED = Decimal(10) ** 30

SECONDS_PER_YEAR = Decimal(365 * 24 * 3600)


@runtime_checkable
class TrancheVenue(Protocol):
    """
    Protocol for yield venues.

    total_assets() is the raw value used by every sync. It must be
    queryable without side effects so dry-run views stay read-only.
    total_assets_after(moves) is the same value once moves not yet
    executed have run, so an operation and its re-baseline commit together.
    """
    asset: str
    decimals: int

    def total_assets(self) -> TrancheAmount:
        ...

    def max_deposit(self) -> TrancheAmount:
        ...

    def max_withdraw(self) -> TrancheAmount:
        ...

    def deposit_moves(self, amount: TrancheAmount, source: str, contract_id: str) -> List[Move]:
        ...

    def withdraw_moves(self, amount: TrancheAmount, dest: str, contract_id: str) -> List[Move]:
        ...

    def total_assets_after(self, moves: Iterable[Move]) -> TrancheAmount:
        ...


def _net_inflow(moves: Iterable[Move], asset: str, wallet: str) -> Decimal:
    """Net quantity of asset the moves bring into wallet."""
    inflow = Decimal("0")
    for move in moves:
        if move.unit_symbol != asset:
            continue
        if move.dest == wallet:
            inflow += move.quantity
        if move.source == wallet:
            inflow -= move.quantity
    return inflow


def _transfer(amount: TrancheAmount, asset: str, source: str, dest: str, contract_id: str) -> List[Move]:
    if amount.value < QUANTITY_EPSILON:
        return []
    return [Move(amount.value, asset, source, dest, contract_id)]


class SyncVaultAdapter:
    """
    Synchronous vault: assets sit in a venue wallet and are always liquid.

    Yield and losses show up as changes of the venue wallet's balance (or of
    the asset's price in the pricing source).
    """

    def __init__(
        self,
        view: LedgerView,
        asset: str,
        venue_wallet: str,
        decimals: int = 18,
        deposit_cap: Optional[Decimal] = None,
    ):
        if not venue_wallet or venue_wallet == SYSTEM_WALLET:
            raise ConfigurationError("Vault adapter needs a dedicated venue wallet")
        self.view = view
        self.asset = asset
        self.venue_wallet = venue_wallet
        self.decimals = decimals
        self.deposit_cap = Decimal(str(deposit_cap)) if deposit_cap is not None else None

    def total_assets(self) -> TrancheAmount:
        return TrancheAmount(self.view.get_balance(self.venue_wallet, self.asset), self.decimals)

    def total_assets_after(self, moves: Iterable[Move]) -> TrancheAmount:
        """total_assets() once moves have executed."""
        return TrancheAmount(
            self.view.get_balance(self.venue_wallet, self.asset) + _net_inflow(moves, self.asset, self.venue_wallet),
            self.decimals,
        )

    def max_deposit(self) -> TrancheAmount:
        if self.deposit_cap is None:
            return TrancheAmount(UNLIMITED, self.decimals)
        return TrancheAmount(max(self.deposit_cap - self.total_assets().value, Decimal(0)), self.decimals)

    def max_withdraw(self) -> TrancheAmount:
        return self.total_assets()

    def deposit_moves(self, amount: TrancheAmount, source: str, contract_id: str) -> List[Move]:
        return _transfer(amount, self.asset, source, self.venue_wallet, contract_id)

    def withdraw_moves(self, amount: TrancheAmount, dest: str, contract_id: str) -> List[Move]:
        return _transfer(amount, self.asset, self.venue_wallet, dest, contract_id)

    def __repr__(self):
        return f"SyncVaultAdapter({self.asset} @ {self.venue_wallet})"


class LendingMarketAdapter:
    """
    Lending market: supplied assets are lent to borrowers.

    Raw value = idle cash + outstanding principal + interest accrued since
    the last accrual. Only idle cash can be withdrawn. A default is recorded
    with write_off(), which is how a lending venue reports a loss.

    Interest accrues linearly:
        interest = principal * borrow_rate * elapsed_seconds / SECONDS_PER_YEAR

    The loan book is the venue's own state, outside the kernel's ledger.
    borrow() and repay() execute their moves on the ledger directly because
    they are market activity, not tranche operations.
    """

    def __init__(
        self,
        ledger,
        asset: str,
        venue_wallet: str,
        decimals: int = 18,
        borrow_rate: Decimal = Decimal("0"),
    ):
        if not venue_wallet or venue_wallet == SYSTEM_WALLET:
            raise ConfigurationError("Lending adapter needs a dedicated venue wallet")
        borrow_rate = Decimal(str(borrow_rate))
        if borrow_rate < 0:
            raise ConfigurationError(f"borrow_rate must be non-negative, got {borrow_rate}")
        self.ledger = ledger
        self.asset = asset
        self.venue_wallet = venue_wallet
        self.decimals = decimals
        self.borrow_rate = borrow_rate
        self.principal = Decimal("0")
        self.accrued_interest = Decimal("0")
        self.last_accrual: datetime = ledger.current_time

    def _pending_interest(self, now: datetime) -> Decimal:
        if self.principal <= 0 or self.borrow_rate <= 0:
            return Decimal("0")
        elapsed = Decimal(str((now - self.last_accrual).total_seconds()))
        if elapsed <= 0:
            return Decimal("0")
        return self.principal * self.borrow_rate * elapsed / SECONDS_PER_YEAR

    def _accrue(self) -> None:
        now = self.ledger.current_time
        self.accrued_interest += self._pending_interest(now)
        self.last_accrual = now

    def idle_liquidity(self) -> Decimal:
        return self.ledger.get_balance(self.venue_wallet, self.asset)

    def debt(self) -> Decimal:
        """Outstanding principal plus all interest owed as of now."""
        return self.principal + self.accrued_interest + self._pending_interest(self.ledger.current_time)

    def utilization(self) -> Decimal:
        total = self.idle_liquidity() + self.debt()
        if total <= 0:
            return Decimal("0")
        return self.debt() / total

    def total_assets(self) -> TrancheAmount:
        return TrancheAmount(self.idle_liquidity() + self.debt(), self.decimals)

    def total_assets_after(self, moves: Iterable[Move]) -> TrancheAmount:
        """Moves only change idle cash; the loan book is untouched."""
        idle = self.idle_liquidity() + _net_inflow(moves, self.asset, self.venue_wallet)
        return TrancheAmount(idle + self.debt(), self.decimals)

    def max_deposit(self) -> TrancheAmount:
        return TrancheAmount(UNLIMITED, self.decimals)

    def max_withdraw(self) -> TrancheAmount:
        return TrancheAmount(self.idle_liquidity(), self.decimals)

    def deposit_moves(self, amount: TrancheAmount, source: str, contract_id: str) -> List[Move]:
        return _transfer(amount, self.asset, source, self.venue_wallet, contract_id)

    def withdraw_moves(self, amount: TrancheAmount, dest: str, contract_id: str) -> List[Move]:
        return _transfer(amount, self.asset, self.venue_wallet, dest, contract_id)

    # ------------------------------------------------------------------
    # Market activity
    # ------------------------------------------------------------------

    def borrow(self, borrower: str, amount: Decimal) -> None:
        """
        Lend idle liquidity to a borrower.

        Raises:
            ValueError: if amount exceeds idle liquidity or is not positive
        """
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError(f"Borrow amount must be positive, got {amount}")
        if amount > self.idle_liquidity():
            raise ValueError(f"Borrow of {amount} exceeds idle liquidity {self.idle_liquidity()}")
        self._accrue()
        self.ledger.execute_or_raise(build_transaction(
            self.ledger,
            [Move(amount, self.asset, self.venue_wallet, borrower, f"borrow:{self.venue_wallet}")],
            description=f"borrow:{self.asset}",
        ))
        self.principal += amount

    def repay(self, borrower: str, amount: Decimal) -> None:
        """Repay interest first, then principal."""
        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValueError(f"Repay amount must be positive, got {amount}")
        self._accrue()
        owed = self.principal + self.accrued_interest
        if amount > owed:
            raise ValueError(f"Repayment of {amount} exceeds debt {owed}")
        self.ledger.execute_or_raise(build_transaction(
            self.ledger,
            [Move(amount, self.asset, borrower, self.venue_wallet, f"repay:{self.venue_wallet}")],
            description=f"repay:{self.asset}",
        ))
        interest_paid = min(amount, self.accrued_interest)
        self.accrued_interest -= interest_paid
        self.principal -= amount - interest_paid

    def write_off(self, amount: Decimal) -> None:
        """Record a borrower default: the written-off debt stops counting as value."""
        amount = Decimal(str(amount))
        self._accrue()
        if amount <= 0 or amount > self.principal + self.accrued_interest:
            raise ValueError(f"Invalid write-off {amount}")
        interest_lost = min(amount, self.accrued_interest)
        self.accrued_interest -= interest_lost
        self.principal -= amount - interest_lost

    def __repr__(self):
        return f"LendingMarketAdapter({self.asset} @ {self.venue_wallet}, rate={self.borrow_rate})"
