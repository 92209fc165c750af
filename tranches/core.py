"""
Core types and pure functions for the tranche accounting system.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError, the kernel's gating errors, configuration and fatal errors
4. Type aliases: Positions, UnitState
5. Unit factories: deposit assets, tranche shares, market state units

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, ROUND_UP, getcontext
from enum import Enum
from typing import Dict, List, Set, Optional, Any, Protocol, Tuple, FrozenSet, runtime_checkable
import copy


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# NAV values carry 18 fractional digits and may reach 1e40, so the context
# needs more than 58 significant digits. 80 leaves room for intermediate
# products such as nav * shares / supply.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_TRANCHE_DECIMAL_CONTEXT = getcontext()
_TRANCHE_DECIMAL_CONTEXT.prec = 80
_TRANCHE_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and burning of shares and assets.
# The system wallet is exempt from balance validation.
SYSTEM_WALLET = "system"

UNIT_TYPE_ASSET = "ASSET"
UNIT_TYPE_TRANCHE_SHARE = "TRANCHE_SHARE"
UNIT_TYPE_MARKET = "MARKET"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-18")

# Tranche shares use the NAV precision.
SHARE_DECIMAL_PLACES = 18

DECIMAL_ROUNDING = {
    UNIT_TYPE_ASSET: ROUND_DOWN,
    UNIT_TYPE_TRANCHE_SHARE: ROUND_DOWN,
    'FEES': ROUND_UP,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Internal state for a unit (market accounting ledger, redemption queue, ...).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Venues, the accountant and the kernel's views query balances and unit
    state through this protocol. Functions accepting a LedgerView declare
    their read-only intent; only Ledger.execute() mutates.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a specific unit in a wallet."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def total_supply(self, unit_symbol: str) -> Decimal:
        """Return the total quantity of a unit held outside the system wallet."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    REJECTED: Transaction failed validation (balances, registration, timestamp).
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class TrancheType(Enum):
    """The two sides of the capital structure."""
    SENIOR = "ST"
    JUNIOR = "JT"

    @property
    def counterpart(self) -> 'TrancheType':
        return TrancheType.JUNIOR if self is TrancheType.SENIOR else TrancheType.SENIOR


class MarketState(Enum):
    """
    PERPETUAL: elastic operation, both tranches open subject to coverage.
    FIXED_TERM: grace period after the junior extended coverage. Junior
                deposits and senior redemptions are disabled.
    """
    PERPETUAL = "perpetual"
    FIXED_TERM = "fixed_term"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger and kernel errors."""
    code = "LEDGER_ERROR"


class InsufficientFunds(LedgerError):
    """Raised when a move would cause a wallet balance to fall below the unit's minimum."""
    code = "INSUFFICIENT_FUNDS"


class UnitNotRegistered(LedgerError):
    """Raised when attempting to operate on a unit that has not been registered with the ledger."""
    code = "UNIT_NOT_REGISTERED"


class WalletNotRegistered(LedgerError):
    """Raised when attempting to operate on a wallet that has not been registered with the ledger."""
    code = "WALLET_NOT_REGISTERED"


class TransactionRejected(LedgerError):
    """Raised by callers that require a pending transaction to apply."""
    code = "TRANSACTION_REJECTED"

    def __init__(self, reason: str):
        super().__init__(f"Transaction rejected: {reason}")
        self.reason = reason


class ConfigurationError(LedgerError):
    """Raised at market construction for out-of-range parameters or missing wallets."""
    code = "INVALID_CONFIGURATION"


class KernelError(LedgerError):
    """Base class for gating violations reported by the kernel."""
    code = "KERNEL_ERROR"


class CoverageRequirementUnsatisfied(KernelError):
    """The operation would leave the senior tranche under-covered by the junior."""
    code = "COVERAGE_REQUIREMENT_UNSATISFIED"


class FixedTermLockout(KernelError):
    """Junior deposits and senior redemptions are disabled during the fixed term."""
    code = "FIXED_TERM_LOCKOUT"


class InsufficientRedeemableShares(KernelError):
    """A redemption was requested or claimed outside its permitted amount or window."""
    code = "INSUFFICIENT_REDEEMABLE_SHARES"


class RedemptionRequestNotFound(KernelError):
    code = "REDEMPTION_REQUEST_NOT_FOUND"


class InsufficientLiquidity(KernelError):
    """A venue cannot release the assets needed to settle a claim."""
    code = "INSUFFICIENT_LIQUIDITY"


class DepositCapacityExceeded(KernelError):
    """A deposit exceeds what the venue can take, or the tranche has no value left to price shares against."""
    code = "DEPOSIT_CAPACITY_EXCEEDED"


class InvalidTranche(KernelError):
    """The operation does not exist for this tranche (e.g. async redeem on the senior)."""
    code = "INVALID_TRANCHE"


class FixedPointOverflow(ArithmeticError):
    """
    A fixed-point value left the representable range.

    Fatal: it means a venue reported a value the NAV unit cannot hold.
    """
    code = "FIXED_POINT_OVERFLOW"


class AccountingInvariantViolation(LedgerError):
    """Raw and effective NAV no longer reconcile. Fatal."""
    code = "ACCOUNTING_INVARIANT_VIOLATION"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Record of a unit state change with complete before/after snapshots.

    The market's accounting ledger and redemption queue are persisted this
    way, so every write is versioned in the transaction log.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for fields that differ."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            if old.get(key) != new.get(key):
                changes[key] = (old.get(key), new.get(key))
        return changes


@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (must be a finite, positive Decimal).
        unit_symbol: The unit being transferred (asset or tranche share).
        source: Wallet debited. SYSTEM_WALLET as source mints.
        dest: Wallet credited. SYSTEM_WALLET as dest burns.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution.

    Kernel operations build exactly one PendingTransaction holding every
    move and state change of the operation, so it applies all-or-nothing.

    Unlike content-addressed intents, two identical deposits are two
    distinct operations: there is no deduplication.
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    timestamp: datetime
    description: str = ""

    def is_empty(self) -> bool:
        return not self.moves and not self.state_changes

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.description!r})"


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    description: str = "",
) -> PendingTransaction:
    """
    Build a PendingTransaction stamped with the view's current time.

    State snapshots are deep-copied so later mutation of the caller's dicts
    cannot leak into the transaction.
    """
    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )
    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        timestamp=view.current_time,
        description=description,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes.

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (with old_state and new_state)
        timestamp: When the PendingTransaction was created
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        description: Operation label (e.g. "deposit:ST")
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    timestamp: datetime
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    description: str = ""
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes:
            raise ValueError("Transaction must have moves or state_changes")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        lines = [f"Transaction {self.exec_id} [{self.description}] @ {self.execution_time}"]
        for i, move in enumerate(self.moves):
            lines.append(f"  [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}")
        for sc in self.state_changes:
            lines.append(f"  [{sc.unit}] {len(sc.changed_fields())} field(s) changed")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit held in the ledger.

    Attributes:
        symbol: Short identifier (e.g. "USDC", "MKT-ST").
        name: Human-readable name.
        unit_type: ASSET, TRANCHE_SHARE or MARKET.
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """Return the unit's state as a new dict."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Round a value to this unit's precision with the unit type's rounding mode."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def asset(symbol: str, name: str, decimal_places: int = 18) -> Unit:
    """
    Create a deposit asset unit (the native denomination of a tranche).

    Args:
        symbol: Token symbol (e.g. "USDC").
        name: Full name.
        decimal_places: Native precision of the token.
    """
    if decimal_places < 0:
        raise ValueError(f"decimal_places must be non-negative, got {decimal_places}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_ASSET,
        decimal_places=decimal_places,
    )


def tranche_share(market: str, tranche: TrancheType) -> Unit:
    """Create the share unit of one tranche of a market (symbol "<market>-ST" / "<market>-JT")."""
    return Unit(
        symbol=share_symbol(market, tranche),
        name=f"{market} {'Senior' if tranche is TrancheType.SENIOR else 'Junior'} Tranche",
        unit_type=UNIT_TYPE_TRANCHE_SHARE,
        decimal_places=SHARE_DECIMAL_PLACES,
        _frozen_state=_freeze_state({'market': market, 'tranche': tranche.value}),
    )


def share_symbol(market: str, tranche: TrancheType) -> str:
    return f"{market}-{tranche.value}"


def escrow_wallet(market: str) -> str:
    """Wallet holding junior shares locked by pending redemption requests."""
    return f"{market}:jt_escrow"


def market_unit(market: str, state: UnitState) -> Unit:
    """
    Create the unit that persists a market's accounting ledger and redemption queue.

    A market unit carries no balances; only its state changes.
    """
    return Unit(
        symbol=market,
        name=f"{market} Tranche Market",
        unit_type=UNIT_TYPE_MARKET,
        _frozen_state=_freeze_state(state),
    )
