"""
tranches - Two-Tranche Accounting Kernel

A senior, loss-protected tranche and a junior, first-loss tranche share a
pool of yield-bearing collateral. The kernel keeps their effective NAVs
reconciled with what their venues actually hold, moves losses and yield
between them, accrues protocol fees above the high-water mark, and gates
deposits and redemptions on the coverage the junior provides.

Usage:
    from decimal import Decimal
    from tranches import (
        Ledger, Kernel, MarketConfig, SyncVaultAdapter, StaticPricingSource,
        StaticYDM, TrancheType, asset, build_transaction, Move, SYSTEM_WALLET,
    )

    ledger = Ledger("main")
    ledger.register_unit(asset("USDC", "USD Coin", decimal_places=6))
    for wallet in ("alice", "bob", "st_vault", "jt_vault", "treasury"):
        ledger.register_wallet(wallet)

    kernel = Kernel(
        ledger, "MKT",
        MarketConfig(coverage_ratio=Decimal("0.2"), beta=Decimal("0"),
                     st_protocol_fee_rate=Decimal("0.1"), jt_protocol_fee_rate=Decimal("0.1"),
                     jt_redemption_delay=86400, fixed_term_duration=7 * 86400, lltv=Decimal("0.9")),
        st_venue=SyncVaultAdapter(ledger, "USDC", "st_vault", decimals=6),
        jt_venue=SyncVaultAdapter(ledger, "USDC", "jt_vault", decimals=6),
        pricing=StaticPricingSource({"USDC": Decimal("1")}),
        ydm=StaticYDM(Decimal("0.3")),
        fee_recipient="treasury",
    )
    kernel.deposit(TrancheType.JUNIOR, Decimal("1000000"), "alice", "alice")
"""

__version__ = "0.1.0"

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    TrancheType,
    MarketState,
    LedgerError,
    InsufficientFunds,
    UnitNotRegistered,
    WalletNotRegistered,
    TransactionRejected,
    ConfigurationError,
    KernelError,
    CoverageRequirementUnsatisfied,
    FixedTermLockout,
    InsufficientRedeemableShares,
    RedemptionRequestNotFound,
    InsufficientLiquidity,
    DepositCapacityExceeded,
    InvalidTranche,
    FixedPointOverflow,
    AccountingInvariantViolation,
    asset,
    tranche_share,
    share_symbol,
    escrow_wallet,
    market_unit,
    SYSTEM_WALLET,
    UNIT_TYPE_ASSET,
    UNIT_TYPE_TRANCHE_SHARE,
    UNIT_TYPE_MARKET,
    QUANTITY_EPSILON,
)

# Ledger
from .ledger import Ledger

# Fixed-point values
from .units import NAV, TrancheAmount, NAV_DECIMALS, ZERO_NAV

# Coverage math
from .utils import (
    compute_utilization,
    compute_ltv,
    is_coverage_satisfied,
    max_senior_deposit_nav,
    max_junior_withdrawal_nav,
)

# Yield distribution models
from .ydm import YieldDistributionModel, StaticYDM, KinkedCurveYDM

# Pricing
from .pricing_source import (
    PricingSource,
    StaticPricingSource,
    TimeSeriesPricingSource,
    MissingPrice,
    to_nav,
    to_tranche_units,
)

# Venues
from .adapters import TrancheVenue, SyncVaultAdapter, LendingMarketAdapter

# Market configuration
from .config import MarketConfig, MAX_PROTOCOL_FEE_RATE

# Accounting
from .accountant import (
    Accountant,
    AccountingLedger,
    SyncedAccountingState,
    load_accounting_ledger,
    calculate_sync,
    calculate_post_op,
)

# Redemption queue
from .redemptions import RedemptionRequest

# Simulation
from .simulation import log_return_paths, price_paths, to_pricing_source

# Kernel and engine
from .kernel import Kernel, AssetClaims
from .lifecycle_engine import LifecycleEngine

__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'build_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult', 'TrancheType', 'MarketState',
    'LedgerError', 'InsufficientFunds',
    'UnitNotRegistered', 'WalletNotRegistered', 'TransactionRejected', 'ConfigurationError',
    'KernelError', 'CoverageRequirementUnsatisfied', 'FixedTermLockout',
    'InsufficientRedeemableShares', 'RedemptionRequestNotFound', 'InsufficientLiquidity',
    'DepositCapacityExceeded', 'InvalidTranche', 'FixedPointOverflow', 'AccountingInvariantViolation',
    'asset', 'tranche_share', 'share_symbol', 'escrow_wallet', 'market_unit',
    'SYSTEM_WALLET', 'UNIT_TYPE_ASSET', 'UNIT_TYPE_TRANCHE_SHARE', 'UNIT_TYPE_MARKET', 'QUANTITY_EPSILON',
    # Ledger
    'Ledger',
    # Values
    'NAV', 'TrancheAmount', 'NAV_DECIMALS', 'ZERO_NAV',
    # Coverage
    'compute_utilization', 'compute_ltv', 'is_coverage_satisfied',
    'max_senior_deposit_nav', 'max_junior_withdrawal_nav',
    # YDM
    'YieldDistributionModel', 'StaticYDM', 'KinkedCurveYDM',
    # Pricing
    'PricingSource', 'StaticPricingSource', 'TimeSeriesPricingSource', 'MissingPrice',
    'to_nav', 'to_tranche_units',
    # Venues
    'TrancheVenue', 'SyncVaultAdapter', 'LendingMarketAdapter',
    # Config
    'MarketConfig', 'MAX_PROTOCOL_FEE_RATE',
    # Accounting
    'Accountant', 'AccountingLedger', 'SyncedAccountingState', 'load_accounting_ledger',
    'calculate_sync', 'calculate_post_op',
    'RedemptionRequest',
    # Kernel
    'Kernel', 'AssetClaims', 'LifecycleEngine',
    # Simulation
    'log_return_paths', 'price_paths', 'to_pricing_source',
]
