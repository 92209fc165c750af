"""
accountant.py - NAV Synchronization and the Loss Waterfall

The Accountant owns a market's AccountingLedger: the last observed raw NAV
of each tranche, the effective NAV each tranche's shares are priced
against, and the debts the waterfall has created between the tranches.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - AccountingLedger: persisted accounting state of one market
   - Waterfall: intermediate effective NAVs and debts within one sync
   - SyncedAccountingState: result of a sync, returned to the kernel

2. PURE CALCULATION FUNCTIONS (calculate_* / apply_*):
   - Take all inputs explicitly as parameters
   - No LedgerView, no hidden state

3. ADAPTER FUNCTIONS (load_accounting_ledger / to_state_dict):
   - The ONLY place that reads or shapes the persisted market state

4. Accountant:
   - preview_sync: dry run over fresh raw NAVs
   - sync_accounting: preview, then persist atomically with the caller's moves
   - commit: persist a ledger (a sync, or the calculate_post_op result of
     an operation) in the same transaction as the operation's moves

Sync steps, in order:
    1. accumulator += junior_share * elapsed
    2. st_delta = fresh_st_raw - last_st_raw, jt_delta = fresh_jt_raw - last_jt_raw
    3. senior loss: junior absorbs min(loss, floor(coverage * jt_eff));
       the excess is senior IL
    4. senior gain: repay senior IL, split the rest; the junior portion
       repays junior coverage debt before it counts as yield
    5. junior delta: losses grow junior self IL, gains repay it first
    6. fee = floor(min(new_yield, eff_after - max(hwm, eff_before)) * rate)
    7. market state: expiry, senior IL, coverage debt growth below LLTV
    8. persist, raising each high-water mark to the new effective NAV

Invariant:
    st_raw + jt_raw == st_eff + jt_eff
Fees do not leave effective NAV; the kernel realizes them by minting shares.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, Iterable, Optional, Tuple

from .config import MarketConfig
from .core import (
    LedgerView, Move, UnitStateChange, MarketState, TrancheType,
    AccountingInvariantViolation,
    build_transaction,
)
from .units import NAV, ZERO_NAV, nav_max, nav_min
from .utils import compute_ltv, compute_utilization
from .ydm import YieldDistributionModel


# Largest |raw - effective| mismatch tolerated by the conservation check.
CONSERVATION_TOLERANCE = Decimal("1e-12")

ACCOUNTING_KEY = 'accounting'

_MICROSECOND = timedelta(microseconds=1)


def _seconds_between(start: datetime, end: datetime) -> Decimal:
    """Exact elapsed seconds, floored at zero."""
    micros = (end - start) // _MICROSECOND
    return Decimal(max(micros, 0)) / Decimal(1_000_000)


def _clamp_share(share: Decimal) -> Decimal:
    return min(max(Decimal(share), Decimal(0)), Decimal(1))


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class AccountingLedger:
    """
    Persisted accounting state of one market.

    last_jt_coverage_debt is what the junior has paid to cover senior losses
    (its claim on future senior recoveries). last_st_coverage_debt is senior
    impermanent loss: loss the junior could not absorb. last_jt_self_impermanent_loss
    is the junior's own-asset loss not yet recovered.

    st_high_water_mark / jt_high_water_mark are the highest effective NAV
    each tranche has reached, rescaled by deposits and redemptions so they
    track value per share. Never below the effective NAV.
    """
    last_st_raw_nav: NAV
    last_jt_raw_nav: NAV
    last_st_effective_nav: NAV
    last_jt_effective_nav: NAV
    last_jt_coverage_debt: NAV
    last_st_coverage_debt: NAV
    last_jt_self_impermanent_loss: NAV
    yield_share_accumulator: Decimal
    last_accrual_time: datetime
    last_distribution_time: datetime
    market_state: MarketState = MarketState.PERPETUAL
    fixed_term_entered_at: Optional[datetime] = None
    st_high_water_mark: NAV = ZERO_NAV
    jt_high_water_mark: NAV = ZERO_NAV

    def __post_init__(self):
        if not isinstance(self.yield_share_accumulator, Decimal):
            object.__setattr__(self, 'yield_share_accumulator', Decimal(str(self.yield_share_accumulator)))
        object.__setattr__(self, 'st_high_water_mark', nav_max(self.st_high_water_mark, self.last_st_effective_nav))
        object.__setattr__(self, 'jt_high_water_mark', nav_max(self.jt_high_water_mark, self.last_jt_effective_nav))

    @classmethod
    def initial(cls, now: datetime) -> AccountingLedger:
        return cls(
            last_st_raw_nav=ZERO_NAV,
            last_jt_raw_nav=ZERO_NAV,
            last_st_effective_nav=ZERO_NAV,
            last_jt_effective_nav=ZERO_NAV,
            last_jt_coverage_debt=ZERO_NAV,
            last_st_coverage_debt=ZERO_NAV,
            last_jt_self_impermanent_loss=ZERO_NAV,
            yield_share_accumulator=Decimal(0),
            last_accrual_time=now,
            last_distribution_time=now,
        )

    def raw_nav(self, tranche: TrancheType) -> NAV:
        return self.last_st_raw_nav if tranche is TrancheType.SENIOR else self.last_jt_raw_nav

    def effective_nav(self, tranche: TrancheType) -> NAV:
        return self.last_st_effective_nav if tranche is TrancheType.SENIOR else self.last_jt_effective_nav

    def high_water_mark(self, tranche: TrancheType) -> NAV:
        return self.st_high_water_mark if tranche is TrancheType.SENIOR else self.jt_high_water_mark


@dataclass(frozen=True, slots=True)
class Waterfall:
    """Effective NAVs, debts and recognised yield while a sync is in progress."""
    st_effective_nav: NAV
    jt_effective_nav: NAV
    st_impermanent_loss: NAV
    jt_coverage_debt: NAV
    jt_self_impermanent_loss: NAV
    st_new_yield: NAV = ZERO_NAV
    jt_new_yield: NAV = ZERO_NAV


@dataclass(frozen=True, slots=True)
class SyncedAccountingState:
    """
    Result of one sync, before or after persistence.

    ledger is the AccountingLedger the sync produced; the remaining fields
    are views of it plus the per-sync figures the kernel acts on (fees,
    utilization, LTV, the junior share used for the split).
    """
    st_raw_nav: NAV
    jt_raw_nav: NAV
    st_effective_nav: NAV
    jt_effective_nav: NAV
    st_impermanent_loss: NAV
    jt_coverage_impermanent_loss: NAV
    jt_self_impermanent_loss: NAV
    st_protocol_fee: NAV
    jt_protocol_fee: NAV
    market_state: MarketState
    utilization: Decimal
    ltv: Decimal
    junior_yield_share: Decimal
    ledger: AccountingLedger

    def raw_nav(self, tranche: TrancheType) -> NAV:
        return self.st_raw_nav if tranche is TrancheType.SENIOR else self.jt_raw_nav

    def effective_nav(self, tranche: TrancheType) -> NAV:
        return self.st_effective_nav if tranche is TrancheType.SENIOR else self.jt_effective_nav

    def protocol_fee(self, tranche: TrancheType) -> NAV:
        return self.st_protocol_fee if tranche is TrancheType.SENIOR else self.jt_protocol_fee


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def _nav(raw: Dict[str, Any], key: str) -> NAV:
    return NAV(Decimal(str(raw.get(key, 0))))


def from_state_dict(raw: Dict[str, Any]) -> AccountingLedger:
    """Build an AccountingLedger from its persisted dict form."""
    return AccountingLedger(
        last_st_raw_nav=_nav(raw, 'last_st_raw_nav'),
        last_jt_raw_nav=_nav(raw, 'last_jt_raw_nav'),
        last_st_effective_nav=_nav(raw, 'last_st_effective_nav'),
        last_jt_effective_nav=_nav(raw, 'last_jt_effective_nav'),
        last_jt_coverage_debt=_nav(raw, 'last_jt_coverage_debt'),
        last_st_coverage_debt=_nav(raw, 'last_st_coverage_debt'),
        last_jt_self_impermanent_loss=_nav(raw, 'last_jt_self_impermanent_loss'),
        yield_share_accumulator=Decimal(str(raw.get('yield_share_accumulator', 0))),
        last_accrual_time=raw['last_accrual_time'],
        last_distribution_time=raw['last_distribution_time'],
        market_state=MarketState(raw.get('market_state', MarketState.PERPETUAL.value)),
        fixed_term_entered_at=raw.get('fixed_term_entered_at'),
        st_high_water_mark=_nav(raw, 'st_high_water_mark'),
        jt_high_water_mark=_nav(raw, 'jt_high_water_mark'),
    )


def load_accounting_ledger(view: LedgerView, market: str) -> AccountingLedger:
    """
    Load a market's accounting ledger from ledger state.

    This is the ONLY function that reads the accounting ledger from a
    LedgerView; every calculation takes the returned dataclass explicitly.
    """
    return from_state_dict(view.get_unit_state(market)[ACCOUNTING_KEY])


def to_state_dict(accounting: AccountingLedger) -> Dict[str, Any]:
    """Convert an AccountingLedger to its persisted dict form."""
    return {
        'last_st_raw_nav': accounting.last_st_raw_nav.value,
        'last_jt_raw_nav': accounting.last_jt_raw_nav.value,
        'last_st_effective_nav': accounting.last_st_effective_nav.value,
        'last_jt_effective_nav': accounting.last_jt_effective_nav.value,
        'last_jt_coverage_debt': accounting.last_jt_coverage_debt.value,
        'last_st_coverage_debt': accounting.last_st_coverage_debt.value,
        'last_jt_self_impermanent_loss': accounting.last_jt_self_impermanent_loss.value,
        'yield_share_accumulator': accounting.yield_share_accumulator,
        'last_accrual_time': accounting.last_accrual_time,
        'last_distribution_time': accounting.last_distribution_time,
        'market_state': accounting.market_state.value,
        'fixed_term_entered_at': accounting.fixed_term_entered_at,
        'st_high_water_mark': accounting.st_high_water_mark.value,
        'jt_high_water_mark': accounting.jt_high_water_mark.value,
    }


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_yield_accrual(
    accumulator: Decimal,
    junior_share: Decimal,
    last_accrual_time: datetime,
    now: datetime,
) -> Decimal:
    """accumulator + share * elapsed seconds."""
    return accumulator + junior_share * _seconds_between(last_accrual_time, now)


def calculate_time_weighted_share(
    accumulator: Decimal,
    last_distribution_time: datetime,
    now: datetime,
    instantaneous_share: Decimal,
) -> Decimal:
    """
    Average junior share since the last distribution.

    Falls back to the instantaneous share when no time has elapsed.
    """
    elapsed = _seconds_between(last_distribution_time, now)
    if elapsed == 0:
        return _clamp_share(instantaneous_share)
    return _clamp_share(accumulator / elapsed)


def calculate_absorption_capacity(jt_effective_nav: NAV, coverage_ratio: Decimal) -> NAV:
    """Most of one senior loss the junior takes on: floor(coverage * jt_eff)."""
    return jt_effective_nav.scale(coverage_ratio, ROUND_FLOOR)


def apply_senior_loss(w: Waterfall, loss: NAV, config: MarketConfig) -> Waterfall:
    """
    The junior absorbs a senior loss up to its absorption capacity.

    The senior loss counts dollar for dollar against the capacity; beta
    already sizes the junior's pledge through utilization, and a co-exposed
    junior's own loss arrives through its raw delta. What is covered becomes
    junior coverage debt. The excess reduces the senior's effective NAV and
    becomes senior impermanent loss. A senior with nothing left passes the
    rest back to the junior, which keeps raw and effective NAV reconciled.
    """
    capacity = calculate_absorption_capacity(w.jt_effective_nav, config.coverage_ratio)
    covered = nav_min(loss, capacity)
    excess = loss - covered
    senior_hit = nav_min(excess, w.st_effective_nav)
    covered = covered + nav_min(excess - senior_hit, w.jt_effective_nav - covered)
    return replace(
        w,
        jt_effective_nav=w.jt_effective_nav - covered,
        jt_coverage_debt=w.jt_coverage_debt + covered,
        st_effective_nav=w.st_effective_nav - senior_hit,
        st_impermanent_loss=w.st_impermanent_loss + senior_hit,
    )


def _credit_junior(w: Waterfall, gain: NAV, coverage_repayable: bool = False) -> Waterfall:
    """
    Credit a junior gain.

    It repays junior coverage debt first (only for the junior's portion of
    a senior gain), then junior self impermanent loss; the rest is new yield.
    """
    repaid = nav_min(gain, w.jt_coverage_debt) if coverage_repayable else ZERO_NAV
    recovery = nav_min(gain - repaid, w.jt_self_impermanent_loss)
    return replace(
        w,
        jt_effective_nav=w.jt_effective_nav + gain,
        jt_coverage_debt=w.jt_coverage_debt - repaid,
        jt_self_impermanent_loss=w.jt_self_impermanent_loss - recovery,
        jt_new_yield=w.jt_new_yield + (gain - repaid - recovery),
    )


def apply_senior_gain(w: Waterfall, gain: NAV, junior_share: Decimal) -> Tuple[Waterfall, NAV]:
    """
    Distribute a senior gain.

    Senior impermanent loss is repaid first. The remainder is split by
    junior_share (junior portion floored), and the junior portion repays
    junior coverage debt before any of it is new junior yield.

    Returns:
        (waterfall, remainder that was split)
    """
    st_repay = nav_min(gain, w.st_impermanent_loss)
    remainder = gain - st_repay
    w = replace(
        w,
        st_effective_nav=w.st_effective_nav + st_repay,
        st_impermanent_loss=w.st_impermanent_loss - st_repay,
    )
    if not remainder.is_positive():
        return w, ZERO_NAV

    jt_portion = remainder.scale(junior_share, ROUND_FLOOR)
    st_portion = remainder - jt_portion
    w = replace(
        w,
        st_effective_nav=w.st_effective_nav + st_portion,
        st_new_yield=w.st_new_yield + st_portion,
    )
    return _credit_junior(w, jt_portion, coverage_repayable=True), remainder


def apply_junior_delta(w: Waterfall, delta: NAV) -> Waterfall:
    """
    Apply the junior's own-asset change.

    A loss larger than the junior's effective NAV can only come out of the
    senior's effective NAV, where it is recorded as senior impermanent loss.
    """
    if delta.is_positive():
        return _credit_junior(w, delta)
    if not delta.is_negative():
        return w
    loss = -delta
    absorbed = nav_min(loss, w.jt_effective_nav)
    overflow = loss - absorbed
    return replace(
        w,
        jt_effective_nav=w.jt_effective_nav - absorbed,
        jt_self_impermanent_loss=w.jt_self_impermanent_loss + absorbed,
        st_effective_nav=w.st_effective_nav.saturating_sub(overflow),
        st_impermanent_loss=w.st_impermanent_loss + overflow,
    )


def calculate_protocol_fee(
    new_yield: NAV,
    eff_before: NAV,
    eff_after: NAV,
    high_water_mark: NAV,
    rate: Decimal,
) -> NAV:
    """
    Fee on the part of this sync's gain that is above the high-water mark.

        eligible = min(new_yield, max(0, eff_after - max(hwm, eff_before)))
        fee      = floor(eligible * rate)

    Debt recoveries never count as new yield, and nothing below the
    high-water mark is eligible, so a tranche climbing back to its peak
    pays nothing (including after forgiven coverage debt).
    """
    eligible = nav_min(new_yield, eff_after.saturating_sub(nav_max(high_water_mark, eff_before)))
    if not eligible.is_positive() or rate <= 0:
        return ZERO_NAV
    return eligible.scale(rate, ROUND_FLOOR)


def calculate_market_state(
    config: MarketConfig,
    market_state: MarketState,
    fixed_term_entered_at: Optional[datetime],
    jt_coverage_debt: NAV,
    jt_coverage_debt_before: NAV,
    st_impermanent_loss: NAV,
    ltv: Decimal,
    now: datetime,
) -> Tuple[MarketState, Optional[datetime], NAV]:
    """
    Drive the PERPETUAL / FIXED_TERM state machine.

    Returns:
        (market_state, fixed_term_entered_at, jt_coverage_debt)
    """
    debt_increased = jt_coverage_debt > jt_coverage_debt_before

    if market_state is MarketState.FIXED_TERM:
        expires_at = fixed_term_entered_at + timedelta(seconds=config.fixed_term_duration)
        if now >= expires_at:
            market_state, fixed_term_entered_at = MarketState.PERPETUAL, None
            if config.forgive_coverage_debt_on_term_end:
                # Debt created during this sync is not part of the expired term
                jt_coverage_debt = jt_coverage_debt - nav_min(jt_coverage_debt, jt_coverage_debt_before)

    if st_impermanent_loss.is_positive():
        return MarketState.PERPETUAL, None, jt_coverage_debt

    if debt_increased and ltv < config.lltv and market_state is not MarketState.FIXED_TERM:
        return MarketState.FIXED_TERM, now, jt_coverage_debt

    return market_state, fixed_term_entered_at, jt_coverage_debt


def check_conservation(st_raw: NAV, jt_raw: NAV, st_eff: NAV, jt_eff: NAV) -> None:
    """
    Raises:
        AccountingInvariantViolation: if raw and effective NAV do not reconcile
    """
    gap = (st_raw + jt_raw) - (st_eff + jt_eff)
    if abs(gap.value) > CONSERVATION_TOLERANCE:
        raise AccountingInvariantViolation(
            f"raw {st_raw.value} + {jt_raw.value} != effective {st_eff.value} + {jt_eff.value} "
            f"(gap {gap.value})"
        )
    if st_eff.is_negative() or jt_eff.is_negative():
        raise AccountingInvariantViolation(
            f"negative effective NAV: st={st_eff.value} jt={jt_eff.value}"
        )


def calculate_sync(
    accounting: AccountingLedger,
    config: MarketConfig,
    ydm: YieldDistributionModel,
    fresh_st_raw: NAV,
    fresh_jt_raw: NAV,
    now: datetime,
) -> SyncedAccountingState:
    """
    Recompute both tranches' effective NAV from fresh raw NAVs.

    Pure: the caller decides whether to persist the returned ledger.

    Raises:
        AccountingInvariantViolation: if the result does not conserve NAV
        FixedPointOverflow: if a value leaves the NAV range
    """
    # 1. Accrue the junior share. The YDM sees the state before this sync.
    prior_utilization = compute_utilization(
        accounting.last_st_effective_nav, accounting.last_jt_raw_nav,
        accounting.last_jt_effective_nav, config.beta, config.coverage_ratio,
    )
    instantaneous_share = _clamp_share(ydm.junior_yield_share(
        accounting.market_state,
        accounting.last_st_effective_nav,
        accounting.last_jt_effective_nav,
        config.beta,
        config.coverage_ratio,
        prior_utilization,
    ))
    accumulator = calculate_yield_accrual(
        accounting.yield_share_accumulator, instantaneous_share, accounting.last_accrual_time, now,
    )
    last_distribution_time = accounting.last_distribution_time

    # 2. Deltas against the last raw observation
    st_delta = fresh_st_raw - accounting.last_st_raw_nav
    jt_delta = fresh_jt_raw - accounting.last_jt_raw_nav

    w = Waterfall(
        st_effective_nav=accounting.last_st_effective_nav,
        jt_effective_nav=accounting.last_jt_effective_nav,
        st_impermanent_loss=accounting.last_st_coverage_debt,
        jt_coverage_debt=accounting.last_jt_coverage_debt,
        jt_self_impermanent_loss=accounting.last_jt_self_impermanent_loss,
    )

    # 3-4. Senior loss or gain
    junior_share = instantaneous_share
    if st_delta.is_negative():
        w = apply_senior_loss(w, -st_delta, config)
    elif st_delta.is_positive():
        junior_share = calculate_time_weighted_share(
            accumulator, last_distribution_time, now, instantaneous_share,
        )
        w, distributed = apply_senior_gain(w, st_delta, junior_share)
        if distributed.is_positive():
            accumulator = Decimal(0)
            last_distribution_time = now

    # 5. Junior own-asset delta
    w = apply_junior_delta(w, jt_delta)

    check_conservation(fresh_st_raw, fresh_jt_raw, w.st_effective_nav, w.jt_effective_nav)

    # 6. Protocol fees
    st_fee = calculate_protocol_fee(
        w.st_new_yield, accounting.last_st_effective_nav, w.st_effective_nav,
        accounting.st_high_water_mark, config.st_protocol_fee_rate,
    )
    jt_fee = calculate_protocol_fee(
        w.jt_new_yield, accounting.last_jt_effective_nav, w.jt_effective_nav,
        accounting.jt_high_water_mark, config.jt_protocol_fee_rate,
    )

    # 7. Market state
    ltv = compute_ltv(w.st_effective_nav, w.st_impermanent_loss, w.jt_effective_nav)
    market_state, entered_at, jt_debt = calculate_market_state(
        config,
        accounting.market_state,
        accounting.fixed_term_entered_at,
        w.jt_coverage_debt,
        accounting.last_jt_coverage_debt,
        w.st_impermanent_loss,
        ltv,
        now,
    )

    new_accounting = AccountingLedger(
        last_st_raw_nav=fresh_st_raw,
        last_jt_raw_nav=fresh_jt_raw,
        last_st_effective_nav=w.st_effective_nav,
        last_jt_effective_nav=w.jt_effective_nav,
        last_jt_coverage_debt=jt_debt,
        last_st_coverage_debt=w.st_impermanent_loss,
        last_jt_self_impermanent_loss=w.jt_self_impermanent_loss,
        yield_share_accumulator=accumulator,
        last_accrual_time=now,
        last_distribution_time=last_distribution_time,
        market_state=market_state,
        fixed_term_entered_at=entered_at,
        st_high_water_mark=accounting.st_high_water_mark,
        jt_high_water_mark=accounting.jt_high_water_mark,
    )
    return SyncedAccountingState(
        st_raw_nav=fresh_st_raw,
        jt_raw_nav=fresh_jt_raw,
        st_effective_nav=w.st_effective_nav,
        jt_effective_nav=w.jt_effective_nav,
        st_impermanent_loss=w.st_impermanent_loss,
        jt_coverage_impermanent_loss=jt_debt,
        jt_self_impermanent_loss=w.jt_self_impermanent_loss,
        st_protocol_fee=st_fee,
        jt_protocol_fee=jt_fee,
        market_state=market_state,
        utilization=compute_utilization(
            w.st_effective_nav, fresh_jt_raw, w.jt_effective_nav, config.beta, config.coverage_ratio,
        ),
        ltv=ltv,
        junior_yield_share=junior_share,
        ledger=new_accounting,
    )


def rescale_high_water_mark(high_water_mark: NAV, eff_before: NAV, eff_after: NAV) -> NAV:
    """
    Move a high-water mark with a deposit or redemption.

    Shares are issued and burned at effective NAV per share, so the mark is
    scaled by eff_after / eff_before; value per share at the mark is kept.
    """
    if not eff_before.is_positive():
        return eff_after
    return nav_max(high_water_mark.mul_div(eff_after.value, eff_before.value, ROUND_FLOOR), eff_after)


def calculate_post_op(
    accounting: AccountingLedger,
    fresh_st_raw: NAV,
    fresh_jt_raw: NAV,
    st_eff_delta: NAV,
    jt_eff_delta: NAV,
) -> AccountingLedger:
    """
    Re-baseline after an operation.

    Raw NAVs become the post-operation observations and effective NAVs move
    by the operation's own deltas, so the next sync does not see the deposit
    or withdrawal as a gain or loss. High-water marks move in proportion.

    Raises:
        AccountingInvariantViolation: if the deltas do not match the raw change
    """
    st_eff = accounting.last_st_effective_nav + st_eff_delta
    jt_eff = accounting.last_jt_effective_nav + jt_eff_delta
    check_conservation(fresh_st_raw, fresh_jt_raw, st_eff, jt_eff)
    return replace(
        accounting,
        last_st_raw_nav=fresh_st_raw,
        last_jt_raw_nav=fresh_jt_raw,
        last_st_effective_nav=st_eff,
        last_jt_effective_nav=jt_eff,
        st_high_water_mark=rescale_high_water_mark(
            accounting.st_high_water_mark, accounting.last_st_effective_nav, st_eff),
        jt_high_water_mark=rescale_high_water_mark(
            accounting.jt_high_water_mark, accounting.last_jt_effective_nav, jt_eff),
    )


# ============================================================================
# ACCOUNTANT
# ============================================================================

class Accountant:
    """
    Sole owner of a market's accounting ledger.

    Every write goes through one UnitStateChange on the market unit, so the
    ledger's optimistic concurrency check rejects a write based on a stale
    read and the transaction log versions every state.
    """

    def __init__(self, ledger, market: str, config: MarketConfig, ydm: YieldDistributionModel):
        self.ledger = ledger
        self.market = market
        self.config = config
        self.ydm = ydm

    @property
    def verbose(self) -> bool:
        return self.ledger.verbose

    def load(self) -> AccountingLedger:
        return load_accounting_ledger(self.ledger, self.market)

    def preview_sync(self, fresh_st_raw: NAV, fresh_jt_raw: NAV) -> SyncedAccountingState:
        """Dry-run sync; nothing is persisted."""
        return calculate_sync(
            self.load(), self.config, self.ydm, fresh_st_raw, fresh_jt_raw, self.ledger.current_time,
        )

    def state_change(
        self,
        accounting: AccountingLedger,
        updates: Optional[Dict[str, Any]] = None,
    ) -> UnitStateChange:
        """
        Build the market unit state change persisting an accounting ledger.

        updates carries any other market fields written in the same
        transaction (the redemption queue, the fee recipient).
        """
        old_state = self.ledger.get_unit_state(self.market)
        new_state = dict(old_state)
        if updates:
            new_state.update(updates)
        new_state[ACCOUNTING_KEY] = to_state_dict(accounting)
        return UnitStateChange(unit=self.market, old_state=old_state, new_state=new_state)

    def commit(
        self,
        accounting: AccountingLedger,
        moves: Iterable[Move] = (),
        updates: Optional[Dict[str, Any]] = None,
        description: str = "",
    ) -> None:
        """
        Persist an accounting ledger together with moves, atomically.

        Raises:
            TransactionRejected: if the ledger refuses the transaction
        """
        pending = build_transaction(
            self.ledger,
            list(moves),
            [self.state_change(accounting, updates)],
            description=description or f"sync:{self.market}",
        )
        self.ledger.execute_or_raise(pending)

    def sync_accounting(
        self,
        fresh_st_raw: NAV,
        fresh_jt_raw: NAV,
        moves: Iterable[Move] = (),
        updates: Optional[Dict[str, Any]] = None,
        description: str = "",
    ) -> SyncedAccountingState:
        """Sync and persist the result with any moves the caller attaches."""
        synced = self.preview_sync(fresh_st_raw, fresh_jt_raw)
        self.commit(synced.ledger, moves, updates, description)
        if self.verbose:
            print(f"[SYNC] {self.market} st_eff={synced.st_effective_nav.value:.6f} "
                  f"jt_eff={synced.jt_effective_nav.value:.6f} "
                  f"st_il={synced.st_impermanent_loss.value:.6f} "
                  f"jt_debt={synced.jt_coverage_impermanent_loss.value:.6f} "
                  f"state={synced.market_state.value}")
        return synced
