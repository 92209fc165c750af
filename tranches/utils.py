"""
utils.py - Pure coverage, utilization and LTV functions

PURE FUNCTIONS - all inputs explicit, no ledger access.

Key Formulas:
    exposure     = st_effective_nav + beta * jt_raw_nav
    utilization  = coverage_ratio * exposure / jt_effective_nav
    coverage holds  <=>  utilization <= 1
    ltv          = (st_effective_nav + st_impermanent_loss) / jt_effective_nav
"""

from __future__ import annotations
from decimal import Decimal, ROUND_FLOOR

from .units import NAV, ZERO_NAV


INFINITE_RATIO = Decimal("Infinity")


def compute_utilization(
    st_effective_nav: NAV,
    jt_raw_nav: NAV,
    jt_effective_nav: NAV,
    beta: Decimal,
    coverage_ratio: Decimal,
) -> Decimal:
    """
    Fraction of the junior tranche's loss-absorbing capacity in use.

    Returns 0 when nothing needs covering, and Infinity when something
    needs covering but the junior has no effective NAV.
    """
    exposure = st_effective_nav.value + beta * jt_raw_nav.value
    required = coverage_ratio * exposure
    if required <= 0:
        return Decimal(0)
    if jt_effective_nav.value <= 0:
        return INFINITE_RATIO
    return required / jt_effective_nav.value


def compute_ltv(st_effective_nav: NAV, st_impermanent_loss: NAV, jt_effective_nav: NAV) -> Decimal:
    """
    Loan-to-value of the senior claim against the junior's effective NAV.

    Returns 0 when both effective NAVs are zero, Infinity when only the
    junior's is.
    """
    senior_claim = st_effective_nav.value + st_impermanent_loss.value
    if jt_effective_nav.value <= 0:
        if st_effective_nav.value <= 0:
            return Decimal(0)
        return INFINITE_RATIO
    return senior_claim / jt_effective_nav.value


def is_coverage_satisfied(utilization: Decimal) -> bool:
    return utilization <= 1


def max_senior_deposit_nav(
    st_effective_nav: NAV,
    jt_raw_nav: NAV,
    jt_effective_nav: NAV,
    beta: Decimal,
    coverage_ratio: Decimal,
) -> NAV:
    """
    Largest senior deposit (in NAV) that keeps coverage satisfied.

        max(0, jt_eff / coverage - beta * jt_raw - st_eff)

    The beta * jt_raw term generalises the plain senior headroom
    jt_eff / coverage - st_eff to a junior that is itself exposed to the
    senior's risk; the coverage check counts that exposure, so the deposit
    bound has to as well. With beta = 0 the two coincide.

    Floored, so a deposit of exactly this size never breaks coverage.
    """
    capacity = jt_effective_nav.value / coverage_ratio - beta * jt_raw_nav.value
    return NAV.of(max(capacity - st_effective_nav.value, Decimal(0)), ROUND_FLOOR)


def max_junior_withdrawal_nav(
    st_effective_nav: NAV,
    jt_raw_nav: NAV,
    jt_effective_nav: NAV,
    beta: Decimal,
    coverage_ratio: Decimal,
) -> NAV:
    """
    Junior NAV not pledged as coverage.

    Withdrawing w reduces both jt_eff and (through beta) the exposure:
        coverage * (st_eff + beta * (jt_raw - w)) <= jt_eff - w
    so
        w <= (jt_eff - coverage * (st_eff + beta * jt_raw)) / (1 - coverage * beta)
    """
    surplus = jt_effective_nav.value - coverage_ratio * (
        st_effective_nav.value + beta * jt_raw_nav.value
    )
    if surplus <= 0:
        return ZERO_NAV
    denominator = 1 - coverage_ratio * beta
    if denominator <= 0:
        # coverage = beta = 1: every junior dollar covers itself
        return ZERO_NAV
    withdrawable = NAV.of(surplus / denominator, ROUND_FLOOR)
    return withdrawable if withdrawable <= jt_effective_nav else jt_effective_nav
