"""
Loss Waterfall Conformance Tests

INVARIANTS of a single sync over arbitrary fresh raw NAVs:

    conservation      st_raw' + jt_raw' = st_eff' + jt_eff'
    non-negativity    effective NAVs, debts and fees are >= 0
    first loss        a senior loss L takes min(L, floor(coverage * jt_eff))
                      from the junior; the senior keeps the excess as
                      impermanent loss
    fee bound         fee <= rate * max(0, eff' - max(hwm, eff)), and 0
                      without a gain
    coverage gates    a deposit of the senior headroom, or a withdrawal of
                      the unpledged junior NAV, keeps utilization <= 1

Over sequences of syncs, senior impermanent loss and junior coverage debt
only shrink on a senior gain (coverage debt also on forgiveness at term
expiry), and no fee is taken while a tranche is below its high-water mark.

The pure calculation functions are exercised directly; no ledger involved.
"""

from hypothesis import given, settings, assume, note
from hypothesis import strategies as st
from decimal import Decimal, ROUND_FLOOR
from datetime import datetime, timedelta

from tranches import (
    NAV, ZERO_NAV, AccountingLedger, MarketConfig, MarketState, StaticYDM, calculate_sync,
    compute_utilization, is_coverage_satisfied, max_senior_deposit_nav, max_junior_withdrawal_nav,
)


T0 = datetime(2025, 1, 1)


# =============================================================================
# STRATEGIES
# =============================================================================

@st.composite
def nav_values(draw, max_value=Decimal("10000000")):
    """Non-negative NAV with 6 fractional digits."""
    return NAV(draw(st.decimals(
        min_value=Decimal("0"),
        max_value=max_value,
        places=6,
        allow_nan=False,
        allow_infinity=False,
    )))


@st.composite
def accounting_ledgers(draw):
    """
    A persisted accounting state that reconciles.

    Raw and effective NAVs differ by a transfer between the tranches, and
    debts are arbitrary.
    """
    st_raw = draw(nav_values())
    jt_raw = draw(nav_values())
    shift = draw(st.decimals(min_value=-st_raw.value, max_value=jt_raw.value, places=6))
    return AccountingLedger(
        last_st_raw_nav=st_raw,
        last_jt_raw_nav=jt_raw,
        last_st_effective_nav=NAV(st_raw.value + shift),
        last_jt_effective_nav=NAV(jt_raw.value - shift),
        last_jt_coverage_debt=draw(nav_values(Decimal("1000000"))),
        last_st_coverage_debt=draw(nav_values(Decimal("1000000"))),
        last_jt_self_impermanent_loss=draw(nav_values(Decimal("1000000"))),
        yield_share_accumulator=Decimal(0),
        last_accrual_time=T0,
        last_distribution_time=T0,
    )


@st.composite
def fresh_raw(draw, last: NAV):
    """A new raw observation between zero and twice the last one (plus some)."""
    ceiling = last.value * 2 + Decimal("1000")
    return NAV(draw(st.decimals(min_value=Decimal("0"), max_value=ceiling, places=6)))


coverage_ratios = st.sampled_from([Decimal("0.1"), Decimal("0.2"), Decimal("0.25"), Decimal("0.5"), Decimal("1")])
betas = st.sampled_from([Decimal("0"), Decimal("0.5"), Decimal("1")])
fee_rates = st.sampled_from([Decimal("0"), Decimal("0.05"), Decimal("0.2"), Decimal("0.5")])
shares = st.decimals(min_value=Decimal("0"), max_value=Decimal("1"), places=4)


def config_for(coverage=Decimal("0.2"), beta=Decimal("0"), fee=Decimal("0")) -> MarketConfig:
    return MarketConfig(
        coverage_ratio=coverage, beta=beta,
        st_protocol_fee_rate=fee, jt_protocol_fee_rate=fee,
        jt_redemption_delay=86400, fixed_term_duration=7 * 86400, lltv=Decimal("0.9"),
    )


# =============================================================================
# SYNC PROPERTIES
# =============================================================================

class TestSyncLaws:

    @given(st.data(), accounting_ledgers(), fee_rates, shares, st.integers(min_value=0, max_value=30))
    @settings(max_examples=200, deadline=None)
    def test_sync_conserves_and_stays_non_negative(self, data, accounting, fee, share, days):
        st_raw = data.draw(fresh_raw(accounting.last_st_raw_nav))
        jt_raw = data.draw(fresh_raw(accounting.last_jt_raw_nav))
        now = T0 + timedelta(days=days)

        synced = calculate_sync(accounting, config_for(fee=fee), StaticYDM(share), st_raw, jt_raw, now)
        note(f"synced: {synced}")

        raw = synced.st_raw_nav + synced.jt_raw_nav
        eff = synced.st_effective_nav + synced.jt_effective_nav
        assert raw == eff
        for value in (
            synced.st_effective_nav, synced.jt_effective_nav, synced.st_impermanent_loss,
            synced.jt_coverage_impermanent_loss, synced.jt_self_impermanent_loss,
            synced.st_protocol_fee, synced.jt_protocol_fee,
        ):
            assert not value.is_negative()
        assert Decimal(0) <= synced.junior_yield_share <= Decimal(1)

    @given(st.data(), accounting_ledgers(), fee_rates, shares)
    @settings(max_examples=200, deadline=None)
    def test_fee_bounded_by_effective_gain(self, data, accounting, fee, share):
        st_raw = data.draw(fresh_raw(accounting.last_st_raw_nav))
        jt_raw = data.draw(fresh_raw(accounting.last_jt_raw_nav))
        synced = calculate_sync(accounting, config_for(fee=fee), StaticYDM(share), st_raw, jt_raw, T0)

        st_gain = max(synced.st_effective_nav.value - accounting.last_st_effective_nav.value, Decimal(0))
        jt_gain = max(synced.jt_effective_nav.value - accounting.last_jt_effective_nav.value, Decimal(0))
        assert synced.st_protocol_fee.value <= fee * st_gain
        assert synced.jt_protocol_fee.value <= fee * jt_gain

    @given(st.data(), accounting_ledgers(), fee_rates)
    @settings(max_examples=100, deadline=None)
    def test_no_fee_without_raw_gain(self, data, accounting, fee):
        st_raw = NAV(data.draw(st.decimals(
            min_value=Decimal("0"), max_value=accounting.last_st_raw_nav.value, places=6)))
        jt_raw = NAV(data.draw(st.decimals(
            min_value=Decimal("0"), max_value=accounting.last_jt_raw_nav.value, places=6)))
        synced = calculate_sync(accounting, config_for(fee=fee), StaticYDM(Decimal("0.5")), st_raw, jt_raw, T0)
        assert synced.st_protocol_fee == ZERO_NAV
        assert synced.jt_protocol_fee == ZERO_NAV

    @given(accounting_ledgers(), st.decimals(min_value=Decimal("0"), max_value=Decimal("1"), places=4))
    @settings(max_examples=200, deadline=None)
    def test_junior_absorbs_senior_loss_up_to_capacity(self, accounting, fraction):
        loss = NAV(accounting.last_st_raw_nav.value * fraction)
        st_raw = accounting.last_st_raw_nav - loss
        synced = calculate_sync(
            accounting, config_for(), StaticYDM(Decimal("0.3")),
            st_raw, accounting.last_jt_raw_nav, T0,
        )
        capacity = NAV.of(accounting.last_jt_effective_nav.value * Decimal("0.2"), ROUND_FLOOR)
        covered = min(loss, capacity)
        senior_hit = min(loss - covered, accounting.last_st_effective_nav)
        # what the senior cannot take falls back on the junior
        covered = covered + (loss - covered - senior_hit)
        assert synced.jt_effective_nav == accounting.last_jt_effective_nav - covered
        assert synced.st_effective_nav == accounting.last_st_effective_nav - senior_hit
        assert synced.jt_coverage_impermanent_loss == accounting.last_jt_coverage_debt + covered
        assert synced.st_impermanent_loss == accounting.last_st_coverage_debt + senior_hit

    @given(accounting_ledgers(), nav_values(Decimal("1000000")))
    @settings(max_examples=100, deadline=None)
    def test_senior_gain_repays_senior_loss_before_junior(self, accounting, gain):
        synced = calculate_sync(
            accounting, config_for(), StaticYDM(Decimal("0.3")),
            accounting.last_st_raw_nav + gain, accounting.last_jt_raw_nav, T0,
        )
        st_repaid = min(gain, accounting.last_st_coverage_debt)
        assert synced.st_impermanent_loss == accounting.last_st_coverage_debt - st_repaid
        if synced.st_impermanent_loss.is_positive():
            # Nothing reaches the junior while the senior is still impaired
            assert synced.jt_effective_nav == accounting.last_jt_effective_nav
            assert synced.jt_coverage_impermanent_loss == accounting.last_jt_coverage_debt
        else:
            # The junior's portion of the rest repays its coverage debt first
            portion = NAV.of((gain - st_repaid).value * Decimal("0.3"), ROUND_FLOOR)
            repaid = min(portion, accounting.last_jt_coverage_debt)
            assert synced.jt_coverage_impermanent_loss == accounting.last_jt_coverage_debt - repaid
            assert synced.jt_effective_nav == accounting.last_jt_effective_nav + portion

    @given(accounting_ledgers())
    @settings(max_examples=100, deadline=None)
    def test_unchanged_raw_is_a_no_op(self, accounting):
        synced = calculate_sync(
            accounting, config_for(fee=Decimal("0.2")), StaticYDM(Decimal("0.3")),
            accounting.last_st_raw_nav, accounting.last_jt_raw_nav, T0 + timedelta(hours=1),
        )
        assert synced.st_effective_nav == accounting.last_st_effective_nav
        assert synced.jt_effective_nav == accounting.last_jt_effective_nav
        assert synced.st_protocol_fee == ZERO_NAV
        assert synced.jt_protocol_fee == ZERO_NAV


# =============================================================================
# SYNC SEQUENCES
# =============================================================================

@st.composite
def sync_paths(draw):
    """Steps of (hours elapsed, senior raw factor, junior raw factor)."""
    factors = st.decimals(min_value=Decimal("0.5"), max_value=Decimal("1.5"), places=2)
    return draw(st.lists(
        st.tuples(st.integers(min_value=1, max_value=48), factors, factors),
        min_size=1,
        max_size=12,
    ))


class TestSyncSequenceLaws:
    """A short fixed term, so paths cross term expiry and debt forgiveness."""

    RATE = Decimal("0.1")

    def market(self) -> AccountingLedger:
        return AccountingLedger(
            last_st_raw_nav=NAV(Decimal("300000")),
            last_jt_raw_nav=NAV(Decimal("1000000")),
            last_st_effective_nav=NAV(Decimal("300000")),
            last_jt_effective_nav=NAV(Decimal("1000000")),
            last_jt_coverage_debt=ZERO_NAV,
            last_st_coverage_debt=ZERO_NAV,
            last_jt_self_impermanent_loss=ZERO_NAV,
            yield_share_accumulator=Decimal(0),
            last_accrual_time=T0,
            last_distribution_time=T0,
        )

    @given(sync_paths())
    @settings(max_examples=150, deadline=None)
    def test_losses_and_fees_across_syncs(self, path):
        config = MarketConfig(
            coverage_ratio=Decimal("0.2"), beta=Decimal("0"),
            st_protocol_fee_rate=self.RATE, jt_protocol_fee_rate=self.RATE,
            jt_redemption_delay=86400, fixed_term_duration=86400, lltv=Decimal("0.9"),
        )
        ydm = StaticYDM(Decimal("0.3"))
        accounting = self.market()
        now = T0

        for hours, st_factor, jt_factor in path:
            now = now + timedelta(hours=hours)
            st_raw = NAV.of(accounting.last_st_raw_nav.value * st_factor)
            jt_raw = NAV.of(accounting.last_jt_raw_nav.value * jt_factor)
            synced = calculate_sync(accounting, config, ydm, st_raw, jt_raw, now)
            note(f"{now}: {synced}")

            assert synced.st_raw_nav + synced.jt_raw_nav == synced.st_effective_nav + synced.jt_effective_nav
            assert not synced.st_impermanent_loss.is_negative()
            assert not synced.jt_coverage_impermanent_loss.is_negative()

            # Losses are only paid down by a senior gain, coverage debt also by forgiveness
            expired = (
                accounting.market_state is MarketState.FIXED_TERM
                and now >= accounting.fixed_term_entered_at + timedelta(seconds=config.fixed_term_duration)
            )
            if st_raw <= accounting.last_st_raw_nav:
                assert synced.st_impermanent_loss >= accounting.last_st_coverage_debt
                if not expired:
                    assert synced.jt_coverage_impermanent_loss >= accounting.last_jt_coverage_debt

            # Fees only on value above each tranche's high-water mark
            for fee, eff_before, eff_after, mark, new_mark in (
                (synced.st_protocol_fee, accounting.last_st_effective_nav, synced.st_effective_nav,
                 accounting.st_high_water_mark, synced.ledger.st_high_water_mark),
                (synced.jt_protocol_fee, accounting.last_jt_effective_nav, synced.jt_effective_nav,
                 accounting.jt_high_water_mark, synced.ledger.jt_high_water_mark),
            ):
                if eff_after <= mark:
                    assert fee == ZERO_NAV
                above = max(eff_after.value - max(mark, eff_before).value, Decimal(0))
                assert fee.value <= self.RATE * above
                assert new_mark == max(mark, eff_after)

            accounting = synced.ledger


# =============================================================================
# COVERAGE GATES
# =============================================================================

class TestCoverageGates:

    @given(nav_values(), nav_values(), nav_values(), coverage_ratios, betas)
    @settings(max_examples=200, deadline=None)
    def test_senior_headroom_keeps_coverage(self, st_eff, jt_raw, jt_eff, coverage, beta):
        assume(jt_eff.is_positive())
        headroom = max_senior_deposit_nav(st_eff, jt_raw, jt_eff, beta, coverage)
        assume(headroom.is_positive())
        after = compute_utilization(st_eff + headroom, jt_raw, jt_eff, beta, coverage)
        assert is_coverage_satisfied(after)

    @given(nav_values(), nav_values(), nav_values(), betas)
    @settings(max_examples=200, deadline=None)
    def test_headroom_shrinks_as_coverage_rises(self, st_eff, jt_raw, jt_eff, beta):
        headrooms = [
            max_senior_deposit_nav(st_eff, jt_raw, jt_eff, beta, Decimal(c))
            for c in ("0.1", "0.2", "0.5", "1")
        ]
        assert headrooms == sorted(headrooms, reverse=True)

    @given(nav_values(), nav_values(), nav_values(), coverage_ratios, betas)
    @settings(max_examples=200, deadline=None)
    def test_junior_withdrawal_keeps_coverage(self, st_eff, jt_raw, jt_eff, coverage, beta):
        before = compute_utilization(st_eff, jt_raw, jt_eff, beta, coverage)
        assume(is_coverage_satisfied(before))
        withdrawable = max_junior_withdrawal_nav(st_eff, jt_raw, jt_eff, beta, coverage)
        assert ZERO_NAV <= withdrawable <= jt_eff
        after = compute_utilization(st_eff, jt_raw - withdrawable, jt_eff - withdrawable, beta, coverage)
        assert is_coverage_satisfied(after)

    @given(nav_values(), nav_values(), nav_values(), betas)
    @settings(max_examples=200, deadline=None)
    def test_unpledged_shrinks_as_coverage_rises(self, st_eff, jt_raw, jt_eff, beta):
        unpledged = [
            max_junior_withdrawal_nav(st_eff, jt_raw, jt_eff, beta, Decimal(c))
            for c in ("0.1", "0.2", "0.5")
        ]
        assert unpledged == sorted(unpledged, reverse=True)
