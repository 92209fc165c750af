#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Two-Tranche Market Step by Step

A walk through one senior / junior market. Each step builds on the
previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Setup        - The ledger, the market, first deposits and coverage
  4-5:  Yield        - Splitting senior yield, protocol fees as fee shares
  6-7:  Losses       - The junior absorbs first, the fixed term and its end
  8:    Redemptions  - Asynchronous junior requests priced at min(then, now)
  9:    Stress       - A depeg along a simulated price path
  10:   Audit        - Conservation and replay from the transaction log

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

import numpy as np

from tranches import (
    Ledger, Move, Kernel, MarketConfig, SyncVaultAdapter, StaticPricingSource,
    KinkedCurveYDM, LifecycleEngine, TrancheType, MarketState, KernelError,
    asset, build_transaction, SYSTEM_WALLET,
    log_return_paths, price_paths, to_pricing_source,
)


ST, JT = TrancheType.SENIOR, TrancheType.JUNIOR


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)

    # Market terms
    coverage_ratio: Decimal = Decimal("0.2")
    protocol_fee_rate: Decimal = Decimal("0.1")
    redemption_delay: timedelta = timedelta(days=1)
    fixed_term: timedelta = timedelta(days=7)

    # Deposits
    junior_deposit: Decimal = Decimal("1000000")
    senior_deposit: Decimal = Decimal("600000")

    # Venue moves
    senior_yield: Decimal = Decimal("6000")
    senior_loss: Decimal = Decimal("100000")

    # Stress test
    stress_steps: int = 60
    stress_shock_step: int = 20
    stress_shock: float = -0.25
    stress_seed: int = 7


CONFIG = DemoConfig()

# Global state for interactive mode
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def move_asset(ledger: Ledger, source: str, dest: str, amount: Decimal, unit: str = "USDC"):
    ledger.execute_or_raise(build_transaction(ledger, [
        Move(amount, unit, source, dest, "demo")
    ]))


def show_market(kernel: Kernel):
    synced = kernel.preview_sync()
    print(f"  senior   raw={synced.st_raw_nav.value:>16,.2f}  effective={synced.st_effective_nav.value:>16,.2f}")
    print(f"  junior   raw={synced.jt_raw_nav.value:>16,.2f}  effective={synced.jt_effective_nav.value:>16,.2f}")
    print(f"  coverage debt (junior) = {synced.jt_coverage_impermanent_loss.value:,.2f}")
    print(f"  impermanent loss (senior) = {synced.st_impermanent_loss.value:,.2f}")
    print(f"  utilization = {synced.utilization:.4f}   ltv = {synced.ltv:.4f}   state = {synced.market_state.value}")


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_market():
    step_header(1, "The Market",
        "A market is a ledger unit holding the accounting state of two tranches.")

    print("""
    Two tranches share one pool of collateral:

    - SENIOR (ST): protected. Losses hit it only after the junior is gone.
    - JUNIOR (JT): first loss. Paid for the risk with a share of senior yield.

    Each tranche deposits into its own venue. The kernel tracks two NAVs
    per tranche: RAW (what the venue holds) and EFFECTIVE (what the LPs own
    after the waterfall has moved losses and yield between tranches).
    """)

    ledger = Ledger("tutorial", initial_time=CONFIG.start_time, verbose=False)
    ledger.register_unit(asset("USDC", "USD Coin", decimal_places=6))
    for wallet in ("alice", "bob", "st_vault", "jt_vault", "treasury"):
        ledger.register_wallet(wallet)
    move_asset(ledger, SYSTEM_WALLET, "alice", Decimal("5000000"))
    move_asset(ledger, SYSTEM_WALLET, "bob", Decimal("5000000"))

    config = MarketConfig(
        coverage_ratio=CONFIG.coverage_ratio,
        beta=Decimal("0"),
        st_protocol_fee_rate=CONFIG.protocol_fee_rate,
        jt_protocol_fee_rate=CONFIG.protocol_fee_rate,
        jt_redemption_delay=int(CONFIG.redemption_delay.total_seconds()),
        fixed_term_duration=int(CONFIG.fixed_term.total_seconds()),
        lltv=Decimal("0.9"),
    )
    ydm = KinkedCurveYDM(
        base=Decimal("0.05"), kink=Decimal("0.8"),
        slope_below=Decimal("0.25"), slope_above=Decimal("2"),
    )
    kernel = Kernel(
        ledger, "DEMO", config,
        st_venue=SyncVaultAdapter(ledger, "USDC", "st_vault", decimals=6),
        jt_venue=SyncVaultAdapter(ledger, "USDC", "jt_vault", decimals=6),
        pricing=StaticPricingSource({"USDC": Decimal("1")}),
        ydm=ydm,
        fee_recipient="treasury",
    )
    print(f">>> {kernel!r}")
    print(f"Share units: {kernel.share_symbol(ST)}, {kernel.share_symbol(JT)}")
    return ledger, kernel


def step_02_junior_first(ledger: Ledger, kernel: Kernel):
    step_header(2, "Junior Capital Comes First",
        "Senior capacity is bounded by the coverage the junior provides.")

    print(f"Senior headroom before any junior: {kernel.max_deposit(ST).value}")
    try:
        kernel.deposit(ST, Decimal("1000"), "bob", "bob")
    except KernelError as error:
        print(f"Senior deposit rejected [{error.code}]: {error}")

    kernel.deposit(JT, CONFIG.junior_deposit, "alice", "alice")
    headroom = kernel.max_deposit(ST).value
    print(f"\nAfter {CONFIG.junior_deposit:,} of junior capital:")
    print(f"  senior headroom = jt_eff / coverage - st_eff = {headroom:,}")
    return ledger, kernel


def step_03_senior_deposit(ledger: Ledger, kernel: Kernel):
    step_header(3, "Senior Deposits",
        "Deposits mint shares at the effective NAV per share.")

    shares = kernel.deposit(ST, CONFIG.senior_deposit, "bob", "bob")
    print(f"bob deposits {CONFIG.senior_deposit:,} USDC -> {shares:,} senior shares")
    section_header("Market")
    show_market(kernel)
    print(f"\nRemaining senior headroom: {kernel.max_deposit(ST).value:,}")
    return ledger, kernel


# ============================================================================
# PHASE 2: YIELD (Steps 4-5)
# ============================================================================

def step_04_senior_yield(ledger: Ledger, kernel: Kernel):
    step_header(4, "Splitting Senior Yield",
        "The junior earns a time-weighted share of what the senior venue makes.")

    ledger.advance_time(ledger.current_time + timedelta(days=10))
    move_asset(ledger, SYSTEM_WALLET, "st_vault", CONFIG.senior_yield)
    synced = kernel.sync()
    print(f"Senior venue earned {CONFIG.senior_yield:,} over 10 days.")
    print(f"Junior share of the yield (time-weighted): {synced.junior_yield_share:.4f}")
    section_header("Market")
    show_market(kernel)
    print("""
    The junior's part of the senior yield stays in the senior venue. A
    junior LP who redeems is paid it from the senior venue: the claim is
    split between the two venues by how much of each tranche's effective
    NAV its own venue actually holds.
    """)
    return ledger, kernel


def step_05_fees(ledger: Ledger, kernel: Kernel):
    step_header(5, "Protocol Fees as Fee Shares",
        "Fees are charged only above the high-water mark, and paid by minting shares.")

    for tranche in (ST, JT):
        held = kernel.balance_of(tranche, "treasury")
        value = kernel.convert_to_assets(tranche, held).nav.value if held > 0 else Decimal(0)
        print(f"treasury holds {held:,.6f} {kernel.share_symbol(tranche)} worth {value:,.6f}")
    print("""
    Minting fee f * supply / (eff - f) shares makes the treasury's stake
    worth exactly the fee. Effective NAV is untouched, so raw and effective
    NAV still reconcile.
    """)
    return ledger, kernel


# ============================================================================
# PHASE 3: LOSSES (Steps 6-7)
# ============================================================================

def step_06_senior_loss(ledger: Ledger, kernel: Kernel):
    step_header(6, "The Junior Absorbs First",
        "A senior venue loss moves into junior coverage debt and locks the market.")

    ledger.advance_time(ledger.current_time + timedelta(days=1))
    move_asset(ledger, "st_vault", SYSTEM_WALLET, CONFIG.senior_loss)
    kernel.sync()
    print(f"Senior venue lost {CONFIG.senior_loss:,}.")
    section_header("Market")
    show_market(kernel)

    section_header("Fixed term")
    print(f"Senior max redeem for bob: {kernel.max_redeem(ST, 'bob')}")
    print(f"Junior max deposit:        {kernel.max_deposit(JT).value}")
    try:
        kernel.redeem(ST, Decimal("1"), "bob", "bob")
    except KernelError as error:
        print(f"Senior redeem rejected [{error.code}]")
    return ledger, kernel


def step_07_term_end(ledger: Ledger, kernel: Kernel):
    step_header(7, "The Fixed Term Ends",
        "After the term the market reopens and outstanding coverage debt is forgiven.")

    engine = LifecycleEngine(ledger, [kernel])
    start = ledger.current_time
    for day in range(1, 9):
        synced = engine.step(start + timedelta(days=day))[kernel.market]
        print(f"  day {day}: state={synced.market_state.value:<11} "
              f"coverage debt={synced.jt_coverage_impermanent_loss.value:,.2f}")
    print(f"\nSenior max redeem for bob: {kernel.max_redeem(ST, 'bob'):,}")
    return ledger, kernel


# ============================================================================
# PHASE 4: REDEMPTIONS (Step 8)
# ============================================================================

def step_08_junior_redemption(ledger: Ledger, kernel: Kernel):
    step_header(8, "Asynchronous Junior Redemption",
        "Junior exits wait out a delay and never pay more than the request-time price.")

    limit = kernel.max_redeem(JT, "alice")
    shares = (limit / 10).quantize(Decimal("0.000001"))
    print(f"Unpledged junior shares alice may request: {limit:,}")
    request_id = kernel.request_redeem(shares, "alice", "alice")
    print(f"Request {request_id}: {shares:,} shares escrowed at "
          f"{kernel.nav_per_share(JT):.6f} NAV per share")
    print(f"Pending: {kernel.pending_redeem_request(request_id, 'alice'):,}")

    ledger.advance_time(ledger.current_time + CONFIG.redemption_delay)
    claimable = kernel.claimable_redeem_request(request_id, "alice")
    claims = kernel.redeem(JT, claimable, "alice", "alice", request_id=request_id)
    print(f"\nAfter the delay alice claims {claimable:,} shares:")
    print(f"  paid {claims.jt_assets.value:,} from the junior venue "
          f"and {claims.st_assets.value:,} from the senior venue")
    return ledger, kernel


# ============================================================================
# PHASE 5: STRESS (Step 9)
# ============================================================================

def step_09_depeg_stress():
    step_header(9, "A Depeg Along a Simulated Path",
        "Drive a market with a random price path and watch the waterfall at work.")

    ledger = Ledger("stress", initial_time=CONFIG.start_time, verbose=False)
    ledger.register_unit(asset("USDC", "USD Coin", decimal_places=6))
    ledger.register_unit(asset("sUSDe", "Staked USDe", decimal_places=18))
    for wallet in ("alice", "bob", "st_vault", "jt_vault", "treasury"):
        ledger.register_wallet(wallet)
    move_asset(ledger, SYSTEM_WALLET, "alice", Decimal("2000000"))
    move_asset(ledger, SYSTEM_WALLET, "bob", Decimal("2000000"), unit="sUSDe")

    returns = log_return_paths(1, CONFIG.stress_steps, drift=0.0002, volatility=0.003,
                               seed=CONFIG.stress_seed, shock_step=CONFIG.stress_shock_step,
                               shock=CONFIG.stress_shock)
    path = np.concatenate([[1.0], price_paths(1.0, returns)[0]])
    timestamps = [ledger.current_time + timedelta(days=i) for i in range(len(path))]
    pricing = to_pricing_source({"sUSDe": path, "USDC": np.ones(len(path))}, timestamps)

    kernel = Kernel(
        ledger, "STRESS",
        MarketConfig(coverage_ratio=Decimal("0.2"), beta=Decimal("0"),
                     st_protocol_fee_rate=Decimal("0.1"), jt_protocol_fee_rate=Decimal("0.1"),
                     jt_redemption_delay=86400, fixed_term_duration=7 * 86400, lltv=Decimal("0.9")),
        st_venue=SyncVaultAdapter(ledger, "sUSDe", "st_vault", decimals=18),
        jt_venue=SyncVaultAdapter(ledger, "USDC", "jt_vault", decimals=6),
        pricing=pricing,
        ydm=KinkedCurveYDM(base=Decimal("0.05"), kink=Decimal("0.8"),
                           slope_below=Decimal("0.25"), slope_above=Decimal("2")),
        fee_recipient="treasury",
    )
    kernel.deposit(JT, Decimal("1000000"), "alice", "alice")
    kernel.deposit(ST, Decimal("600000"), "bob", "bob")

    history = LifecycleEngine(ledger, [kernel]).run(timestamps[1:])
    st_eff = np.array([float(h["STRESS"].st_effective_nav.value) for h in history])
    jt_eff = np.array([float(h["STRESS"].jt_effective_nav.value) for h in history])
    fixed = np.array([h["STRESS"].market_state is MarketState.FIXED_TERM for h in history])
    st_il = np.array([float(h["STRESS"].st_impermanent_loss.value) for h in history])

    print(f"Price path: min {path.min():.4f}, final {path[-1]:.4f}")
    print(f"Senior effective NAV: min {st_eff.min():,.2f}, final {st_eff[-1]:,.2f}")
    print(f"Junior effective NAV: min {jt_eff.min():,.2f}, final {jt_eff[-1]:,.2f}")
    print(f"Senior impermanent loss: max {st_il.max():,.2f} (junior capacity is 20% of its NAV)")
    print(f"Days in FIXED_TERM:   {int(fixed.sum())} of {len(history)}")
    print(f"Worst junior drawdown: {(1 - jt_eff.min() / jt_eff.max()):.2%}")
    return ledger


# ============================================================================
# PHASE 6: AUDIT (Step 10)
# ============================================================================

def step_10_audit(ledger: Ledger, kernel: Kernel):
    step_header(10, "Conservation and Replay",
        "The transaction log alone rebuilds every balance and the accounting state.")

    synced = kernel.preview_sync()
    raw = synced.st_raw_nav + synced.jt_raw_nav
    eff = synced.st_effective_nav + synced.jt_effective_nav
    print(f"raw NAV total       = {raw.value:,.6f}")
    print(f"effective NAV total = {eff.value:,.6f}")
    print(f"double entry valid  = {ledger.verify_double_entry()['valid']}")

    replayed = ledger.replay()
    same = replayed.get_unit_state(kernel.market) == ledger.get_unit_state(kernel.market)
    print(f"\nReplayed {len(ledger.transaction_log)} transactions; market state identical: {same}")


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       TWO-TRANCHE MARKET - INTERACTIVE TUTORIAL")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    ledger, kernel = step_01_market()
    wait_for_enter()
    ledger, kernel = step_02_junior_first(ledger, kernel)
    wait_for_enter()
    ledger, kernel = step_03_senior_deposit(ledger, kernel)
    wait_for_enter()
    ledger, kernel = step_04_senior_yield(ledger, kernel)
    wait_for_enter()
    ledger, kernel = step_05_fees(ledger, kernel)
    wait_for_enter()
    ledger, kernel = step_06_senior_loss(ledger, kernel)
    wait_for_enter()
    ledger, kernel = step_07_term_end(ledger, kernel)
    wait_for_enter()
    ledger, kernel = step_08_junior_redemption(ledger, kernel)
    wait_for_enter()
    step_09_depeg_stress()
    wait_for_enter()
    step_10_audit(ledger, kernel)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See tranches/accountant.py for the waterfall, one pure function per step
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
