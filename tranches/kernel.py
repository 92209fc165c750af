"""
kernel.py - Operation Orchestration and Coverage Gating

The Kernel is the entry point of a two-tranche market. Every state-changing
operation runs the same way:

    1. dry-run sync over freshly queried raw NAVs (nothing persisted yet)
    2. gating checks against the synced state; failures raise before any
       mutation
    3. re-baseline: project each venue's raw NAV past the operation's moves
       and move the operating tranche's effective NAV by exactly what its
       venues gained or paid out
    4. one atomic ledger transaction: fee-share mints, share mint/burn,
       venue moves, and the re-baselined accounting ledger

Payouts are AssetClaims. A tranche's own venue pays the part of a claim
backed by its raw NAV, claim * min(raw, eff) / eff; the counter venue pays
the rest. That is how junior coverage reaches senior LPs, and how the
junior's share of senior yield reaches junior LPs.

Fee shares: a fee f on a tranche with effective NAV E and supply S is
realized by minting f * S / (E - f) shares to the fee recipient.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, List, Optional, Tuple

from .accountant import (
    Accountant, AccountingLedger, SyncedAccountingState, calculate_post_op, to_state_dict,
)
from .adapters import TrancheVenue
from .config import MarketConfig
from .core import (
    Move, TrancheType, MarketState,
    SYSTEM_WALLET, SHARE_DECIMAL_PLACES,
    ConfigurationError, CoverageRequirementUnsatisfied, FixedTermLockout,
    InsufficientRedeemableShares, InsufficientLiquidity, InvalidTranche,
    DepositCapacityExceeded,
    tranche_share, share_symbol, escrow_wallet, market_unit,
)
from .ledger import Ledger
from .pricing_source import PricingSource, to_nav, to_tranche_units
from .redemptions import (
    REQUESTS_KEY, NEXT_ID_KEY, FIRST_REQUEST_ID,
    create_request, claim_request, cancel_request, claim_cancelled,
    pending_shares, claimable_shares, cancelled_shares, queue_updates,
)
from .units import NAV, TrancheAmount, ZERO_NAV, nav_min
from .utils import max_junior_withdrawal_nav, max_senior_deposit_nav
from .ydm import YieldDistributionModel


_SHARE_QUANTUM = Decimal(10) ** -SHARE_DECIMAL_PLACES


def _floor_shares(value: Decimal) -> Decimal:
    return value.quantize(_SHARE_QUANTUM, rounding=ROUND_FLOOR)


@dataclass(frozen=True, slots=True)
class AssetClaims:
    """
    A claim on a market's assets, split by the venue that pays it.

    st_assets is paid in the senior asset, jt_assets in the junior asset;
    nav is the value of the whole claim.
    """
    st_assets: TrancheAmount
    jt_assets: TrancheAmount
    nav: NAV

    def own(self, tranche: TrancheType) -> TrancheAmount:
        return self.st_assets if tranche is TrancheType.SENIOR else self.jt_assets

    def counter(self, tranche: TrancheType) -> TrancheAmount:
        return self.jt_assets if tranche is TrancheType.SENIOR else self.st_assets


class Kernel:
    """
    One two-tranche market.

    The market's persistent state (accounting ledger, redemption queue, fee
    recipient) lives in the market unit on the ledger. Constructing a Kernel
    over a ledger that already holds the market reattaches to it.

    Example:
        kernel = Kernel(ledger, "MKT", config,
                        st_venue=SyncVaultAdapter(ledger, "USDC", "st_vault"),
                        jt_venue=SyncVaultAdapter(ledger, "USDC", "jt_vault"),
                        pricing=StaticPricingSource({"USDC": 1}),
                        ydm=StaticYDM(Decimal("0.3")),
                        fee_recipient="treasury")
        kernel.deposit(TrancheType.JUNIOR, Decimal("1000000"), "alice", "alice")
    """

    def __init__(
        self,
        ledger: Ledger,
        market: str,
        config: MarketConfig,
        st_venue: TrancheVenue,
        jt_venue: TrancheVenue,
        pricing: PricingSource,
        ydm: YieldDistributionModel,
        fee_recipient: str,
    ):
        if not market or not market.strip():
            raise ConfigurationError("Market symbol cannot be empty")
        if not fee_recipient or not fee_recipient.strip() or fee_recipient == SYSTEM_WALLET:
            raise ConfigurationError(f"Invalid fee recipient: {fee_recipient!r}")
        if st_venue is None or jt_venue is None:
            raise ConfigurationError("Both tranches need a venue")
        if st_venue is jt_venue:
            raise ConfigurationError("Senior and junior tranches cannot share a venue")

        self.ledger = ledger
        self.market = market
        self.config = config
        self.venues: Dict[TrancheType, TrancheVenue] = {
            TrancheType.SENIOR: st_venue,
            TrancheType.JUNIOR: jt_venue,
        }
        self.pricing = pricing
        self.accountant = Accountant(ledger, market, config, ydm)
        self.escrow = escrow_wallet(market)
        self.verbose = ledger.verbose
        self._register(fee_recipient)

    def _register(self, fee_recipient: str) -> None:
        if self.market in self.ledger.units:
            persisted = self.ledger.get_unit_state(self.market).get('config')
            if persisted != self.config.to_dict():
                raise ConfigurationError(
                    f"Market {self.market} already exists with a different configuration"
                )
            return

        for tranche in TrancheType:
            self.ledger.register_unit(tranche_share(self.market, tranche))
        self.ledger.ensure_wallet(self.escrow)
        self.ledger.ensure_wallet(fee_recipient)
        self.ledger.register_unit(market_unit(self.market, {
            'market': self.market,
            'config': self.config.to_dict(),
            'st_asset': self.venues[TrancheType.SENIOR].asset,
            'jt_asset': self.venues[TrancheType.JUNIOR].asset,
            'fee_recipient': fee_recipient,
            'accounting': to_state_dict(AccountingLedger.initial(self.ledger.current_time)),
            REQUESTS_KEY: {},
            NEXT_ID_KEY: FIRST_REQUEST_ID,
        }))

    # ========================================================================
    # INTERNAL HELPERS
    # ========================================================================

    def share_symbol(self, tranche: TrancheType) -> str:
        return share_symbol(self.market, tranche)

    @property
    def fee_recipient(self) -> str:
        return self.ledger.get_unit_state(self.market)['fee_recipient']

    @property
    def ydm(self) -> YieldDistributionModel:
        return self.accountant.ydm

    def balance_of(self, tranche: TrancheType, wallet: str) -> Decimal:
        return self.ledger.get_balance(wallet, self.share_symbol(tranche))

    def _contract_id(self, operation: str) -> str:
        return f"{self.market}:{operation}"

    def _raw_nav(self, tranche: TrancheType) -> NAV:
        venue = self.venues[tranche]
        return to_nav(self.pricing, venue.asset, venue.total_assets(), self.ledger.current_time)

    def _raw_navs(self) -> Tuple[NAV, NAV]:
        return self._raw_nav(TrancheType.SENIOR), self._raw_nav(TrancheType.JUNIOR)

    def _to_units(self, tranche: TrancheType, nav: NAV) -> TrancheAmount:
        venue = self.venues[tranche]
        return to_tranche_units(self.pricing, venue.asset, nav, venue.decimals, self.ledger.current_time)

    def _fee_shares(self, synced: SyncedAccountingState) -> Dict[TrancheType, Decimal]:
        """Shares to mint per tranche so the fee recipient holds exactly the fee."""
        minted = {}
        for tranche in TrancheType:
            fee = synced.protocol_fee(tranche)
            supply = self.ledger.total_supply(self.share_symbol(tranche))
            eff = synced.effective_nav(tranche)
            if not fee.is_positive() or supply <= 0 or eff.value - fee.value <= 0:
                minted[tranche] = Decimal(0)
                continue
            minted[tranche] = _floor_shares(fee.value * supply / (eff.value - fee.value))
        return minted

    def _fee_moves(self, minted: Dict[TrancheType, Decimal]) -> List[Move]:
        recipient = self.fee_recipient
        return [
            Move(shares, self.share_symbol(tranche), SYSTEM_WALLET, recipient, self._contract_id("fee"))
            for tranche, shares in minted.items() if shares > 0
        ]

    def _pricing_basis(
        self,
        tranche: TrancheType,
        synced: SyncedAccountingState,
        minted: Dict[TrancheType, Decimal],
    ) -> Tuple[NAV, Decimal]:
        """(effective NAV, share supply including fee shares about to be minted)."""
        supply = self.ledger.total_supply(self.share_symbol(tranche)) + minted[tranche]
        return synced.effective_nav(tranche), supply

    @staticmethod
    def _nav_to_shares(nav: NAV, eff: NAV, supply: Decimal) -> Decimal:
        if supply <= 0:
            return _floor_shares(nav.value)
        return _floor_shares(nav.value * supply / eff.value)

    @staticmethod
    def _shares_to_nav(shares: Decimal, eff: NAV, supply: Decimal) -> NAV:
        if supply <= 0:
            return ZERO_NAV
        return NAV.of(shares * eff.value / supply, ROUND_FLOOR)

    @staticmethod
    def _price_per_share(eff: NAV, supply: Decimal) -> Decimal:
        if supply <= 0:
            return Decimal(1)
        return eff.value / supply

    def _split_claim(self, tranche: TrancheType, nav: NAV, synced: SyncedAccountingState) -> AssetClaims:
        eff = synced.effective_nav(tranche)
        raw = synced.raw_nav(tranche)
        if eff.is_positive():
            own_nav = nav.mul_div(nav_min(raw, eff).value, eff.value, ROUND_FLOOR)
        else:
            own_nav = ZERO_NAV
        counter_nav = nav - own_nav
        own_units = self._to_units(tranche, own_nav)
        counter_units = self._to_units(tranche.counterpart, counter_nav)
        if tranche is TrancheType.SENIOR:
            return AssetClaims(st_assets=own_units, jt_assets=counter_units, nav=nav)
        return AssetClaims(st_assets=counter_units, jt_assets=own_units, nav=nav)

    def _check_liquidity(self, claims: AssetClaims) -> None:
        for tranche, amount in ((TrancheType.SENIOR, claims.st_assets), (TrancheType.JUNIOR, claims.jt_assets)):
            available = self.venues[tranche].max_withdraw()
            if amount.value > available.value:
                raise InsufficientLiquidity(
                    f"{tranche.value} venue can release {available.value}, claim needs {amount.value}"
                )

    def _payout_moves(self, claims: AssetClaims, receiver: str, contract_id: str) -> List[Move]:
        return (
            self.venues[TrancheType.SENIOR].withdraw_moves(claims.st_assets, receiver, contract_id)
            + self.venues[TrancheType.JUNIOR].withdraw_moves(claims.jt_assets, receiver, contract_id)
        )

    def _commit_operation(
        self,
        synced: SyncedAccountingState,
        tranche: TrancheType,
        moves: List[Move],
        operation: str,
        updates: Optional[Dict] = None,
    ) -> None:
        """
        Commit an operation's moves and its re-baselined ledger atomically.

        Raw NAVs after the operation are projected from the moves. The
        operating tranche's effective NAV moves by the combined raw change
        of both venues; the other tranche is untouched.
        """
        now = self.ledger.current_time
        fresh = {}
        for side, venue in self.venues.items():
            fresh[side] = to_nav(self.pricing, venue.asset, venue.total_assets_after(moves), now)
        change = (fresh[TrancheType.SENIOR] - synced.st_raw_nav) + (fresh[TrancheType.JUNIOR] - synced.jt_raw_nav)
        st_delta = change if tranche is TrancheType.SENIOR else ZERO_NAV
        jt_delta = change if tranche is TrancheType.JUNIOR else ZERO_NAV
        accounting = calculate_post_op(
            synced.ledger, fresh[TrancheType.SENIOR], fresh[TrancheType.JUNIOR], st_delta, jt_delta,
        )
        self.accountant.commit(accounting, moves, updates=updates, description=operation)

    @staticmethod
    def _as_shares(shares) -> Decimal:
        shares = shares if isinstance(shares, Decimal) else Decimal(str(shares))
        if shares.is_nan() or shares.is_infinite() or shares <= 0:
            raise ValueError(f"Shares must be a positive amount, got {shares}")
        return shares

    def _as_amount(self, tranche: TrancheType, assets) -> TrancheAmount:
        assets = assets if isinstance(assets, Decimal) else Decimal(str(assets))
        if assets.is_nan() or assets.is_infinite() or assets <= 0:
            raise ValueError(f"Deposit amount must be positive, got {assets}")
        amount = TrancheAmount(assets, self.venues[tranche].decimals)
        if not amount.is_positive():
            raise ValueError(f"Deposit amount {assets} is below the asset's precision")
        return amount

    # ========================================================================
    # VIEWS
    # ========================================================================

    def preview_sync(self) -> SyncedAccountingState:
        """The state a sync would produce now, without persisting it."""
        st_raw, jt_raw = self._raw_navs()
        return self.accountant.preview_sync(st_raw, jt_raw)

    def accounting(self) -> AccountingLedger:
        """The persisted accounting ledger as of the last sync."""
        return self.accountant.load()

    def market_state(self) -> MarketState:
        return self.preview_sync().market_state

    def nav_per_share(self, tranche: TrancheType) -> Decimal:
        synced = self.preview_sync()
        eff, supply = self._pricing_basis(tranche, synced, self._fee_shares(synced))
        return self._price_per_share(eff, supply)

    def total_assets(self, tranche: TrancheType) -> AssetClaims:
        """Everything the tranche's LPs (fee shares included) could claim."""
        synced = self.preview_sync()
        return self._split_claim(tranche, synced.effective_nav(tranche), synced)

    def convert_to_shares(self, tranche: TrancheType, assets) -> Decimal:
        synced = self.preview_sync()
        eff, supply = self._pricing_basis(tranche, synced, self._fee_shares(synced))
        venue = self.venues[tranche]
        nav = to_nav(self.pricing, venue.asset, TrancheAmount(Decimal(str(assets)), venue.decimals),
                     self.ledger.current_time)
        if supply > 0 and not eff.is_positive():
            return Decimal(0)
        return self._nav_to_shares(nav, eff, supply)

    def convert_to_assets(self, tranche: TrancheType, shares) -> AssetClaims:
        synced = self.preview_sync()
        eff, supply = self._pricing_basis(tranche, synced, self._fee_shares(synced))
        nav = self._shares_to_nav(Decimal(str(shares)), eff, supply)
        return self._split_claim(tranche, nav, synced)

    def _max_deposit_for(self, tranche: TrancheType, synced: SyncedAccountingState) -> TrancheAmount:
        venue = self.venues[tranche]
        cap = venue.max_deposit()
        supply = self.ledger.total_supply(self.share_symbol(tranche))
        if supply > 0 and not synced.effective_nav(tranche).is_positive():
            return TrancheAmount.zero(venue.decimals)
        if tranche is TrancheType.JUNIOR:
            if synced.market_state is MarketState.FIXED_TERM:
                return TrancheAmount.zero(venue.decimals)
            return cap
        headroom = max_senior_deposit_nav(
            synced.st_effective_nav, synced.jt_raw_nav, synced.jt_effective_nav,
            self.config.beta, self.config.coverage_ratio,
        )
        return cap.min(self._to_units(tranche, headroom))

    def max_deposit(self, tranche: TrancheType, receiver: Optional[str] = None) -> TrancheAmount:
        """
        Largest deposit accepted now, in the tranche's asset.

        Senior: the coverage headroom jt_eff / coverage - beta * jt_raw - st_eff.
        Junior: zero during a fixed term. Both are capped by the venue.
        """
        return self._max_deposit_for(tranche, self.preview_sync())

    def _max_redeem_for(
        self,
        tranche: TrancheType,
        owner: str,
        synced: SyncedAccountingState,
        minted: Dict[TrancheType, Decimal],
    ) -> Decimal:
        balance = self.balance_of(tranche, owner)
        if tranche is TrancheType.SENIOR:
            if synced.market_state is MarketState.FIXED_TERM:
                return Decimal(0)
            return balance
        eff, supply = self._pricing_basis(tranche, synced, minted)
        if not eff.is_positive():
            return Decimal(0)
        unpledged = max_junior_withdrawal_nav(
            synced.st_effective_nav, synced.jt_raw_nav, synced.jt_effective_nav,
            self.config.beta, self.config.coverage_ratio,
        )
        return min(balance, self._nav_to_shares(unpledged, eff, supply))

    def max_redeem(self, tranche: TrancheType, owner: str) -> Decimal:
        """
        Shares the owner may redeem (senior) or request to redeem (junior) now.

        Senior: zero during a fixed term, else the full balance.
        Junior: the balance, capped by the junior NAV not pledged as coverage.
        """
        synced = self.preview_sync()
        return self._max_redeem_for(tranche, owner, synced, self._fee_shares(synced))

    def max_withdraw(self, tranche: TrancheType, owner: str) -> AssetClaims:
        synced = self.preview_sync()
        minted = self._fee_shares(synced)
        shares = self._max_redeem_for(tranche, owner, synced, minted)
        eff, supply = self._pricing_basis(tranche, synced, minted)
        return self._split_claim(tranche, self._shares_to_nav(shares, eff, supply), synced)

    def pending_redeem_request(self, request_id: int, controller: str) -> Decimal:
        state = self.ledger.get_unit_state(self.market)
        return pending_shares(state, controller, request_id, self.ledger.current_time)

    def claimable_redeem_request(self, request_id: int, controller: str) -> Decimal:
        state = self.ledger.get_unit_state(self.market)
        return claimable_shares(state, controller, request_id, self.ledger.current_time)

    def pending_cancel_redeem_request(self, request_id: int, controller: str) -> bool:
        """Cancellation has no waiting period, so nothing is ever pending."""
        return False

    def claimable_cancel_redeem_request(self, request_id: int, controller: str) -> Decimal:
        state = self.ledger.get_unit_state(self.market)
        return cancelled_shares(state, controller, request_id)

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    def sync(self) -> SyncedAccountingState:
        """Mark to market: persist a sync and mint any fee shares it accrued."""
        synced = self.preview_sync()
        moves = self._fee_moves(self._fee_shares(synced))
        self.accountant.commit(synced.ledger, moves, description=f"sync:{self.market}")
        if self.verbose:
            print(f"[SYNC] {self.market} st_eff={synced.st_effective_nav.value:.6f} "
                  f"jt_eff={synced.jt_effective_nav.value:.6f} "
                  f"fees={synced.st_protocol_fee.value:.6f}/{synced.jt_protocol_fee.value:.6f} "
                  f"state={synced.market_state.value}")
        return synced

    def deposit(self, tranche: TrancheType, assets, receiver: str, depositor: str) -> Decimal:
        """
        Deposit assets into a tranche and mint shares to receiver.

        Returns:
            Shares minted

        Raises:
            CoverageRequirementUnsatisfied: senior deposit above the coverage headroom
            FixedTermLockout: junior deposit during a fixed term
            DepositCapacityExceeded: venue full, or the tranche has no value left
        """
        amount = self._as_amount(tranche, assets)
        synced = self.preview_sync()

        limit = self._max_deposit_for(tranche, synced)
        if amount.value > limit.value:
            if tranche is TrancheType.JUNIOR and synced.market_state is MarketState.FIXED_TERM:
                raise FixedTermLockout(f"{self.market}: junior deposits are locked during the fixed term")
            if tranche is TrancheType.SENIOR and limit.value < self.venues[tranche].max_deposit().value:
                raise CoverageRequirementUnsatisfied(
                    f"{self.market}: senior deposit {amount.value} exceeds coverage headroom {limit.value}"
                )
            raise DepositCapacityExceeded(
                f"{self.market}: {tranche.value} deposit {amount.value} exceeds capacity {limit.value}"
            )

        venue = self.venues[tranche]
        deposit_nav = to_nav(self.pricing, venue.asset, amount, self.ledger.current_time)
        minted = self._fee_shares(synced)
        eff, supply = self._pricing_basis(tranche, synced, minted)
        shares = self._nav_to_shares(deposit_nav, eff, supply)
        if shares <= 0:
            raise ValueError(f"Deposit of {amount.value} is too small to mint shares")

        operation = f"deposit:{tranche.value}"
        contract_id = self._contract_id(operation)
        moves = (
            self._fee_moves(minted)
            + venue.deposit_moves(amount, depositor, contract_id)
            + [Move(shares, self.share_symbol(tranche), SYSTEM_WALLET, receiver, contract_id)]
        )
        self._commit_operation(synced, tranche, moves, operation)

        if self.verbose:
            print(f"[DEPOSIT] {self.market} {tranche.value}: {amount.value} {venue.asset} "
                  f"-> {shares} shares for {receiver}")
        return shares

    def redeem(
        self,
        tranche: TrancheType,
        shares,
        receiver: str,
        owner: str,
        request_id: Optional[int] = None,
    ) -> AssetClaims:
        """
        Redeem shares for assets.

        Senior: synchronous, from owner's balance; disabled during a fixed term.
        Junior: claims shares of request request_id made by controller owner,
        paying min(request-time, current) NAV per share.

        Raises:
            FixedTermLockout: senior redemption during a fixed term
            InsufficientRedeemableShares: above balance, or outside the request's window
            CoverageRequirementUnsatisfied: junior payout would break coverage
            InsufficientLiquidity: a venue cannot release its part of the claim
            InvalidTranche: junior redemption without a request id
        """
        shares = self._as_shares(shares)
        if tranche is TrancheType.SENIOR:
            return self._redeem_senior(shares, receiver, owner)
        if request_id is None:
            raise InvalidTranche("Junior redemptions are claimed from a redemption request")
        return self._redeem_junior(shares, receiver, owner, request_id)

    def _redeem_senior(self, shares: Decimal, receiver: str, owner: str) -> AssetClaims:
        tranche = TrancheType.SENIOR
        synced = self.preview_sync()
        if synced.market_state is MarketState.FIXED_TERM:
            raise FixedTermLockout(f"{self.market}: senior redemptions are locked during the fixed term")
        balance = self.balance_of(tranche, owner)
        if shares > balance:
            raise InsufficientRedeemableShares(f"{owner} holds {balance} senior shares, {shares} requested")

        minted = self._fee_shares(synced)
        eff, supply = self._pricing_basis(tranche, synced, minted)
        claims = self._split_claim(tranche, self._shares_to_nav(shares, eff, supply), synced)
        self._check_liquidity(claims)

        operation = "redeem:ST"
        contract_id = self._contract_id(operation)
        moves = (
            self._fee_moves(minted)
            + [Move(shares, self.share_symbol(tranche), owner, SYSTEM_WALLET, contract_id)]
            + self._payout_moves(claims, receiver, contract_id)
        )
        self._commit_operation(synced, tranche, moves, operation)

        if self.verbose:
            print(f"[REDEEM] {self.market} ST: {shares} shares -> {claims.nav.value} NAV for {receiver}")
        return claims

    def _redeem_junior(self, shares: Decimal, receiver: str, controller: str, request_id: int) -> AssetClaims:
        tranche = TrancheType.JUNIOR
        synced = self.preview_sync()
        now = self.ledger.current_time
        state = self.ledger.get_unit_state(self.market)
        new_state, request = claim_request(state, controller, request_id, shares, now)

        minted = self._fee_shares(synced)
        eff, supply = self._pricing_basis(tranche, synced, minted)
        price = min(request.nav_per_share, self._price_per_share(eff, supply))
        nav = NAV.of(shares * price, ROUND_FLOOR)

        unpledged = max_junior_withdrawal_nav(
            synced.st_effective_nav, synced.jt_raw_nav, synced.jt_effective_nav,
            self.config.beta, self.config.coverage_ratio,
        )
        if nav > unpledged:
            raise CoverageRequirementUnsatisfied(
                f"{self.market}: junior payout {nav.value} exceeds unpledged NAV {unpledged.value}"
            )

        claims = self._split_claim(tranche, nav, synced)
        self._check_liquidity(claims)

        operation = "redeem:JT"
        contract_id = self._contract_id(operation)
        moves = (
            self._fee_moves(minted)
            + [Move(shares, self.share_symbol(tranche), self.escrow, SYSTEM_WALLET, contract_id)]
            + self._payout_moves(claims, receiver, contract_id)
        )
        self._commit_operation(synced, tranche, moves, operation, updates=queue_updates(new_state))

        if self.verbose:
            print(f"[REDEEM] {self.market} JT request {request_id}: {shares} shares "
                  f"@ {price} -> {nav.value} NAV for {receiver}")
        return claims

    def request_redeem(self, shares, controller: str, owner: str) -> int:
        """
        Request a junior redemption: escrow shares and snapshot NAV per share.

        Returns:
            The request id (ids start at 1)

        Raises:
            InsufficientRedeemableShares: shares above max_redeem(JUNIOR, owner)
        """
        tranche = TrancheType.JUNIOR
        shares = self._as_shares(shares)
        synced = self.preview_sync()
        minted = self._fee_shares(synced)
        limit = self._max_redeem_for(tranche, owner, synced, minted)
        if shares > limit:
            raise InsufficientRedeemableShares(
                f"{owner} can request at most {limit} junior shares, {shares} requested"
            )

        eff, supply = self._pricing_basis(tranche, synced, minted)
        now = self.ledger.current_time
        state = self.ledger.get_unit_state(self.market)
        new_state, request = create_request(
            state, controller, shares, self._price_per_share(eff, supply), now,
            self.config.jt_redemption_delay,
        )

        contract_id = self._contract_id("request_redeem")
        moves = (
            self._fee_moves(minted)
            + [Move(shares, self.share_symbol(tranche), owner, self.escrow, contract_id)]
        )
        self.accountant.commit(synced.ledger, moves, updates=queue_updates(new_state),
                               description="request_redeem:JT")
        if self.verbose:
            print(f"[REQUEST] {self.market} JT request {request.request_id}: {shares} shares "
                  f"@ {request.nav_per_share} claimable at {request.claimable_at}")
        return request.request_id

    def cancel_redeem_request(self, request_id: int, controller: str) -> None:
        """
        Cancel a junior request. The escrowed shares are claimable at once.

        Raises:
            RedemptionRequestNotFound: unknown request
            InsufficientRedeemableShares: request already cancelled
        """
        synced = self.preview_sync()
        state = self.ledger.get_unit_state(self.market)
        new_state = cancel_request(state, controller, request_id)
        moves = self._fee_moves(self._fee_shares(synced))
        self.accountant.commit(synced.ledger, moves, updates=queue_updates(new_state),
                               description="cancel_redeem:JT")
        if self.verbose:
            print(f"[CANCEL] {self.market} JT request {request_id} by {controller}")

    def claim_cancel_redeem_request(self, request_id: int, receiver: str, controller: str) -> Decimal:
        """
        Return a cancelled request's escrowed shares to receiver.

        Returns:
            Shares returned
        """
        synced = self.preview_sync()
        state = self.ledger.get_unit_state(self.market)
        new_state, shares = claim_cancelled(state, controller, request_id)
        contract_id = self._contract_id("claim_cancel")
        moves = (
            self._fee_moves(self._fee_shares(synced))
            + [Move(shares, self.share_symbol(TrancheType.JUNIOR), self.escrow, receiver, contract_id)]
        )
        self.accountant.commit(synced.ledger, moves, updates=queue_updates(new_state),
                               description="claim_cancel:JT")
        return shares

    # ========================================================================
    # ADMIN
    # ========================================================================

    def set_fee_recipient(self, wallet: str) -> None:
        """Fees accrued up to now are minted to the old recipient first."""
        if not wallet or not wallet.strip() or wallet == SYSTEM_WALLET:
            raise ConfigurationError(f"Invalid fee recipient: {wallet!r}")
        self.ledger.ensure_wallet(wallet)
        synced = self.preview_sync()
        moves = self._fee_moves(self._fee_shares(synced))
        self.accountant.commit(synced.ledger, moves, updates={'fee_recipient': wallet},
                               description="set_fee_recipient")

    def set_yield_distribution_model(self, ydm: YieldDistributionModel) -> None:
        """Accrue under the old model up to now, then switch."""
        self.sync()
        self.accountant.ydm = ydm

    def __repr__(self):
        return f"Kernel({self.market}, ST={self.venues[TrancheType.SENIOR]!r}, JT={self.venues[TrancheType.JUNIOR]!r})"
