"""
redemptions.py - Asynchronous Junior Redemption Queue

Junior LPs exit in two steps: request_redeem escrows shares and snapshots
the NAV per share; after the redemption delay the request can be claimed,
in one go or in parts, at min(snapshot, claim-time NAV per share).
A request can be cancelled at any time before it is fully claimed; the
cancellation is claimable immediately and returns the escrowed shares.

The queue lives in the market unit's state:

    state['redemption_requests'] = {controller: {request_id: {...}}}
    state['next_request_id'] = int

All functions here are pure: they take a market state dict and return a
new one. The kernel persists the result through the accountant.

Request ids start at 1 and are never reused.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Tuple
import copy

from .core import (
    UnitState, QUANTITY_EPSILON,
    InsufficientRedeemableShares, RedemptionRequestNotFound,
)


REQUESTS_KEY = 'redemption_requests'
NEXT_ID_KEY = 'next_request_id'
FIRST_REQUEST_ID = 1


@dataclass(frozen=True, slots=True)
class RedemptionRequest:
    """
    A junior redemption request.

    shares is what remains to be claimed; nav_per_share is the price
    snapshot taken when the request was made.
    """
    request_id: int
    controller: str
    shares: Decimal
    nav_per_share: Decimal
    requested_at: datetime
    claimable_at: datetime
    cancel_pending: bool = False

    def __post_init__(self):
        if not isinstance(self.shares, Decimal):
            object.__setattr__(self, 'shares', Decimal(str(self.shares)))
        if not isinstance(self.nav_per_share, Decimal):
            object.__setattr__(self, 'nav_per_share', Decimal(str(self.nav_per_share)))

    def is_claimable(self, now: datetime) -> bool:
        return not self.cancel_pending and now >= self.claimable_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            'request_id': self.request_id,
            'controller': self.controller,
            'shares': self.shares,
            'nav_per_share': self.nav_per_share,
            'requested_at': self.requested_at,
            'claimable_at': self.claimable_at,
            'cancel_pending': self.cancel_pending,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> RedemptionRequest:
        return cls(
            request_id=int(raw['request_id']),
            controller=raw['controller'],
            shares=Decimal(str(raw['shares'])),
            nav_per_share=Decimal(str(raw['nav_per_share'])),
            requested_at=raw['requested_at'],
            claimable_at=raw['claimable_at'],
            cancel_pending=bool(raw.get('cancel_pending', False)),
        )


# ============================================================================
# READS
# ============================================================================

def next_request_id(state: UnitState) -> int:
    return int(state.get(NEXT_ID_KEY, FIRST_REQUEST_ID))


def list_requests(state: UnitState, controller: str) -> List[RedemptionRequest]:
    """All open requests of a controller, oldest first."""
    book = state.get(REQUESTS_KEY, {}).get(controller, {})
    return [RedemptionRequest.from_dict(book[rid]) for rid in sorted(book)]


def get_request(state: UnitState, controller: str, request_id: int) -> RedemptionRequest:
    """
    Raises:
        RedemptionRequestNotFound: if the controller has no such open request
    """
    raw = state.get(REQUESTS_KEY, {}).get(controller, {}).get(request_id)
    if raw is None:
        raise RedemptionRequestNotFound(
            f"No redemption request {request_id} for controller {controller}"
        )
    return RedemptionRequest.from_dict(raw)


def pending_shares(state: UnitState, controller: str, request_id: int, now: datetime) -> Decimal:
    """Shares still inside the redemption delay (zero once claimable or cancelled)."""
    raw = state.get(REQUESTS_KEY, {}).get(controller, {}).get(request_id)
    if raw is None:
        return Decimal(0)
    request = RedemptionRequest.from_dict(raw)
    if request.cancel_pending or now >= request.claimable_at:
        return Decimal(0)
    return request.shares


def claimable_shares(state: UnitState, controller: str, request_id: int, now: datetime) -> Decimal:
    raw = state.get(REQUESTS_KEY, {}).get(controller, {}).get(request_id)
    if raw is None:
        return Decimal(0)
    request = RedemptionRequest.from_dict(raw)
    return request.shares if request.is_claimable(now) else Decimal(0)


def cancelled_shares(state: UnitState, controller: str, request_id: int) -> Decimal:
    """Shares a cancelled request will return on claim_cancelled."""
    raw = state.get(REQUESTS_KEY, {}).get(controller, {}).get(request_id)
    if raw is None or not raw.get('cancel_pending', False):
        return Decimal(0)
    return Decimal(str(raw['shares']))


# ============================================================================
# TRANSITIONS (return a new state)
# ============================================================================

def _with_request(state: UnitState, request: RedemptionRequest) -> UnitState:
    new_state = copy.deepcopy(state)
    book = new_state.setdefault(REQUESTS_KEY, {})
    book.setdefault(request.controller, {})[request.request_id] = request.to_dict()
    return new_state


def _without_request(state: UnitState, controller: str, request_id: int) -> UnitState:
    new_state = copy.deepcopy(state)
    book = new_state.get(REQUESTS_KEY, {})
    requests = book.get(controller, {})
    requests.pop(request_id, None)
    if not requests:
        book.pop(controller, None)
    return new_state


def create_request(
    state: UnitState,
    controller: str,
    shares: Decimal,
    nav_per_share: Decimal,
    now: datetime,
    delay_seconds: int,
) -> Tuple[UnitState, RedemptionRequest]:
    """
    Record a new request and advance the id counter.

    Raises:
        ValueError: if shares is not positive
    """
    if shares < QUANTITY_EPSILON:
        raise ValueError(f"Redemption shares must be positive, got {shares}")
    request = RedemptionRequest(
        request_id=next_request_id(state),
        controller=controller,
        shares=shares,
        nav_per_share=nav_per_share,
        requested_at=now,
        claimable_at=now + timedelta(seconds=delay_seconds),
    )
    new_state = _with_request(state, request)
    new_state[NEXT_ID_KEY] = request.request_id + 1
    return new_state, request


def claim_request(
    state: UnitState,
    controller: str,
    request_id: int,
    shares: Decimal,
    now: datetime,
) -> Tuple[UnitState, RedemptionRequest]:
    """
    Claim shares from a request; the request is deleted once empty.

    Returns:
        (new state, the request as it was before the claim)

    Raises:
        RedemptionRequestNotFound: unknown request
        InsufficientRedeemableShares: still in the delay, cancelled, or
            more shares than remain
    """
    request = get_request(state, controller, request_id)
    if request.cancel_pending:
        raise InsufficientRedeemableShares(f"Request {request_id} is cancelled")
    if now < request.claimable_at:
        raise InsufficientRedeemableShares(
            f"Request {request_id} not claimable until {request.claimable_at}"
        )
    if shares < QUANTITY_EPSILON:
        raise ValueError(f"Claimed shares must be positive, got {shares}")
    if shares > request.shares:
        raise InsufficientRedeemableShares(
            f"Request {request_id} has {request.shares} shares, {shares} requested"
        )

    remaining = request.shares - shares
    if remaining < QUANTITY_EPSILON:
        return _without_request(state, controller, request_id), request
    return _with_request(state, replace(request, shares=remaining)), request


def cancel_request(state: UnitState, controller: str, request_id: int) -> UnitState:
    """
    Mark a request cancelled. Cancellation is claimable immediately.

    Raises:
        RedemptionRequestNotFound: unknown request
        InsufficientRedeemableShares: already cancelled
    """
    request = get_request(state, controller, request_id)
    if request.cancel_pending:
        raise InsufficientRedeemableShares(f"Request {request_id} is already cancelled")
    return _with_request(state, replace(request, cancel_pending=True))


def claim_cancelled(state: UnitState, controller: str, request_id: int) -> Tuple[UnitState, Decimal]:
    """
    Delete a cancelled request.

    Returns:
        (new state, escrowed shares to return)

    Raises:
        RedemptionRequestNotFound: unknown request
        InsufficientRedeemableShares: request was not cancelled
    """
    request = get_request(state, controller, request_id)
    if not request.cancel_pending:
        raise InsufficientRedeemableShares(f"Request {request_id} has no pending cancellation")
    return _without_request(state, controller, request_id), request.shares


def queue_updates(state: UnitState) -> Dict[str, Any]:
    """The market state fields owned by the queue, for persisting alongside the accounting ledger."""
    return {
        REQUESTS_KEY: copy.deepcopy(state.get(REQUESTS_KEY, {})),
        NEXT_ID_KEY: next_request_id(state),
    }
