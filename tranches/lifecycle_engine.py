"""
lifecycle_engine.py - Periodic Mark-to-Market

Drives the clock for one ledger and syncs every registered market at each
step, so fees accrue, fixed terms expire and the yield-share accumulator
advances even when nobody trades.

Execution order each step():
1. Advance ledger time
2. Sync every registered kernel, in market-symbol order

The transaction log is the audit trail: every step leaves one sync
transaction per market.
"""

from __future__ import annotations
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .accountant import SyncedAccountingState
from .core import ConfigurationError
from .kernel import Kernel
from .ledger import Ledger


class LifecycleEngine:
    """
    Clock driver for the markets living on one ledger.

    Example:
        engine = LifecycleEngine(ledger)
        engine.register(kernel)
        for t in timestamps:
            states = engine.step(t)
    """

    def __init__(self, ledger: Ledger, kernels: Optional[List[Kernel]] = None):
        self.ledger = ledger
        self.kernels: Dict[str, Kernel] = {}
        self.verbose = ledger.verbose
        for kernel in kernels or []:
            self.register(kernel)

    def register(self, kernel: Kernel) -> None:
        """
        Raises:
            ConfigurationError: kernel is on another ledger, or its market is already registered
        """
        if kernel.ledger is not self.ledger:
            raise ConfigurationError(f"Kernel {kernel.market} runs on a different ledger")
        if kernel.market in self.kernels:
            raise ConfigurationError(f"Market {kernel.market} already registered")
        self.kernels[kernel.market] = kernel

    def step(self, timestamp: datetime) -> Dict[str, SyncedAccountingState]:
        """
        Advance time and sync every market.

        Returns:
            market symbol -> synced state
        """
        self.ledger.advance_time(timestamp)
        results: Dict[str, SyncedAccountingState] = {}
        for market in sorted(self.kernels):
            results[market] = self.kernels[market].sync()
        if self.verbose:
            print(f"[STEP] {timestamp.isoformat()} synced {len(results)} market(s)")
        return results

    def run(
        self,
        timestamps: List[datetime],
        before_step: Optional[Callable[[datetime], None]] = None,
    ) -> List[Dict[str, SyncedAccountingState]]:
        """
        Step through timestamps in order.

        before_step(timestamp) runs after the clock moves and before the
        syncs, so simulations can move prices or venue balances at that
        time.
        """
        history = []
        for timestamp in sorted(timestamps):
            if before_step is not None:
                self.ledger.advance_time(timestamp)
                before_step(timestamp)
            history.append(self.step(timestamp))
        return history
