"""
keeper.py - Keeper Engine

Drives a clearinghouse through time the way an off-chain keeper would.

Execution order each step():
1. Advance ledger time
2. Attempt a rebalance (NOT_DUE is a normal outcome)
3. Discover expired loans funded by the facility (discovery by polling)
4. Claim them in one batch and collect the keeper reward

Nothing is scheduled: every time gate is evaluated against the ledger clock
at the moment of the step.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple
import logging

from .core import RebalanceResult
from .escrow import CoolerFactory
from .facility import Clearinghouse, ClaimReceipt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeeperReport:
    """
    Outcome of one keeper step.

    Attributes:
        timestamp: Ledger time of the step
        rebalance: Result of the rebalance attempt
        claimed: (escrow address, loan id) pairs claimed this step
        receipt: Claim totals, or None if nothing was claimed
    """
    timestamp: datetime
    rebalance: RebalanceResult
    claimed: Tuple[Tuple[str, int], ...] = field(default_factory=tuple)
    receipt: Optional[ClaimReceipt] = None

    @property
    def reward(self) -> int:
        return self.receipt.keeper_reward if self.receipt else 0


class KeeperEngine:
    """
    Polls a clearinghouse for due work and performs it.

    Example:
        engine = KeeperEngine(ch, factory, keeper="bot")
        reports = engine.run([t0 + timedelta(days=d) for d in range(0, 200, 7)])
    """

    def __init__(
        self,
        clearinghouse: Clearinghouse,
        factory: CoolerFactory,
        *,
        keeper: str,
        min_elapsed: int = 0,
    ):
        """
        Args:
            clearinghouse: Facility to maintain
            factory: Factory whose escrows are scanned for defaults
            keeper: Wallet that signs the calls and receives rewards
            min_elapsed: Seconds past expiry before a loan is claimed; waiting
                longer earns a larger share of the ramped reward
        """
        if min_elapsed < 0:
            raise ValueError(f"min_elapsed must be non-negative, got {min_elapsed}")
        self.clearinghouse = clearinghouse
        self.factory = factory
        self.keeper = keeper
        self.min_elapsed = min_elapsed
        self.ledger = clearinghouse.ledger
        self.ledger.ensure_wallet(keeper)

    def defaulted_loans(self) -> List[Tuple[str, int]]:
        """Expired, unclaimed loans funded by the clearinghouse, in escrow order."""
        now = self.ledger.current_time
        found: List[Tuple[str, int]] = []
        for address in self.factory.all_coolers():
            cooler = self.factory.get_cooler(address)
            for loan_id, loan in cooler.loans():
                if loan.lender != self.clearinghouse.address or loan.amount_due == 0:
                    continue
                if now <= loan.expiry:
                    continue
                if (now - loan.expiry).total_seconds() < self.min_elapsed:
                    continue
                found.append((address, loan_id))
        return found

    def step(self, timestamp: datetime) -> KeeperReport:
        """
        Advance time and perform all keeper work that is due.

        Args:
            timestamp: New ledger time

        Returns:
            KeeperReport for this step
        """
        self.ledger.advance_time(timestamp)
        result = self.clearinghouse.rebalance(caller=self.keeper)

        due = self.defaulted_loans()
        if not due:
            return KeeperReport(timestamp=timestamp, rebalance=result)

        coolers = [address for address, _ in due]
        loan_ids = [loan_id for _, loan_id in due]
        receipt = self.clearinghouse.claim_defaulted(coolers, loan_ids, caller=self.keeper)
        logger.info("keeper %s claimed %d loan(s) at %s", self.keeper, len(due), timestamp)
        return KeeperReport(
            timestamp=timestamp,
            rebalance=result,
            claimed=tuple(due),
            receipt=receipt,
        )

    def run(self, timestamps: List[datetime]) -> List[KeeperReport]:
        """
        Step through a sequence of timestamps.

        Returns:
            One KeeperReport per timestamp
        """
        return [self.step(t) for t in sorted(timestamps)]
