"""
state.py - Facility State (Receivables Ledger + Funding State)

The only internally-owned mutable state of a clearinghouse, as one immutable
value. Each transition returns a NEW instance (value semantics); the facility
persists it as a ledger record, so ledger rollbacks and clones cover it.

Invariants:
    principal_receivables >= 0 and interest_receivables >= 0, always;
    decrements that would underflow are floored at zero.
    fund_time only moves forward, by exactly one cadence per rebalance.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from .core import saturating_sub


@dataclass(frozen=True, slots=True)
class FacilityState:
    """
    Immutable snapshot of a clearinghouse's receivables and funding state.

    Attributes:
        principal_receivables: Principal owed to the facility by open loans
        interest_receivables: Interest owed to the facility by open loans
        active: Whether the facility lends and holds a funding ceiling
        fund_time: Earliest time at which the next rebalance may run
    """
    principal_receivables: int
    interest_receivables: int
    active: bool
    fund_time: datetime

    def __post_init__(self):
        if self.principal_receivables < 0:
            raise ValueError(
                f"principal_receivables cannot be negative, got {self.principal_receivables}"
            )
        if self.interest_receivables < 0:
            raise ValueError(
                f"interest_receivables cannot be negative, got {self.interest_receivables}"
            )

    @classmethod
    def initial(cls, now: datetime) -> FacilityState:
        """Inactive facility with an empty receivables ledger."""
        return cls(
            principal_receivables=0,
            interest_receivables=0,
            active=False,
            fund_time=now,
        )

    @property
    def total_receivables(self) -> int:
        return self.principal_receivables + self.interest_receivables

    def is_due(self, now: datetime) -> bool:
        """True once the funding cadence window has opened."""
        return self.fund_time <= now

    def with_origination(self, principal: int, interest: int) -> FacilityState:
        """Add a newly written loan's principal and interest to the receivables."""
        if principal < 0 or interest < 0:
            raise ValueError("Originated amounts must be non-negative")
        return replace(
            self,
            principal_receivables=self.principal_receivables + principal,
            interest_receivables=self.interest_receivables + interest,
        )

    def with_reduction(self, principal: int, interest: int) -> FacilityState:
        """Remove repaid or written-off amounts, each clamped at zero."""
        return replace(
            self,
            principal_receivables=saturating_sub(self.principal_receivables, principal),
            interest_receivables=saturating_sub(self.interest_receivables, interest),
        )

    def with_next_fund_time(self, cadence: timedelta) -> FacilityState:
        """Advance fund_time by exactly one cadence, however late the call is."""
        return replace(self, fund_time=self.fund_time + cadence)

    def activated(self, now: datetime) -> FacilityState:
        return replace(self, active=True, fund_time=now)

    def deactivated(self) -> FacilityState:
        return replace(self, active=False)
