"""
pricing.py - Loan Pricing and Keeper Reward Math

Pure conversions between collateral, principal and interest, plus the
keeper reward formula used when defaulted loans are claimed.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. PURE CALCULATION FUNCTIONS:
   - Take every input explicitly (no ledger, no hidden state)
   - Integer fixed-point arithmetic at scale WAD = 1e18
   - Floor division, in exactly the order written below

2. CONFIG CONVENIENCE FUNCTIONS (quote_*):
   - Bind the facility constants from a ClearinghouseConfig

Key Formulas:
    collateral = principal * WAD / loan_to_collateral
    principal  = collateral * loan_to_collateral / WAD
    interest   = principal * (rate * duration / YEAR) / WAD
    reward     = min(collateral * 5%, max_reward) * min(elapsed, 7 days) / 7 days
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple

from .core import WAD, YEAR
from .config import ClearinghouseConfig, KEEPER_REWARD_PERCENT, AUCTION_RAMP


# ============================================================================
# FROZEN RESULT TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanQuote:
    """
    What a borrower gets for pledging an amount of collateral.

    All values are in smallest token units.
    """
    collateral: int
    principal: int
    interest: int

    @property
    def total_due(self) -> int:
        return self.principal + self.interest


# ============================================================================
# PURE CALCULATION FUNCTIONS - All Inputs Explicit
# ============================================================================

def _require_non_negative(name: str, value: int) -> None:
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def collateral_for_principal(principal: int, loan_to_collateral: int) -> int:
    """
    Collateral required to borrow a principal amount.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Args:
        principal: Debt amount in smallest units
        loan_to_collateral: Debt lent per whole collateral unit (WAD)

    Returns:
        Collateral amount (floor)
    """
    _require_non_negative("principal", principal)
    if loan_to_collateral <= 0:
        raise ValueError(f"loan_to_collateral must be positive, got {loan_to_collateral}")
    return principal * WAD // loan_to_collateral


def principal_for_collateral(collateral: int, loan_to_collateral: int) -> int:
    """
    Principal that a collateral amount can borrow.

    PURE FUNCTION - All inputs explicit, no hidden state.
    """
    _require_non_negative("collateral", collateral)
    return collateral * loan_to_collateral // WAD


def interest_for(principal: int, interest_rate: int, duration: int) -> int:
    """
    Interest owed on a principal over a duration.

    PURE FUNCTION - All inputs explicit, no hidden state.

    The annual rate is pro-rated linearly over a 365-day year. The rate is
    pro-rated first and the result then applied to the principal; both steps
    floor, so this order must not change.

    Args:
        principal: Debt amount in smallest units
        interest_rate: Annual rate (WAD, e.g. 5e15 for 0.5%)
        duration: Seconds

    Returns:
        Interest amount (floor)

    Example:
        interest_for(1000 * WAD, 5 * 10**15, 365 * DAY) == 5 * WAD
    """
    _require_non_negative("principal", principal)
    _require_non_negative("interest_rate", interest_rate)
    _require_non_negative("duration", duration)
    interest_percent = interest_rate * duration // YEAR
    return principal * interest_percent // WAD


def principal_and_interest_for_collateral(
    collateral: int,
    loan_to_collateral: int,
    interest_rate: int,
    duration: int,
) -> Tuple[int, int]:
    """
    Principal and interest of a full-term loan backed by a collateral amount.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Returns:
        (principal, interest)
    """
    principal = principal_for_collateral(collateral, loan_to_collateral)
    return principal, interest_for(principal, interest_rate, duration)


# ============================================================================
# KEEPER REWARDS
# ============================================================================

def max_keeper_reward(collateral: int, max_reward: int) -> int:
    """
    Fully-vested keeper reward for one defaulted loan.

    Two independent caps: 5% of the seized collateral, and an absolute
    ceiling in collateral units. The smaller one binds.
    """
    _require_non_negative("collateral", collateral)
    percent_cap = collateral * KEEPER_REWARD_PERCENT // WAD
    return percent_cap if percent_cap < max_reward else max_reward


def keeper_reward(
    collateral: int,
    elapsed: int,
    max_reward: int,
    ramp: int = AUCTION_RAMP,
) -> int:
    """
    Keeper reward for claiming one defaulted loan.

    PURE FUNCTION - All inputs explicit, no hidden state.

    The capped reward vests linearly from zero at expiry to its full value
    once `ramp` seconds have elapsed.

    Args:
        collateral: Collateral seized from the loan
        elapsed: Seconds since the loan expired
        max_reward: Absolute reward ceiling in collateral units
        ramp: Vesting period in seconds (default 7 days)

    Returns:
        Reward in collateral units (floor)

    Example:
        # 3.5 days into the ramp with a 0.1 cap
        keeper_reward(100 * WAD, 302400, 10**17) == 5 * 10**16
    """
    if elapsed < 0:
        raise ValueError(f"elapsed must be non-negative, got {elapsed}")
    cap = max_keeper_reward(collateral, max_reward)
    if elapsed < ramp:
        return cap * elapsed // ramp
    return cap


# ============================================================================
# CONFIG CONVENIENCE FUNCTIONS
# ============================================================================

def quote_collateral(config: ClearinghouseConfig, principal: int) -> int:
    """Collateral the facility requires for a principal amount."""
    return collateral_for_principal(principal, config.loan_to_collateral)


def quote_loan(config: ClearinghouseConfig, collateral: int) -> LoanQuote:
    """Full-term loan the facility writes against a collateral amount."""
    principal, interest = principal_and_interest_for_collateral(
        collateral,
        config.loan_to_collateral,
        config.interest_rate,
        config.duration,
    )
    return LoanQuote(collateral=collateral, principal=principal, interest=interest)


def quote_interest(config: ClearinghouseConfig, principal: int, duration: int) -> int:
    """Interest at the facility rate for a principal and duration."""
    return interest_for(principal, config.interest_rate, duration)
