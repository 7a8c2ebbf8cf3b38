"""
ports.py - Collaborator Interfaces

Every collaborator the clearinghouse talks to is described here as a
runtime-checkable Protocol. The facility receives concrete objects through
its constructor and checks them once at setup; it never looks them up again.

Escrow records (Request, Loan) are defined here too, since they cross the
boundary between the escrow and the facility.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Tuple, runtime_checkable


# Major/minor version advertised by each module
Version = Tuple[int, int]


# ============================================================================
# ESCROW RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Request:
    """
    A borrower's standing offer to take a loan on fixed terms.

    Attributes:
        amount: Principal requested, in debt-token units
        interest_rate: Annual rate (WAD)
        loan_to_collateral: Debt lent per collateral unit (WAD)
        duration: Loan term in seconds
        active: False once cleared or rescinded
        requester: Address that posted the collateral
    """
    amount: int
    interest_rate: int
    loan_to_collateral: int
    duration: int
    active: bool
    requester: str


@dataclass(frozen=True, slots=True)
class Loan:
    """
    A funded loan held by an escrow.

    Attributes:
        request: Terms the loan was written on
        principal: Principal still owed
        interest_due: Interest still owed
        collateral: Collateral still locked in the escrow
        expiry: Time after which the loan is in default
        lender: Address that funded the loan
        recipient: Address that receives repayments
        callback: Whether the lender is notified on repay and default
    """
    request: Request
    principal: int
    interest_due: int
    collateral: int
    expiry: datetime
    lender: str
    recipient: str
    callback: bool

    @property
    def amount_due(self) -> int:
        return self.principal + self.interest_due


# ============================================================================
# MODULE PORTS
# ============================================================================

@runtime_checkable
class TreasuryPort(Protocol):
    """Custody of reserves and the per-debtor debt ledger."""
    VERSION: Version
    address: str

    def reserve_debt(self, token: str, debtor: str) -> int: ...

    def set_debt(self, debtor: str, token: str, amount: int) -> None: ...

    def increase_withdraw_approval(self, withdrawer: str, token: str, amount: int) -> None: ...

    def withdraw_reserves(self, to: str, token: str, amount: int) -> None: ...


@runtime_checkable
class MintAuthorityPort(Protocol):
    """Mint and burn authority for the burnable base token."""
    VERSION: Version
    address: str
    ohm: str

    def increase_mint_approval(self, policy: str, amount: int) -> None: ...

    def mint_ohm(self, to: str, amount: int, *, caller: str) -> None: ...

    def burn_ohm(self, from_: str, amount: int, *, caller: str) -> None: ...


@runtime_checkable
class RolesPort(Protocol):
    VERSION: Version

    def has_role(self, address: str, role: str) -> bool: ...

    def require_role(self, address: str, role: str) -> None: ...


@runtime_checkable
class RegistryPort(Protocol):
    """Tracks which clearinghouses are currently active."""
    VERSION: Version

    def activate_clearinghouse(self, address: str) -> None: ...

    def deactivate_clearinghouse(self, address: str) -> None: ...


@runtime_checkable
class YieldVaultPort(Protocol):
    """ERC-4626 style wrapper turning the debt token into a yield-bearing share."""
    address: str
    asset: str
    share: str

    def deposit(self, assets: int, receiver: str, *, caller: str) -> int: ...

    def withdraw(self, assets: int, receiver: str, owner: str, *, caller: str) -> int: ...

    def preview_withdraw(self, assets: int) -> int: ...

    def preview_redeem(self, shares: int) -> int: ...

    def max_withdraw(self, owner: str) -> int: ...


@runtime_checkable
class StakingPort(Protocol):
    """Turns wrapped collateral back into the burnable base token."""
    address: str

    def unstake(self, to: str, amount: int, trigger: bool, rebasing: bool, *, caller: str) -> int: ...


@runtime_checkable
class CoolerFactoryPort(Protocol):
    address: str

    def created(self, address: str) -> bool: ...


@runtime_checkable
class CoolerPort(Protocol):
    """A single borrower's loan escrow."""
    address: str
    owner: str
    collateral: str
    debt: str

    def collateral_for(self, amount: int, loan_to_collateral: int) -> int: ...

    def request_loan(
        self,
        amount: int,
        interest_rate: int,
        loan_to_collateral: int,
        duration: int,
        *,
        caller: str,
    ) -> int: ...

    def clear_request(self, req_id: int, recipient: str, is_callback: bool, *, caller: str) -> int: ...

    def extend_loan_terms(self, loan_id: int, times: int, *, caller: str) -> None: ...

    def claim_defaulted(self, loan_id: int, *, caller: str) -> Tuple[int, int, int, int]: ...

    def get_loan(self, loan_id: int) -> Loan: ...


@runtime_checkable
class CoolerCallback(Protocol):
    """Lender hooks an escrow calls when a loan is repaid or defaults."""

    def is_cooler_callback(self) -> bool: ...

    def on_repay(self, loan_id: int, principal_paid: int, interest_paid: int, *, caller: str) -> None: ...

    def on_default(
        self,
        loan_id: int,
        principal: int,
        interest: int,
        collateral: int,
        *,
        caller: str,
    ) -> None: ...
