"""
Core types and pure helpers for the clearinghouse system.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only host-ledger access
2. Immutable data structures: Token, Move, PendingTransaction, Transaction, Event
3. Exceptions: ClearinghouseError and the validation/authorization taxonomy
4. Fixed-point helpers: WAD scale, saturating subtraction, Decimal conversion

All amounts are integers in a token's smallest unit. All functions in this
module are pure and operate on read-only views.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import (
    Dict, List, Optional, Any, Protocol, Tuple, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scale for rates, ratios and 18-decimal tokens.
WAD_DECIMALS = 18
WAD = 10 ** WAD_DECIMALS

DAY = 24 * 60 * 60
YEAR = 365 * DAY

# Reserved wallet for issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific token.
Positions = Dict[str, int]

# Persistent collaborator record stored on the host ledger.
Record = Dict[str, Any]


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def saturating_sub(a: int, b: int) -> int:
    """Subtract b from a, flooring the result at zero instead of underflowing."""
    return a - b if a > b else 0


def ceil_div(a: int, b: int) -> int:
    """Integer division rounding up (for non-negative operands)."""
    if b <= 0:
        raise ZeroDivisionError("ceil_div by non-positive denominator")
    return -(-a // b)


def to_wad(value: Any, decimals: int = 18) -> int:
    """
    Convert a human-readable amount to its integer representation.

    Digits beyond the token precision are truncated toward zero.

    Example:
        to_wad("2892.92") == 2892920000000000000000
        to_wad("1.5", decimals=9) == 1500000000
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def from_wad(amount: int, decimals: int = 18) -> Decimal:
    """Convert an integer amount back to a Decimal for display."""
    return Decimal(amount) / (Decimal(10) ** decimals)


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to host-ledger state.

    Collaborators and pure helpers that only need to observe balances, records
    or the clock accept a LedgerView. The Ledger class implements this
    protocol but also provides mutation methods.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, symbol: str) -> int:
        """Return the balance of a token in a wallet (0 if none)."""
        ...

    def total_supply(self, symbol: str) -> int:
        """Return the total supply of a token across all non-system wallets."""
        ...

    def allowance(self, owner: str, spender: str, symbol: str) -> int:
        """Return how much of owner's token the spender may pull."""
        ...

    def get_record(self, key: str) -> Record:
        """Return a deep copy of a persistent record (empty dict if absent)."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    REJECTED: Transaction failed validation (insufficient funds, unknown
              wallet or token).
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class RebalanceResult(Enum):
    """
    Outcome of a rebalance attempt.

    REBALANCED: The cadence window was open and funding was trued up.
    NOT_DUE: The next funding time is still in the future; nothing changed.
    """
    REBALANCED = "rebalanced"
    NOT_DUE = "not_due"

    def __bool__(self) -> bool:
        return self is RebalanceResult.REBALANCED


# ============================================================================
# EXCEPTIONS
# ============================================================================

class ClearinghouseError(Exception):
    """Base exception for every error raised by this package."""
    pass


class LedgerError(ClearinghouseError):
    """Base exception for host-ledger errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a move would take a wallet balance below the token minimum."""
    pass


class InsufficientAllowance(LedgerError):
    """Raised when a spender pulls more than the owner approved."""
    pass


class TokenNotRegistered(LedgerError):
    """Raised when operating on a token that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered."""
    pass


class ValidationError(ClearinghouseError):
    """Base exception for rejected inputs. The operation has no side effects."""
    pass


class OnlyFromFactory(ValidationError):
    """Raised when an escrow was not created by the trusted factory."""
    pass


class BadEscrow(ValidationError):
    """Raised when an escrow's collateral/debt pair does not match the facility."""
    pass


class LengthDiscrepancy(ValidationError):
    """Raised when paired batch arguments differ in length."""
    pass


class NotLender(ValidationError):
    """Raised when the facility is not the recorded lender of a loan."""
    pass


class OnlyBurnable(ValidationError):
    """Raised when trying to return the collateral token instead of burning it."""
    pass


class InvalidParameter(ValidationError):
    """Raised when a numeric argument is out of range."""
    pass


class Unauthorized(ClearinghouseError):
    """Raised when the caller lacks the role an admin operation requires."""
    pass


class ReentrantCall(ClearinghouseError):
    """Raised when a collaborator re-enters an operation that is still in progress."""
    pass


class EscrowError(ClearinghouseError):
    """Base exception for loan-escrow errors."""
    pass


class LoanDefaulted(EscrowError):
    """Raised when repaying or extending a loan that has already expired."""
    pass


class LoanNotDefaulted(EscrowError):
    """Raised when claiming a loan that has not expired yet."""
    pass


class RequestInactive(EscrowError):
    """Raised when clearing or rescinding an inactive loan request."""
    pass


class OnlyApproved(EscrowError):
    """Raised when the caller is not allowed to act on an escrow record."""
    pass


class RegistryError(ClearinghouseError):
    """Raised on invalid facility registry transitions."""
    pass


class IncompatibleDependency(ClearinghouseError):
    """Raised at setup when a collaborator's version is not supported."""
    pass


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Token:
    """
    Definition of a fungible token held on the host ledger.

    Attributes:
        symbol: Short identifier (e.g., "DAI", "gOHM").
        name: Human-readable name.
        decimals: Number of decimals of the smallest unit.
        min_balance: Minimum allowed balance in any non-system wallet.
    """
    symbol: str
    name: str
    decimals: int = 18
    min_balance: int = 0

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Token symbol cannot be empty")
        if self.decimals < 0:
            raise ValueError(f"Token decimals must be non-negative, got {self.decimals}")

    @property
    def unit(self) -> int:
        """One whole token in smallest units."""
        return 10 ** self.decimals


@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: The amount to transfer (positive integer, smallest units).
        symbol: The token being transferred.
        source: The wallet debited.
        dest: The wallet credited.
        reason: Short tag describing why the move happens.
    """
    quantity: int
    symbol: str
    source: str
    dest: str
    reason: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Move symbol cannot be empty")
        if not self.reason or not self.reason.strip():
            raise ValueError("Move reason cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.symbol}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A batch of moves before execution - represents INTENT.

    Attributes:
        moves: Tuple of value transfers between wallets
        timestamp: When this pending transaction was created
    """
    moves: Tuple[Move, ...]
    timestamp: datetime

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no moves."""
        return not self.moves

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves)"


def build_transaction(view: LedgerView, moves: List[Move]) -> PendingTransaction:
    """
    Build a PendingTransaction from moves, stamped with the ledger clock.

    Example:
        tx = build_transaction(ledger, [
            Move(100 * WAD, "DAI", "alice", "bob", "payment"),
        ])
        ledger.execute(tx)
    """
    return PendingTransaction(moves=tuple(moves), timestamp=view.current_time)


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of balance changes - represents FACT.

    Attributes:
        moves: Tuple of value transfers between wallets
        timestamp: When the PendingTransaction was created
        exec_id: Unique execution identifier (ledger + sequence)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
    """
    moves: Tuple[Move, ...]
    timestamp: datetime
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int

    def __post_init__(self):
        if not self.moves:
            raise ValueError("Transaction must have moves")

    def __repr__(self) -> str:
        moves = ", ".join(repr(m) for m in self.moves)
        return f"Transaction({self.exec_id}: {moves})"


@dataclass(frozen=True, slots=True)
class Event:
    """
    A log record emitted by a contract on the host ledger.

    Attributes:
        name: Event name (e.g., "Rebalance", "Defund").
        source: Address of the emitting contract.
        fields: Event payload.
        timestamp: Ledger time at emission.
        sequence_number: Monotonic position in the ledger's event log.
    """
    name: str
    source: str
    fields: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    sequence_number: int = 0

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]

    def __repr__(self) -> str:
        payload = ", ".join(f"{k}={v!r}" for k, v in self.fields.items())
        return f"Event({self.name}@{self.source}: {payload})"
