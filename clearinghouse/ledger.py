"""
ledger.py - Host Ledger for the Clearinghouse Simulation

The Ledger class is the central state manager standing in for the chain the
facility runs on. Every token balance, allowance and collaborator record lives
here, which is what lets a whole facility operation commit or roll back as one
unit.

Key responsibilities:
    - Implements LedgerView protocol for safe read-only access
    - Executes batches of moves atomically (all moves succeed or all fail)
    - Maintains wallet balances, ERC20-style allowances and keyed records
    - Tracks logical time (time only moves forward)
    - Provides atomic() blocks: snapshot, run, restore on any exception
    - Always logs - every executed transaction and emitted event is recorded
"""

from __future__ import annotations
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, List, Set, Optional, Tuple, Any, Iterator
import copy

from .core import (
    # Types
    Move, Transaction, Token, Event,
    PendingTransaction, ExecuteResult,
    Positions, Record,
    # Constants
    SYSTEM_WALLET,
    # Exceptions
    LedgerError, InsufficientFunds, InsufficientAllowance,
    TokenNotRegistered, WalletNotRegistered,
    build_transaction,
)


class Ledger:
    """
    Token ledger with full validation, allowances, records and audit trail.

    Implements the LedgerView protocol, allowing the ledger to be passed to
    collaborators that only read.

    Design Principles:
        - Always validates: every move is checked against registration and
          minimum balances. No shortcuts outside test mode.
        - Always logs: every transaction and event is recorded.
        - All-or-nothing: code running inside atomic() either commits every
          change or none of them.

    Thread Safety:
        Not thread-safe. Operations are totally ordered by the caller.

    Example:
        ledger = Ledger("main")
        ledger.register_token(Token("DAI", "Dai Stablecoin"))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")
        ledger.mint("alice", "DAI", 100 * WAD)

        with ledger.atomic():
            ledger.transfer("alice", "bob", "DAI", 40 * WAD)
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = False,
        test_mode: bool = False,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Print executed transactions (default: False)
            test_mode: Allow set_balance() calls (default: False)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, int]] = {}
        self.tokens: Dict[str, Token] = {}
        self.registered_wallets: Set[str] = set()
        self.allowances: Dict[Tuple[str, str, str], int] = {}
        self.records: Dict[str, Record] = {}
        self.contracts: Dict[str, Any] = {}
        self.transaction_log: List[Transaction] = []
        self.event_log: List[Event] = []
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0
        self._next_event: int = 0
        self._atomic_depth: int = 0
        self._last_rejection: str = ""

        # Auto-register the system wallet (used for issuance/redemption)
        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(int)

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, symbol: str) -> int:
        """
        Get the balance of a token in a wallet.

        Raises:
            WalletNotRegistered: If wallet is not registered
            TokenNotRegistered: If token is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {symbol} not registered")
        return self.balances[wallet_id].get(symbol, 0)

    def total_supply(self, symbol: str) -> int:
        """
        Circulating supply of a token: the sum over every wallet except the
        system wallet. Wallets are sorted for deterministic accumulation.
        """
        if symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {symbol} not registered")
        return sum(
            self.balances[w].get(symbol, 0)
            for w in sorted(self.registered_wallets)
            if w != SYSTEM_WALLET
        )

    def allowance(self, owner: str, spender: str, symbol: str) -> int:
        """How much of owner's token the spender may still pull."""
        return self.allowances.get((owner, spender, symbol), 0)

    def get_record(self, key: str) -> Record:
        """Deep copy of a persistent record (empty dict if never written)."""
        return copy.deepcopy(self.records.get(key, {}))

    def get_positions(self, symbol: str) -> Positions:
        """All non-zero positions for a token across non-system wallets."""
        if symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {symbol} not registered")
        return {
            w: bals[symbol]
            for w, bals in sorted(self.balances.items())
            if w != SYSTEM_WALLET and bals.get(symbol, 0) != 0
        }

    def get_token(self, symbol: str) -> Token:
        """Return the Token definition for a symbol."""
        if symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {symbol} not registered")
        return self.tokens[symbol]

    def list_wallets(self) -> Set[str]:
        """List all registered wallet IDs."""
        return self.registered_wallets.copy()

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Verify that every token's balances net to zero including the system
        wallet (issuance is a move out of the system wallet, so nothing is
        ever created or destroyed outside it).

        Returns:
            Dict with keys:
            - 'valid': bool
            - 'supplies': token -> circulating supply
            - 'discrepancies': tokens whose full sum is non-zero
        """
        supplies = {}
        discrepancies = []
        for symbol in sorted(self.tokens):
            supplies[symbol] = self.total_supply(symbol)
            net = supplies[symbol] + self.balances[SYSTEM_WALLET].get(symbol, 0)
            if net != 0:
                discrepancies.append({'token': symbol, 'net': net})
        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock to a new time.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    def advance_by(self, delta: timedelta) -> datetime:
        """Advance the clock by a duration and return the new time."""
        self.advance_time(self._current_time + delta)
        return self._current_time

    # ========================================================================
    # REGISTRATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered
        """
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(int)
        return wallet_id

    def ensure_wallet(self, wallet_id: str) -> str:
        """Register a wallet unless it already exists."""
        if wallet_id not in self.registered_wallets:
            self.register_wallet(wallet_id)
        return wallet_id

    def register_token(self, token: Token) -> None:
        """
        Register a new token.

        Raises:
            ValueError: If the symbol is already registered
        """
        if token.symbol in self.tokens:
            raise ValueError(f"Token {token.symbol} already registered")
        self.tokens[token.symbol] = token
        if self.verbose:
            print(f"Registered: {token.symbol} ({token.name}) [{token.decimals} decimals]")

    def register_contract(self, address: str, contract: Any) -> str:
        """
        Bind an address to the object implementing it, so collaborators can
        resolve callback targets from stored addresses.

        Raises:
            ValueError: If another contract already owns the address
        """
        existing = self.contracts.get(address)
        if existing is not None and existing is not contract:
            raise ValueError(f"Contract address {address} already in use")
        self.ensure_wallet(address)
        self.contracts[address] = contract
        return address

    def contract_at(self, address: str) -> Any:
        """
        Resolve a contract by address.

        Raises:
            LedgerError: If nothing is deployed at the address
        """
        if address not in self.contracts:
            raise LedgerError(f"No contract deployed at {address}")
        return self.contracts[address]

    def set_balance(self, wallet_id: str, symbol: str, quantity: int) -> None:
        """
        Set a wallet's balance directly.

        WARNING: This bypasses double-entry accounting and is only available
        in test mode. Use mint() or transfer() otherwise.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use mint() or transfer() to modify balances. "
                "Set test_mode=True when creating Ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {symbol} not registered")
        self.balances[wallet_id][symbol] = int(quantity)

    # ========================================================================
    # RECORDS, ALLOWANCES AND EVENTS (Mutating)
    # ========================================================================

    def put_record(self, key: str, value: Record) -> None:
        """Store a deep copy of a collaborator record."""
        self.records[key] = copy.deepcopy(value)

    def approve(self, owner: str, spender: str, symbol: str, amount: int) -> None:
        """Set the amount of owner's token that spender may pull."""
        if symbol not in self.tokens:
            raise TokenNotRegistered(f"Token {symbol} not registered")
        if amount < 0:
            raise ValueError(f"Allowance must be non-negative, got {amount}")
        self.allowances[(owner, spender, symbol)] = amount

    def emit(self, name: str, source: str, **fields: Any) -> Event:
        """Append an event to the event log."""
        event = Event(
            name=name,
            source=source,
            fields=dict(fields),
            timestamp=self._current_time,
            sequence_number=self._next_event,
        )
        self._next_event += 1
        self.event_log.append(event)
        return event

    def events(self, name: Optional[str] = None, source: Optional[str] = None) -> List[Event]:
        """Filter the event log by name and/or source."""
        return [
            e for e in self.event_log
            if (name is None or e.name == name) and (source is None or e.source == source)
        ]

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}
        """
        return f"exec:{self.name}:{sequence:012d}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves succeed together or all fail together.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.REJECTED if validation failed
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            if self.verbose:
                print(f"REJECTED: {reason}")
            self._last_rejection = reason
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            timestamp=pending.timestamp,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
        )

        self._execute_moves(tx.moves)

        # Log transaction (always - audit trail is mandatory)
        self.transaction_log.append(tx)

        if self.verbose:
            print(f"APPLIED {tx!r}")
        return ExecuteResult.APPLIED

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate a pending transaction against all constraints.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. Token and wallet registration
        3. Minimum balance validation on net per-wallet deltas

        Returns:
            Tuple of (success, reason); reason is empty on success
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        for move in pending.moves:
            if move.symbol not in self.tokens:
                return False, f"token not registered: {move.symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"

        net: Dict[Tuple[str, str], int] = {}
        for move in pending.moves:
            key_src = (move.source, move.symbol)
            key_dst = (move.dest, move.symbol)
            net[key_src] = net.get(key_src, 0) - move.quantity
            net[key_dst] = net.get(key_dst, 0) + move.quantity

        # SYSTEM_WALLET is exempt from balance validation
        for (wallet, symbol), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            proposed = self.balances[wallet][symbol] + delta
            token = self.tokens[symbol]
            if proposed < token.min_balance:
                return False, f"{wallet} {symbol}: {proposed} < min {token.min_balance}"

        return True, ""

    def _execute_moves(self, moves) -> None:
        """Apply all moves to wallet balances."""
        for move in moves:
            self.balances[move.source][move.symbol] -= move.quantity
            self.balances[move.dest][move.symbol] += move.quantity

    def transfer(self, source: str, dest: str, symbol: str, amount: int, reason: str = "transfer") -> None:
        """
        Move amount of a token between wallets. Zero amounts are a no-op.

        Raises:
            InsufficientFunds: If the move is rejected
        """
        if amount == 0:
            return
        result = self.execute(build_transaction(self, [
            Move(amount, symbol, source, dest, reason)
        ]))
        if result == ExecuteResult.REJECTED:
            raise InsufficientFunds(
                f"{reason}: cannot move {amount} {symbol} from {source} to {dest} "
                f"({self._last_rejection})"
            )

    def transfer_from(
        self,
        spender: str,
        owner: str,
        dest: str,
        symbol: str,
        amount: int,
        reason: str = "transfer_from",
    ) -> None:
        """
        Pull amount of owner's token on behalf of spender, consuming allowance.

        Raises:
            InsufficientAllowance: If spender's allowance is too small
            InsufficientFunds: If owner's balance is too small
        """
        if amount == 0:
            return
        approved = self.allowance(owner, spender, symbol)
        if approved < amount:
            raise InsufficientAllowance(
                f"{spender} may pull {approved} {symbol} from {owner}, needs {amount}"
            )
        self.transfer(owner, dest, symbol, amount, reason)
        self.allowances[(owner, spender, symbol)] = approved - amount

    def mint(self, dest: str, symbol: str, amount: int, reason: str = "mint") -> None:
        """Issue new tokens to a wallet (move out of the system wallet)."""
        self.transfer(SYSTEM_WALLET, dest, symbol, amount, reason)

    def burn(self, source: str, symbol: str, amount: int, reason: str = "burn") -> None:
        """Destroy tokens held by a wallet (move into the system wallet)."""
        self.transfer(source, SYSTEM_WALLET, symbol, amount, reason)

    # ========================================================================
    # ATOMICITY
    # ========================================================================

    def _snapshot(self) -> Dict[str, Any]:
        """Capture every mutable field except the clock."""
        return {
            'balances': {w: dict(b) for w, b in self.balances.items()},
            'registered_wallets': set(self.registered_wallets),
            'allowances': dict(self.allowances),
            'records': copy.deepcopy(self.records),
            'contracts': dict(self.contracts),
            'transaction_log': len(self.transaction_log),
            'event_log': len(self.event_log),
            'next_sequence': self._next_sequence,
            'next_event': self._next_event,
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        """Restore a snapshot taken by _snapshot()."""
        self.balances = {
            w: defaultdict(int, b) for w, b in snapshot['balances'].items()
        }
        self.registered_wallets = snapshot['registered_wallets']
        self.allowances = snapshot['allowances']
        self.records = snapshot['records']
        self.contracts = snapshot['contracts']
        # Logs are append-only, so truncation restores them
        del self.transaction_log[snapshot['transaction_log']:]
        del self.event_log[snapshot['event_log']:]
        self._next_sequence = snapshot['next_sequence']
        self._next_event = snapshot['next_event']

    @contextmanager
    def atomic(self) -> Iterator[Ledger]:
        """
        Run a block as one all-or-nothing unit of work.

        Every balance, allowance, record, registration and log entry written
        inside the block is discarded if the block raises; the exception
        propagates unchanged. Blocks nest: an inner failure caught by the
        outer block only undoes the inner block's writes.

        Example:
            with ledger.atomic():
                ledger.transfer("alice", "bob", "DAI", 10)
                raise RuntimeError("abort")   # alice keeps her 10 DAI
        """
        snapshot = self._snapshot()
        self._atomic_depth += 1
        try:
            yield self
        except BaseException:
            self._restore(snapshot)
            raise
        finally:
            self._atomic_depth -= 1

    @property
    def in_atomic(self) -> bool:
        """True while an atomic() block is open."""
        return self._atomic_depth > 0

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create a deep copy of this ledger.

        Modifications to the clone do not affect the original and vice versa.
        Contract objects are shared by reference; their persistent state lives
        in records, which are copied.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned._test_mode = self._test_mode
        cloned.tokens = dict(self.tokens)
        cloned.transaction_log = list(self.transaction_log)
        cloned.event_log = list(self.event_log)
        cloned._restore(self._snapshot())
        cloned._last_rejection = ""
        cloned._atomic_depth = 0
        return cloned
