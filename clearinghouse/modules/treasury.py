"""
treasury.py - Treasury Module

Holds protocol reserves and keeps a debt ledger of how much each debtor
(policy) owes per token. Withdrawals are only possible against an approval
granted beforehand.

Record layout (key "treasury:<address>"):
    {
        "debt": {token: {debtor: amount}},
        "approvals": {token: {withdrawer: amount}},
    }
"""

from __future__ import annotations
import logging
from typing import Dict

from ..core import InsufficientAllowance, Record
from ..ledger import Ledger

logger = logging.getLogger(__name__)


class Treasury:
    """
    Reserve custody and per-debtor debt ledger.

    Example:
        treasury = Treasury(ledger)
        treasury.increase_withdraw_approval("policy", "sDAI", 100)
        treasury.withdraw_reserves("policy", "sDAI", 100)
        treasury.set_debt("policy", "DAI", 100)
    """

    VERSION = (1, 0)

    def __init__(self, ledger: Ledger, address: str = "treasury"):
        self.ledger = ledger
        self.address = ledger.register_contract(address, self)
        self._key = f"treasury:{self.address}"

    def _load(self) -> Record:
        record = self.ledger.get_record(self._key)
        record.setdefault("debt", {})
        record.setdefault("approvals", {})
        return record

    # ========================================================================
    # DEBT LEDGER
    # ========================================================================

    def reserve_debt(self, token: str, debtor: str) -> int:
        """Debt a debtor currently owes in a token."""
        return self._load()["debt"].get(token, {}).get(debtor, 0)

    def total_debt(self, token: str) -> int:
        """Sum of every debtor's debt in a token."""
        return sum(self._load()["debt"].get(token, {}).values())

    def debtors(self, token: str) -> Dict[str, int]:
        return dict(self._load()["debt"].get(token, {}))

    def set_debt(self, debtor: str, token: str, amount: int) -> None:
        """Overwrite a debtor's recorded debt."""
        if amount < 0:
            raise ValueError(f"Debt cannot be negative, got {amount}")
        record = self._load()
        record["debt"].setdefault(token, {})[debtor] = amount
        self.ledger.put_record(self._key, record)
        logger.debug("debt of %s in %s set to %d", debtor, token, amount)

    # ========================================================================
    # WITHDRAWALS
    # ========================================================================

    def withdraw_approval(self, withdrawer: str, token: str) -> int:
        return self._load()["approvals"].get(token, {}).get(withdrawer, 0)

    def increase_withdraw_approval(self, withdrawer: str, token: str, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Approval increase must be non-negative, got {amount}")
        record = self._load()
        approvals = record["approvals"].setdefault(token, {})
        approvals[withdrawer] = approvals.get(withdrawer, 0) + amount
        self.ledger.put_record(self._key, record)

    def withdraw_reserves(self, to: str, token: str, amount: int) -> None:
        """
        Send reserves to an approved withdrawer, consuming its approval.

        Raises:
            InsufficientAllowance: If the approval is smaller than amount
            InsufficientFunds: If the treasury does not hold enough
        """
        record = self._load()
        approvals = record["approvals"].setdefault(token, {})
        approved = approvals.get(to, 0)
        if approved < amount:
            raise InsufficientAllowance(
                f"{to} may withdraw {approved} {token} from treasury, needs {amount}"
            )
        approvals[to] = approved - amount
        self.ledger.put_record(self._key, record)
        self.ledger.transfer(self.address, to, token, amount, reason="withdraw_reserves")
