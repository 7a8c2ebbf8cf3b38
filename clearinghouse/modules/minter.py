"""
minter.py - Mint Authority Module

Sole issuer of the burnable base token. Policies may mint only up to the
approval they were granted; anyone may burn tokens a holder has approved the
authority to take.
"""

from __future__ import annotations
import logging

from ..core import InsufficientAllowance, SYSTEM_WALLET
from ..ledger import Ledger

logger = logging.getLogger(__name__)


class MintAuthority:
    VERSION = (1, 0)

    def __init__(self, ledger: Ledger, ohm: str, address: str = "minter"):
        self.ledger = ledger
        self.ohm = ohm
        self.address = ledger.register_contract(address, self)
        self._key = f"minter:{self.address}"

    def mint_approval(self, policy: str) -> int:
        return self.ledger.get_record(self._key).get(policy, 0)

    def increase_mint_approval(self, policy: str, amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Approval increase must be non-negative, got {amount}")
        record = self.ledger.get_record(self._key)
        record[policy] = record.get(policy, 0) + amount
        self.ledger.put_record(self._key, record)

    def mint_ohm(self, to: str, amount: int, *, caller: str) -> None:
        """
        Issue base tokens against the caller's mint approval.

        Raises:
            InsufficientAllowance: If the caller's approval is too small
        """
        record = self.ledger.get_record(self._key)
        approved = record.get(caller, 0)
        if approved < amount:
            raise InsufficientAllowance(f"{caller} may mint {approved} {self.ohm}, needs {amount}")
        record[caller] = approved - amount
        self.ledger.put_record(self._key, record)
        self.ledger.mint(to, self.ohm, amount, reason="mint_ohm")

    def burn_ohm(self, from_: str, amount: int, *, caller: str) -> None:
        """Destroy base tokens from a holder that approved this authority."""
        self.ledger.transfer_from(self.address, from_, SYSTEM_WALLET, self.ohm, amount, reason="burn_ohm")
        logger.info("%s burned %d %s held by %s", caller, amount, self.ohm, from_)
