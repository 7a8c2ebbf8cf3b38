"""
staking.py - Staking (unstake path for seized collateral)

Unstaking takes wrapped collateral (gOHM) from the caller, destroys it and
pays out base tokens (OHM) from the staking reserves at the current index:

    ohm_out = amount * index // WAD

The index is stored in a ledger record so that it rolls back with
everything else.
"""

from __future__ import annotations

from .core import WAD, InvalidParameter
from .ledger import Ledger

# OHM (9 decimals) per whole gOHM
DEFAULT_INDEX = 269_238_508_004


class Staking:
    def __init__(
        self,
        ledger: Ledger,
        wrapped: str,
        base: str,
        index: int = DEFAULT_INDEX,
        address: str = "staking",
    ):
        self.ledger = ledger
        self.wrapped = wrapped
        self.base = base
        self.address = ledger.register_contract(address, self)
        self._key = f"staking:{self.address}"
        self.set_index(index)

    @property
    def index(self) -> int:
        return self.ledger.get_record(self._key)["index"]

    def set_index(self, index: int) -> None:
        if index <= 0:
            raise InvalidParameter(f"Index must be positive, got {index}")
        self.ledger.put_record(self._key, {"index": index})

    def balance_from(self, amount: int) -> int:
        """Base tokens a wrapped amount is worth at the current index."""
        return amount * self.index // WAD

    def unstake(self, to: str, amount: int, trigger: bool, rebasing: bool, *, caller: str) -> int:
        """
        Burn `amount` wrapped tokens from the caller and pay base tokens to `to`.

        The caller must have approved the staking contract for the wrapped
        token. `trigger` and `rebasing` are accepted for interface
        compatibility; rebasing payouts are not modelled.

        Returns:
            Base tokens paid out
        """
        if amount == 0:
            return 0
        self.ledger.transfer_from(self.address, caller, self.address, self.wrapped, amount, reason="unstake")
        self.ledger.burn(self.address, self.wrapped, amount, reason="unstake")
        payout = self.balance_from(amount)
        self.ledger.transfer(self.address, to, self.base, payout, reason="unstake")
        return payout
