"""
roles.py - Role-Based Authorization

Role membership lives in a single ledger record: {role: [address, ...]}.
"""

from __future__ import annotations

from ..core import Unauthorized
from ..ledger import Ledger


class Roles:
    VERSION = (1, 0)

    def __init__(self, ledger: Ledger, address: str = "roles"):
        self.ledger = ledger
        self.address = ledger.register_contract(address, self)
        self._key = f"roles:{self.address}"

    def grant_role(self, role: str, address: str) -> None:
        if not role:
            raise ValueError("Role name cannot be empty")
        record = self.ledger.get_record(self._key)
        members = record.setdefault(role, [])
        if address not in members:
            members.append(address)
        self.ledger.put_record(self._key, record)

    def revoke_role(self, role: str, address: str) -> None:
        record = self.ledger.get_record(self._key)
        members = record.get(role, [])
        if address not in members:
            raise ValueError(f"{address} does not have role {role}")
        members.remove(address)
        self.ledger.put_record(self._key, record)

    def has_role(self, address: str, role: str) -> bool:
        return address in self.ledger.get_record(self._key).get(role, [])

    def require_role(self, address: str, role: str) -> None:
        """
        Raises:
            Unauthorized: If the address does not hold the role
        """
        if not self.has_role(address, role):
            raise Unauthorized(f"{address} lacks role {role}")
