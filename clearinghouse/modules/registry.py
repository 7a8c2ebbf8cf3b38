"""
registry.py - Clearinghouse Registry Module

Keeps two lists: every clearinghouse ever activated (registry) and the ones
currently active.
"""

from __future__ import annotations
import logging
from typing import List

from ..core import RegistryError, Record
from ..ledger import Ledger

logger = logging.getLogger(__name__)


class ClearinghouseRegistry:
    VERSION = (1, 0)

    def __init__(self, ledger: Ledger, address: str = "chreg"):
        self.ledger = ledger
        self.address = ledger.register_contract(address, self)
        self._key = f"chreg:{self.address}"

    def _load(self) -> Record:
        record = self.ledger.get_record(self._key)
        record.setdefault("active", [])
        record.setdefault("registry", [])
        return record

    @property
    def active(self) -> List[str]:
        return list(self._load()["active"])

    @property
    def registry(self) -> List[str]:
        return list(self._load()["registry"])

    @property
    def active_count(self) -> int:
        return len(self._load()["active"])

    @property
    def registry_count(self) -> int:
        return len(self._load()["registry"])

    def activate_clearinghouse(self, address: str) -> None:
        """
        Raises:
            RegistryError: If the clearinghouse is already active
        """
        record = self._load()
        if address in record["active"]:
            raise RegistryError(f"Clearinghouse {address} is already active")
        record["active"].append(address)
        if address not in record["registry"]:
            record["registry"].append(address)
        self.ledger.put_record(self._key, record)
        logger.info("clearinghouse %s activated", address)

    def deactivate_clearinghouse(self, address: str) -> None:
        record = self._load()
        if address in record["active"]:
            record["active"].remove(address)
            self.ledger.put_record(self._key, record)
            logger.info("clearinghouse %s deactivated", address)
