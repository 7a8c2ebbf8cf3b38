"""
Reference implementations of the protocol modules a clearinghouse depends on.

Each module keeps its state in host-ledger records, so its writes share the
atomic failure domain of whichever facility operation triggered them.
"""

from .treasury import Treasury
from .minter import MintAuthority
from .roles import Roles
from .registry import ClearinghouseRegistry

__all__ = [
    "Treasury",
    "MintAuthority",
    "Roles",
    "ClearinghouseRegistry",
]
