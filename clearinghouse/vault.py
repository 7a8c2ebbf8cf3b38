"""
vault.py - Yield-Bearing Vault (ERC-4626 style)

Wraps a base asset (DAI) into transferable shares (sDAI). The vault wallet
holds the deposited assets; shares are an ordinary ledger token minted to
depositors. Yield is simulated by accrue(), which raises total_assets
without minting shares, so every share becomes worth more.

Rounding always favours the vault:
    preview_deposit / preview_redeem / max_withdraw  round DOWN
    preview_withdraw                                 rounds UP
With no shares outstanding, assets and shares convert 1:1.
"""

from __future__ import annotations
import logging

from .core import InsufficientAllowance, InvalidParameter, ceil_div
from .ledger import Ledger

logger = logging.getLogger(__name__)


class YieldVault:
    """
    Example:
        vault = YieldVault(ledger, asset="DAI", share="sDAI")
        ledger.approve("alice", vault.address, "DAI", 100)
        shares = vault.deposit(100, "alice", caller="alice")
    """

    def __init__(self, ledger: Ledger, asset: str, share: str, address: str = "vault"):
        self.ledger = ledger
        self.asset = asset
        self.share = share
        # Both tokens must exist before the vault can price anything
        ledger.get_token(asset)
        ledger.get_token(share)
        self.address = ledger.register_contract(address, self)

    # ========================================================================
    # ACCOUNTING
    # ========================================================================

    def total_assets(self) -> int:
        return self.ledger.get_balance(self.address, self.asset)

    def total_shares(self) -> int:
        return self.ledger.total_supply(self.share)

    def convert_to_shares(self, assets: int) -> int:
        supply = self.total_shares()
        total = self.total_assets()
        if supply == 0 or total == 0:
            return assets
        return assets * supply // total

    def convert_to_assets(self, shares: int) -> int:
        supply = self.total_shares()
        if supply == 0:
            return shares
        return shares * self.total_assets() // supply

    def preview_deposit(self, assets: int) -> int:
        return self.convert_to_shares(assets)

    def preview_withdraw(self, assets: int) -> int:
        """Shares burned to withdraw an exact amount of assets (rounds up)."""
        supply = self.total_shares()
        total = self.total_assets()
        if supply == 0 or total == 0:
            return assets
        return ceil_div(assets * supply, total)

    def preview_redeem(self, shares: int) -> int:
        """Assets paid out for redeeming an exact amount of shares (rounds down)."""
        return self.convert_to_assets(shares)

    def max_withdraw(self, owner: str) -> int:
        return self.convert_to_assets(self.ledger.get_balance(owner, self.share))

    def balance_of(self, owner: str) -> int:
        return self.ledger.get_balance(owner, self.share)

    # ========================================================================
    # DEPOSIT / WITHDRAW
    # ========================================================================

    def deposit(self, assets: int, receiver: str, *, caller: str) -> int:
        """
        Pull assets from the caller (who must have approved the vault) and
        mint shares to the receiver.

        Returns:
            Shares minted
        """
        if assets < 0:
            raise InvalidParameter(f"Deposit must be non-negative, got {assets}")
        shares = self.preview_deposit(assets)
        if assets and shares == 0:
            raise InvalidParameter(f"Deposit of {assets} {self.asset} rounds to zero shares")
        self.ledger.transfer_from(self.address, caller, self.address, self.asset, assets, reason="vault_deposit")
        self.ledger.mint(receiver, self.share, shares, reason="vault_deposit")
        return shares

    def withdraw(self, assets: int, receiver: str, owner: str, *, caller: str) -> int:
        """
        Burn the owner's shares and pay exactly `assets` to the receiver.

        Returns:
            Shares burned
        """
        if assets < 0:
            raise InvalidParameter(f"Withdrawal must be non-negative, got {assets}")
        shares = self.preview_withdraw(assets)
        self._burn_shares(owner, shares, caller)
        self.ledger.transfer(self.address, receiver, self.asset, assets, reason="vault_withdraw")
        return shares

    def redeem(self, shares: int, receiver: str, owner: str, *, caller: str) -> int:
        """
        Burn exactly `shares` of the owner's shares and pay their value out.

        Returns:
            Assets paid
        """
        if shares < 0:
            raise InvalidParameter(f"Redemption must be non-negative, got {shares}")
        assets = self.preview_redeem(shares)
        self._burn_shares(owner, shares, caller)
        self.ledger.transfer(self.address, receiver, self.asset, assets, reason="vault_redeem")
        return assets

    def _burn_shares(self, owner: str, shares: int, caller: str) -> None:
        if caller != owner:
            approved = self.ledger.allowance(owner, caller, self.share)
            if approved < shares:
                raise InsufficientAllowance(
                    f"{caller} may spend {approved} {self.share} of {owner}, needs {shares}"
                )
            self.ledger.approve(owner, caller, self.share, approved - shares)
        self.ledger.burn(owner, self.share, shares, reason="vault_burn")

    def accrue(self, amount: int) -> None:
        """Simulate yield: add assets to the vault without minting shares."""
        if amount <= 0:
            raise InvalidParameter(f"Accrued yield must be positive, got {amount}")
        self.ledger.mint(self.address, self.asset, amount, reason="vault_yield")
        logger.debug("vault %s accrued %d %s", self.address, amount, self.asset)
