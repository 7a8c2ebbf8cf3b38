"""
deployment.py - Wiring a Complete Clearinghouse Deployment

Builds a host ledger with the four tokens the facility touches, every
collaborator, and the clearinghouse itself:

    gOHM   collateral (18 decimals)
    DAI    debt token (18 decimals)
    sDAI   vault share wrapping DAI (18 decimals)
    OHM    base token unstaked from gOHM and burned (9 decimals)

The treasury starts with sDAI reserves, the staking contract with OHM to
pay out on unstake, and an "admin" wallet holds both admin roles.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from .core import Token, WAD
from .config import ClearinghouseConfig, DEFAULT_CONFIG, ROLE_OVERSEER, ROLE_EMERGENCY
from .escrow import Cooler, CoolerFactory
from .facility import Clearinghouse
from .ledger import Ledger
from .modules import ClearinghouseRegistry, MintAuthority, Roles, Treasury
from .staking import Staking, DEFAULT_INDEX
from .vault import YieldVault

logger = logging.getLogger(__name__)

GOHM = "gOHM"
DAI = "DAI"
SDAI = "sDAI"
OHM = "OHM"

ADMIN = "admin"

DEFAULT_START = datetime(2023, 6, 1)
DEFAULT_TREASURY_RESERVES = 50_000_000 * WAD
DEFAULT_STAKING_RESERVES = 100_000_000 * 10 ** 9


@dataclass
class Deployment:
    """Handles to everything deploy() created."""
    ledger: Ledger
    config: ClearinghouseConfig
    clearinghouse: Clearinghouse
    treasury: Treasury
    minter: MintAuthority
    roles: Roles
    registry: ClearinghouseRegistry
    vault: YieldVault
    staking: Staking
    factory: CoolerFactory
    admin: str = ADMIN

    def fund(self, wallet: str, symbol: str, amount: int) -> None:
        """Register a wallet if needed and mint tokens into it."""
        self.ledger.ensure_wallet(wallet)
        self.ledger.mint(wallet, symbol, amount, reason="faucet")

    def open_cooler(self, owner: str, collateral: int = 0) -> Cooler:
        """
        Give a borrower collateral, an escrow, and an approval letting the
        clearinghouse pull that collateral.
        """
        self.ledger.ensure_wallet(owner)
        if collateral:
            self.fund(owner, GOHM, collateral)
        cooler = self.factory.generate_cooler(GOHM, DAI, caller=owner)
        self.ledger.approve(owner, self.clearinghouse.address, GOHM, collateral)
        return cooler


def deploy(
    config: ClearinghouseConfig = DEFAULT_CONFIG,
    *,
    ledger: Optional[Ledger] = None,
    start: datetime = DEFAULT_START,
    treasury_reserves: int = DEFAULT_TREASURY_RESERVES,
    staking_reserves: int = DEFAULT_STAKING_RESERVES,
    index: int = DEFAULT_INDEX,
    verbose: bool = False,
) -> Deployment:
    """
    Create a fully wired, inactive clearinghouse.

    Args:
        config: Facility constants
        ledger: Existing ledger to deploy onto (a new one is created if None)
        start: Initial ledger time for a new ledger
        treasury_reserves: DAI deposited into the vault on the treasury's behalf
        staking_reserves: OHM held by staking to pay unstakers
        index: Staking index (OHM per gOHM)
        verbose: Print executed transactions on a new ledger

    Returns:
        Deployment with handles to every component
    """
    if ledger is None:
        ledger = Ledger("clearinghouse", initial_time=start, verbose=verbose)

    ledger.register_token(Token(GOHM, "Governance OHM"))
    ledger.register_token(Token(DAI, "Dai Stablecoin"))
    ledger.register_token(Token(SDAI, "Savings Dai"))
    ledger.register_token(Token(OHM, "Olympus", decimals=9))

    treasury = Treasury(ledger)
    minter = MintAuthority(ledger, OHM)
    roles = Roles(ledger)
    registry = ClearinghouseRegistry(ledger)
    vault = YieldVault(ledger, asset=DAI, share=SDAI)
    staking = Staking(ledger, wrapped=GOHM, base=OHM, index=index)
    factory = CoolerFactory(ledger)

    clearinghouse = Clearinghouse(
        ledger,
        config=config,
        collateral=GOHM,
        debt=DAI,
        vault=vault,
        staking=staking,
        factory=factory,
        treasury=treasury,
        minter=minter,
        registry=registry,
        roles=roles,
    )

    ledger.ensure_wallet(ADMIN)
    roles.grant_role(ROLE_OVERSEER, ADMIN)
    roles.grant_role(ROLE_EMERGENCY, ADMIN)

    if treasury_reserves:
        ledger.mint(treasury.address, DAI, treasury_reserves, reason="seed_reserves")
        ledger.approve(treasury.address, vault.address, DAI, treasury_reserves)
        vault.deposit(treasury_reserves, treasury.address, caller=treasury.address)
    if staking_reserves:
        ledger.mint(staking.address, OHM, staking_reserves, reason="seed_staking")

    logger.info(
        "deployed %s with %d %s treasury reserves", clearinghouse.address, treasury_reserves, SDAI
    )
    return Deployment(
        ledger=ledger,
        config=config,
        clearinghouse=clearinghouse,
        treasury=treasury,
        minter=minter,
        roles=roles,
        registry=registry,
        vault=vault,
        staking=staking,
        factory=factory,
    )
