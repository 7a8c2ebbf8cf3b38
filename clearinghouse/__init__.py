"""
clearinghouse - Collateralized Lending Facility

A simulation of a treasury-funded lending facility that writes fixed-term
loans against gOHM through Cooler escrows, keeps itself funded up to a
ceiling, and burns the collateral of defaulted loans.

Usage:
    from clearinghouse import deploy, WAD

    d = deploy()
    ch = d.clearinghouse
    ch.activate(caller=d.admin)

    cooler = d.open_cooler("alice", collateral=10 * WAD)
    principal, _ = ch.get_loan_for_collateral(10 * WAD)
    loan_id = ch.lend_to_cooler(cooler, principal, caller="alice")
"""

# Core types
from .core import (
    WAD,
    DAY,
    YEAR,
    SYSTEM_WALLET,
    LedgerView,
    Token,
    Move,
    PendingTransaction,
    Transaction,
    Event,
    build_transaction,
    ExecuteResult,
    RebalanceResult,
    saturating_sub,
    ceil_div,
    to_wad,
    from_wad,
    ClearinghouseError,
    LedgerError,
    InsufficientFunds,
    InsufficientAllowance,
    TokenNotRegistered,
    WalletNotRegistered,
    ValidationError,
    OnlyFromFactory,
    BadEscrow,
    LengthDiscrepancy,
    NotLender,
    OnlyBurnable,
    InvalidParameter,
    Unauthorized,
    ReentrantCall,
    EscrowError,
    LoanDefaulted,
    LoanNotDefaulted,
    RequestInactive,
    OnlyApproved,
    RegistryError,
    IncompatibleDependency,
)

# Host ledger
from .ledger import Ledger

# Configuration
from .config import (
    ClearinghouseConfig,
    ClearinghouseConfigSchema,
    DEFAULT_CONFIG,
    ROLE_OVERSEER,
    ROLE_EMERGENCY,
    KEEPER_REWARD_PERCENT,
    AUCTION_RAMP,
    load_config,
    load_config_from_string,
    dump_config,
)

# Pricing
from .pricing import (
    LoanQuote,
    collateral_for_principal,
    principal_for_collateral,
    interest_for,
    principal_and_interest_for_collateral,
    max_keeper_reward,
    keeper_reward,
    quote_collateral,
    quote_loan,
    quote_interest,
)

# Facility
from .state import FacilityState
from .ports import Loan, Request
from .facility import Clearinghouse, ClaimReceipt

# Collaborators
from .escrow import Cooler, CoolerFactory
from .vault import YieldVault
from .staking import Staking
from .modules import Treasury, MintAuthority, Roles, ClearinghouseRegistry

# Keeper and wiring
from .keeper import KeeperEngine, KeeperReport
from .deployment import Deployment, deploy, GOHM, DAI, SDAI, OHM, ADMIN


__all__ = [
    # Core
    'WAD', 'DAY', 'YEAR', 'SYSTEM_WALLET',
    'LedgerView', 'Token', 'Move', 'PendingTransaction', 'Transaction', 'Event',
    'build_transaction', 'ExecuteResult', 'RebalanceResult',
    'saturating_sub', 'ceil_div', 'to_wad', 'from_wad',
    # Exceptions
    'ClearinghouseError', 'LedgerError', 'InsufficientFunds', 'InsufficientAllowance',
    'TokenNotRegistered', 'WalletNotRegistered',
    'ValidationError', 'OnlyFromFactory', 'BadEscrow', 'LengthDiscrepancy',
    'NotLender', 'OnlyBurnable', 'InvalidParameter',
    'Unauthorized', 'ReentrantCall',
    'EscrowError', 'LoanDefaulted', 'LoanNotDefaulted', 'RequestInactive', 'OnlyApproved',
    'RegistryError', 'IncompatibleDependency',
    # Ledger
    'Ledger',
    # Config
    'ClearinghouseConfig', 'ClearinghouseConfigSchema', 'DEFAULT_CONFIG',
    'ROLE_OVERSEER', 'ROLE_EMERGENCY', 'KEEPER_REWARD_PERCENT', 'AUCTION_RAMP',
    'load_config', 'load_config_from_string', 'dump_config',
    # Pricing
    'LoanQuote', 'collateral_for_principal', 'principal_for_collateral', 'interest_for',
    'principal_and_interest_for_collateral', 'max_keeper_reward', 'keeper_reward',
    'quote_collateral', 'quote_loan', 'quote_interest',
    # Facility
    'FacilityState', 'Loan', 'Request', 'Clearinghouse', 'ClaimReceipt',
    # Collaborators
    'Cooler', 'CoolerFactory', 'YieldVault', 'Staking',
    'Treasury', 'MintAuthority', 'Roles', 'ClearinghouseRegistry',
    # Keeper and wiring
    'KeeperEngine', 'KeeperReport', 'Deployment', 'deploy',
    'GOHM', 'DAI', 'SDAI', 'OHM', 'ADMIN',
]

__version__ = '1.1.0'
