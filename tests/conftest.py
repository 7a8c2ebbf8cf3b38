"""
conftest.py - Shared pytest fixtures for clearinghouse tests

Provides common fixtures used across unit, conformance and functional tests:
- Basic ledgers (empty, with tokens and wallets)
- Full deployments (inactive, active and funded)
- A borrower escrow with an open loan
"""

import pytest

from clearinghouse import Ledger, Token, WAD, deploy

from tests.helpers import T0, borrow


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no registrations."""
    return Ledger("test", T0, verbose=False, test_mode=True)


@pytest.fixture
def basic_ledger():
    """Ledger with DAI and two wallets."""
    ledger = Ledger("test", T0, verbose=False, test_mode=True)
    ledger.register_token(Token("DAI", "Dai Stablecoin"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    return ledger


@pytest.fixture
def funded_ledger(basic_ledger):
    """Basic ledger with alice holding 10,000 DAI."""
    basic_ledger.mint("alice", "DAI", 10_000 * WAD)
    return basic_ledger


# =============================================================================
# DEPLOYMENT FIXTURES
# =============================================================================

@pytest.fixture
def deployment():
    """Wired but inactive clearinghouse."""
    return deploy(start=T0)


@pytest.fixture
def active(deployment):
    """Activated clearinghouse (not yet funded)."""
    deployment.clearinghouse.activate(caller=deployment.admin)
    return deployment


@pytest.fixture
def funded(active):
    """Activated clearinghouse after its first rebalance."""
    active.clearinghouse.rebalance()
    return active


@pytest.fixture
def alice_loan(active):
    """Active deployment where alice borrowed against 1 gOHM."""
    cooler, loan_id = borrow(active, "alice", WAD)
    return active, cooler, loan_id


@pytest.fixture
def keeper(deployment):
    """Registered keeper wallet."""
    deployment.ledger.ensure_wallet("keeper")
    return "keeper"
