#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: The Clearinghouse Step by Step

A walk through one lending facility's life. Each step builds on the
previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Setup       - Deployment, activation, the first funding draw
  4-6:  Lending     - Quoting, borrowing, repaying and extending
  7-8:  Defaults    - Keeper rewards, burning seized collateral
  9:    Shutdown    - Emergency shutdown, atomic rollback, conservation

Run:
    python demo.py                       # Interactive mode
    python demo.py --quick               # Run all steps without pausing
    python demo.py --config facility.yaml
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import sys

from clearinghouse import (
    # Wiring
    deploy, Deployment, DEFAULT_CONFIG, load_config,
    # Units and tokens
    WAD, GOHM, DAI, SDAI, OHM, from_wad,
    # Keeper
    KeeperEngine,
    # Errors
    ClearinghouseError,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2023, 6, 1)

    # Borrowers and their collateral (in whole gOHM)
    alice_collateral: int = 10
    bob_collateral: int = 2
    carol_collateral: int = 1

    keeper: str = "keeper_bot"


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def facility_config():
    """Facility constants from --config, or the defaults."""
    if "--config" in sys.argv:
        return load_config(sys.argv[sys.argv.index("--config") + 1])
    return DEFAULT_CONFIG


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def fmt(amount: int, decimals: int = 18) -> str:
    return f"{from_wad(amount, decimals):,.4f}"


def show_facility(d: Deployment):
    ch = d.clearinghouse
    print(f"Active:                {ch.active}")
    print(f"Next funding time:     {ch.fund_time}")
    print(f"Working capital:       {fmt(d.vault.max_withdraw(ch.address))} {DAI}")
    print(f"Treasury debt:         {fmt(d.treasury.reserve_debt(DAI, ch.address))} {DAI}")
    print(f"Principal receivable:  {fmt(ch.principal_receivables)} {DAI}")
    print(f"Interest receivable:   {fmt(ch.interest_receivables)} {DAI}")


# ============================================================================
# PHASE 1: SETUP (Steps 1-3)
# ============================================================================

def step_01_deploy() -> Deployment:
    step_header(1, "Deployment",
        "See every collaborator the facility is wired to.")

    print(">>> d = deploy(start=datetime(2023, 6, 1))")
    d = deploy(facility_config(), start=CONFIG.start_time)

    section_header("Collaborators")
    print(f"Treasury:    {d.treasury.address} holding {fmt(d.ledger.get_balance(d.treasury.address, SDAI))} {SDAI}")
    print(f"Vault:       {d.vault.address} wrapping {d.vault.asset} as {d.vault.share}")
    print(f"Staking:     {d.staking.address} at index {fmt(d.staking.index, 9)} {OHM}/{GOHM}")
    print(f"Factory:     {d.factory.address}")
    print(f"Registry:    {d.registry.address} (active: {d.registry.active})")

    section_header("Facility")
    show_facility(d)
    return d


def step_02_activate(d: Deployment) -> Deployment:
    step_header(2, "Activation",
        "Only an overseer may open the facility; activation restarts the funding clock.")

    try:
        d.clearinghouse.activate(caller="mallory")
    except ClearinghouseError as exc:
        print(f"mallory: rejected ({type(exc).__name__})")

    d.clearinghouse.activate(caller=d.admin)
    print(f"{d.admin}: activated")
    print(f"Registry active list: {d.registry.active}")
    return d


def step_03_first_rebalance(d: Deployment) -> Deployment:
    step_header(3, "Funding",
        "A rebalance tops working capital up to the ceiling, at most once per cadence.")

    print(f">>> ch.rebalance()  -> {d.clearinghouse.rebalance().value}")
    print(f">>> ch.rebalance()  -> {d.clearinghouse.rebalance().value}")
    section_header("After funding")
    show_facility(d)
    return d


# ============================================================================
# PHASE 2: LENDING (Steps 4-6)
# ============================================================================

def step_04_quote(d: Deployment) -> Deployment:
    step_header(4, "Quoting",
        "Loan terms are a pure function of the collateral posted.")

    ch = d.clearinghouse
    for units in (1, CONFIG.alice_collateral):
        quote = ch.quote(units * WAD)
        print(
            f"{units:>3} {GOHM} -> principal {fmt(quote.principal)} {DAI}, "
            f"interest {fmt(quote.interest)} {DAI}, due {fmt(quote.total_due)} {DAI}"
        )
    return d


def step_05_borrow(d: Deployment) -> dict:
    step_header(5, "Borrowing",
        "Borrowers open an escrow and the facility lends straight into it.")

    loans = {}
    for name, units in (
        ("alice", CONFIG.alice_collateral),
        ("bob", CONFIG.bob_collateral),
        ("carol", CONFIG.carol_collateral),
    ):
        cooler = d.open_cooler(name, collateral=units * WAD)
        principal, _ = d.clearinghouse.get_loan_for_collateral(units * WAD)
        loan_id = d.clearinghouse.lend_to_cooler(cooler, principal, caller=name)
        loans[name] = (cooler, loan_id)
        print(f"{name:<6} borrowed {fmt(principal)} {DAI} (loan {loan_id} in {cooler.address})")

    section_header("Facility")
    show_facility(d)
    return loans


def step_06_repay_and_extend(d: Deployment, loans: dict) -> dict:
    step_header(6, "Repaying and extending",
        "Repayments flow back into the vault; extensions are prepaid by the caller.")

    ch = d.clearinghouse
    d.ledger.advance_by(timedelta(days=60))

    cooler, loan_id = loans["bob"]
    loan = cooler.get_loan(loan_id)
    d.fund("bob", DAI, loan.interest_due)
    d.ledger.approve("bob", cooler.address, DAI, loan.amount_due)
    released = cooler.repay_loan(loan_id, loan.amount_due, caller="bob")
    print(f"bob repaid {fmt(loan.amount_due)} {DAI} and got {fmt(released)} {GOHM} back")

    cooler, loan_id = loans["alice"]
    loan = cooler.get_loan(loan_id)
    interest = ch.interest_for_loan(loan.principal, loan.request.duration)
    d.ledger.approve("alice", ch.address, DAI, interest)
    ch.extend_loan(cooler, loan_id, 1, caller="alice")
    print(f"alice prepaid {fmt(interest)} {DAI}; expiry now {cooler.get_loan(loan_id).expiry}")

    section_header("Facility")
    show_facility(d)
    return loans


# ============================================================================
# PHASE 3: DEFAULTS (Steps 7-8)
# ============================================================================

def step_07_keeper(d: Deployment, loans: dict) -> KeeperEngine:
    step_header(7, "The keeper",
        "A keeper rebalances weekly and claims loans once they are past due.")

    engine = KeeperEngine(d.clearinghouse, d.factory, keeper=CONFIG.keeper, min_elapsed=3 * 86400)
    start = d.ledger.current_time
    reports = engine.run([start + timedelta(days=7 * week) for week in range(1, 11)])
    for report in reports:
        claimed = f", claimed {len(report.claimed)} (reward {fmt(report.reward)} {GOHM})" if report.claimed else ""
        print(f"{report.timestamp:%Y-%m-%d}: {report.rebalance.value}{claimed}")
    return engine


def step_08_burn(d: Deployment, engine: KeeperEngine):
    step_header(8, "Burning collateral",
        "Seized collateral is unstaked and burned, never returned raw.")

    print(f"Keeper holds:       {fmt(d.ledger.get_balance(engine.keeper, GOHM))} {GOHM}")
    print(f"Facility holds:     {fmt(d.ledger.get_balance(d.clearinghouse.address, GOHM))} {GOHM}")
    print(f"{OHM} supply:         {fmt(d.ledger.total_supply(OHM), 9)}")
    for event in d.ledger.events("ClaimDefaulted"):
        print(f"ClaimDefaulted at {event.timestamp:%Y-%m-%d}: {event.fields}")

    section_header("Facility")
    show_facility(d)


# ============================================================================
# PHASE 4: SHUTDOWN (Step 9)
# ============================================================================

def step_09_shutdown(d: Deployment):
    step_header(9, "Emergency shutdown",
        "Every idle asset returns to the treasury; failures leave no trace.")

    ch = d.clearinghouse
    try:
        ch.defund(GOHM, 1, caller=d.admin)
    except ClearinghouseError as exc:
        print(f"defund({GOHM}) rejected ({type(exc).__name__}); state untouched")

    ch.emergency_shutdown(caller=d.admin)
    show_facility(d)

    section_header("Conservation")
    result = d.ledger.verify_conservation()
    for symbol, supply in result['supplies'].items():
        print(f"{symbol:<5} circulating {supply}")
    print(f"Valid: {result['valid']}")


def main():
    """Run the complete tutorial."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    print("=" * 70)
    print("       CLEARINGHOUSE - INTERACTIVE TUTORIAL")
    print("=" * 70)
    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    d = step_01_deploy()
    wait_for_enter()
    d = step_02_activate(d)
    wait_for_enter()
    d = step_03_first_rebalance(d)
    wait_for_enter()

    d = step_04_quote(d)
    wait_for_enter()
    loans = step_05_borrow(d)
    wait_for_enter()
    loans = step_06_repay_and_extend(d, loans)
    wait_for_enter()

    engine = step_07_keeper(d, loans)
    wait_for_enter()
    step_08_burn(d, engine)
    wait_for_enter()

    step_09_shutdown(d)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
