"""
helpers.py - Scenario helpers shared by the test suites
"""

from datetime import datetime, timedelta

from hypothesis import strategies as st

from clearinghouse import Ledger, Deployment, Cooler, KeeperEngine, WAD, DAI


T0 = datetime(2023, 6, 1)

# One whole gOHM borrows exactly this much at the default loan-to-collateral
LTC_PRINCIPAL = 289292 * 10 ** 16


def snapshot_balances(ledger: Ledger) -> dict:
    """Every non-zero (wallet, token) balance."""
    return {
        (wallet, symbol): amount
        for wallet, balances in ledger.balances.items()
        for symbol, amount in balances.items()
        if amount != 0
    }


def borrow(d: Deployment, owner: str, collateral: int, amount: int = None) -> tuple:
    """
    Open (or reuse) an escrow for owner and borrow against `collateral`.

    Returns:
        (cooler, loan_id)
    """
    if amount is None:
        amount, _ = d.clearinghouse.get_loan_for_collateral(collateral)
    cooler = d.open_cooler(owner, collateral=collateral)
    loan_id = d.clearinghouse.lend_to_cooler(cooler, amount, caller=owner)
    return cooler, loan_id


def repay_in_full(d: Deployment, cooler: Cooler, loan_id: int) -> int:
    """Top up the owner with whatever interest they lack and repay everything."""
    loan = cooler.get_loan(loan_id)
    owner = cooler.owner
    shortfall = loan.amount_due - d.ledger.get_balance(owner, DAI)
    if shortfall > 0:
        d.fund(owner, DAI, shortfall)
    d.ledger.approve(owner, cooler.address, DAI, loan.amount_due)
    return cooler.repay_loan(loan_id, loan.amount_due, caller=owner)


def expire(d: Deployment, cooler: Cooler, loan_id: int, after: timedelta) -> None:
    """Move the clock to `after` past a loan's expiry."""
    d.ledger.advance_time(cooler.get_loan(loan_id).expiry + after)


def open_loans(d: Deployment) -> list:
    """(cooler, loan_id, loan) for every clearinghouse loan still owing something."""
    found = []
    for address in d.factory.all_coolers():
        cooler = d.factory.get_cooler(address)
        for loan_id, loan in cooler.loans():
            if loan.lender == d.clearinghouse.address and loan.amount_due > 0:
                found.append((cooler, loan_id, loan))
    return found


# =============================================================================
# RANDOM FACILITY ACTIVITY
# =============================================================================

facility_actions = st.lists(
    st.tuples(st.sampled_from(["borrow", "repay", "extend", "wait"]), st.integers(min_value=1, max_value=5)),
    min_size=1,
    max_size=12,
)


def apply_action(d: Deployment, engine: KeeperEngine, action: str, k: int, n: int) -> None:
    """
    Perform one step of borrower or keeper activity.

    borrow: a new borrower posts k gOHM
    repay:  the first live loan is repaid by k/5 of what it owes
    extend: the first live loan is extended by 1 or 2 terms
    wait:   k * 20 days pass and the keeper does its work
    """
    ch = d.clearinghouse
    now = d.ledger.current_time
    live = [(c, i, loan) for c, i, loan in open_loans(d) if now <= loan.expiry]

    if action == "borrow":
        borrow(d, f"borrower{n}", k * WAD)
    elif action == "repay" and live:
        cooler, loan_id, loan = live[0]
        amount = max(1, loan.amount_due * k // 5)
        shortfall = amount - d.ledger.get_balance(cooler.owner, DAI)
        if shortfall > 0:
            d.fund(cooler.owner, DAI, shortfall)
        d.ledger.approve(cooler.owner, cooler.address, DAI, amount)
        cooler.repay_loan(loan_id, amount, caller=cooler.owner)
    elif action == "extend" and live:
        cooler, loan_id, loan = live[0]
        times = 1 + k % 2
        interest = ch.interest_for_loan(loan.principal, loan.request.duration) * times
        d.fund(cooler.owner, DAI, interest)
        d.ledger.approve(cooler.owner, ch.address, DAI, interest)
        ch.extend_loan(cooler, loan_id, times, caller=cooler.owner)
    elif action == "wait":
        engine.step(now + timedelta(days=20 * k))
