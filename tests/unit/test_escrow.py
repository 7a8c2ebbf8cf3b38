"""
test_escrow.py - Unit tests for Cooler escrows and the CoolerFactory

A plain wallet ("bob") acts as lender here so the escrow is exercised
without any clearinghouse callbacks.
"""

import pytest
from datetime import timedelta

from clearinghouse import (
    WAD, DAY, DEFAULT_CONFIG, GOHM, DAI,
    EscrowError, LoanDefaulted, LoanNotDefaulted, RequestInactive, OnlyApproved,
    InvalidParameter, InsufficientAllowance, interest_for,
)

LTC = DEFAULT_CONFIG.loan_to_collateral
RATE = DEFAULT_CONFIG.interest_rate
DURATION = DEFAULT_CONFIG.duration
PRINCIPAL = 289292 * 10 ** 16  # exactly 1 gOHM of collateral


@pytest.fixture
def escrow(deployment):
    """alice's escrow with one open request for PRINCIPAL."""
    d = deployment
    d.fund("alice", GOHM, 2 * WAD)
    d.fund("bob", DAI, 10 * PRINCIPAL)
    cooler = d.factory.generate_cooler(GOHM, DAI, caller="alice")
    d.ledger.approve("alice", cooler.address, GOHM, 2 * WAD)
    req_id = cooler.request_loan(PRINCIPAL, RATE, LTC, DURATION, caller="alice")
    return d, cooler, req_id


@pytest.fixture
def open_loan(escrow):
    """The request cleared by bob without callbacks."""
    d, cooler, req_id = escrow
    d.ledger.approve("bob", cooler.address, DAI, PRINCIPAL)
    loan_id = cooler.clear_request(req_id, "bob", False, caller="bob")
    return d, cooler, loan_id


class TestFactory:

    def test_one_escrow_per_owner_and_pair(self, deployment):
        first = deployment.factory.generate_cooler(GOHM, DAI, caller="alice")
        second = deployment.factory.generate_cooler(GOHM, DAI, caller="alice")
        assert first is second
        assert deployment.factory.coolers_for("alice") == [first.address]

    def test_created(self, deployment):
        cooler = deployment.factory.generate_cooler(GOHM, DAI, caller="alice")
        assert deployment.factory.created(cooler.address)
        assert not deployment.factory.created("cooler:fake")

    def test_clone_event(self, deployment):
        cooler = deployment.factory.generate_cooler(GOHM, DAI, caller="alice")
        (event,) = deployment.ledger.events("Clone")
        assert event["cooler"] == cooler.address
        assert event["owner"] == "alice"

    def test_get_cooler_rejects_strangers(self, deployment):
        with pytest.raises(EscrowError):
            deployment.factory.get_cooler("cooler:fake")


class TestRequests:

    def test_request_locks_collateral(self, escrow):
        d, cooler, req_id = escrow
        assert d.ledger.get_balance(cooler.address, GOHM) == WAD
        assert d.ledger.get_balance("alice", GOHM) == WAD
        request = cooler.get_request(req_id)
        assert request.active
        assert request.requester == "alice"

    def test_request_needs_approval(self, deployment):
        deployment.fund("carol", GOHM, WAD)
        cooler = deployment.factory.generate_cooler(GOHM, DAI, caller="carol")
        with pytest.raises(InsufficientAllowance):
            cooler.request_loan(PRINCIPAL, RATE, LTC, DURATION, caller="carol")
        assert cooler.request_count() == 0

    def test_zero_amount_rejected(self, escrow):
        _, cooler, _ = escrow
        with pytest.raises(InvalidParameter):
            cooler.request_loan(0, RATE, LTC, DURATION, caller="alice")

    def test_rescind_returns_collateral(self, escrow):
        d, cooler, req_id = escrow
        cooler.rescind_request(req_id, caller="alice")
        assert d.ledger.get_balance("alice", GOHM) == 2 * WAD
        assert not cooler.get_request(req_id).active

    def test_rescind_only_by_requester(self, escrow):
        _, cooler, req_id = escrow
        with pytest.raises(OnlyApproved):
            cooler.rescind_request(req_id, caller="bob")

    def test_clear_inactive_request_rejected(self, escrow):
        d, cooler, req_id = escrow
        cooler.rescind_request(req_id, caller="alice")
        d.ledger.approve("bob", cooler.address, DAI, PRINCIPAL)
        with pytest.raises(RequestInactive):
            cooler.clear_request(req_id, "bob", False, caller="bob")

    def test_callback_needs_callback_lender(self, escrow):
        d, cooler, req_id = escrow
        d.ledger.approve("bob", cooler.address, DAI, PRINCIPAL)
        with pytest.raises(OnlyApproved):
            cooler.clear_request(req_id, "bob", True, caller="bob")


class TestLoans:

    def test_clear_pays_owner_and_opens_loan(self, open_loan):
        d, cooler, loan_id = open_loan
        loan = cooler.get_loan(loan_id)
        assert d.ledger.get_balance("alice", DAI) == PRINCIPAL
        assert loan.principal == PRINCIPAL
        assert loan.interest_due == interest_for(PRINCIPAL, RATE, DURATION)
        assert loan.collateral == WAD
        assert loan.expiry == d.ledger.current_time + timedelta(days=121)
        assert loan.lender == "bob"
        assert not loan.callback
        assert cooler.loan_count() == 1
        assert not cooler.has_expired(loan_id)

    def test_unknown_loan(self, open_loan):
        _, cooler, _ = open_loan
        with pytest.raises(EscrowError):
            cooler.get_loan(5)

    def test_partial_repay_pays_interest_first(self, open_loan):
        d, cooler, loan_id = open_loan
        loan = cooler.get_loan(loan_id)
        d.ledger.approve("alice", cooler.address, DAI, loan.interest_due)
        released = cooler.repay_loan(loan_id, loan.interest_due, caller="alice")
        after = cooler.get_loan(loan_id)
        assert released == 0
        assert after.interest_due == 0
        assert after.principal == PRINCIPAL
        assert d.ledger.get_balance("bob", DAI) == 9 * PRINCIPAL + loan.interest_due

    def test_collateral_released_pro_rata(self, open_loan):
        d, cooler, loan_id = open_loan
        loan = cooler.get_loan(loan_id)
        repayment = loan.interest_due + PRINCIPAL // 2
        d.ledger.approve("alice", cooler.address, DAI, repayment)
        released = cooler.repay_loan(loan_id, repayment, caller="alice")
        assert released == WAD * (PRINCIPAL // 2) // PRINCIPAL
        assert cooler.get_loan(loan_id).collateral == WAD - released

    def test_overpayment_capped(self, open_loan):
        d, cooler, loan_id = open_loan
        loan = cooler.get_loan(loan_id)
        d.fund("alice", DAI, loan.interest_due + 100)
        d.ledger.approve("alice", cooler.address, DAI, loan.amount_due + 100)
        released = cooler.repay_loan(loan_id, loan.amount_due + 100, caller="alice")
        assert released == WAD
        assert cooler.get_loan(loan_id).amount_due == 0
        assert d.ledger.get_balance("alice", DAI) == 100

    def test_repay_after_expiry_rejected(self, open_loan):
        d, cooler, loan_id = open_loan
        d.ledger.advance_by(timedelta(days=122))
        d.ledger.approve("alice", cooler.address, DAI, 1)
        with pytest.raises(LoanDefaulted):
            cooler.repay_loan(loan_id, 1, caller="alice")

    def test_extend_by_lender(self, open_loan):
        _, cooler, loan_id = open_loan
        expiry = cooler.get_loan(loan_id).expiry
        cooler.extend_loan_terms(loan_id, 2, caller="bob")
        assert cooler.get_loan(loan_id).expiry == expiry + timedelta(days=242)

    def test_extend_not_lender(self, open_loan):
        _, cooler, loan_id = open_loan
        with pytest.raises(OnlyApproved):
            cooler.extend_loan_terms(loan_id, 1, caller="alice")

    def test_extend_after_expiry(self, open_loan):
        d, cooler, loan_id = open_loan
        d.ledger.advance_by(timedelta(days=122))
        with pytest.raises(LoanDefaulted):
            cooler.extend_loan_terms(loan_id, 1, caller="bob")

    def test_claim_before_expiry(self, open_loan):
        _, cooler, loan_id = open_loan
        with pytest.raises(LoanNotDefaulted):
            cooler.claim_defaulted(loan_id, caller="bob")

    def test_claim_at_exact_expiry_still_early(self, open_loan):
        d, cooler, loan_id = open_loan
        d.ledger.advance_time(cooler.get_loan(loan_id).expiry)
        with pytest.raises(LoanNotDefaulted):
            cooler.claim_defaulted(loan_id, caller="bob")

    def test_claim_after_expiry(self, open_loan):
        d, cooler, loan_id = open_loan
        loan = cooler.get_loan(loan_id)
        d.ledger.advance_time(loan.expiry + timedelta(days=2))
        principal, interest, collateral, elapsed = cooler.claim_defaulted(loan_id, caller="keeper")
        assert (principal, interest, collateral) == (PRINCIPAL, loan.interest_due, WAD)
        assert elapsed == 2 * DAY
        assert d.ledger.get_balance("bob", GOHM) == WAD
        assert cooler.get_loan(loan_id).amount_due == 0

    def test_double_claim_rejected(self, open_loan):
        d, cooler, loan_id = open_loan
        d.ledger.advance_by(timedelta(days=200))
        cooler.claim_defaulted(loan_id, caller="bob")
        with pytest.raises(EscrowError):
            cooler.claim_defaulted(loan_id, caller="bob")

    def test_failed_repay_leaves_loan_untouched(self, open_loan):
        d, cooler, loan_id = open_loan
        before = cooler.get_loan(loan_id)
        # No approval: the pull fails after the loan record was rewritten
        with pytest.raises(InsufficientAllowance):
            cooler.repay_loan(loan_id, before.interest_due, caller="alice")
        assert cooler.get_loan(loan_id) == before
