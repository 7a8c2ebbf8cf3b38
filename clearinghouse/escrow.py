"""
escrow.py - Cooler Loan Escrows and their Factory

A Cooler is one borrower's escrow for a single (collateral, debt) pair.
Borrowing is a two-step handshake:

    1. request_loan(): post collateral and the terms you want
    2. clear_request(): a lender funds the request; the debt token goes to
       the escrow owner and a Loan is opened

While the loan is open the borrower repays (interest first, collateral
released pro rata with principal), and the lender may extend the term.
After expiry the lender claims the remaining collateral.

Requests and loans are persisted in ledger records; the Cooler object itself
only holds immutable identity. Lenders that opt in to callbacks are notified
through their CoolerCallback hooks, resolved by address on the ledger.
"""

from __future__ import annotations
from dataclasses import asdict, replace
from datetime import timedelta
from typing import Any, Dict, List, Tuple
import functools
import logging

from .core import (
    EscrowError, InvalidParameter, LedgerError,
    LoanDefaulted, LoanNotDefaulted, OnlyApproved, RequestInactive,
    Record,
)
from .ledger import Ledger
from .ports import Loan, Request
from .pricing import interest_for

logger = logging.getLogger(__name__)


def _atomic(method):
    """Run an escrow entry point (and any lender callback it makes) as one unit."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.ledger.atomic():
            return method(self, *args, **kwargs)
    return wrapper


def _loan_to_record(loan: Loan) -> Dict[str, Any]:
    return asdict(loan)


def _loan_from_record(data: Dict[str, Any]) -> Loan:
    fields = dict(data)
    fields["request"] = Request(**fields["request"])
    return Loan(**fields)


class Cooler:
    """
    Loan escrow owned by a single borrower.

    Example:
        cooler = factory.generate_cooler("gOHM", "DAI", caller="alice")
        ledger.approve("alice", cooler.address, "gOHM", collateral)
        req_id = cooler.request_loan(amount, rate, ltc, duration, caller="alice")
    """

    def __init__(self, ledger: Ledger, address: str, owner: str, collateral: str, debt: str, factory: str):
        self.ledger = ledger
        self.owner = owner
        self.collateral = collateral
        self.debt = debt
        self.factory = factory
        self.address = ledger.register_contract(address, self)
        self._key = f"cooler:{self.address}"

    def __repr__(self) -> str:
        return f"Cooler({self.address})"

    # ========================================================================
    # STORAGE
    # ========================================================================

    def _load(self) -> Record:
        record = self.ledger.get_record(self._key)
        record.setdefault("requests", [])
        record.setdefault("loans", [])
        return record

    def _save(self, record: Record) -> None:
        self.ledger.put_record(self._key, record)

    def get_request(self, req_id: int) -> Request:
        requests = self._load()["requests"]
        if not 0 <= req_id < len(requests):
            raise EscrowError(f"{self.address}: unknown request {req_id}")
        return Request(**requests[req_id])

    def get_loan(self, loan_id: int) -> Loan:
        loans = self._load()["loans"]
        if not 0 <= loan_id < len(loans):
            raise EscrowError(f"{self.address}: unknown loan {loan_id}")
        return _loan_from_record(loans[loan_id])

    def request_count(self) -> int:
        return len(self._load()["requests"])

    def loan_count(self) -> int:
        return len(self._load()["loans"])

    def loans(self) -> List[Tuple[int, Loan]]:
        return [(i, _loan_from_record(data)) for i, data in enumerate(self._load()["loans"])]

    def has_expired(self, loan_id: int) -> bool:
        return self.ledger.current_time > self.get_loan(loan_id).expiry

    # ========================================================================
    # PRICING
    # ========================================================================

    def collateral_for(self, amount: int, loan_to_collateral: int) -> int:
        """Collateral needed to back `amount` at a loan-to-collateral ratio."""
        unit = self.ledger.get_token(self.collateral).unit
        return amount * unit // loan_to_collateral

    def interest_for(self, amount: int, interest_rate: int, duration: int) -> int:
        return interest_for(amount, interest_rate, duration)

    # ========================================================================
    # REQUESTS
    # ========================================================================

    @_atomic
    def request_loan(
        self,
        amount: int,
        interest_rate: int,
        loan_to_collateral: int,
        duration: int,
        *,
        caller: str,
    ) -> int:
        """
        Post collateral and ask for a loan. The caller must have approved the
        escrow for the collateral.

        Returns:
            The new request id
        """
        if amount <= 0:
            raise InvalidParameter(f"Loan amount must be positive, got {amount}")
        if loan_to_collateral <= 0 or duration <= 0:
            raise InvalidParameter("Loan-to-collateral and duration must be positive")
        collateral = self.collateral_for(amount, loan_to_collateral)

        record = self._load()
        req_id = len(record["requests"])
        record["requests"].append(asdict(Request(
            amount=amount,
            interest_rate=interest_rate,
            loan_to_collateral=loan_to_collateral,
            duration=duration,
            active=True,
            requester=caller,
        )))
        self._save(record)

        self.ledger.transfer_from(
            self.address, caller, self.address, self.collateral, collateral, reason="request_loan"
        )
        self.ledger.emit("RequestLoan", self.address, cooler=self.address, request_id=req_id, amount=amount)
        return req_id

    @_atomic
    def rescind_request(self, req_id: int, *, caller: str) -> None:
        """Withdraw an unfunded request and return its collateral."""
        request = self.get_request(req_id)
        if caller != request.requester:
            raise OnlyApproved(f"{caller} did not post request {req_id}")
        if not request.active:
            raise RequestInactive(f"{self.address}: request {req_id} is not active")

        record = self._load()
        record["requests"][req_id]["active"] = False
        self._save(record)

        collateral = self.collateral_for(request.amount, request.loan_to_collateral)
        self.ledger.transfer(self.address, request.requester, self.collateral, collateral, reason="rescind_request")
        self.ledger.emit("RescindRequest", self.address, cooler=self.address, request_id=req_id)

    @_atomic
    def clear_request(self, req_id: int, recipient: str, is_callback: bool, *, caller: str) -> int:
        """
        Fund an active request. The caller becomes the lender and must have
        approved the escrow for the debt token; the principal goes to the
        escrow owner.

        Returns:
            The new loan id
        """
        request = self.get_request(req_id)
        if not request.active:
            raise RequestInactive(f"{self.address}: request {req_id} is not active")
        if is_callback and not self._supports_callbacks(caller):
            raise OnlyApproved(f"{caller} does not implement lender callbacks")

        loan = Loan(
            request=replace(request, active=False),
            principal=request.amount,
            interest_due=self.interest_for(request.amount, request.interest_rate, request.duration),
            collateral=self.collateral_for(request.amount, request.loan_to_collateral),
            expiry=self.ledger.current_time + timedelta(seconds=request.duration),
            lender=caller,
            recipient=recipient,
            callback=is_callback,
        )

        record = self._load()
        record["requests"][req_id]["active"] = False
        loan_id = len(record["loans"])
        record["loans"].append(_loan_to_record(loan))
        self._save(record)

        self.ledger.transfer_from(self.address, caller, self.owner, self.debt, request.amount, reason="clear_request")
        self.ledger.emit("ClearRequest", self.address, cooler=self.address, request_id=req_id, loan_id=loan_id)
        return loan_id

    def _supports_callbacks(self, address: str) -> bool:
        try:
            lender = self.ledger.contract_at(address)
        except LedgerError:
            return False
        is_callback = getattr(lender, "is_cooler_callback", None)
        return callable(is_callback) and bool(is_callback())

    # ========================================================================
    # LOANS
    # ========================================================================

    @_atomic
    def repay_loan(self, loan_id: int, repayment: int, *, caller: str) -> int:
        """
        Repay a loan. Amounts above what is owed are capped. Interest is
        settled first; collateral is released in proportion to the principal
        repaid. The caller must have approved the escrow for the debt token.

        Returns:
            Collateral released to the owner
        """
        if repayment <= 0:
            raise InvalidParameter(f"Repayment must be positive, got {repayment}")
        loan = self.get_loan(loan_id)
        if self.ledger.current_time > loan.expiry:
            raise LoanDefaulted(f"{self.address}: loan {loan_id} expired at {loan.expiry}")

        repayment = min(repayment, loan.amount_due)
        interest_paid = min(repayment, loan.interest_due)
        principal_paid = repayment - interest_paid
        released = loan.collateral * principal_paid // loan.principal if loan.principal else 0

        updated = replace(
            loan,
            principal=loan.principal - principal_paid,
            interest_due=loan.interest_due - interest_paid,
            collateral=loan.collateral - released,
        )
        record = self._load()
        record["loans"][loan_id] = _loan_to_record(updated)
        self._save(record)

        self.ledger.transfer_from(self.address, caller, loan.recipient, self.debt, repayment, reason="repay_loan")
        self.ledger.transfer(self.address, self.owner, self.collateral, released, reason="repay_loan")
        self.ledger.emit(
            "RepayLoan", self.address,
            cooler=self.address, loan_id=loan_id, amount=repayment,
        )

        if loan.callback:
            self.ledger.contract_at(loan.lender).on_repay(
                loan_id, principal_paid, interest_paid, caller=self.address
            )
        return released

    @_atomic
    def extend_loan_terms(self, loan_id: int, times: int, *, caller: str) -> None:
        """Push the expiry out by `times` loan durations. Lender only."""
        loan = self.get_loan(loan_id)
        if caller != loan.lender:
            raise OnlyApproved(f"{caller} is not the lender of loan {loan_id}")
        if self.ledger.current_time > loan.expiry:
            raise LoanDefaulted(f"{self.address}: loan {loan_id} expired at {loan.expiry}")
        if times < 1:
            raise InvalidParameter(f"Extension count must be at least 1, got {times}")

        extended = replace(
            loan, expiry=loan.expiry + timedelta(seconds=loan.request.duration * times)
        )
        record = self._load()
        record["loans"][loan_id] = _loan_to_record(extended)
        self._save(record)
        self.ledger.emit("ExtendLoan", self.address, cooler=self.address, loan_id=loan_id, times=times)

    @_atomic
    def claim_defaulted(self, loan_id: int, *, caller: str) -> Tuple[int, int, int, int]:
        """
        Seize an expired loan's collateral for its lender and close the loan.

        Returns:
            (principal, interest, collateral, seconds elapsed since expiry)
        """
        loan = self.get_loan(loan_id)
        if not loan.lender:
            raise EscrowError(f"{self.address}: loan {loan_id} was already claimed")
        now = self.ledger.current_time
        if now <= loan.expiry:
            raise LoanNotDefaulted(f"{self.address}: loan {loan_id} expires at {loan.expiry}")
        elapsed = int((now - loan.expiry).total_seconds())

        closed = replace(loan, principal=0, interest_due=0, collateral=0, lender="", recipient="", callback=False)
        record = self._load()
        record["loans"][loan_id] = _loan_to_record(closed)
        self._save(record)

        self.ledger.transfer(self.address, loan.lender, self.collateral, loan.collateral, reason="claim_defaulted")
        self.ledger.emit(
            "DefaultLoan", self.address,
            cooler=self.address, loan_id=loan_id, amount=loan.collateral,
        )
        logger.debug("%s claimed loan %d on %s after %ds", caller, loan_id, self.address, elapsed)

        if loan.callback:
            self.ledger.contract_at(loan.lender).on_default(
                loan_id, loan.principal, loan.interest_due, loan.collateral, caller=self.address
            )
        return loan.principal, loan.interest_due, loan.collateral, elapsed


class CoolerFactory:
    """
    Creates escrows and remembers which ones it created, so lenders can tell
    genuine escrows from look-alikes. One escrow per (owner, collateral, debt).
    """

    def __init__(self, ledger: Ledger, address: str = "cooler_factory"):
        self.ledger = ledger
        self.address = ledger.register_contract(address, self)
        self._key = f"factory:{self.address}"

    def _load(self) -> Record:
        record = self.ledger.get_record(self._key)
        record.setdefault("created", [])
        record.setdefault("by_owner", {})
        return record

    def generate_cooler(self, collateral: str, debt: str, *, caller: str) -> Cooler:
        """Return the caller's escrow for a token pair, creating it if needed."""
        self.ledger.get_token(collateral)
        self.ledger.get_token(debt)
        address = f"cooler:{caller}:{collateral}:{debt}"

        record = self._load()
        if address in record["created"]:
            return self.ledger.contract_at(address)

        cooler = Cooler(self.ledger, address, caller, collateral, debt, self.address)
        record["created"].append(address)
        record["by_owner"].setdefault(caller, []).append(address)
        self.ledger.put_record(self._key, record)
        self.ledger.emit("Clone", self.address, cooler=address, owner=caller)
        logger.info("created escrow %s", address)
        return cooler

    def created(self, address: str) -> bool:
        return address in self._load()["created"]

    def coolers_for(self, owner: str) -> List[str]:
        return list(self._load()["by_owner"].get(owner, []))

    def all_coolers(self) -> List[str]:
        return list(self._load()["created"])

    def get_cooler(self, address: str) -> Cooler:
        if not self.created(address):
            raise EscrowError(f"{address} was not created by {self.address}")
        return self.ledger.contract_at(address)
