"""
facility.py - The Clearinghouse Lending Facility

Writes fixed-term, fixed-rate loans against gOHM collateral through Cooler
escrows, funds itself from the treasury up to a fixed ceiling, and winds
down defaulted loans through a keeper-rewarded batch claim.

ARCHITECTURE:
=============

1. FACILITY STATE (state.FacilityState):
   - The only state the facility owns: receivables + funding state
   - Replaced wholesale on every transition, stored as a ledger record

2. UNIT OF WORK (_operation):
   - Every public entry point runs inside ledger.atomic()
   - On any exception the ledger, facility record included, is restored
   - An in-progress flag rejects re-entry from collaborator callbacks

3. COLLABORATORS (ports.*):
   - Injected once at construction, version-checked, never looked up again

Working capital is held in the vault share token (sDAI); the debt token
(DAI) only passes through the facility on its way in or out.
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional, Sequence, Tuple, Union
import logging

from .core import (
    RebalanceResult, WAD_DECIMALS, saturating_sub,
    OnlyFromFactory, BadEscrow, LengthDiscrepancy, NotLender, OnlyBurnable,
    InvalidParameter, ReentrantCall, IncompatibleDependency,
)
from .config import (
    ClearinghouseConfig, DEFAULT_CONFIG,
    ROLE_OVERSEER, ROLE_EMERGENCY, SUPPORTED_MODULE_MAJOR,
)
from .ledger import Ledger
from .ports import (
    CoolerPort, CoolerFactoryPort, MintAuthorityPort, RegistryPort,
    RolesPort, StakingPort, TreasuryPort, YieldVaultPort,
)
from .pricing import (
    LoanQuote, keeper_reward,
    quote_collateral, quote_interest, quote_loan,
)
from .state import FacilityState

logger = logging.getLogger(__name__)

# An escrow may be passed as the object or by its ledger address
CoolerRef = Union[CoolerPort, str]


@dataclass(frozen=True, slots=True)
class ClaimReceipt:
    """
    Totals of one claim_defaulted batch.

    Attributes:
        loans: Number of loans claimed
        principal: Principal written off
        interest: Interest written off
        collateral: Collateral seized
        keeper_reward: Collateral paid to the caller
        burned: Base tokens burned from the unstaked collateral
    """
    loans: int
    principal: int
    interest: int
    collateral: int
    keeper_reward: int
    burned: int


class Clearinghouse:
    """
    Lending facility bound to one (collateral, debt) pair.

    Example:
        ch = deployment.clearinghouse
        ch.activate(caller="admin")
        loan_id = ch.lend_to_cooler(cooler, 1_000 * WAD, caller="alice")
        ch.rebalance()
    """

    def __init__(
        self,
        ledger: Ledger,
        address: str = "clearinghouse",
        *,
        config: ClearinghouseConfig = DEFAULT_CONFIG,
        collateral: str,
        debt: str,
        vault: YieldVaultPort,
        staking: StakingPort,
        factory: CoolerFactoryPort,
        treasury: TreasuryPort,
        minter: MintAuthorityPort,
        registry: RegistryPort,
        roles: RolesPort,
    ):
        """
        Wire and validate the facility's collaborators.

        Raises:
            IncompatibleDependency: If a module's major version is unsupported,
                the vault does not wrap the debt token, or either token is
                not 18-decimal
        """
        for name, module in (
            ("treasury", treasury),
            ("minter", minter),
            ("registry", registry),
            ("roles", roles),
        ):
            major = module.VERSION[0]
            if major != SUPPORTED_MODULE_MAJOR:
                raise IncompatibleDependency(
                    f"{name} version {module.VERSION} unsupported, need major {SUPPORTED_MODULE_MAJOR}"
                )
        if vault.asset != debt:
            raise IncompatibleDependency(f"Vault wraps {vault.asset}, facility lends {debt}")
        # fund_amount and max_reward are WAD-scaled whole units of these tokens
        for symbol in (collateral, debt):
            token = ledger.get_token(symbol)
            if token.decimals != WAD_DECIMALS:
                raise IncompatibleDependency(
                    f"{symbol} has {token.decimals} decimals, facility amounts assume {WAD_DECIMALS}"
                )

        self.ledger = ledger
        self.config = config
        self.collateral = collateral
        self.debt = debt
        self.share = vault.share
        self.vault = vault
        self.staking = staking
        self.factory = factory
        self.treasury = treasury
        self.minter = minter
        self.registry = registry
        self.roles = roles

        self.address = ledger.register_contract(address, self)
        self._key = f"clearinghouse:{self.address}"
        self.state = FacilityState.initial(ledger.current_time)
        self._in_progress: Optional[str] = None

    def __repr__(self) -> str:
        return f"Clearinghouse({self.address}, active={self.state.active})"

    # ========================================================================
    # UNIT OF WORK
    # ========================================================================

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        """
        Run one public entry point as a single all-or-nothing step.

        Raises:
            ReentrantCall: If another entry point is still in progress
        """
        if self._in_progress is not None:
            raise ReentrantCall(f"{name} called while {self._in_progress} is in progress")
        self._in_progress = name
        try:
            with self.ledger.atomic():
                yield
        finally:
            self._in_progress = None

    # ========================================================================
    # VIEWS
    # ========================================================================

    @property
    def state(self) -> FacilityState:
        record = self.ledger.get_record(self._key)
        return FacilityState(
            principal_receivables=record["principal_receivables"],
            interest_receivables=record["interest_receivables"],
            active=record["active"],
            fund_time=record["fund_time"],
        )

    @state.setter
    def state(self, value: FacilityState) -> None:
        self.ledger.put_record(self._key, {
            "principal_receivables": value.principal_receivables,
            "interest_receivables": value.interest_receivables,
            "active": value.active,
            "fund_time": value.fund_time,
        })

    @property
    def active(self) -> bool:
        return self.state.active

    @property
    def fund_time(self) -> datetime:
        return self.state.fund_time

    @property
    def principal_receivables(self) -> int:
        return self.state.principal_receivables

    @property
    def interest_receivables(self) -> int:
        return self.state.interest_receivables

    def get_total_receivables(self) -> int:
        return self.state.total_receivables

    def get_collateral_for_loan(self, principal: int) -> int:
        """Collateral required to borrow `principal`."""
        return quote_collateral(self.config, principal)

    def quote(self, collateral: int) -> LoanQuote:
        """Full-term loan terms against `collateral`."""
        return quote_loan(self.config, collateral)

    def get_loan_for_collateral(self, collateral: int) -> Tuple[int, int]:
        """(principal, interest) of a full-term loan against `collateral`."""
        quote = self.quote(collateral)
        return quote.principal, quote.interest

    def interest_for_loan(self, principal: int, duration: int) -> int:
        return quote_interest(self.config, principal, duration)

    def is_cooler_callback(self) -> bool:
        return True

    # ========================================================================
    # LENDING
    # ========================================================================

    def lend_to_cooler(self, cooler: CoolerRef, amount: int, *, caller: str) -> int:
        """
        Lend `amount` of the debt token to a Cooler's owner.

        The caller supplies the collateral and must have approved the
        facility for it. A rebalance is attempted first.

        Returns:
            Loan id within the escrow

        Raises:
            OnlyFromFactory: If the escrow was not made by the trusted factory
            BadEscrow: If the escrow's token pair does not match the facility
        """
        with self._operation("lend_to_cooler"):
            self._rebalance(caller)

            escrow = self._trusted_cooler(cooler)
            if escrow.collateral != self.collateral or escrow.debt != self.debt:
                raise BadEscrow(
                    f"{escrow.address} trades {escrow.collateral}/{escrow.debt}, "
                    f"facility trades {self.collateral}/{self.debt}"
                )
            if amount <= 0:
                raise InvalidParameter(f"Loan amount must be positive, got {amount}")

            collateral = escrow.collateral_for(amount, self.config.loan_to_collateral)
            _, interest = self.get_loan_for_collateral(collateral)
            self.state = self.state.with_origination(amount, interest)

            self.ledger.transfer_from(
                self.address, caller, self.address, self.collateral, collateral, reason="lend_to_cooler"
            )
            self.ledger.approve(self.address, escrow.address, self.collateral, collateral)
            req_id = escrow.request_loan(
                amount,
                self.config.interest_rate,
                self.config.loan_to_collateral,
                self.config.duration,
                caller=self.address,
            )

            self.vault.withdraw(amount, self.address, self.address, caller=self.address)
            self.ledger.approve(self.address, escrow.address, self.debt, amount)
            loan_id = escrow.clear_request(req_id, self.address, True, caller=self.address)

            logger.info(
                "lent %d %s to %s (loan %d, collateral %d, interest %d)",
                amount, self.debt, escrow.address, loan_id, collateral, interest,
            )
            return loan_id

    def extend_loan(self, cooler: CoolerRef, loan_id: int, times: int, *, caller: str) -> None:
        """
        Extend a loan by `times` durations, the caller prepaying the interest.

        The extension interest is computed on the loan's remaining principal
        and is collected immediately, so receivables are unchanged.
        """
        with self._operation("extend_loan"):
            escrow = self._trusted_cooler(cooler)
            loan = escrow.get_loan(loan_id)
            if loan.lender != self.address:
                raise NotLender(f"{self.address} is not the lender of {escrow.address} loan {loan_id}")
            if times < 1:
                raise InvalidParameter(f"Extension count must be at least 1, got {times}")

            interest = self.interest_for_loan(loan.principal, loan.request.duration) * times
            self.ledger.transfer_from(
                self.address, caller, self.address, self.debt, interest, reason="extend_loan"
            )
            self._route_proceeds(interest)
            escrow.extend_loan_terms(loan_id, times, caller=self.address)
            logger.info("extended %s loan %d by %d term(s) for %d %s", escrow.address, loan_id, times, interest, self.debt)

    # ========================================================================
    # ESCROW CALLBACKS
    # ========================================================================

    def on_repay(self, loan_id: int, principal_paid: int, interest_paid: int, *, caller: str) -> None:
        """
        Called by an escrow after a borrower repaid. The repayment has already
        been sent to this facility.

        Raises:
            OnlyFromFactory: If the caller is not a factory-made escrow
        """
        with self._operation("on_repay"):
            if not self.factory.created(caller):
                raise OnlyFromFactory(f"Repay callback from unknown escrow {caller}")
            self._route_proceeds(principal_paid + interest_paid)
            self.state = self.state.with_reduction(principal_paid, interest_paid)
            logger.debug(
                "%s loan %d repaid %d principal, %d interest", caller, loan_id, principal_paid, interest_paid
            )

    def on_default(self, loan_id: int, principal: int, interest: int, collateral: int, *, caller: str) -> None:
        """Defaults are settled by claim_defaulted; nothing to do here."""
        if not self.factory.created(caller):
            raise OnlyFromFactory(f"Default callback from unknown escrow {caller}")

    # ========================================================================
    # DEFAULTS
    # ========================================================================

    def claim_defaulted(
        self,
        coolers: Sequence[CoolerRef],
        loan_ids: Sequence[int],
        *,
        caller: str,
    ) -> ClaimReceipt:
        """
        Claim a batch of defaulted loans and burn the seized collateral.

        The caller earns a reward per loan of min(5% of collateral,
        max_reward), vesting linearly over the 7 days after expiry. Any
        invalid loan fails the whole batch.

        Raises:
            LengthDiscrepancy: If coolers and loan_ids differ in length
            OnlyFromFactory: If an escrow was not made by the trusted factory
            NotLender: If this facility did not fund one of the loans
        """
        with self._operation("claim_defaulted"):
            if len(coolers) != len(loan_ids):
                raise LengthDiscrepancy(f"{len(coolers)} escrows but {len(loan_ids)} loan ids")

            total_principal = 0
            total_interest = 0
            total_collateral = 0
            total_reward = 0
            for cooler, loan_id in zip(coolers, loan_ids):
                escrow = self._trusted_cooler(cooler)
                loan = escrow.get_loan(loan_id)
                if loan.lender != self.address:
                    raise NotLender(f"{self.address} is not the lender of {escrow.address} loan {loan_id}")

                principal, interest, collateral, elapsed = escrow.claim_defaulted(loan_id, caller=self.address)
                total_principal += principal
                total_interest += interest
                total_collateral += collateral
                total_reward += keeper_reward(collateral, elapsed, self.config.max_reward)

            # Clamped once on the batch totals
            self.state = self.state.with_reduction(total_principal, total_interest)
            outstanding = self.treasury.reserve_debt(self.debt, self.address)
            self.treasury.set_debt(self.address, self.debt, saturating_sub(outstanding, total_principal))

            self.ledger.ensure_wallet(caller)
            self.ledger.transfer(self.address, caller, self.collateral, total_reward, reason="keeper_reward")
            burned = self._burn()

            receipt = ClaimReceipt(
                loans=len(loan_ids),
                principal=total_principal,
                interest=total_interest,
                collateral=total_collateral,
                keeper_reward=total_reward,
                burned=burned,
            )
            self.ledger.emit(
                "ClaimDefaulted", self.address,
                loans=receipt.loans,
                principal=total_principal,
                interest=total_interest,
                collateral=total_collateral,
                reward=total_reward,
            )
            logger.info(
                "%s claimed %d defaulted loan(s): principal %d, collateral %d, reward %d",
                caller, receipt.loans, total_principal, total_collateral, total_reward,
            )
            return receipt

    # ========================================================================
    # FUNDING
    # ========================================================================

    def rebalance(self, *, caller: Optional[str] = None) -> RebalanceResult:
        """
        True up working capital to the funding ceiling, at most once per cadence.
        Anyone may call it; `caller` is recorded on the Rebalance event.

        Returns:
            NOT_DUE if the next funding time is still ahead (nothing changes),
            REBALANCED otherwise
        """
        with self._operation("rebalance"):
            return self._rebalance(caller)

    def sweep_into_vault(self, *, caller: Optional[str] = None) -> int:
        """Deposit any idle debt token into the vault. Returns shares minted."""
        with self._operation("sweep_into_vault"):
            idle = self.ledger.get_balance(self.address, self.debt)
            shares = self._sweep(idle)
            logger.info("%s swept %d %s into the vault for %d %s", caller, idle, self.debt, shares, self.share)
            return shares

    def _rebalance(self, caller: Optional[str] = None) -> RebalanceResult:
        now = self.ledger.current_time
        if not self.state.is_due(now):
            logger.debug("rebalance not due until %s", self.state.fund_time)
            return RebalanceResult.NOT_DUE

        self.state = self.state.with_next_fund_time(self.config.fund_cadence_delta)
        self._sweep(self.ledger.get_balance(self.address, self.debt))

        balance = self.vault.max_withdraw(self.address)
        outstanding = self.treasury.reserve_debt(self.debt, self.address)
        ceiling = self.config.fund_amount if self.state.active else 0

        if balance < ceiling:
            shortfall = ceiling - balance
            self.treasury.set_debt(self.address, self.debt, outstanding + shortfall)
            shares = self.vault.preview_withdraw(shortfall)
            self.treasury.increase_withdraw_approval(self.address, self.share, shares)
            self.treasury.withdraw_reserves(self.address, self.share, shares)
            self.ledger.emit("Rebalance", self.address, defund=False, amount=shortfall, caller=caller)
            logger.info("rebalance by %s funded %d %s (%d %s)", caller, shortfall, self.debt, shares, self.share)
        elif balance > ceiling:
            excess = balance - ceiling
            shares = self.vault.preview_withdraw(excess)
            self.ledger.transfer(self.address, self.treasury.address, self.share, shares, reason="rebalance")
            self.treasury.set_debt(self.address, self.debt, saturating_sub(outstanding, excess))
            self.ledger.emit("Rebalance", self.address, defund=True, amount=excess, caller=caller)
            logger.info("rebalance by %s defunded %d %s (%d %s)", caller, excess, self.debt, shares, self.share)
        else:
            logger.debug("rebalance: balance already at ceiling %d", ceiling)
        return RebalanceResult.REBALANCED

    def _sweep(self, amount: int) -> int:
        if amount == 0:
            return 0
        self.ledger.approve(self.address, self.vault.address, self.debt, amount)
        return self.vault.deposit(amount, self.address, caller=self.address)

    def _route_proceeds(self, amount: int) -> None:
        """Park received debt in the vault while active, else hand it to the treasury."""
        if amount == 0:
            return
        if self.state.active:
            self._sweep(amount)
        else:
            self._defund(self.debt, amount)

    # ========================================================================
    # ADMIN
    # ========================================================================

    def activate(self, *, caller: str) -> None:
        """Open the facility for lending and restart the funding cadence now."""
        with self._operation("activate"):
            self.roles.require_role(caller, ROLE_OVERSEER)
            self.state = self.state.activated(self.ledger.current_time)
            self.registry.activate_clearinghouse(self.address)
            self.ledger.emit("Activate", self.address)
            logger.info("%s activated by %s", self.address, caller)

    def emergency_shutdown(self, *, caller: str) -> None:
        """Stop lending and return every idle asset to the treasury."""
        with self._operation("emergency_shutdown"):
            self.roles.require_role(caller, ROLE_EMERGENCY)
            self.state = self.state.deactivated()

            shares = self.ledger.get_balance(self.address, self.share)
            if shares:
                self._defund(self.share, shares)
            idle = self.ledger.get_balance(self.address, self.debt)
            if idle:
                self._defund(self.debt, idle)

            self.registry.deactivate_clearinghouse(self.address)
            self.ledger.emit("Deactivate", self.address)
            logger.warning("%s shut down by %s", self.address, caller)

    def defund(self, token: str, amount: int, *, caller: str) -> None:
        """
        Return any non-collateral asset to the treasury.

        Raises:
            Unauthorized: If the caller is not an overseer
            OnlyBurnable: If the token is the collateral
        """
        with self._operation("defund"):
            self.roles.require_role(caller, ROLE_OVERSEER)
            if token == self.collateral:
                raise OnlyBurnable(f"{token} must be burned, not returned")
            self._defund(token, amount)

    def _defund(self, token: str, amount: int) -> None:
        if token == self.share:
            reduction = self.vault.preview_redeem(amount)
        elif token == self.debt:
            reduction = amount
        else:
            reduction = 0
        if reduction:
            outstanding = self.treasury.reserve_debt(self.debt, self.address)
            self.treasury.set_debt(self.address, self.debt, saturating_sub(outstanding, reduction))

        self.ledger.transfer(self.address, self.treasury.address, token, amount, reason="defund")
        self.ledger.emit("Defund", self.address, token=token, amount=amount)
        logger.info("defunded %d %s (debt reduced by %d)", amount, token, reduction)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _trusted_cooler(self, cooler: CoolerRef) -> CoolerPort:
        """Resolve an escrow through the ledger after checking factory provenance."""
        address = cooler if isinstance(cooler, str) else cooler.address
        if not self.factory.created(address):
            raise OnlyFromFactory(f"{address} was not created by {self.factory.address}")
        return self.ledger.contract_at(address)

    def _burn(self) -> int:
        """Unstake every collateral unit held and burn the proceeds."""
        held = self.ledger.get_balance(self.address, self.collateral)
        if held == 0:
            return 0
        self.ledger.approve(self.address, self.staking.address, self.collateral, held)
        ohm = self.staking.unstake(self.address, held, False, False, caller=self.address)
        self.ledger.approve(self.address, self.minter.address, self.minter.ohm, ohm)
        self.minter.burn_ohm(self.address, ohm, caller=self.address)
        return ohm
