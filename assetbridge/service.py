"""
service.py - LendingService

The operation surface of the lending core. Every method follows the same
shape:

    1. validate input and call external collaborators (risk assessment)
       before any lock is taken
    2. acquire the per-entity locks of the lock plan (sorted, one deadline)
    3. compute a PendingTransaction from the store (a LedgerView)
    4. commit it; the store applies it atomically or not at all

Lock plan:
    declare / lock / unlock / apply / deposit / withdraw   user
    approve                                                loan
    activate / reject / repay / mark_repaid / mark_defaulted loan + borrower
    run_contract                                           loan + borrower
    invest                                                 loan + investor

Store outcomes are translated into the error taxonomy: CONFLICT becomes
StaleState, REJECTED becomes InvariantViolation. With
policy.check_invariants the transaction is first dry-run on a clone of the
store and refused if any cross-entity invariant or money conservation
would break.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional
import threading

from .core import (
    LedgerStore, LedgerView, Move, PendingTransaction, Transaction, TransactionOrigin, OriginType, ExecuteResult,
    SYSTEM_WALLET, ESCROW_WALLET, ZERO,
    InsufficientBalance, InvariantViolation, StaleState, ValidationError,
    build_transaction, cash, wallet_balance,
)
from .policy import LendingPolicy, parse_amount, parse_tenure
from .locks import LockManager, loan_key, user_key
from .auth import Authorizer, Role
from .risk import ProfileLookup, RiskAssessor, RiskRequest, ScorecardRiskAssessor
from .guard import assert_invariants, external_flow, money_snapshot, verify_conservation
from .amortization import EmiQuote, ScheduleRow, amortization_schedule, calculate_emi, expected_return_percentage
from .recovery import compute_default, recovery_summary
from .units.asset import (
    CreditSummary, compute_declare_asset, compute_lock, compute_unlock,
    get_credit_summary, load_locked_asset,
)
from .units.investment import (
    INVESTMENT_ACTIVE, INVESTMENT_COMPLETED, INVESTMENT_DEFAULTED,
    compute_investment, investor_investments, load_investment,
)
from .units.loan import (
    LoanStatus, compute_activation, compute_application, compute_approval, compute_rejection,
    list_loans, load_loan, outstanding_balance,
)
from .units.repayment import compute_closure, compute_repayment, loan_repayments


# Contract polled by the lifecycle engine: (view, loan_id, timestamp, policy)
LoanContract = Callable[[LedgerView, str, datetime, LendingPolicy], PendingTransaction]


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class LockResult:
    asset_id: str
    locked_asset_id: str
    credit_limit: Decimal


@dataclass(frozen=True, slots=True)
class ApplicationResult:
    loan_id: str
    status: str
    risk_band: str
    ai_decision: str
    emi_amount: Decimal
    default_probability: Optional[Decimal] = None
    approval_score: Optional[int] = None


@dataclass(frozen=True, slots=True)
class InvestmentResult:
    investment_id: str
    loan_id: str
    amount: Decimal
    new_balance: Decimal
    expected_returns: Decimal
    loan_status: str


@dataclass(frozen=True, slots=True)
class RepaymentResult:
    loan_id: str
    amount: Decimal
    interest_paid: Decimal
    principal_paid: Decimal
    total_repaid: Decimal
    remaining: Decimal
    loan_status: str


@dataclass(frozen=True, slots=True)
class DefaultResolution:
    loan_id: str
    recovery_amount: Decimal
    collateral_value: Decimal
    written_off: Decimal
    payouts: Dict[str, Decimal]
    already_defaulted: bool = False


@dataclass(frozen=True, slots=True)
class FundingOpportunity:
    loan_id: str
    borrower_id: str
    amount: Decimal
    remaining: Decimal
    tenure_months: int
    interest_rate: Decimal
    emi_amount: Decimal
    purpose: str
    risk_band: str
    expected_return_percentage: Decimal
    created_at: datetime


@dataclass(frozen=True, slots=True)
class Portfolio:
    investor_id: str
    investments: List[dict]
    total_invested: Decimal
    total_returns: Decimal
    total_recovered: Decimal
    active_count: int
    completed_count: int
    defaulted_count: int


_SORT_KEYS = {
    'newest': (lambda o: o.created_at, True),
    'amount-high': (lambda o: o.amount, True),
    'amount-low': (lambda o: o.amount, False),
    'return-high': (lambda o: o.expected_return_percentage, True),
    'return-low': (lambda o: o.expected_return_percentage, False),
}


class SequentialIds:
    """Ids like LN-0001, skipping any already present in the store."""

    def __init__(self, store: LedgerView):
        self._store = store
        self._counters: Dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    def __call__(self, prefix: str) -> str:
        with self._lock:
            while True:
                self._counters[prefix] += 1
                candidate = f"{prefix}-{self._counters[prefix]:04d}"
                if not self._store.has_unit(candidate):
                    return candidate


# ============================================================================
# SERVICE
# ============================================================================

class LendingService:
    """
    Thread-safe lending operations over a LedgerStore.

    Example:
        ledger = Ledger("assetbridge", datetime(2025, 1, 1), verbose=False)
        service = LendingService(ledger, LendingPolicy())
        service.deposit("bob", Decimal("100000"))
        asset_id = service.declare_asset("alice", "FD", Decimal("200000"))
        service.lock_asset(asset_id, "alice")
        app = service.apply_loan("alice", Decimal("100000"), 12, "Education")
    """

    def __init__(
        self,
        store: LedgerStore,
        policy: Optional[LendingPolicy] = None,
        risk_assessor: Optional[RiskAssessor] = None,
        authorizer: Optional[Authorizer] = None,
        profile_lookup: Optional[ProfileLookup] = None,
        id_factory: Optional[Callable[[str], str]] = None,
        verbose: bool = False,
    ):
        self.store = store
        self.policy = policy or LendingPolicy()
        self.risk_assessor = risk_assessor or ScorecardRiskAssessor()
        self.authorizer = authorizer
        self.profile_lookup = profile_lookup
        self.ids = id_factory or SequentialIds(store)
        self.locks = LockManager(self.policy.lock_timeout)
        self.verbose = verbose

        currency = self.policy.currency
        if not store.has_unit(currency):
            store.register_unit(cash(currency, currency))
        if not store.is_registered(ESCROW_WALLET):
            store.register_wallet(ESCROW_WALLET)

    @property
    def currency(self) -> str:
        return self.policy.currency

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _authorize(self, actor_id: str, role: Role) -> None:
        if self.authorizer is not None:
            self.authorizer.require(actor_id, role)

    def _ensure_wallet(self, wallet_id: str) -> None:
        if not self.store.is_registered(wallet_id):
            self.store.register_wallet(wallet_id)

    def _rejection_reason(self) -> str:
        return getattr(self.store, 'last_rejection', "") or "rejected by store"

    def _dry_run(self, pending: PendingTransaction) -> None:
        sandbox = self.store.clone()
        before = money_snapshot(sandbox, self.currency)
        if sandbox.execute(pending) != ExecuteResult.APPLIED:
            return
        assert_invariants(sandbox, self.currency)
        verify_conservation(before, money_snapshot(sandbox, self.currency), external_flow(pending, self.currency))

    def _commit(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Raises:
            StaleState: The transaction was computed from an outdated record
            InvariantViolation: The store or the guard refused the transaction
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED
        if self.policy.check_invariants:
            self._dry_run(pending)
        result = self.store.execute(pending)
        if result == ExecuteResult.CONFLICT:
            raise StaleState(self._rejection_reason())
        if result == ExecuteResult.REJECTED:
            raise InvariantViolation(self._rejection_reason())
        if self.verbose:
            origin = pending.origin
            print(f"[{origin.event_type or origin.origin_type.name}] {origin.unit_symbol or origin.source_id}: {result.name}")
        return result

    def _borrower_of(self, loan_id: str) -> str:
        return load_loan(self.store, loan_id)['borrower_id']

    def _loan_and_borrower(self, loan_id: str):
        return self.locks.hold(loan_key(loan_id), user_key(self._borrower_of(loan_id)))

    # ========================================================================
    # CASH
    # ========================================================================

    def deposit(self, user_id: str, amount, reference: Optional[str] = None) -> Decimal:
        """
        Credit a user's wallet from outside the platform.

        Re-submitting the same reference and amount is a no-op.

        Returns:
            The user's new balance
        """
        amount = parse_amount(amount)
        with self.locks.hold(user_key(user_id)):
            self._ensure_wallet(user_id)
            self._commit_cash(user_id, SYSTEM_WALLET, user_id, amount, reference, "DEPOSIT")
            return self.store.get_balance(user_id, self.currency)

    def withdraw(self, user_id: str, amount, reference: Optional[str] = None) -> Decimal:
        """
        Pay cash out of the platform.

        Raises:
            InsufficientBalance: If the wallet holds less than amount
        """
        amount = parse_amount(amount)
        with self.locks.hold(user_key(user_id)):
            balance = wallet_balance(self.store, user_id, self.currency)
            if balance < amount:
                raise InsufficientBalance(user_id, amount, balance)
            self._commit_cash(user_id, user_id, SYSTEM_WALLET, amount, reference, "WITHDRAW")
            return self.store.get_balance(user_id, self.currency)

    def get_balance(self, user_id: str) -> Decimal:
        return wallet_balance(self.store, user_id, self.currency)

    def _commit_cash(self, user_id: str, source: str, dest: str, amount: Decimal,
                     reference: Optional[str], event: str) -> None:
        """
        Commit one cash move across the platform boundary.

        A caller reference makes the move idempotent. Without one, the
        reference is numbered from the shared transaction log, and a clash
        with another service's numbering draws a fresh number instead of
        being taken for a replay.
        """
        prefix = {"DEPOSIT": "DEP", "WITHDRAW": "WDR"}[event]
        serial = len(self.store.transaction_log)
        while True:
            serial += 1
            ref = reference or f"{prefix}-{serial:06d}"
            move = Move(amount, self.currency, source, dest, f"{event.lower()}:{ref}")
            origin = TransactionOrigin(OriginType.EXTERNAL, user_id, None, event)
            result = self._commit(build_transaction(self.store, [move], origin=origin))
            if reference or result != ExecuteResult.ALREADY_APPLIED:
                return

    # ========================================================================
    # ASSETS AND CREDIT
    # ========================================================================

    def declare_asset(self, owner_id: str, asset_type, declared_value, name: str = "") -> str:
        """Register an asset in ACTIVE status. Returns its id."""
        self._authorize(owner_id, Role.BORROWER)
        with self.locks.hold(user_key(owner_id)):
            asset_id = self.ids("AST")
            self._commit(compute_declare_asset(
                self.store, asset_id, owner_id, asset_type, declared_value, self.policy, name
            ))
            return asset_id

    def lock_asset(self, asset_id: str, caller_id: str, wallet_ref: Optional[str] = None) -> LockResult:
        self._authorize(caller_id, Role.BORROWER)
        with self.locks.hold(user_key(caller_id)):
            locked_asset_id = self.ids("LCK")
            self._commit(compute_lock(self.store, asset_id, caller_id, wallet_ref or caller_id, locked_asset_id))
            lock = load_locked_asset(self.store, locked_asset_id)
        if self.verbose:
            print(f"[LOCK] {asset_id}: credit limit {lock['credit_limit']}")
        return LockResult(asset_id, locked_asset_id, lock['credit_limit'])

    def unlock_asset(self, asset_id: str, caller_id: str) -> None:
        self._authorize(caller_id, Role.BORROWER)
        with self.locks.hold(user_key(caller_id)):
            self._commit(compute_unlock(self.store, asset_id, caller_id))

    def get_available_credit(self, user_id: str) -> Decimal:
        return get_credit_summary(self.store, user_id).available

    def get_credit_summary(self, user_id: str) -> CreditSummary:
        return get_credit_summary(self.store, user_id)

    # ========================================================================
    # LOAN LIFECYCLE
    # ========================================================================

    def _risk_request(self, borrower_id: str, amount: Decimal, tenure_months: int, purpose: str) -> RiskRequest:
        active = [
            l for l in list_loans(self.store, LoanStatus.ACTIVE)
            if l['borrower_id'] == borrower_id
        ]
        profile = self.profile_lookup(borrower_id) if self.profile_lookup else None
        return RiskRequest(
            borrower_id=borrower_id,
            amount=amount,
            tenure_months=tenure_months,
            purpose=purpose,
            total_credit=get_credit_summary(self.store, borrower_id).total,
            active_loan_count=len(active),
            active_loans_total=sum((l['amount'] for l in active), ZERO),
            profile=profile,
        )

    def apply_loan(self, borrower_id: str, amount, tenure_months: int, purpose: str = "Personal") -> ApplicationResult:
        """
        Apply for a loan against available credit.

        The risk assessor runs before the borrower's lock is taken; the
        reservation, the new loan and its routing commit together.

        Raises:
            ValidationError: amount or tenure not positive
            InsufficientCreditLimit: amount exceeds available credit
        """
        self._authorize(borrower_id, Role.BORROWER)
        amount = parse_amount(amount)
        tenure_months = parse_tenure(tenure_months)
        if not borrower_id:
            raise ValidationError("borrower_id cannot be empty")
        assessment = self.risk_assessor.assess(self._risk_request(borrower_id, amount, tenure_months, purpose))

        with self.locks.hold(user_key(borrower_id)):
            self._ensure_wallet(borrower_id)
            loan_id = self.ids("LN")
            self._commit(compute_application(
                self.store, loan_id, borrower_id, amount, tenure_months, purpose, self.policy,
                assessment.risk_band, assessment.ai_decision,
                assessment.default_probability, assessment.approval_score,
            ))
            loan = load_loan(self.store, loan_id)
        return ApplicationResult(
            loan_id=loan_id,
            status=loan['status'],
            risk_band=loan['risk_band'],
            ai_decision=loan['ai_decision'],
            emi_amount=loan['emi_amount'],
            default_probability=loan['default_probability'],
            approval_score=loan['approval_score'],
        )

    def admin_approve(self, loan_id: str, admin_id: str) -> str:
        self._authorize(admin_id, Role.ADMIN)
        with self.locks.hold(loan_key(loan_id)):
            self._commit(compute_approval(self.store, loan_id, admin_id))
            return load_loan(self.store, loan_id)['status']

    def admin_reject(self, loan_id: str, admin_id: str, reason: str = "") -> str:
        self._authorize(admin_id, Role.ADMIN)
        with self._loan_and_borrower(loan_id):
            self._commit(compute_rejection(self.store, loan_id, admin_id, reason))
            return load_loan(self.store, loan_id)['status']

    def activate(self, loan_id: str, actor_id: str) -> str:
        """Activate a loan whose funding is complete and waiting in escrow."""
        self._authorize(actor_id, Role.ADMIN)
        with self._loan_and_borrower(loan_id):
            self._commit(compute_activation(self.store, loan_id, actor_id))
            return load_loan(self.store, loan_id)['status']

    def invest(self, loan_id: str, investor_id: str, amount=None) -> InvestmentResult:
        """
        Fund a listed loan (the whole remainder unless amount is given).

        Raises:
            LoanNotFundable: Loan is not LISTED_FOR_FUNDING
            InsufficientBalance: Investor cash is below the amount
        """
        self._authorize(investor_id, Role.INVESTOR)
        with self.locks.hold(loan_key(loan_id), user_key(investor_id)):
            investment_id = self.ids("INV")
            pending = compute_investment(self.store, loan_id, investor_id, investment_id, self.policy, amount)
            self._commit(pending)
            investment = load_investment(self.store, investment_id)
            loan = load_loan(self.store, loan_id)
            balance = wallet_balance(self.store, investor_id, self.currency)
        return InvestmentResult(
            investment_id=investment_id,
            loan_id=loan_id,
            amount=investment['amount'],
            new_balance=balance,
            expected_returns=investment['expected_returns'],
            loan_status=loan['status'],
        )

    def repay(self, loan_id: str, payer_id: str, amount) -> RepaymentResult:
        """
        Raises:
            LoanNotActive, ExceedsOutstanding, ValidationError,
            InvalidOwner, InsufficientBalance
        """
        self._authorize(payer_id, Role.BORROWER)
        with self._loan_and_borrower(loan_id):
            before = load_loan(self.store, loan_id)
            self._commit(compute_repayment(self.store, loan_id, payer_id, amount))
            after = load_loan(self.store, loan_id)
        remaining = (
            after['outstanding_principal'] + after['accrued_interest']
            if after['status'] == LoanStatus.ACTIVE.value else ZERO
        )
        return RepaymentResult(
            loan_id=loan_id,
            amount=after['total_repaid'] - before['total_repaid'],
            interest_paid=after['total_interest_paid'] - before['total_interest_paid'],
            principal_paid=after['total_principal_paid'] - before['total_principal_paid'],
            total_repaid=after['total_repaid'],
            remaining=remaining,
            loan_status=after['status'],
        )

    def mark_repaid(self, loan_id: str, actor_id: str) -> str:
        self._authorize(actor_id, Role.ADMIN)
        with self._loan_and_borrower(loan_id):
            self._commit(compute_closure(self.store, loan_id, actor_id))
            return load_loan(self.store, loan_id)['status']

    def mark_defaulted(self, loan_id: str, actor_id: str) -> DefaultResolution:
        """
        Default an ACTIVE loan and liquidate its collateral.

        Calling it again on a DEFAULTED loan returns the recorded resolution
        and moves no money.
        """
        self._authorize(actor_id, Role.ADMIN)
        with self._loan_and_borrower(loan_id):
            already = load_loan(self.store, loan_id)['status'] == LoanStatus.DEFAULTED.value
            self._commit(compute_default(self.store, loan_id, actor_id, self.policy))
            loan = load_loan(self.store, loan_id)
            payouts = {
                inv_id: load_investment(self.store, inv_id)['recovery_amount']
                for inv_id in loan['investments']
            }
        summary = recovery_summary(loan)
        return DefaultResolution(
            loan_id=loan_id,
            recovery_amount=summary['recovery_amount'],
            collateral_value=summary['collateral_value'],
            written_off=summary['written_off'],
            payouts=payouts,
            already_defaulted=already,
        )

    def run_contract(self, loan_id: str, contract: LoanContract) -> Optional[PendingTransaction]:
        """
        Poll a lifecycle contract for one loan under the loan's locks.

        Returns:
            The committed transaction, or None if the contract had nothing to do
        """
        with self._loan_and_borrower(loan_id):
            pending = contract(self.store, loan_id, self.store.current_time, self.policy)
            if pending.is_empty():
                return None
            result = self._commit(pending)
        return pending if result == ExecuteResult.APPLIED else None

    # ========================================================================
    # QUERIES
    # ========================================================================

    def calculate_emi(self, amount, tenure_months: int, annual_rate=None) -> EmiQuote:
        rate = self.policy.annual_interest_rate if annual_rate is None else annual_rate
        return calculate_emi(amount, tenure_months, rate)

    def get_loan(self, loan_id: str) -> dict:
        return load_loan(self.store, loan_id)

    def get_outstanding(self, loan_id: str) -> Decimal:
        """Principal plus booked and pending interest as of the store clock."""
        return outstanding_balance(load_loan(self.store, loan_id), self.store.current_time)

    def loan_schedule(self, loan_id: str) -> List[ScheduleRow]:
        loan = load_loan(self.store, loan_id)
        return amortization_schedule(loan['amount'], loan['tenure_months'], loan['interest_rate'])

    def loan_repayments(self, loan_id: str) -> List[dict]:
        load_loan(self.store, loan_id)
        return loan_repayments(self.store, loan_id)

    def audit_trail(self, loan_id: str) -> List[Transaction]:
        """Every logged transaction that targeted or changed the loan, oldest first."""
        load_loan(self.store, loan_id)
        return [
            tx for tx in self.store.transaction_log
            if tx.origin.unit_symbol == loan_id
            or any(sc.unit == loan_id for sc in tx.state_changes)
            or any(u.symbol == loan_id for u in tx.units_to_create)
        ]

    def list_funding_opportunities(
        self,
        risk_band: Optional[str] = None,
        min_amount=None,
        max_amount=None,
        sort_by: str = "newest",
    ) -> List[FundingOpportunity]:
        """
        Loans open for funding, filtered and sorted.

        Raises:
            ValidationError: Unknown sort_by
        """
        if sort_by not in _SORT_KEYS:
            raise ValidationError(f"Unknown sort_by {sort_by!r}; expected one of {sorted(_SORT_KEYS)}")
        risk_band = getattr(risk_band, 'value', risk_band)
        low = parse_amount(min_amount, "min_amount", allow_zero=True) if min_amount is not None else None
        high = parse_amount(max_amount, "max_amount", allow_zero=True) if max_amount is not None else None

        opportunities = []
        for loan in list_loans(self.store, LoanStatus.LISTED_FOR_FUNDING):
            if risk_band is not None and loan['risk_band'] != risk_band:
                continue
            if low is not None and loan['amount'] < low:
                continue
            if high is not None and loan['amount'] > high:
                continue
            opportunities.append(FundingOpportunity(
                loan_id=loan['loan_id'],
                borrower_id=loan['borrower_id'],
                amount=loan['amount'],
                remaining=loan['amount'] - loan['funded_amount'],
                tenure_months=loan['tenure_months'],
                interest_rate=loan['interest_rate'],
                emi_amount=loan['emi_amount'],
                purpose=loan['purpose'],
                risk_band=loan['risk_band'],
                expected_return_percentage=expected_return_percentage(
                    loan['amount'], loan['tenure_months'], loan['interest_rate']
                ),
                created_at=loan['created_at'],
            ))

        key, descending = _SORT_KEYS[sort_by]
        opportunities.sort(key=lambda o: o.loan_id)
        opportunities.sort(key=key, reverse=descending)
        return opportunities

    def investor_portfolio(self, investor_id: str) -> Portfolio:
        investments = investor_investments(self.store, investor_id)
        by_status = defaultdict(int)
        for inv in investments:
            by_status[inv['status']] += 1
        return Portfolio(
            investor_id=investor_id,
            investments=investments,
            total_invested=sum((i['amount'] for i in investments), ZERO),
            total_returns=sum((i['returns_earned'] for i in investments), ZERO),
            total_recovered=sum((i['recovery_amount'] or ZERO for i in investments), ZERO),
            active_count=by_status[INVESTMENT_ACTIVE],
            completed_count=by_status[INVESTMENT_COMPLETED],
            defaulted_count=by_status[INVESTMENT_DEFAULTED],
        )
