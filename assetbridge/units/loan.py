"""
loan.py - Loan state machine

    APPLIED ──► UNDER_REVIEW ──► LISTED_FOR_FUNDING ──► ACTIVE ──► REPAID
       │             │                  ▲                  │
       └─────────────┼──────────────────┘                  └──► DEFAULTED
                     └──► REJECTED

REPAID, DEFAULTED and REJECTED are terminal. Every status change appends a
(status, at) entry to status_history. The loan_state_rule attached to every
loan unit rejects any stored status change that is not an edge of this
graph, so transition() is the only way status can move.

A loan holds its credit reservation from application until it reaches a
terminal status.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Any

from ..core import (
    LedgerView, PendingTransaction, Move, Unit, UnitStateChange, UnitState,
    TransactionOrigin, OriginType, ESCROW_WALLET,
    UNIT_TYPE_LOAN, ZERO,
    FundingIncomplete, IllegalStateTransition, LoanNotFound, TransferRuleViolation,
    ValidationError, build_transaction, entity_unit,
)
from ..policy import LendingPolicy, parse_amount, parse_tenure
from ..amortization import add_months, calculate_emi, calculate_pending_interest
from .asset import Allocation, allocate_reservation, release_credit, reserve_credit


class LoanStatus(str, Enum):
    APPLIED = "APPLIED"
    UNDER_REVIEW = "UNDER_REVIEW"
    LISTED_FOR_FUNDING = "LISTED_FOR_FUNDING"
    ACTIVE = "ACTIVE"
    REPAID = "REPAID"
    DEFAULTED = "DEFAULTED"
    REJECTED = "REJECTED"


class RiskBand(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class AiDecision(str, Enum):
    AUTO_APPROVE = "AUTO_APPROVE"
    REVIEW = "REVIEW"
    REJECT = "REJECT"


TRANSITIONS: Dict[str, frozenset] = {
    LoanStatus.APPLIED.value: frozenset({LoanStatus.UNDER_REVIEW.value, LoanStatus.LISTED_FOR_FUNDING.value}),
    LoanStatus.UNDER_REVIEW.value: frozenset({LoanStatus.LISTED_FOR_FUNDING.value, LoanStatus.REJECTED.value}),
    LoanStatus.LISTED_FOR_FUNDING.value: frozenset({LoanStatus.ACTIVE.value}),
    LoanStatus.ACTIVE.value: frozenset({LoanStatus.REPAID.value, LoanStatus.DEFAULTED.value}),
    LoanStatus.REPAID.value: frozenset(),
    LoanStatus.DEFAULTED.value: frozenset(),
    LoanStatus.REJECTED.value: frozenset(),
}

TERMINAL_STATUSES = frozenset({
    LoanStatus.REPAID.value, LoanStatus.DEFAULTED.value, LoanStatus.REJECTED.value,
})

# Statuses in which the loan still holds its credit reservation.
OPEN_STATUSES = frozenset(TRANSITIONS) - TERMINAL_STATUSES

FUNDED_STATUSES = frozenset({
    LoanStatus.ACTIVE.value, LoanStatus.REPAID.value, LoanStatus.DEFAULTED.value,
})

# Fixed at application time.
LOAN_TERMS = (
    'loan_id', 'borrower_id', 'amount', 'tenure_months', 'interest_rate',
    'emi_amount', 'currency', 'purpose', 'created_at',
)


# ============================================================================
# STATE MACHINE
# ============================================================================

def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(str(from_status), frozenset())


def check_transition(from_status: str, to_status: str, loan_id: str = "") -> None:
    """
    Raises:
        IllegalStateTransition: If from_status -> to_status is not an edge
    """
    if not can_transition(from_status, to_status):
        raise IllegalStateTransition(str(from_status), str(to_status), loan_id)


def transition(loan: UnitState, to_status: str, at: datetime) -> UnitState:
    """
    Return a copy of the loan moved to to_status, with history appended.

    Raises:
        IllegalStateTransition: If the edge is not in the graph
    """
    to_status = getattr(to_status, 'value', to_status)
    check_transition(loan['status'], to_status, loan['loan_id'])
    return {
        **loan,
        'status': to_status,
        'status_history': list(loan['status_history']) + [{'status': to_status, 'at': at}],
        'updated_at': at,
    }


def is_legal_history(history: List[Dict[str, Any]]) -> bool:
    """A history is legal if it starts at APPLIED and follows graph edges in time order."""
    if not history or history[0]['status'] != LoanStatus.APPLIED.value:
        return False
    for prev, nxt in zip(history, history[1:]):
        if not can_transition(prev['status'], nxt['status']) or nxt['at'] < prev['at']:
            return False
    return True


def loan_state_rule(view: LedgerView, old: Optional[UnitState], new: UnitState) -> None:
    """Enforce the transition graph and funding bounds on every stored change."""
    loan_id = new['loan_id']
    if not ZERO <= new['funded_amount'] <= new['amount']:
        raise TransferRuleViolation(f"loan {loan_id}: funded {new['funded_amount']} outside [0, {new['amount']}]")
    if new['outstanding_principal'] < ZERO or new['accrued_interest'] < ZERO:
        raise TransferRuleViolation(f"loan {loan_id}: negative balance")
    if new['status'] in FUNDED_STATUSES and new['funded_amount'] != new['amount']:
        raise TransferRuleViolation(f"loan {loan_id}: {new['status']} requires full funding")
    if old is None:
        if new['status'] != LoanStatus.APPLIED.value or len(new['status_history']) != 1:
            raise TransferRuleViolation(f"loan {loan_id}: must be created APPLIED")
        return
    if old['status'] in TERMINAL_STATUSES:
        raise TransferRuleViolation(f"loan {loan_id}: {old['status']} is terminal")
    for key in LOAN_TERMS:
        if old.get(key) != new.get(key):
            raise TransferRuleViolation(f"loan {loan_id}: {key} is immutable")
    old_history = old['status_history']
    new_history = new['status_history']
    if new['status'] == old['status']:
        if new_history != old_history:
            raise TransferRuleViolation(f"loan {loan_id}: history changed without a transition")
        return
    if not can_transition(old['status'], new['status']):
        raise TransferRuleViolation(f"loan {loan_id}: illegal transition {old['status']} -> {new['status']}")
    if (len(new_history) != len(old_history) + 1
            or new_history[:-1] != old_history
            or new_history[-1]['status'] != new['status']):
        raise TransferRuleViolation(f"loan {loan_id}: history must record the transition")


# ============================================================================
# LOADERS AND QUERIES
# ============================================================================

def load_loan(view: LedgerView, loan_id: str) -> UnitState:
    """
    Raises:
        LoanNotFound: If no loan with this id exists
    """
    if not view.has_unit(loan_id) or view.get_unit(loan_id).unit_type != UNIT_TYPE_LOAN:
        raise LoanNotFound(f"Loan {loan_id} not found")
    return view.get_unit_state(loan_id)


def list_loans(view: LedgerView, status: Optional[str] = None) -> List[UnitState]:
    loans = [view.get_unit_state(s) for s in view.list_units(UNIT_TYPE_LOAN)]
    if status is not None:
        status = getattr(status, 'value', status)
        loans = [l for l in loans if l['status'] == status]
    return loans


def pending_interest(loan: UnitState, as_of: datetime) -> Decimal:
    """Interest earned since interest_accrued_through but not yet booked."""
    if loan['status'] != LoanStatus.ACTIVE.value or loan['interest_accrued_through'] is None:
        return ZERO
    interest, _ = calculate_pending_interest(
        loan['outstanding_principal'], loan['interest_rate'], loan['interest_accrued_through'], as_of
    )
    return interest


def outstanding_balance(loan: UnitState, as_of: datetime) -> Decimal:
    """principal + booked interest + interest pending as of the given time."""
    if loan['status'] != LoanStatus.ACTIVE.value:
        return ZERO
    return loan['outstanding_principal'] + loan['accrued_interest'] + pending_interest(loan, as_of)


def accrue_interest(loan: UnitState, as_of: datetime) -> UnitState:
    """Book pending interest into accrued_interest (whole months only)."""
    if loan['status'] != LoanStatus.ACTIVE.value:
        return loan
    interest, through = calculate_pending_interest(
        loan['outstanding_principal'], loan['interest_rate'], loan['interest_accrued_through'], as_of
    )
    if interest == ZERO and through == loan['interest_accrued_through']:
        return loan
    return {
        **loan,
        'accrued_interest': loan['accrued_interest'] + interest,
        'interest_accrued_through': through,
    }


def route_for(decision: str) -> str:
    """AUTO_APPROVE lists the loan directly; everything else waits for an admin."""
    if getattr(decision, 'value', decision) == AiDecision.AUTO_APPROVE.value:
        return LoanStatus.LISTED_FOR_FUNDING.value
    return LoanStatus.UNDER_REVIEW.value


# ============================================================================
# UNIT FACTORY
# ============================================================================

def create_loan_unit(
    loan_id: str,
    borrower_id: str,
    amount: Decimal,
    tenure_months: int,
    purpose: str,
    policy: LendingPolicy,
    created_at: datetime,
    reservations: Allocation,
    risk_band: str,
    ai_decision: str,
    default_probability: Optional[Decimal] = None,
    approval_score: Optional[int] = None,
) -> Unit:
    """
    Create a Loan record in APPLIED status.

    The EMI is fixed at creation from the policy's annual rate.

    Raises:
        ValidationError: If amount <= 0 or tenure <= 0
    """
    amount = parse_amount(amount)
    tenure_months = parse_tenure(tenure_months)
    quote = calculate_emi(amount, tenure_months, policy.annual_interest_rate)
    state = {
        'loan_id': loan_id,
        'borrower_id': borrower_id,
        'amount': amount,
        'tenure_months': tenure_months,
        'interest_rate': policy.annual_interest_rate,
        'emi_amount': quote.emi,
        'purpose': purpose,
        'currency': policy.currency,
        'status': LoanStatus.APPLIED.value,
        'status_history': [{'status': LoanStatus.APPLIED.value, 'at': created_at}],
        'risk_band': getattr(risk_band, 'value', risk_band),
        'ai_decision': getattr(ai_decision, 'value', ai_decision),
        'default_probability': default_probability,
        'approval_score': approval_score,
        'reservations': dict(reservations),
        'funded_amount': ZERO,
        'investments': [],
        'outstanding_principal': ZERO,
        'accrued_interest': ZERO,
        'interest_accrued_through': None,
        'next_due_date': None,
        'installments_issued': 0,
        'open_installments': [],
        'payment_count': 0,
        'total_repaid': ZERO,
        'total_interest_paid': ZERO,
        'total_principal_paid': ZERO,
        'created_at': created_at,
        'updated_at': created_at,
        'approved_at': None,
        'rejected_at': None,
        'rejection_reason': None,
        'disbursed_at': None,
        'repaid_at': None,
        'defaulted_at': None,
        'recovery_amount': None,
        'collateral_value': None,
        'written_off': None,
    }
    return entity_unit(loan_id, f"Loan {loan_id}", UNIT_TYPE_LOAN, state, loan_state_rule)


# ============================================================================
# TRANSACTIONS
# ============================================================================

def compute_application(
    view: LedgerView,
    loan_id: str,
    borrower_id: str,
    amount: Decimal,
    tenure_months: int,
    purpose: str,
    policy: LendingPolicy,
    risk_band: str,
    ai_decision: str,
    default_probability: Optional[Decimal] = None,
    approval_score: Optional[int] = None,
) -> PendingTransaction:
    """
    Apply for a loan against the borrower's available credit.

    One atomic transaction:
    - reserve used_credit += amount on the borrower's locked assets
      (earliest-locked first)
    - create the loan in APPLIED
    - route it to LISTED_FOR_FUNDING (AUTO_APPROVE) or UNDER_REVIEW

    Raises:
        ValidationError: If amount <= 0 or tenure <= 0
        InsufficientCreditLimit: If amount exceeds available credit
    """
    amount = parse_amount(amount)
    tenure_months = parse_tenure(tenure_months)
    if not borrower_id:
        raise ValidationError("borrower_id cannot be empty")

    allocation = allocate_reservation(view, borrower_id, amount)
    now = view.current_time
    unit = create_loan_unit(
        loan_id, borrower_id, amount, tenure_months, purpose, policy, now,
        allocation, risk_band, ai_decision, default_probability, approval_score,
    )
    applied = unit.state
    routed = transition(applied, route_for(ai_decision), now)
    if routed['status'] == LoanStatus.LISTED_FOR_FUNDING.value:
        routed['approved_at'] = now

    changes = [UnitStateChange(loan_id, applied, routed)]
    changes.extend(reserve_credit(view, allocation))
    origin = TransactionOrigin(OriginType.USER_ACTION, borrower_id, loan_id, "APPLY")
    return build_transaction(view, [], changes, origin, (unit,))


def compute_approval(view: LedgerView, loan_id: str, admin_id: str) -> PendingTransaction:
    """
    UNDER_REVIEW -> LISTED_FOR_FUNDING.

    Raises:
        LoanNotFound, IllegalStateTransition
    """
    loan = load_loan(view, loan_id)
    now = view.current_time
    approved = transition(loan, LoanStatus.LISTED_FOR_FUNDING, now)
    approved['approved_at'] = now
    origin = TransactionOrigin(OriginType.ADMIN_ACTION, admin_id, loan_id, "APPROVE")
    return build_transaction(view, [], [UnitStateChange(loan_id, loan, approved)], origin)


def compute_rejection(view: LedgerView, loan_id: str, admin_id: str, reason: str = "") -> PendingTransaction:
    """
    UNDER_REVIEW -> REJECTED, releasing the credit reservation.

    Raises:
        LoanNotFound, IllegalStateTransition
    """
    loan = load_loan(view, loan_id)
    now = view.current_time
    rejected = transition(loan, LoanStatus.REJECTED, now)
    rejected['rejected_at'] = now
    rejected['rejection_reason'] = reason or None
    changes = [UnitStateChange(loan_id, loan, rejected)]
    changes.extend(release_credit(view, loan['reservations']))
    origin = TransactionOrigin(OriginType.ADMIN_ACTION, admin_id, loan_id, "REJECT")
    return build_transaction(view, [], changes, origin)


def activate(loan: UnitState, at: datetime) -> UnitState:
    """
    LISTED_FOR_FUNDING -> ACTIVE for a fully funded loan.

    Starts the repayment clock: interest accrues from the disbursement
    date and the first installment is due one month later.

    Raises:
        IllegalStateTransition: If the loan is not LISTED_FOR_FUNDING
        FundingIncomplete: If investments do not cover the amount
    """
    check_transition(loan['status'], LoanStatus.ACTIVE.value, loan['loan_id'])
    if loan['funded_amount'] != loan['amount']:
        raise FundingIncomplete(
            f"Loan {loan['loan_id']} funded {loan['funded_amount']} of {loan['amount']}"
        )
    active = transition(loan, LoanStatus.ACTIVE, at)
    active.update({
        'outstanding_principal': loan['amount'],
        'accrued_interest': ZERO,
        'interest_accrued_through': at,
        'next_due_date': add_months(at, 1),
        'disbursed_at': at,
    })
    return active


def disbursement(loan: UnitState) -> Move:
    """Escrow pays the full principal to the borrower."""
    return Move(
        quantity=loan['amount'],
        unit_symbol=loan['currency'],
        source=ESCROW_WALLET,
        dest=loan['borrower_id'],
        contract_id=f"disburse:{loan['loan_id']}",
    )


def compute_activation(view: LedgerView, loan_id: str, actor_id: str) -> PendingTransaction:
    """
    Activate a loan whose funding already sits in escrow.

    Raises:
        LoanNotFound, IllegalStateTransition, FundingIncomplete
    """
    loan = load_loan(view, loan_id)
    active = activate(loan, view.current_time)
    origin = TransactionOrigin(OriginType.ADMIN_ACTION, actor_id, loan_id, "ACTIVATE")
    return build_transaction(view, [disbursement(loan)], [UnitStateChange(loan_id, loan, active)], origin)
