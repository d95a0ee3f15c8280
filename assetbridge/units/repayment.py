"""
repayment.py - Installments, repayments and loan closure

Installments:
    Each due cycle (one calendar month after disbursement, then monthly)
    books the month's interest and creates a PENDING installment for
    min(EMI, outstanding).

Repayment:
    payment -> accrued interest first, then principal
    borrower ──► escrow ──► investors (pro rata by invested amount)
    open installments are settled oldest first; any excess is recorded as a
    COMPLETED prepayment.

Closure:
    When outstanding reaches zero the loan moves ACTIVE -> REPAID in the
    same transaction, its credit reservation is released and every
    investment is COMPLETED.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange, UnitState,
    TransactionOrigin, OriginType, ESCROW_WALLET,
    UNIT_TYPE_REPAYMENT, ZERO,
    ExceedsOutstanding, InsufficientBalance, InvalidOwner, LoanNotActive, LoanNotSettled,
    NotFoundError, TransferRuleViolation,
    build_transaction, empty_pending_transaction, entity_unit, wallet_balance,
)
from ..policy import parse_amount
from ..amortization import add_months, split_payment
from .asset import release_credit
from .investment import (
    INVESTMENT_ACTIVE, INVESTMENT_COMPLETED, allocate_pro_rata, loan_investments,
)
from .loan import LoanStatus, accrue_interest, check_transition, load_loan, outstanding_balance, transition


REPAYMENT_PENDING = "PENDING"
REPAYMENT_COMPLETED = "COMPLETED"

KIND_INSTALLMENT = "INSTALLMENT"
KIND_PREPAYMENT = "PREPAYMENT"


def repayment_state_rule(view: LedgerView, old: Optional[UnitState], new: UnitState) -> None:
    rid = new['repayment_id']
    if not ZERO <= new['paid_amount'] <= new['amount']:
        raise TransferRuleViolation(f"repayment {rid}: paid {new['paid_amount']} outside [0, {new['amount']}]")
    if new['status'] == REPAYMENT_COMPLETED and new['paid_amount'] != new['amount']:
        raise TransferRuleViolation(f"repayment {rid}: completed before fully paid")
    if old is None:
        return
    if old['status'] == REPAYMENT_COMPLETED:
        raise TransferRuleViolation(f"repayment {rid}: completed repayment is immutable")
    if new['paid_amount'] < old['paid_amount']:
        raise TransferRuleViolation(f"repayment {rid}: paid amount cannot decrease")
    for key in ('repayment_id', 'loan_id', 'amount', 'due_date', 'kind'):
        if old.get(key) != new.get(key):
            raise TransferRuleViolation(f"repayment {rid}: {key} is immutable")


def installment_id(loan_id: str, number: int) -> str:
    return f"{loan_id}-I{number:03d}"


def prepayment_id(loan_id: str, number: int) -> str:
    return f"{loan_id}-P{number:03d}"


def load_repayment(view: LedgerView, repayment_id: str) -> UnitState:
    if (not view.has_unit(repayment_id)
            or view.get_unit(repayment_id).unit_type != UNIT_TYPE_REPAYMENT):
        raise NotFoundError(f"Repayment {repayment_id} not found")
    return view.get_unit_state(repayment_id)


def loan_repayments(view: LedgerView, loan_id: str) -> List[UnitState]:
    states = (view.get_unit_state(s) for s in view.list_units(UNIT_TYPE_REPAYMENT))
    return sorted(
        (s for s in states if s['loan_id'] == loan_id),
        key=lambda s: (s['created_at'], s['repayment_id']),
    )


def create_repayment_unit(
    repayment_id: str,
    loan: UnitState,
    amount: Decimal,
    kind: str,
    due_date: Optional[datetime],
    created_at: datetime,
    paid: bool = False,
) -> Unit:
    investment_ids = sorted(loan['investments'])
    state = {
        'repayment_id': repayment_id,
        'loan_id': loan['loan_id'],
        'borrower_id': loan['borrower_id'],
        'investment_ids': investment_ids,
        'amount': amount,
        'paid_amount': amount if paid else ZERO,
        'status': REPAYMENT_COMPLETED if paid else REPAYMENT_PENDING,
        'kind': kind,
        'due_date': due_date,
        'paid_date': created_at if paid else None,
        'created_at': created_at,
    }
    return entity_unit(repayment_id, f"{kind.title()} {repayment_id}", UNIT_TYPE_REPAYMENT, state, repayment_state_rule)


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def calculate_installment_amount(emi: Decimal, outstanding: Decimal) -> Decimal:
    return min(emi, outstanding)


def settle_installments(
    installments: List[UnitState], amount: Decimal, at: datetime
) -> Tuple[List[UnitState], Decimal]:
    """
    Apply a payment to open installments oldest first.

    Returns:
        (updated installment states, amount left over)
    """
    remaining = amount
    updated = []
    for inst in installments:
        if remaining <= ZERO:
            break
        due = inst['amount'] - inst['paid_amount']
        pay = min(due, remaining)
        new_inst = {**inst, 'paid_amount': inst['paid_amount'] + pay}
        if new_inst['paid_amount'] == new_inst['amount']:
            new_inst['status'] = REPAYMENT_COMPLETED
            new_inst['paid_date'] = at
        updated.append(new_inst)
        remaining -= pay
    return updated, remaining


def _close(
    view: LedgerView,
    loan: UnitState,
    investments: Dict[str, UnitState],
    installments: Dict[str, UnitState],
    at: datetime,
) -> Tuple[UnitState, List[UnitStateChange]]:
    """
    Move a settled loan to REPAID.

    investments / installments hold the latest (possibly already modified)
    states keyed by id; they are completed in place.
    """
    closed = transition(loan, LoanStatus.REPAID, at)
    closed['repaid_at'] = at
    closed['next_due_date'] = None
    closed['open_installments'] = []
    for inv_id, inv in investments.items():
        if inv['status'] == INVESTMENT_ACTIVE:
            investments[inv_id] = {**inv, 'status': INVESTMENT_COMPLETED, 'completed_at': at}
    for inst_id, inst in installments.items():
        if inst['status'] == REPAYMENT_PENDING:
            # Unreachable while open dues never exceed the outstanding balance.
            installments[inst_id] = {
                **inst, 'paid_amount': inst['amount'], 'status': REPAYMENT_COMPLETED, 'paid_date': at,
            }
    return closed, release_credit(view, loan['reservations'])


# ============================================================================
# TRANSACTIONS
# ============================================================================

def compute_installment_due(view: LedgerView, loan_id: str) -> PendingTransaction:
    """
    Issue the next installment if its due date has passed.

    Books one month of interest (or more, if cycles were skipped) and creates
    a PENDING Repayment for min(EMI, outstanding). Returns an empty
    transaction if nothing is due.
    """
    loan = load_loan(view, loan_id)
    now = view.current_time
    due_date = loan['next_due_date']
    if loan['status'] != LoanStatus.ACTIVE.value or due_date is None or due_date > now:
        return empty_pending_transaction(view)

    accrued = accrue_interest(loan, due_date)
    owed = accrued['outstanding_principal'] + accrued['accrued_interest']
    open_insts = [load_repayment(view, rid) for rid in loan['open_installments']]
    already_due = sum((i['amount'] - i['paid_amount'] for i in open_insts), ZERO)
    amount = calculate_installment_amount(loan['emi_amount'], owed - already_due)
    if amount <= ZERO:
        return empty_pending_transaction(view)

    number = loan['installments_issued'] + 1
    rid = installment_id(loan_id, number)
    unit = create_repayment_unit(rid, loan, amount, KIND_INSTALLMENT, due_date, now)
    new_loan = {
        **accrued,
        'installments_issued': number,
        'open_installments': list(loan['open_installments']) + [rid],
        'next_due_date': add_months(loan['disbursed_at'], number + 1),
        'updated_at': now,
    }
    origin = TransactionOrigin(OriginType.LIFECYCLE, "scheduler", loan_id, "INSTALLMENT_DUE")
    return build_transaction(view, [], [UnitStateChange(loan_id, loan, new_loan)], origin, (unit,))


def compute_repayment(
    view: LedgerView,
    loan_id: str,
    payer_id: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Repay part or all of an active loan.

    Args:
        view: Read-only ledger access
        loan_id: Loan being repaid
        payer_id: Must be the borrower
        amount: Payment (positive, at most the outstanding balance)

    Returns:
        PendingTransaction with:
        - moves: borrower -> escrow, escrow -> each investor
        - state_changes: loan balances, investment returns, installments;
          closure when the balance reaches zero
        - units_to_create: a prepayment record for any excess over open
          installments

    Raises:
        ValidationError: amount <= 0
        LoanNotFound: Unknown loan
        LoanNotActive: Loan is not ACTIVE
        InvalidOwner: payer is not the borrower
        ExceedsOutstanding: amount > outstanding balance
        InsufficientBalance: borrower cash < amount
    """
    amount = parse_amount(amount)
    loan = load_loan(view, loan_id)
    if loan['status'] != LoanStatus.ACTIVE.value:
        raise LoanNotActive(f"Loan {loan_id} is {loan['status']}")
    if payer_id != loan['borrower_id']:
        raise InvalidOwner(f"{payer_id} is not the borrower of {loan_id}")

    now = view.current_time
    accrued = accrue_interest(loan, now)
    outstanding = accrued['outstanding_principal'] + accrued['accrued_interest']
    if amount > outstanding:
        raise ExceedsOutstanding(f"Payment {amount} exceeds outstanding {outstanding}")

    currency = loan['currency']
    borrower = loan['borrower_id']
    balance = wallet_balance(view, borrower, currency)
    if balance < amount:
        raise InsufficientBalance(borrower, amount, balance)

    interest_paid, principal_paid = split_payment(amount, accrued['accrued_interest'])

    investments = {inv['investment_id']: inv for inv in loan_investments(view, loan)}
    weights = {inv_id: inv['amount'] for inv_id, inv in investments.items()}
    interest_shares = allocate_pro_rata(interest_paid, weights)
    principal_shares = allocate_pro_rata(principal_paid, weights)
    originals = dict(investments)

    moves = [Move(amount, currency, borrower, ESCROW_WALLET, f"repay:{loan_id}:{loan['payment_count'] + 1}")]
    for inv_id in sorted(investments):
        inv = investments[inv_id]
        payout = interest_shares[inv_id] + principal_shares[inv_id]
        if payout > ZERO:
            moves.append(Move(payout, currency, ESCROW_WALLET, inv['investor_id'], f"payout:{inv_id}:{loan['payment_count'] + 1}"))
        investments[inv_id] = {
            **inv,
            'returns_earned': inv['returns_earned'] + interest_shares[inv_id],
            'principal_returned': inv['principal_returned'] + principal_shares[inv_id],
        }

    open_insts = [load_repayment(view, rid) for rid in loan['open_installments']]
    inst_originals = {i['repayment_id']: i for i in open_insts}
    settled, excess = settle_installments(open_insts, amount, now)
    installments = dict(inst_originals)
    installments.update({i['repayment_id']: i for i in settled})

    payment_number = loan['payment_count'] + 1
    units = []
    if excess > ZERO:
        units.append(create_repayment_unit(
            prepayment_id(loan_id, payment_number), loan, excess, KIND_PREPAYMENT, None, now, paid=True,
        ))

    new_loan = {
        **accrued,
        'accrued_interest': accrued['accrued_interest'] - interest_paid,
        'outstanding_principal': accrued['outstanding_principal'] - principal_paid,
        'total_repaid': loan['total_repaid'] + amount,
        'total_interest_paid': loan['total_interest_paid'] + interest_paid,
        'total_principal_paid': loan['total_principal_paid'] + principal_paid,
        'payment_count': payment_number,
        'updated_at': now,
    }

    changes: List[UnitStateChange] = []
    if new_loan['outstanding_principal'] + new_loan['accrued_interest'] == ZERO:
        new_loan, credit_changes = _close(view, new_loan, investments, installments, now)
        changes.extend(credit_changes)
    else:
        new_loan['open_installments'] = [
            rid for rid in loan['open_installments'] if installments[rid]['status'] == REPAYMENT_PENDING
        ]

    changes.insert(0, UnitStateChange(loan_id, loan, new_loan))
    for inv_id in sorted(investments):
        if investments[inv_id] != originals[inv_id]:
            changes.append(UnitStateChange(inv_id, originals[inv_id], investments[inv_id]))
    for rid in sorted(installments):
        if installments[rid] != inst_originals[rid]:
            changes.append(UnitStateChange(rid, inst_originals[rid], installments[rid]))

    origin = TransactionOrigin(OriginType.USER_ACTION, payer_id, loan_id, "REPAY")
    return build_transaction(view, moves, changes, origin, tuple(units))


def compute_closure(view: LedgerView, loan_id: str, actor_id: str) -> PendingTransaction:
    """
    Mark a fully repaid loan REPAID.

    Raises:
        LoanNotFound: Unknown loan
        IllegalStateTransition: Loan is not ACTIVE
        LoanNotSettled: Outstanding balance is not zero
    """
    loan = load_loan(view, loan_id)
    check_transition(loan['status'], LoanStatus.REPAID.value, loan_id)
    now = view.current_time
    remaining = outstanding_balance(loan, now)
    if remaining > ZERO:
        raise LoanNotSettled(f"Loan {loan_id} still owes {remaining}")

    investments = {inv['investment_id']: inv for inv in loan_investments(view, loan)}
    originals = dict(investments)
    installments = {rid: load_repayment(view, rid) for rid in loan['open_installments']}
    inst_originals = dict(installments)
    closed, changes = _close(view, loan, investments, installments, now)
    changes.insert(0, UnitStateChange(loan_id, loan, closed))
    for inv_id in sorted(investments):
        if investments[inv_id] != originals[inv_id]:
            changes.append(UnitStateChange(inv_id, originals[inv_id], investments[inv_id]))
    for rid in sorted(installments):
        if installments[rid] != inst_originals[rid]:
            changes.append(UnitStateChange(rid, inst_originals[rid], installments[rid]))
    origin = TransactionOrigin(OriginType.ADMIN_ACTION, actor_id, loan_id, "MARK_REPAID")
    return build_transaction(view, [], changes, origin)
