"""
investment.py - Investment & funding engine

An investor funds a LISTED_FOR_FUNDING loan. Cash always passes through the
platform escrow wallet:

    investor ──► escrow ──► borrower

With full funding (the default policy) both legs and the activation happen
in one transaction. With partial funding enabled, tranches wait in escrow
and the tranche that completes the amount activates the loan and disburses
the whole principal.

Investments are immutable once COMPLETED or DEFAULTED.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_DOWN
from typing import Dict, List, Optional

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange, UnitState,
    TransactionOrigin, OriginType, ESCROW_WALLET, CASH_QUANTUM,
    UNIT_TYPE_INVESTMENT, ZERO,
    ExceedsRemainingFunding, InsufficientBalance, InvestmentNotFound, LoanNotFundable,
    TransferRuleViolation, ValidationError,
    build_transaction, entity_unit, quantize_cash, wallet_balance,
)
from ..policy import LendingPolicy, parse_amount
from ..amortization import expected_returns
from .loan import LoanStatus, activate, disbursement, load_loan


INVESTMENT_ACTIVE = "ACTIVE"
INVESTMENT_COMPLETED = "COMPLETED"
INVESTMENT_DEFAULTED = "DEFAULTED"

_INVESTMENT_TERMS = ('investment_id', 'loan_id', 'investor_id', 'amount', 'created_at')


def investment_state_rule(view: LedgerView, old: Optional[UnitState], new: UnitState) -> None:
    inv_id = new['investment_id']
    if new['amount'] <= ZERO:
        raise TransferRuleViolation(f"investment {inv_id}: amount must be positive")
    if new['principal_returned'] > new['amount']:
        raise TransferRuleViolation(f"investment {inv_id}: principal returned exceeds amount")
    if old is None:
        if new['status'] != INVESTMENT_ACTIVE:
            raise TransferRuleViolation(f"investment {inv_id}: must be created ACTIVE")
        return
    if old['status'] != INVESTMENT_ACTIVE:
        raise TransferRuleViolation(f"investment {inv_id}: {old['status']} is immutable")
    if new['status'] not in (INVESTMENT_ACTIVE, INVESTMENT_COMPLETED, INVESTMENT_DEFAULTED):
        raise TransferRuleViolation(f"investment {inv_id}: bad status {new['status']!r}")
    for key in _INVESTMENT_TERMS:
        if old.get(key) != new.get(key):
            raise TransferRuleViolation(f"investment {inv_id}: {key} is immutable")
    if new['returns_earned'] < old['returns_earned']:
        raise TransferRuleViolation(f"investment {inv_id}: returns cannot decrease")


# ============================================================================
# PURE CALCULATIONS
# ============================================================================

def allocate_pro_rata(total: Decimal, weights: Dict[str, Decimal]) -> Dict[str, Decimal]:
    """
    Split a cash amount in proportion to weights.

    Largest-remainder at cent precision: the shares always sum exactly to
    total. Ties go to the lexicographically smaller key.
    """
    if not weights:
        return {}
    total = quantize_cash(total)
    weight_sum = sum(weights.values(), ZERO)
    if weight_sum <= ZERO:
        raise ValueError("weights must sum to a positive amount")
    shares: Dict[str, Decimal] = {}
    fractions = []
    for key in sorted(weights):
        exact = total * weights[key] / weight_sum
        floored = exact.quantize(CASH_QUANTUM, rounding=ROUND_DOWN)
        shares[key] = floored
        fractions.append((exact - floored, key))
    leftover = int((total - sum(shares.values(), ZERO)) / CASH_QUANTUM)
    fractions.sort(key=lambda fk: (-fk[0], fk[1]))
    for _, key in fractions[:leftover]:
        shares[key] += CASH_QUANTUM
    return shares


def calculate_expected_returns(loan: UnitState, amount: Decimal) -> Decimal:
    """Investor's share of the loan's total amortised interest."""
    total = expected_returns(loan['amount'], loan['tenure_months'], loan['interest_rate'])
    return quantize_cash(total * amount / loan['amount'])


# ============================================================================
# LOADERS
# ============================================================================

def load_investment(view: LedgerView, investment_id: str) -> UnitState:
    if (not view.has_unit(investment_id)
            or view.get_unit(investment_id).unit_type != UNIT_TYPE_INVESTMENT):
        raise InvestmentNotFound(f"Investment {investment_id} not found")
    return view.get_unit_state(investment_id)


def loan_investments(view: LedgerView, loan: UnitState) -> List[UnitState]:
    return [load_investment(view, inv_id) for inv_id in loan['investments']]


def investor_investments(view: LedgerView, investor_id: str) -> List[UnitState]:
    states = (view.get_unit_state(s) for s in view.list_units(UNIT_TYPE_INVESTMENT))
    return sorted(
        (s for s in states if s['investor_id'] == investor_id),
        key=lambda s: (s['created_at'], s['investment_id']),
    )


# ============================================================================
# UNIT FACTORY AND TRANSACTIONS
# ============================================================================

def create_investment_unit(
    investment_id: str,
    loan: UnitState,
    investor_id: str,
    amount: Decimal,
    created_at,
) -> Unit:
    state = {
        'investment_id': investment_id,
        'loan_id': loan['loan_id'],
        'investor_id': investor_id,
        'amount': amount,
        'currency': loan['currency'],
        'status': INVESTMENT_ACTIVE,
        'expected_returns': calculate_expected_returns(loan, amount),
        'returns_earned': ZERO,
        'principal_returned': ZERO,
        'recovery_amount': None,
        'recovery_percentage': None,
        'created_at': created_at,
        'completed_at': None,
        'defaulted_at': None,
    }
    return entity_unit(
        investment_id, f"Investment {investment_id}", UNIT_TYPE_INVESTMENT, state, investment_state_rule
    )


def compute_investment(
    view: LedgerView,
    loan_id: str,
    investor_id: str,
    investment_id: str,
    policy: LendingPolicy,
    amount: Optional[Decimal] = None,
) -> PendingTransaction:
    """
    Fund a listed loan.

    Args:
        view: Read-only ledger access
        loan_id: Loan to fund
        investor_id: Investor wallet
        investment_id: Id for the new Investment record
        policy: Lending policy (partial funding switch)
        amount: Tranche size; None funds the whole remaining amount

    Returns:
        PendingTransaction with:
        - moves: investor -> escrow, plus escrow -> borrower once fully funded
        - units_to_create: the Investment (ACTIVE)
        - state_changes: loan funded_amount, and activation when complete

    Raises:
        LoanNotFound: Unknown loan
        LoanNotFundable: Loan is not LISTED_FOR_FUNDING
        ValidationError: Investor is the borrower, or a partial amount while
                         partial funding is disabled
        ExceedsRemainingFunding: amount is more than what is left to fund
        InsufficientBalance: Investor cash is below the amount
    """
    loan = load_loan(view, loan_id)
    if loan['status'] != LoanStatus.LISTED_FOR_FUNDING.value:
        raise LoanNotFundable(f"Loan {loan_id} is {loan['status']}")
    if investor_id == loan['borrower_id']:
        raise ValidationError("Borrowers cannot fund their own loan")

    remaining = loan['amount'] - loan['funded_amount']
    if amount is None:
        amount = remaining
    else:
        amount = parse_amount(amount)
        if amount > remaining:
            raise ExceedsRemainingFunding(f"Only {remaining} left to fund on {loan_id}")
        if amount < remaining and not policy.allow_partial_funding:
            raise ValidationError(f"Loan {loan_id} must be funded in full ({remaining})")

    currency = loan['currency']
    balance = wallet_balance(view, investor_id, currency)
    if balance < amount:
        raise InsufficientBalance(investor_id, amount, balance)

    now = view.current_time
    unit = create_investment_unit(investment_id, loan, investor_id, amount, now)
    funded = {
        **loan,
        'funded_amount': loan['funded_amount'] + amount,
        'investments': list(loan['investments']) + [investment_id],
        'updated_at': now,
    }
    moves = [Move(amount, currency, investor_id, ESCROW_WALLET, f"invest:{investment_id}")]
    if funded['funded_amount'] == funded['amount']:
        funded = activate(funded, now)
        moves.append(disbursement(loan))

    origin = TransactionOrigin(OriginType.USER_ACTION, investor_id, loan_id, "INVEST")
    return build_transaction(view, moves, [UnitStateChange(loan_id, loan, funded)], origin, (unit,))
