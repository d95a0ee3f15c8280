"""
recovery.py - Default & recovery resolver

When an ACTIVE loan defaults, the collateral backing it is liquidated:

    collateral_value = sum(reserved_credit / ltv_ratio)   over the loan's reservations
    recovery_amount  = min(outstanding, collateral_value * (1 - haircut))

Liquidation proceeds come from outside the platform (SYSTEM) and are paid to
investors pro rata. The reserved credit is released and permanently removed
from each locked asset's credit line; the liquidated part of each asset's
value is recorded so it can never be pledged again.

Resolving an already DEFAULTED loan is a no-op.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Dict, List

from .core import (
    LedgerView, Move, PendingTransaction, UnitStateChange, UnitState,
    TransactionOrigin, OriginType, SYSTEM_WALLET, ZERO,
    build_transaction, empty_pending_transaction, quantize_cash,
)
from .policy import LendingPolicy
from .units.asset import load_asset, load_locked_asset
from .units.investment import INVESTMENT_DEFAULTED, allocate_pro_rata, loan_investments
from .units.loan import LoanStatus, accrue_interest, check_transition, load_loan, transition


def calculate_collateral_value(reservations: Dict[str, Decimal], ltv_ratios: Dict[str, Decimal]) -> Decimal:
    """
    Collateral value backing a loan: each reserved slice of credit grossed up
    by the LTV ratio of the asset it was drawn from.
    """
    return quantize_cash(sum(
        (amount / ltv_ratios[locked_id] for locked_id, amount in reservations.items()),
        ZERO,
    ))


def calculate_recovery(outstanding: Decimal, collateral_value: Decimal, haircut: Decimal) -> Decimal:
    """
    min(outstanding, collateral_value * (1 - haircut))

    Example:
        calculate_recovery(Decimal("100000"), Decimal("200000"), Decimal("0.08"))
        # Decimal("100000")
    """
    liquidation_value = quantize_cash(collateral_value * (Decimal("1") - haircut))
    return max(ZERO, min(outstanding, liquidation_value))


def recovery_percentage(recovered: Decimal, invested: Decimal) -> Decimal:
    return quantize_cash(recovered / invested * Decimal("100"))


def liquidation_changes(view: LedgerView, reservations: Dict[str, Decimal]) -> List[UnitStateChange]:
    """
    Release the loan's reserved credit and burn it from each credit line.

    The underlying asset records the value liquidated (reserved / ltv),
    capped at what was still pledgeable.
    """
    changes = []
    for locked_id in sorted(reservations):
        reserved = reservations[locked_id]
        lock = load_locked_asset(view, locked_id)
        new_lock = {
            **lock,
            'used_credit': lock['used_credit'] - reserved,
            'credit_limit': lock['credit_limit'] - reserved,
            'liquidated_credit': lock['liquidated_credit'] + reserved,
        }
        changes.append(UnitStateChange(locked_id, lock, new_lock))

        asset = load_asset(view, lock['asset_id'])
        headroom = asset['declared_value'] - asset['liquidated_value']
        liquidated = min(headroom, quantize_cash(reserved / lock['ltv_ratio']))
        new_asset = {**asset, 'liquidated_value': asset['liquidated_value'] + liquidated}
        changes.append(UnitStateChange(asset['asset_id'], asset, new_asset))
    return changes


def compute_default(
    view: LedgerView,
    loan_id: str,
    actor_id: str,
    policy: LendingPolicy,
    origin_type: OriginType = OriginType.ADMIN_ACTION,
) -> PendingTransaction:
    """
    Default an ACTIVE loan and distribute the liquidation recovery.

    Args:
        view: Read-only ledger access
        loan_id: Loan to default
        actor_id: Admin or scheduler triggering the default
        policy: Supplies the liquidation haircut
        origin_type: ADMIN_ACTION for manual defaults, LIFECYCLE for late payment

    Returns:
        PendingTransaction with:
        - moves: SYSTEM -> each investor (their share of the recovery)
        - state_changes: loan DEFAULTED, investments DEFAULTED, locked assets
          and assets liquidated
        An empty transaction if the loan is already DEFAULTED.

    Raises:
        LoanNotFound: Unknown loan
        IllegalStateTransition: Loan is neither ACTIVE nor DEFAULTED
    """
    loan = load_loan(view, loan_id)
    if loan['status'] == LoanStatus.DEFAULTED.value:
        return empty_pending_transaction(view)
    check_transition(loan['status'], LoanStatus.DEFAULTED.value, loan_id)

    now = view.current_time
    accrued = accrue_interest(loan, now)
    outstanding = accrued['outstanding_principal'] + accrued['accrued_interest']

    reservations = loan['reservations']
    ltv_ratios = {lid: load_locked_asset(view, lid)['ltv_ratio'] for lid in reservations}
    collateral_value = calculate_collateral_value(reservations, ltv_ratios)
    recovery = calculate_recovery(outstanding, collateral_value, policy.liquidation_haircut)

    investments = loan_investments(view, loan)
    shares = allocate_pro_rata(recovery, {inv['investment_id']: inv['amount'] for inv in investments})

    moves = []
    changes = []
    for inv in investments:
        share = shares[inv['investment_id']]
        if share > ZERO:
            moves.append(Move(share, loan['currency'], SYSTEM_WALLET, inv['investor_id'],
                              f"recovery:{inv['investment_id']}"))
        defaulted_inv = {
            **inv,
            'status': INVESTMENT_DEFAULTED,
            'recovery_amount': share,
            'recovery_percentage': recovery_percentage(share, inv['amount']),
            'defaulted_at': now,
        }
        changes.append(UnitStateChange(inv['investment_id'], inv, defaulted_inv))

    changes.extend(liquidation_changes(view, reservations))

    defaulted = transition(accrued, LoanStatus.DEFAULTED, now)
    defaulted.update({
        'defaulted_at': now,
        'recovery_amount': recovery,
        'collateral_value': collateral_value,
        'written_off': outstanding - recovery,
        'next_due_date': None,
    })
    changes.insert(0, UnitStateChange(loan_id, loan, defaulted))

    origin = TransactionOrigin(origin_type, actor_id, loan_id, "DEFAULT")
    return build_transaction(view, moves, changes, origin)


def recovery_summary(loan: UnitState) -> Dict[str, Decimal]:
    """Recorded outcome of a defaulted loan."""
    return {
        'recovery_amount': loan['recovery_amount'],
        'collateral_value': loan['collateral_value'],
        'written_off': loan['written_off'],
    }
