"""
guard.py - Ledger consistency guard

Per-entity rules (credit bounds, the loan transition graph, immutable
terminal records) are enforced at commit time by each unit's state_rule.
This module checks the cross-entity invariants that no single record can
see:

    per user:   Σ used_credit <= Σ credit_limit
    per loan:   Σ investments <= amount, and == amount once funded
    per lock:   used_credit == Σ reservations held by open loans
    per loan:   status history follows the transition graph
    escrow:     == funds held for loans still LISTED_FOR_FUNDING
    cash:       no participant below zero

and money conservation: circulating cash (participants + escrow) changes
only through flows to or from the SYSTEM wallet.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List

from .core import (
    LedgerView, PendingTransaction, InvariantViolation,
    ESCROW_WALLET, SYSTEM_WALLET, UNIT_TYPE_INVESTMENT, UNIT_TYPE_LOCKED_ASSET, ZERO,
)
from .units.asset import LOCK_STATUS_ACTIVE
from .units.loan import FUNDED_STATUSES, OPEN_STATUSES, LoanStatus, is_legal_history, list_loans


@dataclass(frozen=True, slots=True)
class MoneySnapshot:
    participants: Decimal
    escrow: Decimal
    external: Decimal

    @property
    def circulating(self) -> Decimal:
        return self.participants + self.escrow


def check_invariants(view: LedgerView, currency: str) -> List[str]:
    """Return a description of every violated invariant (empty when consistent)."""
    violations: List[str] = []

    locks = [view.get_unit_state(s) for s in view.list_units(UNIT_TYPE_LOCKED_ASSET)]
    per_user_limit: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    per_user_used: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for lock in locks:
        if lock['status'] != LOCK_STATUS_ACTIVE:
            continue
        per_user_limit[lock['user_id']] += lock['credit_limit']
        per_user_used[lock['user_id']] += lock['used_credit']
    for user in sorted(per_user_used):
        if per_user_used[user] > per_user_limit[user]:
            violations.append(
                f"user {user}: used credit {per_user_used[user]} exceeds limit {per_user_limit[user]}"
            )

    invested: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for symbol in view.list_units(UNIT_TYPE_INVESTMENT):
        inv = view.get_unit_state(symbol)
        invested[inv['loan_id']] += inv['amount']

    reserved: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    held_in_escrow = ZERO
    for loan in list_loans(view):
        loan_id = loan['loan_id']
        total = invested[loan_id]
        if total != loan['funded_amount']:
            violations.append(f"loan {loan_id}: investments {total} != funded_amount {loan['funded_amount']}")
        if total > loan['amount']:
            violations.append(f"loan {loan_id}: over-funded ({total} > {loan['amount']})")
        if loan['status'] in FUNDED_STATUSES and total != loan['amount']:
            violations.append(f"loan {loan_id}: {loan['status']} but funded {total} of {loan['amount']}")
        if not is_legal_history(loan['status_history']):
            violations.append(f"loan {loan_id}: illegal status history")
        elif loan['status_history'][-1]['status'] != loan['status']:
            violations.append(f"loan {loan_id}: history ends at {loan['status_history'][-1]['status']}")
        if loan['status'] in OPEN_STATUSES:
            if sum(loan['reservations'].values(), ZERO) != loan['amount']:
                violations.append(f"loan {loan_id}: reservations do not cover amount {loan['amount']}")
            for locked_id, amount in loan['reservations'].items():
                reserved[locked_id] += amount
        if loan['status'] == LoanStatus.LISTED_FOR_FUNDING.value:
            held_in_escrow += loan['funded_amount']

    for lock in locks:
        expected = reserved.get(lock['locked_asset_id'], ZERO)
        if lock['used_credit'] != expected:
            violations.append(
                f"lock {lock['locked_asset_id']}: used_credit {lock['used_credit']} != reserved {expected}"
            )

    wallets = view.list_wallets()
    escrow = view.get_balance(ESCROW_WALLET, currency) if ESCROW_WALLET in wallets else ZERO
    if escrow != held_in_escrow:
        violations.append(f"escrow holds {escrow}, expected {held_in_escrow}")

    for wallet in sorted(wallets - {SYSTEM_WALLET}):
        balance = view.get_balance(wallet, currency)
        if balance < ZERO:
            violations.append(f"wallet {wallet}: negative balance {balance}")

    return violations


def assert_invariants(view: LedgerView, currency: str) -> None:
    """
    Raises:
        InvariantViolation: listing every violated invariant
    """
    violations = check_invariants(view, currency)
    if violations:
        raise InvariantViolation("; ".join(violations))


def money_snapshot(view: LedgerView, currency: str) -> MoneySnapshot:
    participants = ZERO
    escrow = ZERO
    external = ZERO
    for wallet in view.list_wallets():
        balance = view.get_balance(wallet, currency)
        if wallet == SYSTEM_WALLET:
            external += balance
        elif wallet == ESCROW_WALLET:
            escrow += balance
        else:
            participants += balance
    return MoneySnapshot(participants, escrow, external)


def external_flow(pending: PendingTransaction, currency: str) -> Decimal:
    """Net cash entering circulation from SYSTEM (negative when leaving)."""
    flow = ZERO
    for move in pending.moves:
        if move.unit_symbol != currency:
            continue
        if move.source == SYSTEM_WALLET:
            flow += move.quantity
        if move.dest == SYSTEM_WALLET:
            flow -= move.quantity
    return flow


def verify_conservation(before: MoneySnapshot, after: MoneySnapshot, flow: Decimal) -> None:
    """
    Raises:
        InvariantViolation: If circulating money changed by anything but flow
    """
    expected = before.circulating + flow
    if after.circulating != expected:
        raise InvariantViolation(
            f"money not conserved: circulating {after.circulating}, expected {expected}"
        )
    if before.participants + before.escrow + before.external != after.participants + after.escrow + after.external:
        raise InvariantViolation("double entry broken: total supply changed")
