"""
lifecycle.py - Lifecycle Engine

Drives time-based loan events. Each step():
1. Advance the store clock
2. Poll the contract of every loan (sorted by id, for reproducibility)
3. Repeat until no contract fires (one installment per loan per pass)

Contracts are executed through LendingService.run_contract, so they take
the same loan and borrower locks as user operations.

The transaction log is the audit trail - no separate event tracking.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .core import LedgerView, PendingTransaction, OriginType, UNIT_TYPE_LOAN, empty_pending_transaction
from .policy import LendingPolicy
from .recovery import compute_default
from .service import LendingService, LoanContract
from .units.loan import LoanStatus, load_loan
from .units.repayment import compute_installment_due, load_repayment


def is_overdue(view: LedgerView, loan: dict, timestamp: datetime, grace_period_days: int) -> bool:
    """True if the oldest unpaid installment is past its due date plus grace."""
    if not loan['open_installments']:
        return False
    oldest = load_repayment(view, loan['open_installments'][0])
    return timestamp > oldest['due_date'] + timedelta(days=grace_period_days)


def loan_contract(view: LedgerView, loan_id: str, timestamp: datetime, policy: LendingPolicy) -> PendingTransaction:
    """
    Late-payment policy for an ACTIVE loan.

    Defaults the loan when an installment is overdue beyond the grace
    period; otherwise issues the next installment once it is due.
    """
    loan = load_loan(view, loan_id)
    if loan['status'] != LoanStatus.ACTIVE.value:
        return empty_pending_transaction(view)
    if is_overdue(view, loan, timestamp, policy.grace_period_days):
        return compute_default(view, loan_id, "scheduler", policy, OriginType.LIFECYCLE)
    return compute_installment_due(view, loan_id)


class LifecycleEngine:
    """
    Example:
        engine = LifecycleEngine(service)
        engine.step(datetime(2025, 2, 1))      # issues installments now due
    """

    def __init__(
        self,
        service: LendingService,
        contracts: Optional[Dict[str, LoanContract]] = None,
        verbose: Optional[bool] = None,
    ):
        self.service = service
        self.store = service.store
        self.contracts: Dict[str, LoanContract] = (
            {UNIT_TYPE_LOAN: loan_contract} if contracts is None else dict(contracts)
        )

        # Safety limit for cascading events
        self.max_passes = 50
        self.verbose = service.verbose if verbose is None else verbose

    def register(self, unit_type: str, contract: LoanContract) -> None:
        self.contracts[unit_type] = contract

    def step(self, timestamp: datetime) -> List[PendingTransaction]:
        """
        Advance time and execute every lifecycle event due.

        Returns:
            Transactions committed during this step, in order
        """
        self.store.advance_time(timestamp)
        executed: List[PendingTransaction] = []

        for _ in range(self.max_passes):
            pass_executed = self._poll_contracts()
            executed.extend(pass_executed)
            if not pass_executed:
                break

        return executed

    def _poll_contracts(self) -> List[PendingTransaction]:
        executed = []
        for unit_type in sorted(self.contracts):
            contract = self.contracts[unit_type]
            for symbol in self.store.list_units(unit_type):
                committed = self.service.run_contract(symbol, contract)
                if committed is None:
                    continue
                if self.verbose:
                    print(f"[LIFECYCLE] {symbol}: {committed.origin.event_type}")
                executed.append(committed)
        return executed

    def run(self, timestamps: List[datetime]) -> List[PendingTransaction]:
        all_transactions = []
        for timestamp in timestamps:
            all_transactions.extend(self.step(timestamp))
        return all_transactions
