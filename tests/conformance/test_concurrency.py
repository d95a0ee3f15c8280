"""
Concurrency Conformance Tests

INVARIANT: Parallel callers observe serialized effects.

    ∀ operations O1 ∥ O2 touching the same loan or user:
        the ledger ends as if O1 and O2 had run one after the other

Each test starts its threads behind a Barrier so they contend for the
same per-entity locks.
"""

import threading
from decimal import Decimal

from assetbridge import InsufficientCreditLimit, LoanNotFundable, LedgerError, check_invariants
from tests.scenarios import INR, active_loan, collateralise, listed_loan


def run_concurrently(*calls):
    """Run each call in its own thread; returns (results, errors)."""
    barrier = threading.Barrier(len(calls))
    results, errors = [], []
    guard = threading.Lock()

    def worker(call):
        barrier.wait()
        try:
            outcome = call()
        except LedgerError as e:
            with guard:
                errors.append(e)
        else:
            with guard:
                results.append(outcome)

    threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    return results, errors


class TestConcurrentFunding:

    def test_double_invest_funds_once(self, service):
        loan_id = listed_loan(service)
        service.deposit("bob", Decimal("100000"))
        service.deposit("carol", Decimal("100000"))

        results, errors = run_concurrently(
            lambda: service.invest(loan_id, "bob"),
            lambda: service.invest(loan_id, "carol"),
        )

        assert len(results) == 1
        assert len(errors) == 1 and isinstance(errors[0], LoanNotFundable)
        assert service.get_balance("bob") + service.get_balance("carol") == Decimal("100000")
        assert service.get_loan(loan_id)['funded_amount'] == Decimal("100000")
        assert check_invariants(service.store, INR) == []

    def test_partial_investments_never_overfund(self, partial_service):
        loan_id = listed_loan(partial_service)
        investors = ["bob", "carol", "dave", "erin"]
        for investor in investors:
            partial_service.deposit(investor, Decimal("40000"))

        results, errors = run_concurrently(
            *[lambda i=i: partial_service.invest(loan_id, i, Decimal("40000")) for i in investors]
        )

        # 40000 + 40000 fit, a third tranche exceeds the remaining 20000
        assert len(results) == 2
        assert len(errors) == 2
        assert partial_service.get_loan(loan_id)['funded_amount'] == Decimal("80000")
        assert check_invariants(partial_service.store, INR) == []


class TestConcurrentCredit:

    def test_over_limit_applications(self, service):
        collateralise(service, "alice")

        results, errors = run_concurrently(
            lambda: service.apply_loan("alice", Decimal("100000"), 12),
            lambda: service.apply_loan("alice", Decimal("100000"), 12),
        )

        assert len(results) == 1
        assert len(errors) == 1 and isinstance(errors[0], InsufficientCreditLimit)
        assert service.get_available_credit("alice") == Decimal("80000")

    def test_distinct_loan_ids(self, service):
        for user in ("alice", "dave", "erin"):
            collateralise(service, user)

        results, errors = run_concurrently(
            *[lambda u=u: service.apply_loan(u, Decimal("50000"), 12) for u in ("alice", "dave", "erin")]
        )

        assert errors == []
        assert len({r.loan_id for r in results}) == 3


class TestConcurrentCash:

    def test_parallel_deposits(self, service):
        results, errors = run_concurrently(
            *[lambda n=n: service.deposit("bob", Decimal("10"), reference=f"wire-{n}") for n in range(8)]
        )
        assert errors == []
        assert service.get_balance("bob") == Decimal("80")

    def test_parallel_repayments(self, service):
        loan_id = active_loan(service)
        results, errors = run_concurrently(
            lambda: service.repay(loan_id, "alice", Decimal("30000")),
            lambda: service.repay(loan_id, "alice", Decimal("30000")),
        )
        assert errors == []
        assert service.get_outstanding(loan_id) == Decimal("40000")
        assert service.get_balance("bob") == Decimal("60000")
        assert check_invariants(service.store, INR) == []

    def test_withdrawals_cannot_overdraw(self, service):
        service.deposit("bob", Decimal("100"))
        results, errors = run_concurrently(
            lambda: service.withdraw("bob", Decimal("70")),
            lambda: service.withdraw("bob", Decimal("70")),
        )
        assert len(results) == 1 and len(errors) == 1
        assert service.get_balance("bob") == Decimal("30")
