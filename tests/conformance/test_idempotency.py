"""
Idempotency Conformance Tests

INVARIANT: Re-submitting the same intent has no additional effect.

    ∀ transaction T:
        execute(T); execute(T) ≡ execute(T)

The store identifies intent by a content hash (intent_id) that ignores
timestamps. A transaction computed from a record that has since changed
is refused as a CONFLICT rather than applied twice.
"""

from datetime import datetime
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from assetbridge import ExecuteResult, LendingPolicy, StaleState
from assetbridge.units.investment import compute_investment
from tests.scenarios import INR, active_loan, listed_loan, make_service, snapshot


REFERENCES = {f"ref-{i}": Decimal(100 * i) for i in range(1, 6)}


class TestIdempotencyProperties:

    @given(st.lists(st.sampled_from(sorted(REFERENCES)), min_size=1, max_size=20))
    @settings(max_examples=50, deadline=None)
    def test_deposit_reference_applies_once(self, references):
        """
        PROPERTY: The balance equals the sum over distinct references,
        however often each is re-submitted.
        """
        service = make_service()
        for reference in references:
            service.deposit("bob", REFERENCES[reference], reference=reference)
        expected = sum((REFERENCES[r] for r in set(references)), Decimal("0"))
        assert service.get_balance("bob") == expected
        assert len(service.store.transaction_log) == len(set(references))


class TestIdempotencyExamples:

    def test_same_pending_twice(self, partial_service):
        svc = partial_service
        loan_id = listed_loan(svc)
        svc.deposit("bob", Decimal("50000"))
        pending = compute_investment(svc.store, loan_id, "bob", "INV-0100", svc.policy, Decimal("20000"))

        assert svc.store.execute(pending) == ExecuteResult.APPLIED
        after_first = snapshot(svc.store)
        assert svc.store.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert snapshot(svc.store) == after_first
        assert svc.get_balance("bob") == Decimal("30000")

    def test_stale_pending_conflicts(self, partial_service):
        """A transaction computed before another investment landed is refused."""
        svc = partial_service
        loan_id = listed_loan(svc)
        svc.deposit("bob", Decimal("50000"))
        svc.deposit("carol", Decimal("50000"))
        stale = compute_investment(svc.store, loan_id, "bob", "INV-0100", svc.policy, Decimal("20000"))
        svc.invest(loan_id, "carol", Decimal("10000"))
        before = snapshot(svc.store)

        assert svc.store.execute(stale) == ExecuteResult.CONFLICT
        assert snapshot(svc.store) == before
        with pytest.raises(StaleState):
            svc._commit(stale)

    def test_same_deposit_different_amount_is_new(self, service):
        service.deposit("bob", Decimal("100"), reference="wire-1")
        service.deposit("bob", Decimal("200"), reference="wire-1")
        assert service.get_balance("bob") == Decimal("300")

    def test_default_twice(self, service):
        loan_id = active_loan(service)
        first = service.mark_defaulted(loan_id, "admin")
        before = snapshot(service.store)
        second = service.mark_defaulted(loan_id, "admin")

        assert not first.already_defaulted
        assert second.already_defaulted
        assert second.recovery_amount == first.recovery_amount
        assert snapshot(service.store) == before

    def test_engine_step_repeated(self, service, engine):
        active_loan(service)
        assert len(engine.step(datetime(2025, 2, 1))) == 1
        assert engine.step(datetime(2025, 2, 1)) == []
        assert service.store.get_balance("alice", INR) == Decimal("100000")

    def test_guarded_duplicate_is_silent(self):
        svc = make_service(LendingPolicy(check_invariants=True))
        svc.deposit("bob", Decimal("100"), reference="wire-9")
        svc.deposit("bob", Decimal("100"), reference="wire-9")
        assert svc.get_balance("bob") == Decimal("100")
