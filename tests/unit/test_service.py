"""
test_service.py - Unit tests for the LendingService surface

Tests:
- Deposits, withdrawals and balances
- Role checks through an Authorizer
- Funding opportunity filters and sort orders
- Investor portfolio aggregation
- Query helpers (EMI, schedule, credit summary)
- Id generation
- Verbose output
"""

import pytest
from datetime import datetime
from decimal import Decimal

from assetbridge import (
    LendingService, RoleAuthorizer, Role, StaticRiskAssessor, RiskBand, AiDecision,
    InsufficientBalance, NotAuthorized, ValidationError, LoanNotFound,
)
from assetbridge.service import SequentialIds
from tests.scenarios import T0, INR, active_loan, collateralise, listed_loan, make_service


class TestCash:
    """Deposits and withdrawals cross the platform boundary through SYSTEM."""

    def test_deposit(self, service):
        assert service.deposit("bob", Decimal("1000")) == Decimal("1000")
        assert service.get_balance("bob") == Decimal("1000")
        assert service.store.total_supply(INR) == Decimal("0")

    def test_deposit_reference_is_idempotent(self, service):
        service.deposit("bob", Decimal("1000"), reference="bank-42")
        assert service.deposit("bob", Decimal("1000"), reference="bank-42") == Decimal("1000")
        assert len(service.store.transaction_log) == 1

    def test_distinct_deposits_accumulate(self, service):
        service.deposit("bob", Decimal("1000"))
        service.deposit("bob", Decimal("1000"))
        assert service.get_balance("bob") == Decimal("2000")

    def test_services_sharing_a_store_keep_every_deposit(self, service):
        restarted = LendingService(service.store, service.policy, StaticRiskAssessor())
        service.deposit("bob", Decimal("500"))
        assert restarted.deposit("bob", Decimal("500")) == Decimal("1000")
        restarted.withdraw("bob", Decimal("200"))
        service.withdraw("bob", Decimal("200"))
        assert service.get_balance("bob") == Decimal("600")
        assert len(service.store.transaction_log) == 4

    def test_unreferenced_deposit_never_collides_with_a_caller_reference(self, service):
        service.deposit("bob", Decimal("500"), reference="DEP-000002")
        assert service.deposit("bob", Decimal("500")) == Decimal("1000")
        assert service.deposit("bob", Decimal("500"), reference="DEP-000002") == Decimal("1000")

    @pytest.mark.parametrize("amount", ["0.001", "100.005"])
    def test_sub_cent_amounts_are_refused(self, service, amount):
        with pytest.raises(ValidationError):
            service.deposit("bob", Decimal(amount))
        assert service.store.transaction_log == []

    def test_withdraw(self, service):
        service.deposit("bob", Decimal("100"))
        assert service.withdraw("bob", Decimal("30")) == Decimal("70")

    def test_overdraw(self, service):
        service.deposit("bob", Decimal("100"))
        with pytest.raises(InsufficientBalance):
            service.withdraw("bob", Decimal("100.01"))

    def test_withdraw_without_wallet(self, service):
        with pytest.raises(InsufficientBalance):
            service.withdraw("ghost", Decimal("1"))

    def test_balance_of_unknown_user_is_zero(self, service):
        assert service.get_balance("ghost") == Decimal("0")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1")])
    def test_non_positive_deposit(self, service, amount):
        with pytest.raises(ValidationError):
            service.deposit("bob", amount)


class TestAuthorization:
    """Operations are gated by role when an Authorizer is configured."""

    @pytest.fixture
    def secured(self):
        auth = RoleAuthorizer({
            "alice": {Role.BORROWER},
            "bob": {Role.INVESTOR},
            "root": {Role.ADMIN},
        })
        return make_service(decision=AiDecision.REVIEW, authorizer=auth)

    def test_borrower_flow(self, secured):
        collateralise(secured, "alice")
        app = secured.apply_loan("alice", Decimal("1000"), 6)
        assert secured.admin_approve(app.loan_id, "root") == "LISTED_FOR_FUNDING"
        secured.deposit("bob", Decimal("1000"))
        assert secured.invest(app.loan_id, "bob").loan_status == "ACTIVE"

    def test_investor_cannot_borrow(self, secured):
        with pytest.raises(NotAuthorized):
            secured.declare_asset("bob", "FD", Decimal("1000"))

    def test_borrower_cannot_approve(self, secured):
        collateralise(secured, "alice")
        app = secured.apply_loan("alice", Decimal("1000"), 6)
        with pytest.raises(NotAuthorized):
            secured.admin_approve(app.loan_id, "alice")
        assert secured.get_loan(app.loan_id)['status'] == "UNDER_REVIEW"

    def test_borrower_cannot_invest(self, secured):
        with pytest.raises(NotAuthorized):
            secured.invest("LN-0001", "alice")

    def test_role_table(self):
        auth = RoleAuthorizer()
        auth.grant("carol", Role.BORROWER, "INVESTOR")
        assert auth.roles_of("carol") == {Role.BORROWER, Role.INVESTOR}
        auth.revoke("carol", Role.BORROWER)
        with pytest.raises(NotAuthorized):
            auth.require("carol", Role.BORROWER)
        auth.require("carol", Role.INVESTOR)


class TestFundingOpportunities:

    @pytest.fixture
    def market(self, service):
        """Three listed loans applied on consecutive days."""
        collateralise(service, "alice", value=Decimal("1000000"))
        ids = []
        for day, (amount, tenure) in enumerate([(100000, 12), (300000, 24), (50000, 6)], start=1):
            service.store.advance_time(datetime(2025, 1, day))
            ids.append(service.apply_loan("alice", Decimal(amount), tenure).loan_id)
        return ids

    @pytest.mark.parametrize("sort_by,order", [
        ("newest", [2, 1, 0]),
        ("amount-high", [1, 0, 2]),
        ("amount-low", [2, 0, 1]),
        ("return-high", [1, 0, 2]),
        ("return-low", [2, 0, 1]),
    ])
    def test_sort_orders(self, service, market, sort_by, order):
        listed = service.list_funding_opportunities(sort_by=sort_by)
        assert [o.loan_id for o in listed] == [market[i] for i in order]

    def test_amount_filters(self, service, market):
        assert [o.loan_id for o in service.list_funding_opportunities(min_amount=60000)] == [market[1], market[0]]
        assert [o.loan_id for o in service.list_funding_opportunities(max_amount=100000)] == [market[2], market[0]]

    def test_risk_band_filter(self, service, market):
        assert len(service.list_funding_opportunities(risk_band=RiskBand.LOW)) == 3
        assert service.list_funding_opportunities(risk_band="HIGH") == []

    def test_opportunity_fields(self, service, market):
        [first] = [o for o in service.list_funding_opportunities() if o.loan_id == market[0]]
        assert first.emi_amount == Decimal("8884.88")
        assert first.expected_return_percentage == Decimal("6.62")
        assert first.remaining == Decimal("100000")

    def test_funded_loans_disappear(self, service, market):
        service.deposit("bob", Decimal("100000"))
        service.invest(market[0], "bob")
        assert market[0] not in [o.loan_id for o in service.list_funding_opportunities()]

    def test_unknown_sort(self, service):
        with pytest.raises(ValidationError):
            service.list_funding_opportunities(sort_by="random")


class TestPortfolio:

    def test_aggregates(self, service):
        repaid = active_loan(service, "alice", "bob")
        defaulted = active_loan(service, "dave", "bob")
        service.repay(repaid, "alice", Decimal("100000"))
        service.mark_defaulted(defaulted, "admin")
        portfolio = service.investor_portfolio("bob")
        assert portfolio.total_invested == Decimal("200000")
        assert portfolio.completed_count == 1
        assert portfolio.defaulted_count == 1
        assert portfolio.active_count == 0
        assert portfolio.total_recovered == Decimal("100000")

    def test_empty(self, service):
        portfolio = service.investor_portfolio("nobody")
        assert portfolio.investments == []
        assert portfolio.total_invested == Decimal("0")


class TestQueries:

    def test_calculate_emi(self, service):
        assert service.calculate_emi(Decimal("100000"), 12).emi == Decimal("8884.88")
        assert service.calculate_emi(Decimal("1200"), 12, Decimal("0")).emi == Decimal("100.00")

    def test_loan_schedule(self, service):
        loan_id = listed_loan(service)
        schedule = service.loan_schedule(loan_id)
        assert len(schedule) == 12
        assert schedule[0].interest == Decimal("1000.00")

    def test_credit_summary(self, service):
        listed_loan(service, amount=Decimal("30000"))
        summary = service.get_credit_summary("alice")
        assert (summary.total, summary.used, summary.available) == (
            Decimal("180000.00"), Decimal("30000"), Decimal("150000.00"),
        )

    def test_unknown_loan(self, service):
        with pytest.raises(LoanNotFound):
            service.get_loan("LN-404")
        with pytest.raises(LoanNotFound):
            service.loan_repayments("LN-404")


class TestAuditTrail:

    def test_loan_events_in_order(self, service):
        loan_id = active_loan(service)
        service.store.advance_time(datetime(2025, 2, 1))
        service.repay(loan_id, "alice", Decimal("5000"))
        events = [tx.origin.event_type for tx in service.audit_trail(loan_id)]
        assert events == ["APPLY", "INVEST", "REPAY"]

    def test_audit_lines(self, service):
        loan_id = active_loan(service)
        invest_tx = service.audit_trail(loan_id)[-1]
        lines = invest_tx.audit_lines()
        assert lines[0].startswith("Transaction(#")
        assert any("bob -> escrow: 100000" in line for line in lines)
        assert any(f"{loan_id}.status: 'LISTED_FOR_FUNDING' -> 'ACTIVE'" in line for line in lines)

    def test_verbose_ledger_prints_audit_lines(self, capsys):
        svc = make_service()
        svc.store.verbose = True
        svc.deposit("bob", Decimal("10"), reference="wire-1")
        out = capsys.readouterr().out
        assert "APPLIED Transaction(#" in out
        assert "system -> bob: 10" in out


class TestIds:

    def test_sequential(self, service):
        ids = SequentialIds(service.store)
        assert ids("LN") == "LN-0001"
        assert ids("LN") == "LN-0002"
        assert ids("INV") == "INV-0001"

    def test_skips_existing_units(self, service):
        first = service.declare_asset("alice", "FD", Decimal("1000"))
        second_service = LendingService(service.store, service.policy, StaticRiskAssessor())
        assert first == "AST-0001"
        assert second_service.declare_asset("alice", "FD", Decimal("1000")) == "AST-0002"

    def test_custom_id_factory(self):
        svc = make_service(id_factory=lambda prefix: f"{prefix.lower()}-x")
        assert svc.declare_asset("alice", "GOLD", Decimal("10")) == "ast-x"


class TestVerbose:

    def test_prints_operations(self, capsys):
        svc = make_service(verbose=True)
        collateralise(svc, "alice")
        out = capsys.readouterr().out
        assert "[LOCK]" in out
        assert "credit limit 180000.00" in out
