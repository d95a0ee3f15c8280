"""
test_risk.py - Unit tests for loan risk assessment

Tests:
- Scorecard default probability, band and decision
- Purpose multipliers and probability clipping
- Debt-to-income without reported income
- Approval score tiers
- Service integration (profile lookup, assessment before locking)
"""

import pytest
from decimal import Decimal

from assetbridge import (
    BorrowerProfile, RiskRequest, ScorecardRiskAssessor, StaticRiskAssessor, RiskBand, AiDecision,
    InsufficientCreditLimit,
)
from assetbridge.risk import DEFAULT_TRUST_SCORE, PURPOSE_RISK_MULTIPLIERS
from tests.scenarios import collateralise, make_service


STRONG = BorrowerProfile("alice", trust_score=800, annual_income=Decimal("1200000"), kyc_verified=True)


def _request(purpose="Education", profile=STRONG, credit=Decimal("180000"), amount=Decimal("100000"), **kwargs):
    return RiskRequest("alice", amount, 12, purpose, total_credit=credit, profile=profile, **kwargs)


class TestScorecard:
    """Tests for ScorecardRiskAssessor.assess."""

    def test_strong_borrower_vehicle_loan(self):
        result = ScorecardRiskAssessor().assess(_request("Vehicle Purchase"))
        assert result.default_probability == Decimal("12.23")
        assert result.risk_band == "LOW"
        assert result.approval_score == 105
        assert result.ai_decision == "AUTO_APPROVE"

    def test_strong_borrower_education_loan_is_medium(self):
        result = ScorecardRiskAssessor().assess(_request("Education"))
        assert result.default_probability == Decimal("15.72")
        assert result.risk_band == "MEDIUM"

    def test_default_profile(self):
        """No profile: trust 550, no income, no KYC."""
        result = ScorecardRiskAssessor().assess(_request("Personal", profile=None))
        assert result.default_probability == Decimal("25.88")
        assert result.risk_band == "MEDIUM"
        assert result.approval_score == 55
        assert result.ai_decision == "REVIEW"

    def test_weak_borrower(self):
        weak = BorrowerProfile("alice", trust_score=0)
        result = ScorecardRiskAssessor().assess(_request(
            "Debt Consolidation", profile=weak, credit=Decimal("0"), active_loan_count=5,
        ))
        assert result.default_probability == Decimal("36.40")
        assert result.risk_band == "HIGH"
        assert result.approval_score == 0
        assert result.ai_decision == "REJECT"

    def test_unknown_purpose_uses_neutral_multiplier(self):
        assessor = ScorecardRiskAssessor()
        neutral = assessor.assess(_request("Business Expansion"))
        unknown = assessor.assess(_request("Holiday"))
        assert neutral.default_probability == unknown.default_probability

    def test_probability_is_clipped(self):
        assessor = ScorecardRiskAssessor(purpose_multipliers={'Huge': 10.0, 'Tiny': 0.01})
        assert assessor.assess(_request("Huge")).default_probability == Decimal("75.0")
        assert assessor.assess(_request("Tiny")).default_probability == Decimal("5.0")

    def test_default_constants(self):
        assert DEFAULT_TRUST_SCORE == 550
        assert PURPOSE_RISK_MULTIPLIERS['Debt Consolidation'] == 1.3
        assert PURPOSE_RISK_MULTIPLIERS['Vehicle Purchase'] == 0.7


class TestScorecardPieces:

    @pytest.mark.parametrize("probability,band", [
        (0.05, RiskBand.LOW), (0.15, RiskBand.LOW), (0.1501, RiskBand.MEDIUM),
        (0.35, RiskBand.MEDIUM), (0.36, RiskBand.HIGH),
    ])
    def test_bands(self, probability, band):
        assert ScorecardRiskAssessor.band_for(probability) == band

    @pytest.mark.parametrize("score,decision", [
        (100, AiDecision.AUTO_APPROVE), (70, AiDecision.AUTO_APPROVE),
        (69, AiDecision.REVIEW), (50, AiDecision.REVIEW), (49, AiDecision.REJECT),
    ])
    def test_decisions(self, score, decision):
        assert ScorecardRiskAssessor.decision_for(score) == decision

    def test_approval_score_tiers(self):
        assert ScorecardRiskAssessor.approval_score(650, 0.3, 2.5, 2, False) == 20 + 20 + 10 + 8
        assert ScorecardRiskAssessor.approval_score(500, 0.05, 10, 4, False) == 0


class TestStaticAssessor:

    def test_counts_calls(self):
        assessor = StaticRiskAssessor(RiskBand.HIGH, AiDecision.REJECT)
        result = assessor.assess(_request())
        assert (result.risk_band, result.ai_decision) == ("HIGH", "REJECT")
        assert result.default_probability is None
        assert assessor.calls == 1


class TestServiceIntegration:
    """The service consults the assessor before taking any lock."""

    def test_profile_lookup(self):
        svc = make_service(risk_assessor=ScorecardRiskAssessor(), profile_lookup={"alice": STRONG}.get)
        collateralise(svc, "alice")
        app = svc.apply_loan("alice", Decimal("100000"), 12, "Education")
        assert app.status == "LISTED_FOR_FUNDING"
        assert app.risk_band == "MEDIUM"
        assert app.default_probability == Decimal("15.72")
        assert app.approval_score == 105
        loan = svc.get_loan(app.loan_id)
        assert loan['default_probability'] == Decimal("15.72")

    def test_rejected_verdict_still_goes_to_review(self):
        untrusted = BorrowerProfile("alice", trust_score=0)
        svc = make_service(risk_assessor=ScorecardRiskAssessor(), profile_lookup={"alice": untrusted}.get)
        collateralise(svc, "alice", value=Decimal("1000"))
        app = svc.apply_loan("alice", Decimal("900"), 6, "Debt Consolidation")
        assert app.ai_decision == "REJECT"
        assert app.status == "UNDER_REVIEW"

    def test_assessed_even_when_credit_is_short(self):
        assessor = StaticRiskAssessor(RiskBand.LOW, AiDecision.AUTO_APPROVE)
        svc = make_service(risk_assessor=assessor)
        with pytest.raises(InsufficientCreditLimit):
            svc.apply_loan("alice", Decimal("100"), 6)
        assert assessor.calls == 1
