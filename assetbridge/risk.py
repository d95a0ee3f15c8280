"""
risk.py - Loan risk assessment

The lending core treats risk scoring as an external collaborator: anything
with an assess(RiskRequest) -> RiskAssessment method will do. Assessment
runs before any per-entity lock is taken.

ScorecardRiskAssessor is the platform's default scorecard:

    default_probability = 0.15
        + trust term + collateral term + debt-to-income term
        + active-loans term + KYC term
    default_probability *= purpose multiplier, clipped to [0.05, 0.75]

    risk band: LOW <= 15% < MEDIUM <= 35% < HIGH

    approval score (0-100): trust, collateral ratio, debt-to-income,
    active loans and KYC tiers
    AUTO_APPROVE >= 70, REVIEW >= 50, REJECT otherwise
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional, Protocol, Sequence

import numpy as np

from .units.loan import AiDecision, RiskBand


DEFAULT_TRUST_SCORE = 550

PURPOSE_RISK_MULTIPLIERS = {
    'Business Expansion': 1.0,
    'Personal': 1.2,
    'Home Improvement': 0.8,
    'Education': 0.9,
    'Medical': 1.1,
    'Vehicle Purchase': 0.7,
    'Debt Consolidation': 1.3,
}

# Debt-to-income used when the borrower reports no income.
NO_INCOME_DTI = 999.0


@dataclass(frozen=True, slots=True)
class BorrowerProfile:
    user_id: str
    trust_score: int = DEFAULT_TRUST_SCORE
    annual_income: Decimal = Decimal("0")
    kyc_verified: bool = False


@dataclass(frozen=True, slots=True)
class RiskRequest:
    """Everything a scorer may look at for one application."""
    borrower_id: str
    amount: Decimal
    tenure_months: int
    purpose: str
    total_credit: Decimal
    active_loan_count: int = 0
    active_loans_total: Decimal = Decimal("0")
    profile: Optional[BorrowerProfile] = None


@dataclass(frozen=True, slots=True)
class RiskAssessment:
    risk_band: str
    ai_decision: str
    default_probability: Optional[Decimal] = None  # percent, 2 decimals
    approval_score: Optional[int] = None


class RiskAssessor(Protocol):
    def assess(self, request: RiskRequest) -> RiskAssessment:
        ...


ProfileLookup = Callable[[str], Optional[BorrowerProfile]]


def _tier(value: float, thresholds: Sequence[float], points: Sequence[float], default: float,
          ascending: bool = True) -> float:
    """
    Points for the first threshold the value clears.

    ascending=True means "value >= threshold" (bigger is better);
    False means "value <= threshold".
    """
    v = np.asarray(value, dtype=float)
    conditions = [v >= t for t in thresholds] if ascending else [v <= t for t in thresholds]
    return float(np.select(conditions, points, default=default))


class ScorecardRiskAssessor:
    """
    Rule-based scorecard.

    Example:
        assessor = ScorecardRiskAssessor()
        result = assessor.assess(RiskRequest("alice", Decimal("50000"), 12, "Education",
                                             total_credit=Decimal("90000")))
        result.risk_band, result.ai_decision
    """

    def __init__(self, purpose_multipliers=None, min_probability: float = 0.05,
                 max_probability: float = 0.75):
        self.purpose_multipliers = dict(purpose_multipliers or PURPOSE_RISK_MULTIPLIERS)
        self.min_probability = min_probability
        self.max_probability = max_probability

    def default_probability(self, trust: float, collateral_ratio: float, dti: float,
                            active_loans: int, kyc: bool, purpose: str) -> float:
        terms = np.array([
            max(0.0, 100.0 - trust / 10.0) * 0.0005,
            _tier(collateral_ratio, [0.5, 0.25], [5, 15], 35) * 0.0008,
            _tier(dti, [3, 5], [10, 25], 50, ascending=False) * 0.0006,
            _tier(active_loans, [2, 4], [8, 20], 40, ascending=False) * 0.0004,
            (5 if kyc else 20) * 0.0003,
        ])
        probability = (0.15 + terms.sum()) * self.purpose_multipliers.get(purpose, 1.0)
        return float(np.clip(probability, self.min_probability, self.max_probability))

    @staticmethod
    def approval_score(trust: float, collateral_ratio: float, dti: float,
                       active_loans: int, kyc: bool) -> int:
        score = (
            _tier(trust, [750, 650, 550], [30, 20, 10], 0)
            + _tier(collateral_ratio, [0.5, 0.3, 0.1], [30, 20, 10], 0)
            + _tier(dti, [2, 3], [20, 10], 0, ascending=False)
            + _tier(active_loans, [1, 3], [15, 8], 0, ascending=False)
            + (10 if kyc else 0)
        )
        return int(score)

    @staticmethod
    def band_for(probability: float) -> RiskBand:
        if probability <= 0.15:
            return RiskBand.LOW
        if probability <= 0.35:
            return RiskBand.MEDIUM
        return RiskBand.HIGH

    @staticmethod
    def decision_for(score: int) -> AiDecision:
        if score >= 70:
            return AiDecision.AUTO_APPROVE
        if score >= 50:
            return AiDecision.REVIEW
        return AiDecision.REJECT

    def assess(self, request: RiskRequest) -> RiskAssessment:
        profile = request.profile or BorrowerProfile(request.borrower_id)
        amount = float(request.amount)
        monthly_income = float(profile.annual_income) / 12.0
        dti = (
            (float(request.active_loans_total) + amount) / monthly_income
            if monthly_income > 0 else NO_INCOME_DTI
        )
        collateral_ratio = float(request.total_credit) / amount if amount > 0 else 0.0
        trust = float(profile.trust_score)

        probability = self.default_probability(
            trust, collateral_ratio, dti, request.active_loan_count, profile.kyc_verified, request.purpose
        )
        score = self.approval_score(trust, collateral_ratio, dti, request.active_loan_count, profile.kyc_verified)
        return RiskAssessment(
            risk_band=self.band_for(probability).value,
            ai_decision=self.decision_for(score).value,
            default_probability=Decimal(str(round(probability * 100, 2))),
            approval_score=score,
        )


class StaticRiskAssessor:
    """Always returns the same verdict. Useful for tests and manual review queues."""

    def __init__(self, risk_band=RiskBand.MEDIUM, ai_decision=AiDecision.REVIEW):
        self.risk_band = getattr(risk_band, 'value', risk_band)
        self.ai_decision = getattr(ai_decision, 'value', ai_decision)
        self.calls = 0

    def assess(self, request: RiskRequest) -> RiskAssessment:
        self.calls += 1
        return RiskAssessment(risk_band=self.risk_band, ai_decision=self.ai_decision)
