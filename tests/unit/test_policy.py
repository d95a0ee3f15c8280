"""
test_policy.py - Unit tests for LendingPolicy

Tests:
- Defaults
- LTV lookup and unsupported asset types
- Validation of every tunable
- Amount and tenure parsing
"""

import pytest
from decimal import Decimal

from assetbridge import LendingPolicy, AssetType, DEFAULT_LTV_RATIOS, ValidationError
from assetbridge.policy import parse_amount, parse_tenure


class TestDefaults:

    def test_defaults(self):
        policy = LendingPolicy()
        assert policy.currency == "INR"
        assert policy.annual_interest_rate == Decimal("12")
        assert policy.liquidation_haircut == Decimal("0.08")
        assert policy.grace_period_days == 30
        assert policy.allow_partial_funding is False
        assert policy.check_invariants is False

    def test_ltv_table(self):
        assert DEFAULT_LTV_RATIOS == {
            'FD': Decimal("0.90"), 'STOCK': Decimal("0.70"), 'GOLD': Decimal("0.75"),
            'PROPERTY': Decimal("0.60"), 'MUTUAL_FUND': Decimal("0.65"),
        }

    def test_ltv_for_accepts_enum_and_string(self):
        policy = LendingPolicy()
        assert policy.ltv_for(AssetType.GOLD) == Decimal("0.75")
        assert policy.ltv_for("GOLD") == Decimal("0.75")

    def test_unsupported_asset_type(self):
        with pytest.raises(ValidationError, match="Unsupported asset type"):
            LendingPolicy().ltv_for("CRYPTO")

    def test_overrides(self):
        policy = LendingPolicy().with_overrides(grace_period_days=10, liquidation_haircut="0.1")
        assert policy.grace_period_days == 10
        assert policy.liquidation_haircut == Decimal("0.1")

    def test_policy_is_frozen(self):
        with pytest.raises(AttributeError):
            LendingPolicy().currency = "USD"


class TestValidation:

    @pytest.mark.parametrize("kwargs", [
        dict(currency=""),
        dict(ltv_ratios={'FD': Decimal("0")}),
        dict(ltv_ratios={'FD': Decimal("1.1")}),
        dict(annual_interest_rate=Decimal("-1")),
        dict(liquidation_haircut=Decimal("1")),
        dict(liquidation_haircut=Decimal("-0.01")),
        dict(grace_period_days=-1),
        dict(lock_timeout=0),
    ])
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ValueError):
            LendingPolicy(**kwargs)

    def test_ratios_are_coerced_to_decimal(self):
        policy = LendingPolicy(ltv_ratios={'FD': 0.5})
        assert policy.ltv_for("FD") == Decimal("0.5")


class TestParsing:

    def test_parse_amount(self):
        assert parse_amount("100.50") == Decimal("100.50")
        assert parse_amount(0, allow_zero=True) == Decimal("0")

    @pytest.mark.parametrize("value", [0, -1, "x", None, "100.005", 0.001])
    def test_parse_amount_rejects(self, value):
        with pytest.raises(ValidationError):
            parse_amount(value)

    @pytest.mark.parametrize("value", [0, -12, 1.5, "12", True])
    def test_parse_tenure_rejects(self, value):
        with pytest.raises(ValidationError):
            parse_tenure(value)

    def test_parse_tenure(self):
        assert parse_tenure(36) == 36
