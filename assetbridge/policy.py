"""
policy.py - Lending policy (every tunable number in one frozen dataclass)

The service and the compute_* functions never read module-level
configuration; a LendingPolicy instance is passed in explicitly.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Mapping

from .core import ValidationError, quantize_cash, to_decimal


class AssetType(str, Enum):
    FD = "FD"
    STOCK = "STOCK"
    GOLD = "GOLD"
    PROPERTY = "PROPERTY"
    MUTUAL_FUND = "MUTUAL_FUND"


DEFAULT_LTV_RATIOS: Mapping[str, Decimal] = {
    AssetType.FD.value: Decimal("0.90"),
    AssetType.STOCK.value: Decimal("0.70"),
    AssetType.GOLD.value: Decimal("0.75"),
    AssetType.PROPERTY.value: Decimal("0.60"),
    AssetType.MUTUAL_FUND.value: Decimal("0.65"),
}


@dataclass(frozen=True, slots=True)
class LendingPolicy:
    """
    Immutable platform policy.

    Attributes:
        currency: Settlement currency symbol
        ltv_ratios: asset type -> loan-to-value ratio (0, 1]
        annual_interest_rate: Flat annual rate in percent (12 means 12%)
        liquidation_haircut: Discount applied to collateral on default (0.08 = 8%)
        grace_period_days: Days an installment may stay unpaid before default
        lock_timeout: Seconds to wait for per-entity locks
        allow_partial_funding: Accept investments smaller than the remaining amount
        check_invariants: Dry-run every commit through the consistency guard
    """
    currency: str = "INR"
    ltv_ratios: Mapping[str, Decimal] = field(default_factory=lambda: dict(DEFAULT_LTV_RATIOS))
    annual_interest_rate: Decimal = Decimal("12")
    liquidation_haircut: Decimal = Decimal("0.08")
    grace_period_days: int = 30
    lock_timeout: float = 5.0
    allow_partial_funding: bool = False
    check_invariants: bool = False

    def __post_init__(self):
        if not self.currency or not self.currency.strip():
            raise ValueError("currency cannot be empty")
        ratios = {str(k): Decimal(str(v)) for k, v in self.ltv_ratios.items()}
        for asset_type, ratio in ratios.items():
            if ratio <= Decimal("0") or ratio > Decimal("1"):
                raise ValueError(f"ltv ratio for {asset_type} must be in (0, 1], got {ratio}")
        object.__setattr__(self, 'ltv_ratios', ratios)
        if not isinstance(self.annual_interest_rate, Decimal):
            object.__setattr__(self, 'annual_interest_rate', Decimal(str(self.annual_interest_rate)))
        if self.annual_interest_rate < Decimal("0"):
            raise ValueError(f"annual_interest_rate cannot be negative, got {self.annual_interest_rate}")
        if not isinstance(self.liquidation_haircut, Decimal):
            object.__setattr__(self, 'liquidation_haircut', Decimal(str(self.liquidation_haircut)))
        if not Decimal("0") <= self.liquidation_haircut < Decimal("1"):
            raise ValueError(f"liquidation_haircut must be in [0, 1), got {self.liquidation_haircut}")
        if self.grace_period_days < 0:
            raise ValueError(f"grace_period_days cannot be negative, got {self.grace_period_days}")
        if self.lock_timeout <= 0:
            raise ValueError(f"lock_timeout must be positive, got {self.lock_timeout}")

    def ltv_for(self, asset_type: str) -> Decimal:
        """
        LTV ratio for an asset type.

        Raises:
            ValidationError: If the asset type is not accepted as collateral
        """
        key = asset_type.value if isinstance(asset_type, AssetType) else str(asset_type)
        try:
            return self.ltv_ratios[key]
        except KeyError:
            raise ValidationError(f"Unsupported asset type: {asset_type}") from None

    def with_overrides(self, **changes) -> LendingPolicy:
        return replace(self, **changes)


def parse_amount(value, name: str = "amount", allow_zero: bool = False) -> Decimal:
    """
    Coerce and validate a money amount.

    Amounts finer than cash precision are refused rather than rounded, so
    every leg of a move carries exactly the amount recorded on the entity.

    Raises:
        ValidationError: If the amount is not a positive finite number of whole cents
    """
    amount = to_decimal(value, name)
    if amount < Decimal("0") or (amount == Decimal("0") and not allow_zero):
        raise ValidationError(f"{name} must be positive, got {value}")
    if amount != quantize_cash(amount):
        raise ValidationError(f"{name} must be a whole number of cents, got {value}")
    return amount


def parse_tenure(value) -> int:
    """
    Validate a tenure in whole months.

    Raises:
        ValidationError: If tenure is not a positive integer
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"tenure must be a whole number of months, got {value!r}")
    if value <= 0:
        raise ValidationError(f"tenure must be positive, got {value}")
    return value
