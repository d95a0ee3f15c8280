"""
amortization.py - Repayment & amortization calculator

Pure functions only. No LedgerView, no hidden state.

Key Formulas:
    r = annual_rate / 12 / 100
    EMI = P * r * (1 + r)^n / ((1 + r)^n - 1)      (r > 0)
    EMI = P / n                                      (r == 0)
    total_payment = EMI * n
    total_interest = total_payment - P

Interest accrues on the reducing balance once per whole calendar month
since the last accrual date.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import List, Sequence, Tuple
import calendar

import numpy as np

from .core import ValidationError, quantize_cash, to_decimal, ZERO


@dataclass(frozen=True, slots=True)
class EmiQuote:
    """Result of calculate_emi(). All money fields are quantised to cash precision."""
    emi: Decimal
    total_interest: Decimal
    total_payment: Decimal
    monthly_rate: Decimal
    tenure_months: int


@dataclass(frozen=True, slots=True)
class ScheduleRow:
    period: int
    opening_balance: Decimal
    payment: Decimal
    interest: Decimal
    principal: Decimal
    closing_balance: Decimal


def monthly_rate(annual_rate: Decimal) -> Decimal:
    """Convert an annual percentage rate (12 = 12%) to a monthly fraction."""
    return to_decimal(annual_rate, "annual_rate") / Decimal("12") / Decimal("100")


def _validate_terms(amount, tenure_months, annual_rate) -> Tuple[Decimal, int, Decimal]:
    principal = to_decimal(amount, "amount")
    if principal <= ZERO:
        raise ValidationError(f"amount must be positive, got {amount}")
    if isinstance(tenure_months, bool) or not isinstance(tenure_months, int):
        raise ValidationError(f"tenure must be a whole number of months, got {tenure_months!r}")
    if tenure_months <= 0:
        raise ValidationError(f"tenure must be positive, got {tenure_months}")
    rate = to_decimal(annual_rate, "annual_rate")
    if rate < ZERO:
        raise ValidationError(f"annual_rate cannot be negative, got {annual_rate}")
    return principal, tenure_months, rate


def calculate_emi(amount, tenure_months: int, annual_rate=Decimal("12")) -> EmiQuote:
    """
    Equated monthly installment for a fully amortising loan.

    Args:
        amount: Principal (must be positive)
        tenure_months: Number of monthly installments (must be positive)
        annual_rate: Annual percentage rate (12 means 12%)

    Returns:
        EmiQuote with emi, total_interest and total_payment

    Raises:
        ValidationError: If amount <= 0, tenure <= 0 or rate < 0

    Example:
        calculate_emi(Decimal("100000"), 12, Decimal("12")).emi  # Decimal("8884.88")
    """
    principal, n, rate = _validate_terms(amount, tenure_months, annual_rate)
    r = rate / Decimal("12") / Decimal("100")
    if r == ZERO:
        raw_emi = principal / Decimal(n)
    else:
        growth = (Decimal("1") + r) ** n
        raw_emi = principal * r * growth / (growth - Decimal("1"))
    emi = quantize_cash(raw_emi)
    # Interest-free loans settle exactly the principal; the last installment
    # absorbs the rounding of P/n.
    total_payment = principal if r == ZERO else quantize_cash(emi * n)
    return EmiQuote(
        emi=emi,
        total_interest=total_payment - principal,
        total_payment=total_payment,
        monthly_rate=r,
        tenure_months=n,
    )


def amortization_schedule(amount, tenure_months: int, annual_rate=Decimal("12")) -> List[ScheduleRow]:
    """
    Period-by-period split of each EMI into interest and principal.

    The final row absorbs rounding so that principal sums exactly to the
    amount borrowed.
    """
    principal, n, _ = _validate_terms(amount, tenure_months, annual_rate)
    quote = calculate_emi(principal, n, annual_rate)
    rows = []
    balance = principal
    for period in range(1, n + 1):
        interest = quantize_cash(balance * quote.monthly_rate)
        if period == n:
            principal_part = balance
        else:
            principal_part = min(balance, quote.emi - interest)
        rows.append(ScheduleRow(
            period=period,
            opening_balance=balance,
            payment=interest + principal_part,
            interest=interest,
            principal=principal_part,
            closing_balance=balance - principal_part,
        ))
        balance -= principal_part
    return rows


def emi_grid(
    amounts: Sequence[float],
    tenures: Sequence[int],
    annual_rate: float = 12.0,
) -> np.ndarray:
    """
    Vectorised EMI table for display (float, not for booking).

    Returns:
        Array of shape (len(amounts), len(tenures)) rounded to 2 decimals.
    """
    p = np.asarray(amounts, dtype=float).reshape(-1, 1)
    n = np.asarray(tenures, dtype=float).reshape(1, -1)
    if np.any(p <= 0) or not np.all(np.isfinite(p)):
        raise ValidationError("amounts must be positive and finite")
    if np.any(n <= 0):
        raise ValidationError("tenures must be positive")
    if annual_rate < 0:
        raise ValidationError(f"annual_rate cannot be negative, got {annual_rate}")
    r = annual_rate / 12.0 / 100.0
    if r == 0:
        return np.round(p / n, 2)
    growth = np.power(1.0 + r, n)
    return np.round(p * r * growth / (growth - 1.0), 2)


# ============================================================================
# CALENDAR
# ============================================================================

def add_months(moment: datetime, months: int) -> datetime:
    """Same day-of-month `months` later, clamped to the month's last day."""
    total = moment.month - 1 + months
    year = moment.year + total // 12
    month = total % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def months_elapsed(start: datetime, end: datetime) -> int:
    """Whole calendar months from start to end (0 if end <= start)."""
    if end <= start:
        return 0
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if add_months(start, months) > end:
        months -= 1
    return max(months, 0)


# ============================================================================
# INTEREST
# ============================================================================

def calculate_pending_interest(
    principal: Decimal,
    annual_rate: Decimal,
    accrued_through: datetime,
    as_of: datetime,
) -> Tuple[Decimal, datetime]:
    """
    Interest earned on the reducing balance but not yet booked.

    Returns:
        (interest, new_accrued_through). new_accrued_through only advances by
        whole months, so a partial month is never charged twice or lost.
    """
    months = months_elapsed(accrued_through, as_of)
    if months == 0 or principal <= ZERO:
        return ZERO, accrued_through
    interest = quantize_cash(principal * monthly_rate(annual_rate) * months)
    return interest, add_months(accrued_through, months)


def split_payment(amount: Decimal, interest_due: Decimal) -> Tuple[Decimal, Decimal]:
    """Interest first, then principal. Returns (interest_paid, principal_paid)."""
    interest_paid = min(amount, interest_due)
    return interest_paid, amount - interest_paid


def expected_returns(amount, tenure_months: int, annual_rate=Decimal("12")) -> Decimal:
    """Total interest an investor earns if every installment is paid on time."""
    return calculate_emi(amount, tenure_months, annual_rate).total_interest


def expected_return_percentage(amount, tenure_months: int, annual_rate=Decimal("12")) -> Decimal:
    """Expected interest as a percentage of principal (2 decimals)."""
    principal = to_decimal(amount, "amount")
    return quantize_cash(expected_returns(principal, tenure_months, annual_rate) / principal * 100)
