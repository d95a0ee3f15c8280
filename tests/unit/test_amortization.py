"""
test_amortization.py - Unit tests for the repayment & amortization calculator

Tests:
- EMI formula, including the zero-rate P/n case
- Input validation
- Amortization schedule rounding
- numpy EMI grid
- Calendar helpers and whole-month interest accrual
- Interest-first payment split
"""

import pytest
from datetime import datetime
from decimal import Decimal

import numpy as np

from assetbridge import ValidationError
from assetbridge.amortization import (
    calculate_emi, amortization_schedule, emi_grid, add_months, months_elapsed,
    calculate_pending_interest, split_payment, expected_returns, expected_return_percentage,
    monthly_rate,
)


class TestCalculateEmi:
    """Tests for calculate_emi."""

    def test_reference_quote(self):
        """100000 over 12 months at 12% is 8884.88 a month."""
        quote = calculate_emi(Decimal("100000"), 12, Decimal("12"))
        assert quote.emi == Decimal("8884.88")
        assert quote.total_payment == Decimal("106618.56")
        assert quote.total_interest == Decimal("6618.56")
        assert quote.monthly_rate == Decimal("0.01")

    def test_default_rate_is_twelve_percent(self):
        assert calculate_emi(Decimal("100000"), 12).emi == Decimal("8884.88")

    def test_zero_rate_is_principal_over_tenure(self):
        quote = calculate_emi(Decimal("1200"), 12, Decimal("0"))
        assert quote.emi == Decimal("100.00")
        assert quote.total_interest == Decimal("0")
        assert quote.total_payment == Decimal("1200")

    def test_zero_rate_never_reports_negative_interest(self):
        """1000 / 3 rounds to 333.33 but the loan still settles exactly 1000."""
        quote = calculate_emi(Decimal("1000"), 3, Decimal("0"))
        assert quote.emi == Decimal("333.33")
        assert quote.total_payment == Decimal("1000")
        assert quote.total_interest == Decimal("0")

    def test_accepts_ints_and_strings(self):
        assert calculate_emi(100000, 12, "12").emi == Decimal("8884.88")

    def test_single_month(self):
        quote = calculate_emi(Decimal("50000"), 1, Decimal("12"))
        assert quote.emi == Decimal("50500.00")

    @pytest.mark.parametrize("amount,tenure,rate", [
        (Decimal("0"), 12, Decimal("12")),
        (Decimal("-1"), 12, Decimal("12")),
        (Decimal("1000"), 0, Decimal("12")),
        (Decimal("1000"), -3, Decimal("12")),
        (Decimal("1000"), 12, Decimal("-1")),
        (Decimal("1000"), 1.5, Decimal("12")),
        ("abc", 12, Decimal("12")),
    ])
    def test_invalid_terms_raise_validation_error(self, amount, tenure, rate):
        with pytest.raises(ValidationError):
            calculate_emi(amount, tenure, rate)


class TestAmortizationSchedule:
    """Tests for amortization_schedule."""

    def test_principal_sums_to_amount(self):
        rows = amortization_schedule(Decimal("100000"), 12, Decimal("12"))
        assert len(rows) == 12
        assert sum(r.principal for r in rows) == Decimal("100000")
        assert rows[-1].closing_balance == Decimal("0")

    def test_first_period_split(self):
        first = amortization_schedule(Decimal("100000"), 12, Decimal("12"))[0]
        assert first.interest == Decimal("1000.00")
        assert first.principal == Decimal("7884.88")
        assert first.payment == Decimal("8884.88")
        assert first.closing_balance == Decimal("92115.12")

    def test_balances_chain(self):
        rows = amortization_schedule(Decimal("25000"), 6, Decimal("10"))
        for prev, nxt in zip(rows, rows[1:]):
            assert nxt.opening_balance == prev.closing_balance

    def test_zero_rate_schedule(self):
        rows = amortization_schedule(Decimal("1000"), 3, Decimal("0"))
        assert all(r.interest == Decimal("0") for r in rows)
        assert sum(r.principal for r in rows) == Decimal("1000")


class TestEmiGrid:
    """Tests for the vectorised EMI table."""

    def test_grid_shape_and_reference_value(self):
        grid = emi_grid([100000, 200000], [12, 24], 12.0)
        assert grid.shape == (2, 2)
        assert grid[0, 0] == pytest.approx(8884.88)
        assert grid[1, 0] == pytest.approx(17769.76)

    def test_zero_rate_grid(self):
        grid = emi_grid([1200], [12, 6], 0.0)
        np.testing.assert_allclose(grid, [[100.0, 200.0]])

    def test_invalid_inputs(self):
        with pytest.raises(ValidationError):
            emi_grid([0], [12])
        with pytest.raises(ValidationError):
            emi_grid([1000], [0])
        with pytest.raises(ValidationError):
            emi_grid([1000], [12], -1.0)


class TestCalendar:
    """Tests for month arithmetic."""

    def test_add_months_clamps_to_month_end(self):
        assert add_months(datetime(2025, 1, 31), 1) == datetime(2025, 2, 28)
        assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)

    def test_add_months_crosses_year(self):
        assert add_months(datetime(2025, 11, 15), 3) == datetime(2026, 2, 15)

    def test_months_elapsed_counts_whole_months(self):
        assert months_elapsed(datetime(2025, 1, 1), datetime(2025, 3, 1)) == 2
        assert months_elapsed(datetime(2025, 1, 15), datetime(2025, 2, 14)) == 0
        assert months_elapsed(datetime(2025, 1, 31), datetime(2025, 2, 28)) == 1

    def test_months_elapsed_never_negative(self):
        assert months_elapsed(datetime(2025, 3, 1), datetime(2025, 1, 1)) == 0


class TestInterest:
    """Tests for accrual, payment split and expected returns."""

    def test_monthly_rate(self):
        assert monthly_rate(Decimal("12")) == Decimal("0.01")

    def test_pending_interest_whole_months_only(self):
        interest, through = calculate_pending_interest(
            Decimal("100000"), Decimal("12"), datetime(2025, 1, 1), datetime(2025, 3, 15)
        )
        assert interest == Decimal("2000.00")
        assert through == datetime(2025, 3, 1)

    def test_pending_interest_partial_month_is_zero(self):
        interest, through = calculate_pending_interest(
            Decimal("100000"), Decimal("12"), datetime(2025, 1, 1), datetime(2025, 1, 20)
        )
        assert interest == Decimal("0")
        assert through == datetime(2025, 1, 1)

    def test_no_interest_on_zero_principal(self):
        interest, _ = calculate_pending_interest(
            Decimal("0"), Decimal("12"), datetime(2025, 1, 1), datetime(2025, 6, 1)
        )
        assert interest == Decimal("0")

    def test_split_payment_interest_first(self):
        assert split_payment(Decimal("500"), Decimal("1000")) == (Decimal("500"), Decimal("0"))
        assert split_payment(Decimal("1500"), Decimal("1000")) == (Decimal("1000"), Decimal("500"))

    def test_expected_returns(self):
        assert expected_returns(Decimal("100000"), 12, Decimal("12")) == Decimal("6618.56")
        assert expected_return_percentage(Decimal("100000"), 12, Decimal("12")) == Decimal("6.62")
