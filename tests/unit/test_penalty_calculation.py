"""Unit tests for penalty arithmetic."""

from datetime import date
from decimal import Decimal

import pytest

from src.services.penalty_service import (
    DebtLine,
    PenaltyPreview,
    PenaltyRunResult,
    compute_penalty,
    days_overdue,
)


class TestDaysOverdue:
    def test_counts_from_due_date(self):
        assert days_overdue(date(2025, 1, 31), date(2025, 3, 2)) == 30

    def test_due_day_itself_is_not_overdue(self):
        assert days_overdue(date(2025, 1, 31), date(2025, 1, 31)) == 0

    def test_never_negative(self):
        assert days_overdue(date(2025, 1, 31), date(2025, 1, 1)) == 0


class TestComputePenalty:
    def test_simple_interest(self):
        assert compute_penalty(Decimal("1000"), Decimal("0.365"), 30) == Decimal("30.00")

    def test_rounds_half_up_to_kopecks(self):
        # 10 * 0.1825 / 365 is exactly half a kopeck
        assert compute_penalty(Decimal("10"), Decimal("0.1825"), 1) == Decimal("0.01")

    def test_default_rate_example(self):
        assert compute_penalty(Decimal("1000"), Decimal("0.1"), 30) == Decimal("8.22")

    @pytest.mark.parametrize(
        "remaining, days",
        [(Decimal("0"), 30), (Decimal("-50"), 30), (Decimal("1000"), 0), (Decimal("1000"), -3)],
    )
    def test_no_penalty(self, remaining, days):
        assert compute_penalty(remaining, Decimal("0.1"), days) == Decimal("0")

    def test_zero_rate(self):
        assert compute_penalty(Decimal("1000"), Decimal("0"), 30) == Decimal("0.00")


def line(accrual_id, plot_id, remaining, days, amount):
    return DebtLine(
        accrual_id=accrual_id,
        plot_id=plot_id,
        plot_number=str(plot_id),
        period_id=1,
        due_date=date(2025, 1, 31),
        remaining=Decimal(remaining),
        days_overdue=days,
        amount=Decimal(amount),
    )


class TestPreviewTotals:
    def test_lines_are_summed_per_plot(self):
        preview = PenaltyPreview(
            as_of=date(2025, 4, 1),
            annual_rate=Decimal("0.1"),
            lines=[line(1, 7, "1000", 60, "16.44"), line(2, 7, "500", 30, "4.11"), line(3, 8, "200", 30, "1.64")],
        )

        plots = preview.by_plot()

        assert preview.total == Decimal("22.19")
        assert set(plots) == {7, 8}
        assert plots[7].amount == Decimal("20.55")
        assert plots[7].base_debt == Decimal("1500")
        assert plots[7].days_overdue == 60
        assert plots[8].amount == Decimal("1.64")

    def test_empty_preview(self):
        preview = PenaltyPreview(as_of=date(2025, 4, 1), annual_rate=Decimal("0.1"))

        assert preview.total == Decimal("0")
        assert preview.by_plot() == {}


def test_run_result_as_dict():
    result = PenaltyRunResult(period_id=3, created=2, updated=1, total=Decimal("12.50"))

    assert result.as_dict() == {
        "period_id": 3,
        "created": 2,
        "updated": 1,
        "skipped_frozen": 0,
        "skipped_zero_debt": 0,
        "total": "12.50",
    }
