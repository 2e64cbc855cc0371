"""Period reconciliation: accrued vs. paid vs. debt per plot and charge type.

build_period_reconciliation is a pure aggregation over accrual rows. Filtering,
sorting and CSV export are presentation helpers applied on top of its output.
"""

import csv
import io
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional, Union

from sqlalchemy.orm import Session

from src.models.billing_period import BillingPeriod
from src.models.period_accrual import AccrualType, PeriodAccrual
from src.models.plot import Plot
from src.services.errors import NotFoundError, ValidationError

ZERO = Decimal("0")

SORT_ORDERS = ("debt_asc", "debt_desc")


@dataclass
class TypeTotals:
    accrued: Decimal = ZERO
    paid: Decimal = ZERO

    @property
    def debt(self) -> Decimal:
        """Unpaid amount; overpayment never shows as negative debt."""
        return max(ZERO, self.accrued - self.paid)

    def as_dict(self) -> dict:
        return {"accrued": str(self.accrued), "paid": str(self.paid), "debt": str(self.debt)}


def _empty_by_type() -> dict[AccrualType, TypeTotals]:
    return {accrual_type: TypeTotals() for accrual_type in AccrualType}


@dataclass
class ReconciliationRow:
    """Per-plot reconciliation line with a breakdown by charge type."""

    plot_id: int
    plot_number: Optional[str] = None
    by_type: dict[AccrualType, TypeTotals] = field(default_factory=_empty_by_type)

    @property
    def accrued(self) -> Decimal:
        return sum((t.accrued for t in self.by_type.values()), ZERO)

    @property
    def paid(self) -> Decimal:
        return sum((t.paid for t in self.by_type.values()), ZERO)

    @property
    def debt(self) -> Decimal:
        # Per-type debts are summed so an overpaid type cannot hide another type's debt
        return sum((t.debt for t in self.by_type.values()), ZERO)


@dataclass
class PeriodReconciliation:
    period_id: int
    rows: list[ReconciliationRow]

    def row_for(self, plot_id: int) -> Optional[ReconciliationRow]:
        for row in self.rows:
            if row.plot_id == plot_id:
                return row
        return None


@dataclass(frozen=True)
class ReconciliationSummary:
    accrued: Decimal
    paid: Decimal
    debt: Decimal
    debtors: int
    plot_count: int

    def as_dict(self) -> dict:
        return {
            "accrued": str(self.accrued),
            "paid": str(self.paid),
            "debt": str(self.debt),
            "debtors": self.debtors,
            "plot_count": self.plot_count,
        }


def build_period_reconciliation(
    period_id: int,
    accruals: Iterable[PeriodAccrual],
    plot_numbers: Optional[dict[int, str]] = None,
) -> PeriodReconciliation:
    """Group accrual rows of one period by plot and charge type.

    Args:
        period_id: Period the accruals belong to
        accruals: PeriodAccrual rows (only rows of period_id are counted)
        plot_numbers: Optional plot_id -> display number map

    Returns:
        PeriodReconciliation with rows ordered by plot_id
    """
    plot_numbers = plot_numbers or {}
    rows: dict[int, ReconciliationRow] = {}

    for accrual in accruals:
        if accrual.period_id != period_id:
            continue
        row = rows.get(accrual.plot_id)
        if row is None:
            row = ReconciliationRow(
                plot_id=accrual.plot_id, plot_number=plot_numbers.get(accrual.plot_id)
            )
            rows[accrual.plot_id] = row
        totals = row.by_type[AccrualType(accrual.type)]
        totals.accrued += Decimal(accrual.amount_accrued)
        totals.paid += Decimal(accrual.amount_paid)

    return PeriodReconciliation(period_id=period_id, rows=[rows[k] for k in sorted(rows)])


class ReconciliationService:
    """Loads accrual rows and builds the reconciliation view (read-only)."""

    def __init__(self, db: Session):
        self.db = db

    def build(self, period: Union[BillingPeriod, int]) -> PeriodReconciliation:
        """Build reconciliation for a period object or period id.

        Raises:
            NotFoundError: If the period id is unknown
        """
        if isinstance(period, BillingPeriod):
            period_id = period.id
        else:
            if self.db.get(BillingPeriod, period) is None:
                raise NotFoundError(f"Period {period} not found")
            period_id = period

        accruals = (
            self.db.query(PeriodAccrual)
            .filter(PeriodAccrual.period_id == period_id)
            .order_by(PeriodAccrual.plot_id, PeriodAccrual.id)
            .all()
        )
        plot_ids = {a.plot_id for a in accruals}
        plot_numbers: dict[int, str] = {}
        if plot_ids:
            plot_numbers = {
                plot.id: plot.number
                for plot in self.db.query(Plot).filter(Plot.id.in_(plot_ids)).all()
            }
        return build_period_reconciliation(period_id, accruals, plot_numbers)


def filter_rows(
    rows: Iterable[ReconciliationRow],
    only_with_debt: bool = False,
    min_debt: Optional[Decimal] = None,
) -> list[ReconciliationRow]:
    result = []
    for row in rows:
        if only_with_debt and row.debt <= ZERO:
            continue
        if min_debt is not None and row.debt < Decimal(min_debt):
            continue
        result.append(row)
    return result


def sort_rows(rows: Iterable[ReconciliationRow], order: str = "debt_desc") -> list[ReconciliationRow]:
    """Sort rows by total debt; ties keep plot order.

    Raises:
        ValidationError: If order is not debt_asc or debt_desc
    """
    if order not in SORT_ORDERS:
        raise ValidationError(f"Unknown sort order '{order}', expected one of {SORT_ORDERS}")
    rows = sorted(rows, key=lambda r: r.plot_id)
    return sorted(rows, key=lambda r: r.debt, reverse=order == "debt_desc")


def rows_to_csv(rows: Iterable[ReconciliationRow]) -> str:
    """Render rows as a debtor export (semicolon separated, one line per plot)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=";", lineterminator="\n")
    header = ["plot_id", "plot_number"]
    for accrual_type in AccrualType:
        header += [f"{accrual_type.value}_accrued", f"{accrual_type.value}_paid", f"{accrual_type.value}_debt"]
    header += ["accrued_total", "paid_total", "debt_total"]
    writer.writerow(header)

    for row in rows:
        line = [row.plot_id, row.plot_number or ""]
        for accrual_type in AccrualType:
            totals = row.by_type[accrual_type]
            line += [totals.accrued, totals.paid, totals.debt]
        line += [row.accrued, row.paid, row.debt]
        writer.writerow(line)
    return buffer.getvalue()


def summarize(reconciliation: PeriodReconciliation) -> ReconciliationSummary:
    """Period totals and the number of plots with debt."""
    rows = reconciliation.rows
    return ReconciliationSummary(
        accrued=sum((r.accrued for r in rows), ZERO),
        paid=sum((r.paid for r in rows), ZERO),
        debt=sum((r.debt for r in rows), ZERO),
        debtors=sum(1 for r in rows if r.debt > ZERO),
        plot_count=len(rows),
    )


__all__ = [
    "PeriodReconciliation",
    "ReconciliationRow",
    "ReconciliationService",
    "ReconciliationSummary",
    "TypeTotals",
    "build_period_reconciliation",
    "filter_rows",
    "rows_to_csv",
    "sort_rows",
    "summarize",
]
