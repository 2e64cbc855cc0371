"""Late-payment penalties on overdue debt.

A debt line is an accrual with an unpaid remainder whose period ended before
the calculation date. Its penalty is

    remaining * annual_rate * days_overdue / 365

rounded to kopecks, where days_overdue counts from the period's last day.
Penalties are summed per plot and stored as one PenaltyAccrual per
(plot, target period). Frozen penalties keep their amount; voided ones are
ignored and may be replaced by a fresh penalty.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from src.models.billing_period import BillingPeriod
from src.models.penalty_accrual import PENALTY_POLICY_VERSION, PenaltyAccrual, PenaltyStatus
from src.models.period_accrual import PeriodAccrual
from src.models.plot import Plot
from src.services.audit_service import AuditService
from src.services.config import load_config
from src.services.errors import ConflictError, NotFoundError, ValidationError
from src.services.period_service import ensure_period_mutable, period_guard

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
KOPECK = Decimal("0.01")
DAYS_IN_YEAR = 365


def days_overdue(due_date: date, as_of: date) -> int:
    """Whole days past the due date, never negative."""
    return max(0, (as_of - due_date).days)


def compute_penalty(remaining: Decimal, annual_rate: Decimal, days: int) -> Decimal:
    """Penalty on one debt line, rounded half-up to kopecks."""
    if remaining <= ZERO or days <= 0:
        return ZERO
    raw = Decimal(remaining) * Decimal(annual_rate) * days / DAYS_IN_YEAR
    return raw.quantize(KOPECK, rounding=ROUND_HALF_UP)


@dataclass
class DebtLine:
    accrual_id: int
    plot_id: int
    plot_number: Optional[str]
    period_id: int
    due_date: date
    remaining: Decimal
    days_overdue: int = 0
    amount: Decimal = ZERO


@dataclass
class PlotPenalty:
    plot_id: int
    amount: Decimal = ZERO
    base_debt: Decimal = ZERO
    days_overdue: int = 0


@dataclass
class PenaltyPreview:
    as_of: date
    annual_rate: Decimal
    lines: list[DebtLine] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((line.amount for line in self.lines), ZERO)

    def by_plot(self) -> dict[int, PlotPenalty]:
        """Penalties summed per plot; days_overdue is the oldest line's."""
        plots: dict[int, PlotPenalty] = {}
        for line in self.lines:
            item = plots.setdefault(line.plot_id, PlotPenalty(line.plot_id))
            item.amount += line.amount
            item.base_debt += line.remaining
            item.days_overdue = max(item.days_overdue, line.days_overdue)
        return plots


@dataclass
class PenaltyRunResult:
    period_id: int
    created: int = 0
    updated: int = 0
    skipped_frozen: int = 0
    skipped_zero_debt: int = 0
    total: Decimal = ZERO

    def as_dict(self) -> dict:
        return {
            "period_id": self.period_id,
            "created": self.created,
            "updated": self.updated,
            "skipped_frozen": self.skipped_frozen,
            "skipped_zero_debt": self.skipped_zero_debt,
            "total": str(self.total),
        }


@dataclass(frozen=True)
class PenaltySummary:
    total: int
    active: int
    frozen: int
    voided: int
    total_amount: Decimal
    active_amount: Decimal


class PenaltyService:
    """Previews, applies and maintains penalty accruals."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    # Lookups

    def get_penalty(self, penalty_id: int) -> PenaltyAccrual:
        penalty = self.db.get(PenaltyAccrual, penalty_id)
        if penalty is None:
            raise NotFoundError(f"Penalty {penalty_id} not found")
        return penalty

    def find_current(self, plot_id: int, period_id: int) -> Optional[PenaltyAccrual]:
        """The non-voided penalty of (plot, period), if any."""
        return (
            self.db.query(PenaltyAccrual)
            .filter(
                PenaltyAccrual.plot_id == plot_id,
                PenaltyAccrual.period_id == period_id,
                PenaltyAccrual.status != PenaltyStatus.VOIDED,
            )
            .first()
        )

    def list_penalties(
        self,
        period_id: Optional[int] = None,
        plot_id: Optional[int] = None,
        status: Optional[PenaltyStatus] = None,
    ) -> list[PenaltyAccrual]:
        query = self.db.query(PenaltyAccrual)
        if period_id is not None:
            query = query.filter(PenaltyAccrual.period_id == period_id)
        if plot_id is not None:
            query = query.filter(PenaltyAccrual.plot_id == plot_id)
        if status is not None:
            query = query.filter(PenaltyAccrual.status == PenaltyStatus(status))
        return query.order_by(PenaltyAccrual.plot_id, PenaltyAccrual.id).all()

    def summary(self, period_id: Optional[int] = None) -> PenaltySummary:
        penalties = self.list_penalties(period_id=period_id)
        by_status = {status: [p for p in penalties if p.status == status] for status in PenaltyStatus}
        active = by_status[PenaltyStatus.ACTIVE]
        return PenaltySummary(
            total=len(penalties),
            active=len(active),
            frozen=len(by_status[PenaltyStatus.FROZEN]),
            voided=len(by_status[PenaltyStatus.VOIDED]),
            total_amount=sum((Decimal(p.amount) for p in penalties), ZERO),
            active_amount=sum((Decimal(p.amount) for p in active), ZERO),
        )

    # Calculation

    def overdue_debts(
        self, as_of: date, source_period_ids: Optional[Iterable[int]] = None
    ) -> list[DebtLine]:
        """Unpaid accrual remainders of periods that ended before as_of."""
        query = (
            self.db.query(PeriodAccrual, BillingPeriod.date_to, Plot.number)
            .join(BillingPeriod, PeriodAccrual.period_id == BillingPeriod.id)
            .join(Plot, PeriodAccrual.plot_id == Plot.id)
            .filter(BillingPeriod.date_to < as_of)
        )
        if source_period_ids is not None:
            query = query.filter(PeriodAccrual.period_id.in_(list(source_period_ids)))

        lines = []
        for accrual, due_date, plot_number in query.order_by(PeriodAccrual.plot_id, PeriodAccrual.id):
            if accrual.outstanding <= ZERO:
                continue
            lines.append(
                DebtLine(
                    accrual_id=accrual.id,
                    plot_id=accrual.plot_id,
                    plot_number=plot_number,
                    period_id=accrual.period_id,
                    due_date=due_date,
                    remaining=accrual.outstanding,
                )
            )
        return lines

    def preview(
        self,
        as_of: date,
        annual_rate: Optional[Decimal] = None,
        min_penalty: Decimal = ZERO,
        source_period_ids: Optional[Iterable[int]] = None,
    ) -> PenaltyPreview:
        """Compute penalties without writing anything.

        Lines whose penalty is zero or below min_penalty are left out.

        Raises:
            ValidationError: On a negative rate or minimum
        """
        rate = self._rate(annual_rate)
        min_penalty = Decimal(min_penalty)
        if min_penalty < ZERO:
            raise ValidationError("min_penalty must not be negative")

        result = PenaltyPreview(as_of=as_of, annual_rate=rate)
        for line in self.overdue_debts(as_of, source_period_ids):
            line.days_overdue = days_overdue(line.due_date, as_of)
            line.amount = compute_penalty(line.remaining, rate, line.days_overdue)
            if line.amount > ZERO and line.amount >= min_penalty:
                result.lines.append(line)
        return result

    @staticmethod
    def _rate(annual_rate: Optional[Decimal]) -> Decimal:
        rate = load_config().penalty_annual_rate if annual_rate is None else Decimal(annual_rate)
        if not rate.is_finite() or rate < ZERO:
            raise ValidationError("annual_rate must be a non-negative number")
        return rate

    # Writes

    def apply(
        self,
        period_id: int,
        as_of: date,
        annual_rate: Optional[Decimal] = None,
        min_penalty: Decimal = ZERO,
        actor_id: int | None = None,
    ) -> PenaltyRunResult:
        """Charge penalties for overdue debt to a draft period.

        Creates a penalty per plot with debt, refreshes active ones and skips
        frozen ones.

        Raises:
            NotFoundError: If the period does not exist
            PeriodLockedError: If the period is locked
            ValidationError: On a negative rate or minimum
        """
        preview = self.preview(as_of, annual_rate, min_penalty)
        result = PenaltyRunResult(period_id=period_id)

        with period_guard(self.db, period_id) as period:
            ensure_period_mutable(period)

            for item in preview.by_plot().values():
                current = self.find_current(item.plot_id, period_id)
                if current is not None and current.status == PenaltyStatus.FROZEN:
                    result.skipped_frozen += 1
                    continue
                if current is None:
                    current = PenaltyAccrual(
                        plot_id=item.plot_id,
                        period_id=period_id,
                        status=PenaltyStatus.ACTIVE,
                        created_by_user_id=actor_id,
                    )
                    self.db.add(current)
                    result.created += 1
                else:
                    result.updated += 1
                self._store_calculation(current, item, preview)
                result.total += item.amount

            self.db.flush()
            AuditService.log(
                self.db,
                "billing_period",
                period_id,
                "apply_penalties",
                actor_id,
                {
                    "before": None,
                    "after": {
                        **result.as_dict(),
                        "as_of": as_of,
                        "annual_rate": preview.annual_rate,
                        "policy_version": PENALTY_POLICY_VERSION,
                    },
                },
            )
            self.db.commit()

        logger.info(
            "Applied penalties to period %d as of %s: created=%d, updated=%d, frozen=%d, total=%s",
            period_id,
            as_of,
            result.created,
            result.updated,
            result.skipped_frozen,
            result.total,
        )
        return result

    def recalc(
        self,
        period_id: int,
        as_of: date,
        annual_rate: Optional[Decimal] = None,
        plot_ids: Optional[Iterable[int]] = None,
        actor_id: int | None = None,
    ) -> PenaltyRunResult:
        """Recalculate existing active penalties of a period from current debt.

        Penalties whose plot no longer has overdue debt keep their amount and
        are counted as skipped_zero_debt; void them explicitly if needed.

        Raises:
            NotFoundError: If the period does not exist
            PeriodLockedError: If the period is locked
        """
        preview = self.preview(as_of, annual_rate)
        fresh = preview.by_plot()
        wanted = set(plot_ids) if plot_ids is not None else None
        result = PenaltyRunResult(period_id=period_id)

        with period_guard(self.db, period_id) as period:
            ensure_period_mutable(period)

            for penalty in self.list_penalties(period_id=period_id):
                if wanted is not None and penalty.plot_id not in wanted:
                    continue
                if penalty.status == PenaltyStatus.FROZEN:
                    result.skipped_frozen += 1
                    continue
                if penalty.status != PenaltyStatus.ACTIVE:
                    continue
                item = fresh.get(penalty.plot_id)
                if item is None or item.amount <= ZERO:
                    result.skipped_zero_debt += 1
                    continue
                self._store_calculation(penalty, item, preview)
                result.updated += 1
                result.total += item.amount

            AuditService.log(
                self.db,
                "billing_period",
                period_id,
                "recalc_penalties",
                actor_id,
                {"before": None, "after": {**result.as_dict(), "as_of": as_of}},
            )
            self.db.commit()

        logger.info(
            "Recalculated penalties of period %d: updated=%d, frozen=%d, zero_debt=%d",
            period_id,
            result.updated,
            result.skipped_frozen,
            result.skipped_zero_debt,
        )
        return result

    @staticmethod
    def _store_calculation(penalty: PenaltyAccrual, item: PlotPenalty, preview: PenaltyPreview) -> None:
        penalty.amount = item.amount
        penalty.as_of = preview.as_of
        penalty.annual_rate = preview.annual_rate
        penalty.base_debt = item.base_debt
        penalty.days_overdue = item.days_overdue
        penalty.policy_version = PENALTY_POLICY_VERSION

    def void(self, penalty_id: int, reason: str, actor_id: int | None = None) -> PenaltyAccrual:
        """Void a penalty; a later apply run may charge the plot again.

        Raises:
            ValidationError: If no reason is given
            ConflictError: If already voided
            PeriodLockedError: If the penalty's period is locked
        """
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to void a penalty")
        penalty = self.get_penalty(penalty_id)

        with period_guard(self.db, penalty.period_id) as period:
            ensure_period_mutable(period)
            self.db.refresh(penalty)
            if penalty.status == PenaltyStatus.VOIDED:
                raise ConflictError(f"Penalty {penalty_id} is already voided", "already_voided")

            before = penalty.status
            penalty.status = PenaltyStatus.VOIDED
            penalty.void_reason = reason
            penalty.voided_at = datetime.now(timezone.utc)
            penalty.voided_by_user_id = actor_id
            self._audit(penalty, "void", actor_id, before, {"reason": reason})
            self.db.commit()

        logger.info("Voided penalty %d (actor=%s)", penalty_id, actor_id)
        return penalty

    def freeze(self, penalty_id: int, reason: str, actor_id: int | None = None) -> PenaltyAccrual:
        """Keep a penalty's amount out of future apply/recalc runs.

        Raises:
            ConflictError: If the penalty is voided or already frozen
            PeriodLockedError: If the penalty's period is locked
        """
        penalty = self.get_penalty(penalty_id)

        with period_guard(self.db, penalty.period_id) as period:
            ensure_period_mutable(period)
            self.db.refresh(penalty)
            if penalty.status != PenaltyStatus.ACTIVE:
                raise ConflictError(
                    f"Penalty {penalty_id} is {penalty.status.value}, only active penalties can be frozen",
                    "invalid_transition",
                )

            penalty.status = PenaltyStatus.FROZEN
            penalty.freeze_reason = reason or None
            penalty.frozen_at = datetime.now(timezone.utc)
            penalty.frozen_by_user_id = actor_id
            self._audit(penalty, "freeze", actor_id, PenaltyStatus.ACTIVE, {"reason": reason})
            self.db.commit()

        logger.info("Froze penalty %d (actor=%s)", penalty_id, actor_id)
        return penalty

    def unfreeze(self, penalty_id: int, actor_id: int | None = None) -> PenaltyAccrual:
        """Return a frozen penalty to active.

        Raises:
            ConflictError: If the penalty is not frozen
            PeriodLockedError: If the penalty's period is locked
        """
        penalty = self.get_penalty(penalty_id)

        with period_guard(self.db, penalty.period_id) as period:
            ensure_period_mutable(period)
            self.db.refresh(penalty)
            if penalty.status != PenaltyStatus.FROZEN:
                raise ConflictError(f"Penalty {penalty_id} is not frozen", "invalid_transition")

            penalty.status = PenaltyStatus.ACTIVE
            self._audit(penalty, "unfreeze", actor_id, PenaltyStatus.FROZEN, {})
            self.db.commit()

        logger.info("Unfroze penalty %d (actor=%s)", penalty_id, actor_id)
        return penalty

    def _audit(self, penalty, action, actor_id, before_status, extra) -> None:
        AuditService.log(
            self.db,
            "penalty_accrual",
            penalty.id,
            action,
            actor_id,
            {
                "before": {"status": before_status},
                "after": {"status": penalty.status, "amount": penalty.amount, **extra},
            },
        )


__all__ = [
    "DebtLine",
    "PenaltyPreview",
    "PenaltyRunResult",
    "PenaltyService",
    "PenaltySummary",
    "PlotPenalty",
    "compute_penalty",
    "days_overdue",
]
