"""Accrual generation for billing periods.

Generation upserts one PeriodAccrual per (period, plot, charge type) from the
tariff active at the period's midpoint. The whole run is one transaction held
under the period guard; a run that fails midway leaves no rows behind and
marks the period with generation_failed.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from src.models.period_accrual import NEEDS_REVIEW, AccrualType, PeriodAccrual
from src.models.plot import Plot, PlotStatus
from src.models.tariff import TariffType
from src.services.allocation_service import AllocationService
from src.services.audit_service import AuditService
from src.services.errors import AccrualsExistError, BillingError, ValidationError
from src.services.period_service import ensure_period_mutable, period_guard
from src.services.tariff_service import TariffService

logger = logging.getLogger(__name__)

GENERATION_FAILED = "generation_failed"

DEFAULT_TYPES = frozenset({AccrualType.MEMBERSHIP, AccrualType.TARGET})

# Charge types computed from tariffs. Electric accruals come from meter readings.
TARIFF_TYPES = {
    AccrualType.MEMBERSHIP: TariffType.MEMBER,
    AccrualType.TARGET: TariffType.TARGET,
}


class SkipReason:
    NO_ACTIVE_TARIFF = "no_active_tariff"
    METER_READINGS_REQUIRED = "meter_readings_required"


@dataclass
class GeneratedAccrual:
    plot_id: int
    type: AccrualType
    amount: Decimal
    override_applied: bool = False


@dataclass
class SkippedAccrual:
    plot_id: int
    type: AccrualType
    reason: str


@dataclass
class GenerationResult:
    """Summary of one generation run.

    created/updated count written rows; generated, skipped and needs_review
    carry the per (plot, type) details shown to staff.
    """

    period_id: int
    types: list[AccrualType]
    plot_count: int = 0
    created: int = 0
    updated: int = 0
    generated: list[GeneratedAccrual] = field(default_factory=list)
    skipped: list[SkippedAccrual] = field(default_factory=list)
    needs_review: list[GeneratedAccrual] = field(default_factory=list)
    returned_to_credit: Decimal = Decimal("0")

    def as_dict(self) -> dict:
        return {
            "period_id": self.period_id,
            "types": [t.value for t in self.types],
            "plot_count": self.plot_count,
            "created": self.created,
            "updated": self.updated,
            "generated": len(self.generated),
            "skipped": len(self.skipped),
            "needs_review": len(self.needs_review),
            "returned_to_credit": str(self.returned_to_credit),
        }


def normalize_types(types: Optional[Iterable]) -> list[AccrualType]:
    """Validate requested charge types; None means membership + target.

    Raises:
        ValidationError: On an unknown type or an empty selection
    """
    if types is None:
        return sorted(DEFAULT_TYPES, key=lambda t: list(AccrualType).index(t))

    result: list[AccrualType] = []
    for value in types:
        try:
            accrual_type = AccrualType(value)
        except ValueError as e:
            raise ValidationError(f"Unknown accrual type '{value}'") from e
        if accrual_type not in result:
            result.append(accrual_type)
    if not result:
        raise ValidationError("At least one accrual type is required")
    return result


class AccrualService:
    """Generates period accruals from tariffs and overrides."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db
        self.tariffs = TariffService(db)
        self.allocations = AllocationService(db)

    def list_accruals(self, period_id: int, plot_id: Optional[int] = None) -> list[PeriodAccrual]:
        query = self.db.query(PeriodAccrual).filter(PeriodAccrual.period_id == period_id)
        if plot_id is not None:
            query = query.filter(PeriodAccrual.plot_id == plot_id)
        return query.order_by(PeriodAccrual.plot_id, PeriodAccrual.type).all()

    def generate(
        self,
        period_id: int,
        types: Optional[Iterable] = None,
        force: bool = False,
        actor_id: int | None = None,
    ) -> GenerationResult:
        """Generate accruals for every non-archived plot of a draft period.

        Args:
            period_id: Billing period to generate for
            types: Charge types to generate (default membership and target)
            force: Overwrite existing accruals; amount_paid is kept, and any
                part above a lowered amount goes back to payment credit
            actor_id: Staff member running the generation

        Returns:
            GenerationResult with counts and per-row details

        Raises:
            NotFoundError: If the period does not exist
            PeriodLockedError: If the period is not in draft
            AccrualsExistError: If accruals exist and force is not set
            ValidationError: On unknown types, no active tariff or no plots
        """
        requested = normalize_types(types)

        with period_guard(self.db, period_id) as period:
            ensure_period_mutable(period)

            on_date = period.midpoint
            tariffs = {}
            for accrual_type in requested:
                tariff_type = TARIFF_TYPES.get(accrual_type)
                if tariff_type is not None:
                    tariffs[accrual_type] = self.tariffs.select_active_tariff(tariff_type, on_date)

            if not any(tariffs.values()):
                logger.warning(
                    "Generation rejected for period %d: no active tariff for %s on %s",
                    period_id,
                    [t.value for t in requested],
                    on_date,
                )
                raise ValidationError(
                    f"No active tariff for requested types on {on_date.isoformat()}",
                    "no_active_tariff",
                )

            plots = (
                self.db.query(Plot)
                .filter(Plot.status != PlotStatus.ARCHIVED)
                .order_by(Plot.id)
                .all()
            )
            if not plots:
                raise ValidationError("No active plots to generate accruals for", "no_plots")

            existing = {
                (a.plot_id, a.type): a
                for a in self.db.query(PeriodAccrual)
                .filter(
                    PeriodAccrual.period_id == period_id,
                    PeriodAccrual.type.in_(list(tariffs)),
                )
                .all()
            }
            if existing and not force:
                logger.warning(
                    "Generation rejected for period %d: %d accruals exist", period_id, len(existing)
                )
                raise AccrualsExistError(period_id, len(existing))

            result = GenerationResult(period_id=period_id, types=requested, plot_count=len(plots))
            try:
                self._write_accruals(period_id, plots, requested, tariffs, existing, result)
                period.generation_note = None
                AuditService.log(
                    self.db,
                    "billing_period",
                    period_id,
                    "generate_accruals",
                    actor_id,
                    {"before": {"existing": len(existing)}, "after": {**result.as_dict(), "force": force}},
                )
                self.db.commit()
            except BillingError:
                self.db.rollback()
                raise
            except Exception:
                self.db.rollback()
                logger.exception("Accrual generation failed for period %d", period_id)
                period.generation_note = GENERATION_FAILED
                self.db.commit()
                raise

        logger.info(
            "Generated accruals for period %d: created=%d, updated=%d, skipped=%d, needs_review=%d",
            period_id,
            result.created,
            result.updated,
            len(result.skipped),
            len(result.needs_review),
        )
        return result

    def _write_accruals(self, period_id, plots, requested, tariffs, existing, result):
        overrides = {
            accrual_type: self.tariffs.overrides_by_plot(tariff.id)
            for accrual_type, tariff in tariffs.items()
            if tariff is not None
        }

        for plot in plots:
            for accrual_type in requested:
                if accrual_type not in TARIFF_TYPES:
                    result.skipped.append(
                        SkippedAccrual(plot.id, accrual_type, SkipReason.METER_READINGS_REQUIRED)
                    )
                    continue

                tariff = tariffs.get(accrual_type)
                if tariff is None:
                    result.skipped.append(
                        SkippedAccrual(plot.id, accrual_type, SkipReason.NO_ACTIVE_TARIFF)
                    )
                    continue

                override = overrides[accrual_type].get(plot.id)
                resolution = self.tariffs.compute(tariff, plot.area, override)
                amount = resolution.amount if resolution.amount is not None else Decimal("0")
                note = NEEDS_REVIEW if resolution.amount is None else None

                accrual = existing.get((plot.id, accrual_type))
                if accrual is None:
                    accrual = PeriodAccrual(
                        period_id=period_id,
                        plot_id=plot.id,
                        type=accrual_type,
                        amount_paid=Decimal("0"),
                    )
                    self.db.add(accrual)
                    result.created += 1
                else:
                    result.updated += 1
                    if Decimal(accrual.amount_paid) > amount:
                        returned = self.allocations.trim_allocations(accrual, amount)
                        result.returned_to_credit += returned
                        logger.info(
                            "Regenerated accrual %d below its paid amount, %s returned to credit",
                            accrual.id,
                            returned,
                        )
                accrual.amount_accrued = amount
                accrual.override_applied = resolution.override_applied
                accrual.tariff_id = tariff.id
                accrual.note = note

                item = GeneratedAccrual(plot.id, accrual_type, amount, resolution.override_applied)
                if note == NEEDS_REVIEW:
                    result.needs_review.append(item)
                else:
                    result.generated.append(item)

        self.db.flush()


__all__ = [
    "AccrualService",
    "GeneratedAccrual",
    "GenerationResult",
    "SkipReason",
    "SkippedAccrual",
    "GENERATION_FAILED",
    "normalize_types",
]
