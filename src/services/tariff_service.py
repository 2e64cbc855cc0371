"""Tariff resolution and per-plot override management.

The amount computation itself is a pure function (compute_amount) so it can
be tested in isolation; TariffService wraps it with database lookups.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models.plot import Plot
from src.models.tariff import Tariff, TariffOverride, TariffStatus, TariffType, TariffUnit
from src.services.audit_service import AuditService
from src.services.errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class TariffResolution:
    """Resolved charge for one (tariff, plot) pair."""

    amount: Optional[Decimal]
    override_applied: bool


def compute_amount(
    unit: TariffUnit,
    tariff_amount: Decimal,
    plot_area: Optional[Decimal],
    override_amount: Optional[Decimal] = None,
) -> TariffResolution:
    """Compute the charge for a plot from a tariff and an optional override.

    Args:
        unit: Tariff unit (PLOT or AREA)
        tariff_amount: Base tariff amount (per plot or per unit area)
        plot_area: Plot area, required by AREA tariffs
        override_amount: Amount of an existing override, if any

    Returns:
        TariffResolution. amount is None when the tariff is area-based and
        the plot has no area.
    """
    if override_amount is not None:
        return TariffResolution(Decimal(override_amount).quantize(CENT), True)

    if unit == TariffUnit.PLOT:
        return TariffResolution(Decimal(tariff_amount).quantize(CENT), False)

    if unit == TariffUnit.AREA:
        if plot_area is None:
            return TariffResolution(None, False)
        amount = (Decimal(tariff_amount) * Decimal(plot_area)).quantize(
            CENT, rounding=ROUND_HALF_UP
        )
        return TariffResolution(amount, False)

    raise ValueError(f"Unknown tariff unit: {unit}")


class TariffService:
    """Tariff lookups, amount resolution and override CRUD."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def get_tariff(self, tariff_id: int) -> Tariff:
        tariff = self.db.get(Tariff, tariff_id)
        if tariff is None:
            raise NotFoundError(f"Tariff {tariff_id} not found")
        return tariff

    def create_tariff(
        self,
        name: str,
        tariff_type: TariffType,
        unit: TariffUnit,
        amount: Decimal,
        active_from: date,
        active_to: Optional[date] = None,
        status: TariffStatus = TariffStatus.ACTIVE,
    ) -> Tariff:
        """Create a tariff.

        Raises:
            ValidationError: If amount is negative or the date range is empty
        """
        if Decimal(amount) < 0:
            raise ValidationError("Tariff amount must not be negative")
        if active_to is not None and active_to < active_from:
            raise ValidationError("active_to must not be before active_from")

        tariff = Tariff(
            name=name,
            type=TariffType(tariff_type),
            unit=TariffUnit(unit),
            amount=Decimal(amount),
            active_from=active_from,
            active_to=active_to,
            status=TariffStatus(status),
        )
        self.db.add(tariff)
        self.db.commit()
        self.db.refresh(tariff)
        logger.info("Created tariff: id=%d, type=%s, amount=%s", tariff.id, tariff.type.value, amount)
        return tariff

    def select_active_tariff(self, tariff_type: TariffType, on_date: date) -> Optional[Tariff]:
        """Return the tariff of a type active on a date, ignoring draft tariffs.

        When several tariffs overlap, the one that started most recently wins.
        """
        candidates = (
            self.db.query(Tariff)
            .filter(
                Tariff.type == tariff_type,
                Tariff.status == TariffStatus.ACTIVE,
                Tariff.active_from <= on_date,
            )
            .order_by(Tariff.active_from.desc(), Tariff.id.desc())
            .all()
        )
        for tariff in candidates:
            if tariff.is_active_on(on_date):
                return tariff
        return None

    def find_override(self, tariff_id: int, plot_id: int) -> Optional[TariffOverride]:
        return (
            self.db.query(TariffOverride)
            .filter(TariffOverride.tariff_id == tariff_id, TariffOverride.plot_id == plot_id)
            .first()
        )

    def overrides_by_plot(self, tariff_id: int) -> dict[int, TariffOverride]:
        """Map plot_id to override for one tariff (bulk lookup for generation)."""
        return {o.plot_id: o for o in self.list_overrides(tariff_id)}

    def list_overrides(self, tariff_id: int) -> list[TariffOverride]:
        return (
            self.db.query(TariffOverride)
            .filter(TariffOverride.tariff_id == tariff_id)
            .order_by(TariffOverride.plot_id)
            .all()
        )

    def compute(
        self,
        tariff: Tariff,
        plot_area: Optional[Decimal],
        override: Optional[TariffOverride] = None,
    ) -> TariffResolution:
        return compute_amount(
            tariff.unit,
            tariff.amount,
            plot_area,
            override.amount if override is not None else None,
        )

    def resolve(self, tariff: Tariff, plot_id: int, plot_area: Optional[Decimal]) -> TariffResolution:
        return self.compute(tariff, plot_area, self.find_override(tariff.id, plot_id))

    def resolve_amount(
        self, tariff_id: int, plot_id: int, plot_area: Optional[Decimal]
    ) -> Optional[Decimal]:
        """Effective charge for a (tariff, plot) pair; None when area is missing.

        Raises:
            NotFoundError: If the tariff does not exist
        """
        return self.resolve(self.get_tariff(tariff_id), plot_id, plot_area).amount

    def create_override(
        self,
        tariff_id: int,
        plot_id: int,
        amount: Decimal,
        comment: Optional[str] = None,
        actor_id: int | None = None,
    ) -> TariffOverride:
        """Create a per-plot override.

        Raises:
            NotFoundError: If tariff or plot does not exist
            ValidationError: If amount is negative
            ConflictError: If an override already exists for the pair
        """
        self.get_tariff(tariff_id)
        if self.db.get(Plot, plot_id) is None:
            raise NotFoundError(f"Plot {plot_id} not found")
        if amount is None or Decimal(amount) < 0:
            raise ValidationError("Override amount must be a non-negative number")
        if self.find_override(tariff_id, plot_id) is not None:
            raise ConflictError(
                f"Override for tariff {tariff_id} and plot {plot_id} already exists; delete it first",
                "override_exists",
            )

        override = TariffOverride(
            tariff_id=tariff_id,
            plot_id=plot_id,
            amount=Decimal(amount),
            comment=comment,
        )
        self.db.add(override)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(
                f"Override for tariff {tariff_id} and plot {plot_id} already exists",
                "override_exists",
            ) from e

        AuditService.log(
            self.db,
            "tariff_override",
            override.id,
            "create",
            actor_id,
            {
                "before": None,
                "after": {
                    "tariff_id": tariff_id,
                    "plot_id": plot_id,
                    "amount": str(override.amount),
                    "comment": comment,
                },
            },
        )
        self.db.commit()
        self.db.refresh(override)
        logger.info(
            "Created tariff override: id=%d, tariff_id=%d, plot_id=%d, amount=%s",
            override.id,
            tariff_id,
            plot_id,
            amount,
        )
        return override

    def delete_override(self, override_id: int, actor_id: int | None = None) -> None:
        """Delete an override.

        Raises:
            NotFoundError: If the override does not exist
        """
        override = self.db.get(TariffOverride, override_id)
        if override is None:
            raise NotFoundError(f"Override {override_id} not found")

        snapshot = {
            "tariff_id": override.tariff_id,
            "plot_id": override.plot_id,
            "amount": str(override.amount),
            "comment": override.comment,
        }
        self.db.delete(override)
        AuditService.log(
            self.db,
            "tariff_override",
            override_id,
            "delete",
            actor_id,
            {"before": snapshot, "after": None},
        )
        self.db.commit()
        logger.info("Deleted tariff override %d", override_id)


__all__ = ["TariffService", "TariffResolution", "compute_amount"]
