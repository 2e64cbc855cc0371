"""Penalty accrual ORM model - late-payment charge per (plot, billing period)."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from src.models import Base, BaseModel

PENALTY_POLICY_VERSION = "v1.0"


class PenaltyStatus(str, Enum):
    """Penalty lifecycle.

    active penalties are recalculated by apply/recalc runs, frozen ones keep
    their amount until unfrozen, voided ones are ignored.
    """

    ACTIVE = "active"
    FROZEN = "frozen"
    VOIDED = "voided"


class PenaltyAccrual(Base, BaseModel):
    """Penalty charged to a plot in a billing period for overdue debt.

    The calculation inputs (as_of, annual_rate, base_debt, days_overdue,
    policy_version) are stored with the amount so a penalty can be explained
    and recalculated later. At most one non-voided penalty exists per
    (plot, period).
    """

    __tablename__ = "penalty_accruals"

    plot_id: Mapped[int] = mapped_column(ForeignKey("plots.id"), nullable=False, index=True)
    period_id: Mapped[int] = mapped_column(
        ForeignKey("billing_periods.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[PenaltyStatus] = mapped_column(
        SQLEnum(PenaltyStatus), nullable=False, default=PenaltyStatus.ACTIVE
    )

    as_of: Mapped[date] = mapped_column(Date, nullable=False)
    annual_rate: Mapped[Decimal] = mapped_column(Numeric(8, 4), nullable=False)
    base_debt: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    days_overdue: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    policy_version: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PENALTY_POLICY_VERSION
    )

    created_by_user_id: Mapped[int | None] = mapped_column(nullable=True)
    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by_user_id: Mapped[int | None] = mapped_column(nullable=True)
    freeze_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    frozen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    frozen_by_user_id: Mapped[int | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index(
            "uq_penalty_plot_period_active",
            "plot_id",
            "period_id",
            unique=True,
            sqlite_where=text("status != 'VOIDED'"),
            postgresql_where=text("status != 'VOIDED'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<PenaltyAccrual(id={self.id}, plot_id={self.plot_id}, period_id={self.period_id}, "
            f"amount={self.amount}, status={self.status})>"
        )


__all__ = ["PenaltyAccrual", "PenaltyStatus", "PENALTY_POLICY_VERSION"]
