"""Debt repayment plan ORM model."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, ForeignKey, Index, Numeric, String, UniqueConstraint, text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from src.models import Base, BaseModel


class PlanStatus(str, Enum):
    """Repayment plan workflow status.

    Informal workflow: pending -> agreed / in_progress -> completed, or
    cancelled from any state. Transitions are not enforced.
    """

    PENDING = "pending"
    AGREED = "agreed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DebtRepaymentPlan(Base, BaseModel):
    """Negotiated plan for a plot to pay off its debt.

    period_id is null when the plan applies across all periods; a plot has at
    most one such plan.
    """

    __tablename__ = "debt_repayment_plans"

    plot_id: Mapped[int] = mapped_column(
        ForeignKey("plots.id"), nullable=False, index=True
    )
    period_id: Mapped[int | None] = mapped_column(
        ForeignKey("billing_periods.id"), nullable=True, index=True
    )
    status: Mapped[PlanStatus] = mapped_column(
        SQLEnum(PlanStatus), nullable=False, default=PlanStatus.PENDING
    )
    comment: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    agreed_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    agreed_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(nullable=True)
    updated_by_user_id: Mapped[int | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("plot_id", "period_id", name="uq_repayment_plan_plot_period"),
        # NULL period_ids are distinct under the constraint above
        Index(
            "uq_repayment_plan_plot_all_periods",
            "plot_id",
            unique=True,
            sqlite_where=text("period_id IS NULL"),
            postgresql_where=text("period_id IS NULL"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<DebtRepaymentPlan(id={self.id}, plot_id={self.plot_id}, "
            f"period_id={self.period_id}, status={self.status})>"
        )


__all__ = ["DebtRepaymentPlan", "PlanStatus"]
