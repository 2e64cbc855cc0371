"""Period accrual ORM model - one ledger line per (period, plot, charge type)."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models import Base, BaseModel

NEEDS_REVIEW = "needs_review"


class AccrualType(str, Enum):
    """Charge types accrued per plot."""

    MEMBERSHIP = "membership"
    TARGET = "target"
    ELECTRIC = "electric"


class PeriodAccrual(Base, BaseModel):
    """Charge recorded against a plot for a billing period and charge type.

    amount_paid is the running total of PaymentAllocation rows applied to this
    accrual and never exceeds amount_accrued. A note of "needs_review" marks a
    row whose amount could not be computed (e.g. area-based tariff, no area).
    """

    __tablename__ = "period_accruals"

    period_id: Mapped[int] = mapped_column(
        ForeignKey("billing_periods.id"), nullable=False, index=True
    )
    plot_id: Mapped[int] = mapped_column(
        ForeignKey("plots.id"), nullable=False, index=True
    )
    type: Mapped[AccrualType] = mapped_column(SQLEnum(AccrualType), nullable=False)
    amount_accrued: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    override_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tariff_id: Mapped[int | None] = mapped_column(
        ForeignKey("tariffs.id"), nullable=True
    )
    note: Mapped[str | None] = mapped_column(String(50), nullable=True)

    period: Mapped["BillingPeriod"] = relationship(  # noqa: F821
        "BillingPeriod", back_populates="accruals"
    )

    __table_args__ = (
        UniqueConstraint("period_id", "plot_id", "type", name="uq_period_accrual_key"),
        Index("idx_accrual_plot_type", "plot_id", "type"),
    )

    @property
    def outstanding(self) -> Decimal:
        """Unpaid remainder of this accrual (never negative)."""
        return max(Decimal("0"), Decimal(self.amount_accrued) - Decimal(self.amount_paid))

    @property
    def needs_review(self) -> bool:
        return self.note == NEEDS_REVIEW

    def __repr__(self) -> str:
        return (
            f"<PeriodAccrual(id={self.id}, period_id={self.period_id}, plot_id={self.plot_id}, "
            f"type={self.type}, accrued={self.amount_accrued}, paid={self.amount_paid})>"
        )


__all__ = ["PeriodAccrual", "AccrualType", "NEEDS_REVIEW"]
