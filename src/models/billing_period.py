"""Billing period ORM model (DRAFT/LOCKED state machine)."""

from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models import Base, BaseModel


class PeriodStatus(str, Enum):
    """Status of a billing period."""

    DRAFT = "draft"
    """Accruals may be generated and payments allocated"""

    LOCKED = "locked"
    """Ledger frozen; only an explicit unlock returns the period to draft"""


class BillingPeriod(Base, BaseModel):
    """Date range over which accruals are generated and eventually locked.

    Attributes:
        name: Unique period identifier (e.g., "2025-01")
        date_from: Period start date (inclusive)
        date_to: Period end date (inclusive)
        status: DRAFT or LOCKED
        locked_at: When the period was last locked
        updated_by_user_id: Staff member who performed the last transition
        generation_note: "generation_failed" when a generation run aborted midway
    """

    __tablename__ = "billing_periods"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    date_from: Mapped[date] = mapped_column(Date, nullable=False)
    date_to: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[PeriodStatus] = mapped_column(
        SQLEnum(PeriodStatus), nullable=False, default=PeriodStatus.DRAFT
    )
    locked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_by_user_id: Mapped[int | None] = mapped_column(nullable=True)
    generation_note: Mapped[str | None] = mapped_column(String(50), nullable=True)

    accruals: Mapped[list["PeriodAccrual"]] = relationship(  # noqa: F821
        "PeriodAccrual",
        back_populates="period",
        cascade="all, delete-orphan",
    )

    @property
    def midpoint(self) -> date:
        """Middle date of the period, used to pick the applicable tariff."""
        return self.date_from + (self.date_to - self.date_from) / 2

    def __repr__(self) -> str:
        return f"<BillingPeriod(id={self.id}, name='{self.name}', status={self.status.value})>"


__all__ = ["BillingPeriod", "PeriodStatus"]
