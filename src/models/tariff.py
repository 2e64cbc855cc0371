"""Tariff and per-plot tariff override ORM models."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models import Base, BaseModel


class TariffType(str, Enum):
    """Kind of charge a tariff defines."""

    MEMBER = "member"
    TARGET = "target"
    ELECTRIC = "electric"


class TariffUnit(str, Enum):
    """How the tariff amount is applied to a plot."""

    PLOT = "plot"
    """Flat amount per plot"""

    AREA = "area"
    """Amount per unit of plot area"""


class TariffStatus(str, Enum):
    """Tariff publication status. Draft tariffs never produce accruals."""

    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class Tariff(Base, BaseModel):
    """Named charge rule active over a date range."""

    __tablename__ = "tariffs"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[TariffType] = mapped_column(SQLEnum(TariffType), nullable=False)
    unit: Mapped[TariffUnit] = mapped_column(
        SQLEnum(TariffUnit), nullable=False, default=TariffUnit.PLOT
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    active_from: Mapped[date] = mapped_column(Date, nullable=False)
    active_to: Mapped[date | None] = mapped_column(
        Date,
        nullable=True,
        comment="Last day the tariff applies (null = open ended)",
    )
    status: Mapped[TariffStatus] = mapped_column(
        SQLEnum(TariffStatus), nullable=False, default=TariffStatus.ACTIVE
    )

    overrides: Mapped[list["TariffOverride"]] = relationship(
        "TariffOverride",
        back_populates="tariff",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("idx_tariff_type_from", "type", "active_from"),)

    def is_active_on(self, on_date: date) -> bool:
        """Return True when the tariff is published and covers the given date."""
        if self.status != TariffStatus.ACTIVE:
            return False
        if on_date < self.active_from:
            return False
        return self.active_to is None or on_date <= self.active_to

    def __repr__(self) -> str:
        return (
            f"<Tariff(id={self.id}, type={self.type}, unit={self.unit}, "
            f"amount={self.amount}, status={self.status})>"
        )


class TariffOverride(Base, BaseModel):
    """Per-plot exception to a tariff's computed amount.

    Immutable once created: to change an override, delete it and create a new one.
    """

    __tablename__ = "tariff_overrides"

    tariff_id: Mapped[int] = mapped_column(
        ForeignKey("tariffs.id"), nullable=False, index=True
    )
    plot_id: Mapped[int] = mapped_column(
        ForeignKey("plots.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    comment: Mapped[str | None] = mapped_column(String(500), nullable=True)

    tariff: Mapped["Tariff"] = relationship("Tariff", back_populates="overrides")

    __table_args__ = (
        UniqueConstraint("tariff_id", "plot_id", name="uq_tariff_override_tariff_plot"),
    )

    def __repr__(self) -> str:
        return (
            f"<TariffOverride(id={self.id}, tariff_id={self.tariff_id}, "
            f"plot_id={self.plot_id}, amount={self.amount})>"
        )


__all__ = ["Tariff", "TariffOverride", "TariffType", "TariffUnit", "TariffStatus"]
