"""Plot ORM model for billable garden lots."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Enum as SQLEnum
from sqlalchemy import Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models import Base, BaseModel


class PlotStatus(str, Enum):
    """Registry status of a plot."""

    ACTIVE = "active"
    ARCHIVED = "archived"


class Plot(Base, BaseModel):
    """Model representing a billable unit (garden lot).

    Plots are owned by the registry; the billing core only reads them.
    The area (in sotkas) is required by area-based tariffs only.
    """

    __tablename__ = "plots"

    number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Plot number as shown to residents (e.g., '12', '4А')",
    )
    area: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2),
        nullable=True,
        comment="Plot area used by area-based tariffs",
    )
    status: Mapped[PlotStatus] = mapped_column(
        SQLEnum(PlotStatus),
        nullable=False,
        default=PlotStatus.ACTIVE,
    )

    __table_args__ = (Index("idx_plot_status", "status"),)

    def __repr__(self) -> str:
        return f"<Plot(id={self.id}, number={self.number!r}, area={self.area}, status={self.status})>"


__all__ = ["Plot", "PlotStatus"]
