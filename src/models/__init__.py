"""SQLAlchemy base model with common fields and model exports."""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Base class for all models
Base = declarative_base()


class BaseModel:
    """Base model with common timestamp fields."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


# Import models to register them with Base (after Base is defined)
# This must be after Base declaration to avoid circular imports
from src.models.audit_log import AuditLog  # noqa: E402
from src.models.billing_period import BillingPeriod, PeriodStatus  # noqa: E402
from src.models.debt_repayment_plan import DebtRepaymentPlan, PlanStatus  # noqa: E402
from src.models.payment import (  # noqa: E402
    AccrualPeriod,
    ImportBatch,
    ImportBatchStatus,
    Payment,
    PaymentAllocation,
    PaymentMethod,
)
from src.models.penalty_accrual import PenaltyAccrual, PenaltyStatus  # noqa: E402
from src.models.period_accrual import AccrualType, PeriodAccrual  # noqa: E402
from src.models.plot import Plot, PlotStatus  # noqa: E402
from src.models.tariff import (  # noqa: E402
    Tariff,
    TariffOverride,
    TariffStatus,
    TariffType,
    TariffUnit,
)

__all__ = [
    "Base",
    "BaseModel",
    "AuditLog",
    "BillingPeriod",
    "PeriodStatus",
    "DebtRepaymentPlan",
    "PlanStatus",
    "AccrualPeriod",
    "ImportBatch",
    "ImportBatchStatus",
    "Payment",
    "PaymentAllocation",
    "PaymentMethod",
    "AccrualType",
    "PeriodAccrual",
    "PenaltyAccrual",
    "PenaltyStatus",
    "Plot",
    "PlotStatus",
    "Tariff",
    "TariffOverride",
    "TariffStatus",
    "TariffType",
    "TariffUnit",
]
