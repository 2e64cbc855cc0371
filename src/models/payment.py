"""Payment ORM models: payments, their allocations, import batches and containers."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models import Base, BaseModel


class PaymentMethod(str, Enum):
    """How the money arrived."""

    BANK = "bank"
    CASH = "cash"
    CARD = "card"
    OTHER = "other"


class ImportBatchStatus(str, Enum):
    """Lifecycle of a payment import batch."""

    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"


class AccrualPeriod(Base, BaseModel):
    """Monthly container grouping payments by (year, month, category)."""

    __tablename__ = "accrual_periods"

    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)

    __table_args__ = (
        UniqueConstraint("year", "month", "category", name="uq_accrual_period_key"),
    )

    def __repr__(self) -> str:
        return f"<AccrualPeriod(id={self.id}, {self.year}-{self.month:02d}, category={self.category!r})>"


class ImportBatch(Base, BaseModel):
    """One run of a payment import (bank statement or manual batch).

    Imports are not atomic: each row is processed on its own, and the batch
    keeps the totals and a breakdown of skip reasons.
    """

    __tablename__ = "import_batches"

    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    imported_by_user_id: Mapped[int | None] = mapped_column(nullable=True)
    comment: Mapped[str | None] = mapped_column(String(500), nullable=True)
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skip_reasons: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[ImportBatchStatus] = mapped_column(
        SQLEnum(ImportBatchStatus), nullable=False, default=ImportBatchStatus.COMPLETED
    )
    rolled_back_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    payments: Mapped[list["Payment"]] = relationship("Payment", back_populates="import_batch")

    def __repr__(self) -> str:
        return (
            f"<ImportBatch(id={self.id}, total={self.total_rows}, "
            f"created={self.created_count}, skipped={self.skipped_count})>"
        )


class Payment(Base, BaseModel):
    """Monetary event received from a plot owner.

    A payment with a reference is unique among non-voided payments. Any part of
    the amount that could not be allocated to outstanding accruals is kept in
    credit_amount rather than dropped.
    """

    __tablename__ = "payments"

    plot_id: Mapped[int | None] = mapped_column(
        ForeignKey("plots.id"),
        nullable=True,
        index=True,
        comment="Matched plot (null until matched)",
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    paid_at: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod), nullable=False, default=PaymentMethod.BANK
    )
    reference: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Bank reference used as the deduplication key",
    )
    category: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Payment purpose: membership, target, electricity",
    )
    payer: Mapped[str | None] = mapped_column(String(255), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Part of the amount not allocated to any accrual",
    )
    import_batch_id: Mapped[int | None] = mapped_column(
        ForeignKey("import_batches.id"), nullable=True, index=True
    )
    accrual_period_id: Mapped[int | None] = mapped_column(
        ForeignKey("accrual_periods.id"), nullable=True, index=True
    )
    created_by_user_id: Mapped[int | None] = mapped_column(nullable=True)

    is_voided: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    void_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by_user_id: Mapped[int | None] = mapped_column(nullable=True)

    import_batch: Mapped["ImportBatch | None"] = relationship(
        "ImportBatch", back_populates="payments"
    )
    accrual_period: Mapped["AccrualPeriod | None"] = relationship("AccrualPeriod")
    allocations: Mapped[list["PaymentAllocation"]] = relationship(
        "PaymentAllocation",
        back_populates="payment",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index(
            "uq_payment_reference_active",
            "reference",
            unique=True,
            sqlite_where=text("is_voided = 0 AND reference IS NOT NULL"),
            postgresql_where=text("is_voided = false AND reference IS NOT NULL"),
        ),
        Index("idx_payment_plot_day", "plot_id", "paid_at"),
    )

    @property
    def allocated_amount(self) -> Decimal:
        return sum((Decimal(a.amount) for a in self.allocations), Decimal("0"))

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, plot_id={self.plot_id}, amount={self.amount}, "
            f"paid_at={self.paid_at}, reference={self.reference!r}, voided={self.is_voided})>"
        )


class PaymentAllocation(Base, BaseModel):
    """Portion of a payment applied to one accrual."""

    __tablename__ = "payment_allocations"

    payment_id: Mapped[int] = mapped_column(
        ForeignKey("payments.id"), nullable=False, index=True
    )
    accrual_id: Mapped[int] = mapped_column(
        ForeignKey("period_accruals.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    payment: Mapped["Payment"] = relationship("Payment", back_populates="allocations")
    accrual: Mapped["PeriodAccrual"] = relationship("PeriodAccrual")  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<PaymentAllocation(id={self.id}, payment_id={self.payment_id}, "
            f"accrual_id={self.accrual_id}, amount={self.amount})>"
        )


__all__ = [
    "AccrualPeriod",
    "ImportBatch",
    "ImportBatchStatus",
    "Payment",
    "PaymentAllocation",
    "PaymentMethod",
]
