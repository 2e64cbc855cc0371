"""Payment import, deduplication and voiding.

Provides methods for:
- Importing single payments and batches of bank statement rows
- Duplicate detection by reference or by (plot, method, amount, day)
- Voiding payments and rolling back whole import batches

Imports are not atomic: every row is validated, deduplicated, stored and
allocated on its own, and a bad row is reported as a skip reason.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from itertools import islice
from typing import Any, Iterable, Iterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models.payment import (
    AccrualPeriod,
    ImportBatch,
    ImportBatchStatus,
    Payment,
    PaymentMethod,
)
from src.models.plot import Plot
from src.services.allocation_service import AllocationService, allocated_period_ids
from src.services.audit_service import AuditService
from src.services.config import load_config
from src.services.errors import BillingError, ConflictError, NotFoundError
from src.services.parsers import parse_amount, parse_payment_date
from src.services.period_service import periods_guard

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "membership"


class SkipReason:
    DUPLICATE = "DUPLICATE"
    INVALID = "INVALID"
    NOT_FOUND = "NOT_FOUND"


@dataclass
class PaymentRow:
    """One incoming payment as delivered by a statement parser or staff form.

    plot_id is the plot resolved upstream; this service trusts it as is.
    """

    paid_at: Any
    amount: Any
    plot_id: Optional[int] = None
    reference: Optional[str] = None
    category: Optional[str] = None
    purpose: Optional[str] = None
    payer: Optional[str] = None
    method: str = PaymentMethod.BANK.value
    row_index: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict, row_index: Optional[int] = None) -> "PaymentRow":
        return cls(
            paid_at=data.get("paid_at"),
            amount=data.get("amount"),
            plot_id=data.get("plot_id", data.get("plot_id_matched")),
            reference=data.get("reference") or None,
            category=data.get("category") or None,
            purpose=data.get("purpose"),
            payer=data.get("payer"),
            method=data.get("method") or PaymentMethod.BANK.value,
            row_index=data.get("row_index", row_index),
        )


@dataclass
class RowOutcome:
    row_index: Optional[int]
    payment_id: Optional[int] = None
    skipped: Optional[str] = None
    detail: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.payment_id is not None


@dataclass
class BatchResult:
    batch_id: int
    total_rows: int = 0
    created: list[RowOutcome] = field(default_factory=list)
    skipped: list[RowOutcome] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def skip_reasons(self) -> dict[str, int]:
        reasons: dict[str, int] = {}
        for outcome in self.skipped:
            reasons[outcome.skipped] = reasons.get(outcome.skipped, 0) + 1
        return reasons


def _chunks(rows: Iterable, size: int) -> Iterator[list]:
    iterator = iter(rows)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


class PaymentImportService:
    """Stores incoming payments and allocates them to outstanding accruals."""

    def __init__(self, db: Session, chunk_size: Optional[int] = None):
        """Initialize with database session.

        Args:
            db: SQLAlchemy database session
            chunk_size: Rows per progress commit (default IMPORT_CHUNK_SIZE)
        """
        self.db = db
        self.chunk_size = chunk_size or load_config().import_chunk_size
        self.allocations = AllocationService(db)

    # Lookups

    def get_payment(self, payment_id: int) -> Payment:
        payment = self.db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        return payment

    def get_batch(self, batch_id: int) -> ImportBatch:
        batch = self.db.get(ImportBatch, batch_id)
        if batch is None:
            raise NotFoundError(f"Import batch {batch_id} not found")
        return batch

    def list_payments(
        self, plot_id: Optional[int] = None, include_voided: bool = False
    ) -> list[Payment]:
        query = self.db.query(Payment)
        if plot_id is not None:
            query = query.filter(Payment.plot_id == plot_id)
        if not include_voided:
            query = query.filter(Payment.is_voided.is_(False))
        return query.order_by(Payment.paid_at, Payment.id).all()

    def is_duplicate(
        self,
        reference: Optional[str],
        plot_id: int,
        method: PaymentMethod,
        amount: Decimal,
        paid_on: date,
    ) -> bool:
        """Check non-voided payments for the same reference or fingerprint."""
        query = self.db.query(Payment.id).filter(Payment.is_voided.is_(False))
        if reference:
            query = query.filter(Payment.reference == reference)
        else:
            query = query.filter(
                Payment.plot_id == plot_id,
                Payment.method == method,
                Payment.amount == amount,
                Payment.paid_at == paid_on,
            )
        return query.first() is not None

    def ensure_accrual_period(self, paid_on: date, category: Optional[str]) -> AccrualPeriod:
        """Get or create the monthly payment container for (year, month, category)."""
        category = category or DEFAULT_CATEGORY
        container = (
            self.db.query(AccrualPeriod)
            .filter_by(year=paid_on.year, month=paid_on.month, category=category)
            .first()
        )
        if container is None:
            container = AccrualPeriod(year=paid_on.year, month=paid_on.month, category=category)
            self.db.add(container)
            self.db.flush()
        return container

    # Import

    def _validate_row(self, row: PaymentRow) -> tuple[Optional[str], Optional[str], dict]:
        """Return (skip_reason, detail, parsed values)."""
        try:
            paid_on = parse_payment_date(row.paid_at)
            amount = parse_amount(row.amount)
        except ValueError as e:
            paid_on, amount, parse_error = None, None, str(e)
        else:
            parse_error = None

        if row.plot_id is None:
            return SkipReason.NOT_FOUND, "plot not resolved", {}
        if parse_error:
            return SkipReason.INVALID, parse_error, {}
        if paid_on is None:
            return SkipReason.INVALID, "missing payment date", {}
        if amount is None or amount <= 0:
            return SkipReason.INVALID, "amount must be positive", {}
        try:
            method = PaymentMethod(row.method)
        except ValueError:
            return SkipReason.INVALID, f"unknown method '{row.method}'", {}
        if self.db.get(Plot, row.plot_id) is None:
            return SkipReason.NOT_FOUND, f"plot {row.plot_id} not found", {}

        return None, None, {"paid_on": paid_on, "amount": amount, "method": method}

    def _import_row(
        self,
        row: PaymentRow,
        batch: Optional[ImportBatch] = None,
        actor_id: int | None = None,
    ) -> RowOutcome:
        reason, detail, parsed = self._validate_row(row)
        if reason:
            return RowOutcome(row.row_index, skipped=reason, detail=detail)

        if self.is_duplicate(
            row.reference, row.plot_id, parsed["method"], parsed["amount"], parsed["paid_on"]
        ):
            return RowOutcome(row.row_index, skipped=SkipReason.DUPLICATE)

        comment_parts = [row.purpose, batch.comment if batch else None]
        payment = Payment(
            plot_id=row.plot_id,
            amount=parsed["amount"],
            paid_at=parsed["paid_on"],
            method=parsed["method"],
            reference=row.reference,
            category=row.category,
            payer=row.payer,
            comment=" | ".join(p for p in comment_parts if p) or None,
            credit_amount=Decimal("0"),
            import_batch_id=batch.id if batch else None,
            created_by_user_id=actor_id,
        )
        try:
            payment.accrual_period_id = self.ensure_accrual_period(
                parsed["paid_on"], row.category
            ).id
            self.db.add(payment)
            self.db.flush()
            self.allocations.allocate(payment)
        except IntegrityError:
            # Concurrent import of the same reference won the race
            self.db.rollback()
            return RowOutcome(row.row_index, skipped=SkipReason.DUPLICATE)

        return RowOutcome(row.row_index, payment_id=payment.id)

    def import_payment(self, row: PaymentRow, actor_id: int | None = None) -> RowOutcome:
        """Import one payment outside of a batch (manual entry).

        Returns:
            RowOutcome with payment_id set, or with a skip reason
        """
        outcome = self._import_row(row, actor_id=actor_id)
        if outcome.created:
            payment = self.get_payment(outcome.payment_id)
            AuditService.log(
                self.db,
                "payment",
                payment.id,
                "create",
                actor_id,
                {
                    "before": None,
                    "after": {
                        "plot_id": payment.plot_id,
                        "amount": str(payment.amount),
                        "paid_at": payment.paid_at.isoformat(),
                        "reference": payment.reference,
                        "credit_amount": str(payment.credit_amount),
                    },
                },
            )
            self.db.commit()
            logger.info("Recorded payment %d for plot %d", payment.id, payment.plot_id)
        else:
            logger.warning("Payment row skipped: %s (%s)", outcome.skipped, outcome.detail)
        return outcome

    def import_payments(
        self,
        rows: Iterable,
        file_name: Optional[str] = None,
        comment: Optional[str] = None,
        actor_id: int | None = None,
    ) -> BatchResult:
        """Import a batch of payment rows.

        Args:
            rows: PaymentRow objects or dicts with the same keys
            file_name: Source statement file name
            comment: Import comment appended to every payment
            actor_id: Staff member running the import

        Returns:
            BatchResult with created and skipped outcomes per row
        """
        batch = ImportBatch(
            file_name=file_name,
            imported_by_user_id=actor_id,
            comment=comment,
            status=ImportBatchStatus.COMPLETED,
        )
        self.db.add(batch)
        self.db.commit()
        self.db.refresh(batch)

        result = BatchResult(batch_id=batch.id)
        index = 0
        for chunk in _chunks(rows, self.chunk_size):
            for raw in chunk:
                index += 1
                row = raw if isinstance(raw, PaymentRow) else PaymentRow.from_dict(raw, index)
                if row.row_index is None:
                    row.row_index = index
                outcome = self._import_row(row, batch=batch, actor_id=actor_id)
                (result.created if outcome.created else result.skipped).append(outcome)

            result.total_rows = index
            self._store_totals(batch, result)
            self.db.commit()
            logger.debug("Import batch %d: %d rows processed", batch.id, index)

        self._store_totals(batch, result)
        AuditService.log(
            self.db,
            "import_batch",
            batch.id,
            "import_payments",
            actor_id,
            {
                "before": None,
                "after": {
                    "total_rows": result.total_rows,
                    "created": result.created_count,
                    "skipped": result.skipped_count,
                    "skip_reasons": result.skip_reasons,
                },
            },
        )
        self.db.commit()

        logger.info(
            "Import batch %d finished: total=%d, created=%d, skipped=%d %s",
            batch.id,
            result.total_rows,
            result.created_count,
            result.skipped_count,
            result.skip_reasons,
        )
        return result

    @staticmethod
    def _store_totals(batch: ImportBatch, result: BatchResult) -> None:
        batch.total_rows = result.total_rows
        batch.created_count = result.created_count
        batch.skipped_count = result.skipped_count
        batch.skip_reasons = result.skip_reasons or None

    # Voiding

    def _void(self, payment: Payment, reason: Optional[str], actor_id: int | None) -> Decimal:
        reversed_total = self.allocations.reverse_allocations(payment)
        payment.is_voided = True
        payment.void_reason = reason
        payment.voided_at = datetime.now(timezone.utc)
        payment.voided_by_user_id = actor_id
        return reversed_total

    def void_payment(
        self, payment_id: int, reason: Optional[str] = None, actor_id: int | None = None
    ) -> Payment:
        """Void a payment and reverse its allocations.

        Raises:
            NotFoundError: If the payment does not exist
            ConflictError: If already voided
            PeriodLockedError: If an allocation touches a locked period
        """
        payment = self.get_payment(payment_id)
        if payment.is_voided:
            raise ConflictError(f"Payment {payment_id} is already voided", "already_voided")

        with periods_guard(self.db, allocated_period_ids([payment])):
            try:
                reversed_total = self._void(payment, reason, actor_id)
            except BillingError:
                self.db.rollback()
                raise

            AuditService.log(
                self.db,
                "payment",
                payment.id,
                "void",
                actor_id,
                {
                    "before": {"is_voided": False},
                    "after": {"is_voided": True, "reason": reason, "reversed": str(reversed_total)},
                },
            )
            self.db.commit()

        self.db.refresh(payment)
        logger.info("Voided payment %d (reversed %s)", payment.id, reversed_total)
        return payment

    def rollback_batch(
        self, batch_id: int, reason: Optional[str] = None, actor_id: int | None = None
    ) -> ImportBatch:
        """Void every payment of an import batch and mark it rolled back.

        All-or-nothing: if any payment cannot be reversed, nothing changes.

        Raises:
            NotFoundError: If the batch does not exist
            ConflictError: If already rolled back
            PeriodLockedError: If an allocation touches a locked period
        """
        batch = self.get_batch(batch_id)
        if batch.status == ImportBatchStatus.ROLLED_BACK:
            raise ConflictError(f"Import batch {batch_id} is already rolled back", "already_rolled_back")

        active = [p for p in batch.payments if not p.is_voided]
        with periods_guard(self.db, allocated_period_ids(active)):
            try:
                for payment in active:
                    self._void(payment, reason or f"rollback of import batch {batch_id}", actor_id)
            except BillingError:
                self.db.rollback()
                logger.warning("Rollback of import batch %d rejected", batch_id)
                raise

            batch.status = ImportBatchStatus.ROLLED_BACK
            batch.rolled_back_at = datetime.now(timezone.utc)
            AuditService.log(
                self.db,
                "import_batch",
                batch.id,
                "rollback",
                actor_id,
                {
                    "before": {"status": ImportBatchStatus.COMPLETED.value},
                    "after": {"status": ImportBatchStatus.ROLLED_BACK.value, "voided": len(active)},
                },
            )
            self.db.commit()

        self.db.refresh(batch)
        logger.info("Rolled back import batch %d: %d payments voided", batch_id, len(active))
        return batch


__all__ = [
    "BatchResult",
    "PaymentImportService",
    "PaymentRow",
    "RowOutcome",
    "SkipReason",
]
