"""Billing period lifecycle: creation, lock/unlock and the mutability guard.

Every operation that writes period-scoped ledger rows (accrual generation,
allocation, lock, unlock) runs inside period_guard, which serializes work on
one period and re-reads its status under the guard.
"""

import logging
import threading
from contextlib import ExitStack, contextmanager
from datetime import date, datetime, timezone
from typing import Iterable, Iterator

from sqlalchemy.orm import Session

from src.models.billing_period import BillingPeriod, PeriodStatus
from src.services.audit_service import AuditService
from src.services.errors import ConflictError, NotFoundError, PeriodLockedError, ValidationError
from src.services.reconciliation_service import ReconciliationService, summarize

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
_period_locks: dict[int, threading.Lock] = {}


def period_lock(period_id: int) -> threading.Lock:
    """Return the process-wide lock serializing writes to one period."""
    with _registry_lock:
        lock = _period_locks.get(period_id)
        if lock is None:
            lock = threading.Lock()
            _period_locks[period_id] = lock
        return lock


def ensure_period_mutable(period: BillingPeriod) -> None:
    """Raise PeriodLockedError unless the period is in draft."""
    if period.status != PeriodStatus.DRAFT:
        raise PeriodLockedError(period.id)


@contextmanager
def period_guard(db: Session, period_id: int) -> Iterator[BillingPeriod]:
    """Serialize work on a period and yield a freshly re-read row.

    The in-process lock covers concurrent requests of one worker; the
    SELECT ... FOR UPDATE re-read covers other workers on databases that
    support row locks.

    Raises:
        NotFoundError: If the period does not exist
    """
    lock = period_lock(period_id)
    with lock:
        period = (
            db.query(BillingPeriod)
            .filter(BillingPeriod.id == period_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if period is None:
            raise NotFoundError(f"Period {period_id} not found")
        yield period


@contextmanager
def periods_guard(db: Session, period_ids: Iterable[int]) -> Iterator[dict[int, BillingPeriod]]:
    """Enter period_guard for several periods at once.

    Locks are taken in ascending id order so that two writers touching the
    same periods never wait on each other crosswise.

    Yields:
        {period_id: re-read BillingPeriod}
    """
    with ExitStack() as stack:
        periods = {
            period_id: stack.enter_context(period_guard(db, period_id))
            for period_id in sorted(set(period_ids))
        }
        yield periods


class BillingPeriodService:
    """Service for billing period database operations."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def find_period(self, period_id: int) -> BillingPeriod | None:
        return self.db.get(BillingPeriod, period_id)

    def get_period(self, period_id: int) -> BillingPeriod:
        """Get period by ID.

        Raises:
            NotFoundError: If period does not exist
        """
        period = self.find_period(period_id)
        if period is None:
            raise NotFoundError(f"Period {period_id} not found")
        return period

    def list_periods(self, limit: int | None = None) -> list[BillingPeriod]:
        """List periods ordered by start date, newest first."""
        query = self.db.query(BillingPeriod).order_by(BillingPeriod.date_from.desc())
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def create_period(
        self,
        name: str,
        date_from: date,
        date_to: date,
        actor_id: int | None = None,
    ) -> BillingPeriod:
        """Create new billing period in draft.

        Raises:
            ValidationError: If date_from >= date_to or name is empty
            ConflictError: If a period with this name already exists
        """
        if not name or not name.strip():
            raise ValidationError("Period name is required")
        if date_from >= date_to:
            logger.warning("Invalid period dates: from=%s >= to=%s", date_from, date_to)
            raise ValidationError("date_from must be before date_to")

        existing = self.db.query(BillingPeriod).filter_by(name=name).first()
        if existing:
            raise ConflictError(f"Period with name '{name}' already exists", "period_exists")

        period = BillingPeriod(
            name=name,
            date_from=date_from,
            date_to=date_to,
            status=PeriodStatus.DRAFT,
            updated_by_user_id=actor_id,
        )
        self.db.add(period)
        self.db.flush()

        AuditService.log(
            self.db,
            "billing_period",
            period.id,
            "create",
            actor_id,
            {
                "before": None,
                "after": {
                    "name": name,
                    "date_from": date_from.isoformat(),
                    "date_to": date_to.isoformat(),
                    "status": PeriodStatus.DRAFT.value,
                },
            },
        )
        self.db.commit()
        self.db.refresh(period)

        logger.info(
            "Created billing period: id=%d, name=%s, dates=%s to %s",
            period.id,
            name,
            date_from,
            date_to,
        )
        return period

    def lock_period(self, period_id: int, actor_id: int | None = None) -> BillingPeriod:
        """Transition period draft -> locked and snapshot its totals.

        Raises:
            NotFoundError: If period does not exist
            ConflictError: If period is not in draft
        """
        with period_guard(self.db, period_id) as period:
            if period.status != PeriodStatus.DRAFT:
                logger.warning("Rejected lock of period %d in status %s", period_id, period.status.value)
                raise ConflictError(f"Period {period_id} is already locked", "invalid_transition")

            snapshot = summarize(ReconciliationService(self.db).build(period))
            period.status = PeriodStatus.LOCKED
            period.locked_at = datetime.now(timezone.utc)
            period.updated_by_user_id = actor_id

            AuditService.log(
                self.db,
                "billing_period",
                period.id,
                "lock",
                actor_id,
                {
                    "before": {"status": PeriodStatus.DRAFT.value},
                    "after": {"status": PeriodStatus.LOCKED.value},
                    "snapshot": snapshot.as_dict(),
                },
            )
            self.db.commit()
            self.db.refresh(period)

        logger.info("Locked billing period %d (actor=%s)", period_id, actor_id)
        return period

    def unlock_period(self, period_id: int, actor_id: int | None = None) -> BillingPeriod:
        """Transition period locked -> draft.

        Raises:
            NotFoundError: If period does not exist
            ConflictError: If period is not locked
        """
        with period_guard(self.db, period_id) as period:
            if period.status != PeriodStatus.LOCKED:
                logger.warning("Rejected unlock of period %d in status %s", period_id, period.status.value)
                raise ConflictError(f"Period {period_id} is not locked", "invalid_transition")

            period.status = PeriodStatus.DRAFT
            period.locked_at = None
            period.updated_by_user_id = actor_id

            AuditService.log(
                self.db,
                "billing_period",
                period.id,
                "unlock",
                actor_id,
                {
                    "before": {"status": PeriodStatus.LOCKED.value},
                    "after": {"status": PeriodStatus.DRAFT.value},
                },
            )
            self.db.commit()
            self.db.refresh(period)

        logger.info("Unlocked billing period %d (actor=%s)", period_id, actor_id)
        return period


__all__ = [
    "BillingPeriodService",
    "ensure_period_mutable",
    "period_guard",
    "period_lock",
    "periods_guard",
]
