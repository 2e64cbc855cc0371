"""Allocation of payments against outstanding accruals.

Payments are applied oldest-debt-first: accruals of the matching charge type
in draft periods, ordered by period start date and then accrual id. Whatever
cannot be applied stays on the payment as credit_amount.
"""

import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, Optional, Sequence

from sqlalchemy.orm import Session

from src.models.billing_period import BillingPeriod, PeriodStatus
from src.models.payment import Payment, PaymentAllocation
from src.models.period_accrual import AccrualType, PeriodAccrual
from src.services.audit_service import AuditService
from src.services.errors import NotFoundError, ValidationError
from src.services.period_service import ensure_period_mutable, period_guard, periods_guard

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

CATEGORY_TYPES = {
    "membership": AccrualType.MEMBERSHIP,
    "membership_fee": AccrualType.MEMBERSHIP,
    "target": AccrualType.TARGET,
    "target_fee": AccrualType.TARGET,
    "electricity": AccrualType.ELECTRIC,
    "electric": AccrualType.ELECTRIC,
}


def accrual_type_for_category(category: Optional[str]) -> Optional[AccrualType]:
    """Charge type a payment category pays for; None means any type."""
    if not category:
        return None
    return CATEGORY_TYPES.get(category.strip().lower())


def plan_oldest_first(
    amount: Decimal,
    outstanding: Sequence[tuple[int, Decimal]],
) -> tuple[list[tuple[int, Decimal]], Decimal]:
    """Split an amount across outstanding debts in the given order.

    Ensures: sum(parts) + remainder == amount (zero money loss/creation)

    Algorithm:
    1. Walk debts in order (caller sorts them oldest first)
    2. Apply min(remaining, debt) to each
    3. Stop when the amount is exhausted
    4. Whatever is left is the remainder (credit)

    Args:
        amount: Amount to distribute (Decimal)
        outstanding: (accrual_id, outstanding_amount) pairs, oldest first

    Returns:
        ([(accrual_id, applied_amount), ...], remainder)
    """
    remaining = Decimal(amount)
    parts: list[tuple[int, Decimal]] = []
    for accrual_id, debt in outstanding:
        if remaining <= ZERO:
            break
        debt = Decimal(debt)
        if debt <= ZERO:
            continue
        applied = min(remaining, debt)
        parts.append((accrual_id, applied))
        remaining -= applied
    return parts, max(ZERO, remaining)


def allocated_period_ids(payments: Sequence[Payment]) -> set[int]:
    """Periods holding allocations of the given payments."""
    return {a.accrual.period_id for p in payments for a in p.allocations}


class AllocationService:
    """Applies payments to accruals and tracks the resulting credit."""

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db

    def outstanding_accruals(
        self, plot_id: int, accrual_type: Optional[AccrualType] = None
    ) -> list[PeriodAccrual]:
        """Unpaid accruals of a plot in draft periods, oldest first.

        Rows are re-read from the database, so amounts written by other
        sessions are seen. Writers use plot_guard around this call.
        """
        query = (
            self.db.query(PeriodAccrual)
            .join(BillingPeriod, PeriodAccrual.period_id == BillingPeriod.id)
            .filter(
                PeriodAccrual.plot_id == plot_id,
                BillingPeriod.status == PeriodStatus.DRAFT,
            )
        )
        if accrual_type is not None:
            query = query.filter(PeriodAccrual.type == accrual_type)
        accruals = query.order_by(BillingPeriod.date_from, PeriodAccrual.id).populate_existing().all()
        return [a for a in accruals if a.outstanding > ZERO]

    @contextmanager
    def plot_guard(self, plot_id: int) -> Iterator[set[int]]:
        """Hold period_guard for every draft period with debt on the plot.

        Yields the ids of the guarded periods still in draft; allocation
        writes and their commit must happen inside the block.
        """
        period_ids = {a.period_id for a in self.outstanding_accruals(plot_id)}
        with periods_guard(self.db, period_ids) as periods:
            yield {pid for pid, period in periods.items() if period.status == PeriodStatus.DRAFT}

    def _spread(
        self, payment: Payment, amount: Optional[Decimal], period_ids: set[int]
    ) -> list[PaymentAllocation]:
        to_spread = Decimal(payment.amount) if amount is None else Decimal(amount)

        accruals = [
            a
            for a in self.outstanding_accruals(payment.plot_id, accrual_type_for_category(payment.category))
            if a.period_id in period_ids
        ]
        by_id = {a.id: a for a in accruals}
        parts, remainder = plan_oldest_first(to_spread, [(a.id, a.outstanding) for a in accruals])

        created = []
        for accrual_id, applied in parts:
            accrual = by_id[accrual_id]
            accrual.amount_paid = Decimal(accrual.amount_paid) + applied
            allocation = PaymentAllocation(accrual_id=accrual_id, amount=applied)
            payment.allocations.append(allocation)
            created.append(allocation)

        if amount is None:
            payment.credit_amount = remainder
        else:
            payment.credit_amount = Decimal(payment.credit_amount) - (to_spread - remainder)
        self.db.flush()

        logger.debug(
            "Allocated payment %s: parts=%d, remainder=%s", payment.id, len(parts), remainder
        )
        return created

    def allocate(self, payment: Payment, amount: Optional[Decimal] = None) -> list[PaymentAllocation]:
        """Allocate a payment (or part of it) oldest-debt-first and commit.

        Periods are re-read under their guards right before the write, so a
        period locked meanwhile is left untouched and the money stays credit.

        Args:
            payment: Payment with a resolved plot, already added to the session
            amount: Amount to spread (default: the full payment amount)

        Returns:
            Created PaymentAllocation rows
        """
        if payment.plot_id is None:
            raise ValidationError(f"Payment {payment.id} has no plot to allocate to")

        with self.plot_guard(payment.plot_id) as period_ids:
            created = self._spread(payment, amount, period_ids)
            self.db.commit()
        return created

    def allocate_manual(
        self,
        payment_id: int,
        accrual_id: int,
        amount: Decimal,
        actor_id: int | None = None,
    ) -> PaymentAllocation:
        """Apply part of a payment's unallocated remainder to one accrual.

        Raises:
            NotFoundError: If payment or accrual does not exist
            ValidationError: On a voided payment, plot mismatch or an amount
                above the payment remainder or the accrual remainder
            PeriodLockedError: If the accrual's period is locked
        """
        payment = self.db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        accrual = self.db.get(PeriodAccrual, accrual_id)
        if accrual is None:
            raise NotFoundError(f"Accrual {accrual_id} not found")

        with period_guard(self.db, accrual.period_id) as period:
            ensure_period_mutable(period)
            self.db.refresh(accrual)
            self.db.refresh(payment)

            amount = Decimal(amount)
            if payment.is_voided:
                raise ValidationError(f"Payment {payment_id} is voided")
            if payment.plot_id is not None and payment.plot_id != accrual.plot_id:
                raise ValidationError("Payment and accrual belong to different plots")
            if amount <= ZERO:
                raise ValidationError("Allocation amount must be positive")
            if amount > Decimal(payment.credit_amount):
                raise ValidationError(
                    f"Amount {amount} exceeds payment remainder {payment.credit_amount}",
                    "exceeds_payment_remainder",
                )
            if amount > accrual.outstanding:
                raise ValidationError(
                    f"Amount {amount} exceeds accrual remainder {accrual.outstanding}",
                    "exceeds_accrual_remainder",
                )

            allocation = PaymentAllocation(accrual_id=accrual.id, amount=amount)
            payment.allocations.append(allocation)
            if payment.plot_id is None:
                payment.plot_id = accrual.plot_id
            payment.credit_amount = Decimal(payment.credit_amount) - amount
            accrual.amount_paid = Decimal(accrual.amount_paid) + amount
            self.db.flush()

            AuditService.log(
                self.db,
                "payment",
                payment.id,
                "allocate_manual",
                actor_id,
                {"before": None, "after": {"accrual_id": accrual.id, "amount": str(amount)}},
            )
            self.db.commit()

        self.db.refresh(allocation)
        logger.info(
            "Manually allocated %s of payment %d to accrual %d", amount, payment.id, accrual.id
        )
        return allocation

    def apply_credit(self, plot_id: int, actor_id: int | None = None) -> list[PaymentAllocation]:
        """Spend a plot's outstanding payment credit on its unpaid accruals.

        Payments are drained oldest first, each against accruals of its own
        charge type.
        """
        created: list[PaymentAllocation] = []
        with self.plot_guard(plot_id) as period_ids:
            payments = (
                self.db.query(Payment)
                .filter(
                    Payment.plot_id == plot_id,
                    Payment.is_voided.is_(False),
                    Payment.credit_amount > 0,
                )
                .order_by(Payment.paid_at, Payment.id)
                .all()
            )
            for payment in payments:
                created.extend(self._spread(payment, Decimal(payment.credit_amount), period_ids))

            if created:
                AuditService.log(
                    self.db,
                    "plot",
                    plot_id,
                    "apply_credit",
                    actor_id,
                    {
                        "before": None,
                        "after": {
                            "allocations": len(created),
                            "amount": str(sum((Decimal(a.amount) for a in created), ZERO)),
                        },
                    },
                )
            self.db.commit()

        logger.info("Applied credit for plot %d: %d allocations", plot_id, len(created))
        return created

    def reverse_allocations(self, payment: Payment) -> Decimal:
        """Undo every allocation of a payment in the session; the caller commits.

        Call inside periods_guard over allocated_period_ids([payment]) so the
        status check and the commit see the same period state.

        Raises:
            PeriodLockedError: If any allocated accrual sits in a locked period

        Returns:
            Total amount reversed
        """
        for allocation in payment.allocations:
            ensure_period_mutable(allocation.accrual.period)

        reversed_total = ZERO
        for allocation in list(payment.allocations):
            accrual = allocation.accrual
            accrual.amount_paid = max(ZERO, Decimal(accrual.amount_paid) - Decimal(allocation.amount))
            reversed_total += Decimal(allocation.amount)
            payment.allocations.remove(allocation)

        payment.credit_amount = ZERO
        self.db.flush()
        return reversed_total

    def trim_allocations(self, accrual: PeriodAccrual, new_amount: Decimal) -> Decimal:
        """Shrink an accrual's payments so amount_paid fits a lowered amount.

        Allocations are cut newest first and every cut goes back to its
        payment's credit_amount. Changes stay in the session; the caller
        commits.

        Returns:
            Total amount returned to payment credit
        """
        new_amount = Decimal(new_amount)
        excess = Decimal(accrual.amount_paid) - new_amount
        if excess <= ZERO:
            return ZERO

        allocations = (
            self.db.query(PaymentAllocation)
            .filter(PaymentAllocation.accrual_id == accrual.id)
            .order_by(PaymentAllocation.id.desc())
            .all()
        )
        returned = ZERO
        for allocation in allocations:
            if excess <= ZERO:
                break
            cut = min(excess, Decimal(allocation.amount))
            payment = allocation.payment
            payment.credit_amount = Decimal(payment.credit_amount) + cut
            if cut == Decimal(allocation.amount):
                payment.allocations.remove(allocation)
            else:
                allocation.amount = Decimal(allocation.amount) - cut
            excess -= cut
            returned += cut

        accrual.amount_paid = new_amount
        self.db.flush()
        if excess > ZERO:
            logger.warning(
                "Accrual %s: %s of its paid amount had no allocation to return", accrual.id, excess
            )
        return returned

    def get_credit_balance(self, plot_id: int) -> Decimal:
        """Sum of unallocated amounts across the plot's non-voided payments."""
        payments = (
            self.db.query(Payment)
            .filter(Payment.plot_id == plot_id, Payment.is_voided.is_(False))
            .all()
        )
        return sum((Decimal(p.credit_amount) for p in payments), ZERO)


__all__ = [
    "AllocationService",
    "accrual_type_for_category",
    "allocated_period_ids",
    "plan_oldest_first",
]
