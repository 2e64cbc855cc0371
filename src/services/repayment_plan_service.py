"""Debt repayment plans: one plan per (plot, period), upserted by key."""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models.billing_period import BillingPeriod
from src.models.debt_repayment_plan import DebtRepaymentPlan, PlanStatus
from src.models.plot import Plot
from src.services.audit_service import AuditService
from src.services.errors import NotFoundError, ValidationError
from src.services.parsers import parse_amount, parse_payment_date

logger = logging.getLogger(__name__)

PATCH_FIELDS = ("status", "comment", "agreed_amount", "agreed_date")


def _snapshot(plan: DebtRepaymentPlan) -> dict:
    return {
        "plot_id": plan.plot_id,
        "period_id": plan.period_id,
        "status": PlanStatus(plan.status).value,
        "comment": plan.comment,
        "agreed_amount": str(plan.agreed_amount) if plan.agreed_amount is not None else None,
        "agreed_date": plan.agreed_date.isoformat() if plan.agreed_date else None,
    }


def normalize_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Validate and coerce a plan patch.

    Any status may follow any other; only membership in PlanStatus is checked.

    Raises:
        ValidationError: On unknown fields, status, or malformed amount/date
    """
    unknown = set(patch) - set(PATCH_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown plan fields: {', '.join(sorted(unknown))}")

    result: dict[str, Any] = {}
    if "status" in patch:
        try:
            result["status"] = PlanStatus(patch["status"])
        except ValueError as e:
            raise ValidationError(f"Unknown plan status '{patch['status']}'") from e
    if "comment" in patch:
        result["comment"] = patch["comment"] or None
    if "agreed_amount" in patch:
        try:
            amount: Optional[Decimal] = parse_amount(patch["agreed_amount"])
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if amount is not None and amount < 0:
            raise ValidationError("agreed_amount must not be negative")
        result["agreed_amount"] = amount
    if "agreed_date" in patch:
        try:
            agreed: Optional[date] = parse_payment_date(patch["agreed_date"])
        except ValueError as e:
            raise ValidationError(str(e)) from e
        result["agreed_date"] = agreed
    return result


class RepaymentPlanService:
    """Create, update and look up debt repayment plans."""

    def __init__(self, db: Session):
        self.db = db

    def get_plan(self, plan_id: int) -> DebtRepaymentPlan:
        plan = self.db.get(DebtRepaymentPlan, plan_id)
        if plan is None:
            raise NotFoundError(f"Repayment plan {plan_id} not found")
        return plan

    def find_plan(self, plot_id: int, period_id: Optional[int]) -> Optional[DebtRepaymentPlan]:
        query = self.db.query(DebtRepaymentPlan).filter(DebtRepaymentPlan.plot_id == plot_id)
        if period_id is None:
            query = query.filter(DebtRepaymentPlan.period_id.is_(None))
        else:
            query = query.filter(DebtRepaymentPlan.period_id == period_id)
        return query.first()

    def list_plans(self, status: Optional[PlanStatus] = None) -> list[DebtRepaymentPlan]:
        query = self.db.query(DebtRepaymentPlan)
        if status is not None:
            query = query.filter(DebtRepaymentPlan.status == PlanStatus(status))
        return query.order_by(DebtRepaymentPlan.plot_id, DebtRepaymentPlan.id).all()

    def upsert(
        self,
        plot_id: int,
        period_id: Optional[int],
        patch: dict[str, Any],
        actor_id: int | None = None,
    ) -> DebtRepaymentPlan:
        """Update the plan for (plot, period) in place, or create it as pending.

        Args:
            plot_id: Plot the plan belongs to
            period_id: Billing period, or None for a plan across all periods
            patch: Any of status, comment, agreed_amount, agreed_date
            actor_id: Staff member making the change

        Raises:
            NotFoundError: If plot or period does not exist
            ValidationError: If the patch is malformed
        """
        values = normalize_patch(patch)
        if self.db.get(Plot, plot_id) is None:
            raise NotFoundError(f"Plot {plot_id} not found")
        if period_id is not None and self.db.get(BillingPeriod, period_id) is None:
            raise NotFoundError(f"Period {period_id} not found")

        plan = self.find_plan(plot_id, period_id)
        created = False
        if plan is None:
            plan, created = self._create(plot_id, period_id, actor_id)
        if created:
            return self._apply(plan, values, None, "create", actor_id)
        return self._apply(plan, values, _snapshot(plan), "update", actor_id)

    def _create(
        self, plot_id: int, period_id: Optional[int], actor_id: int | None
    ) -> tuple[DebtRepaymentPlan, bool]:
        """Insert a pending plan, or fetch the one a concurrent writer just inserted.

        Returns:
            (plan, created)
        """
        plan = DebtRepaymentPlan(
            plot_id=plot_id,
            period_id=period_id,
            status=PlanStatus.PENDING,
            created_by_user_id=actor_id,
        )
        self.db.add(plan)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            existing = self.find_plan(plot_id, period_id)
            if existing is None:
                raise
            logger.info("Repayment plan for plot %d created concurrently, updating it", plot_id)
            return existing, False
        return plan, True

    def update_plan(
        self, plan_id: int, patch: dict[str, Any], actor_id: int | None = None
    ) -> DebtRepaymentPlan:
        values = normalize_patch(patch)
        plan = self.get_plan(plan_id)
        return self._apply(plan, values, _snapshot(plan), "update", actor_id)

    def _apply(self, plan, values, before, action, actor_id) -> DebtRepaymentPlan:
        for key, value in values.items():
            setattr(plan, key, value)
        plan.updated_by_user_id = actor_id
        self.db.flush()

        AuditService.log(
            self.db,
            "debt_repayment_plan",
            plan.id,
            action,
            actor_id,
            {"before": before, "after": _snapshot(plan)},
        )
        self.db.commit()
        self.db.refresh(plan)
        logger.info(
            "Repayment plan %s: id=%d, plot_id=%d, period_id=%s, status=%s",
            action,
            plan.id,
            plan.plot_id,
            plan.period_id,
            plan.status.value,
        )
        return plan


__all__ = ["RepaymentPlanService", "normalize_patch"]
