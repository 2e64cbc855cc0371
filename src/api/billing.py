"""Billing API endpoints.

Exposes period lifecycle, accrual generation, payment import, allocation,
reconciliation, penalties, tariff overrides and repayment plans. Role checks happen
upstream; the acting staff member arrives in the X-Actor-Id header.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from src.models.billing_period import PeriodStatus
from src.models.debt_repayment_plan import PlanStatus
from src.models.payment import PaymentMethod
from src.models.penalty_accrual import PenaltyStatus
from src.models.period_accrual import AccrualType
from src.services import get_db
from src.services.accrual_service import AccrualService
from src.services.allocation_service import AllocationService
from src.services.audit_service import AuditService
from src.services.errors import (
    BillingError,
    DuplicatePaymentError,
    NotFoundError,
    ValidationError,
    error_response,
)
from src.services.payment_service import PaymentImportService, PaymentRow, SkipReason
from src.services.penalty_service import PenaltyService
from src.services.period_service import BillingPeriodService
from src.services.reconciliation_service import (
    ReconciliationRow,
    ReconciliationService,
    filter_rows,
    rows_to_csv,
    sort_rows,
    summarize,
)
from src.services.repayment_plan_service import RepaymentPlanService
from src.services.tariff_service import TariffService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    """Render BillingError as {"error": {"code", "message"}} with its HTTP status."""
    if exc.http_status >= 500:
        logger.error("Billing error on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content=error_response(exc))


# Request schemas
class PeriodCreateRequest(BaseModel):
    name: str
    date_from: date
    date_to: date


class GenerateRequest(BaseModel):
    types: list[str] | None = None
    force: bool = False


class PaymentRowRequest(BaseModel):
    """One payment row; amount may be a number or a Russian-formatted string."""

    paid_at: str
    amount: Decimal | str
    plot_id: int | None = None
    reference: str | None = None
    category: str | None = None
    purpose: str | None = None
    payer: str | None = None
    method: str = "bank"
    row_index: int | None = None


class ImportRequest(BaseModel):
    rows: list[PaymentRowRequest]
    file_name: str | None = None
    comment: str | None = None


class VoidRequest(BaseModel):
    reason: str | None = None


class ManualAllocationRequest(BaseModel):
    payment_id: int
    accrual_id: int
    amount: Decimal = Field(gt=0)


class OverrideCreateRequest(BaseModel):
    plot_id: int
    amount: Decimal
    comment: str | None = None


class RepaymentPlanRequest(BaseModel):
    plot_id: int
    period_id: int | None = None
    status: str | None = None
    comment: str | None = None
    agreed_amount: Decimal | None = None
    agreed_date: date | None = None


class PenaltyPreviewRequest(BaseModel):
    as_of: date
    annual_rate: Decimal | None = Field(None, ge=0)
    min_penalty: Decimal = Field(Decimal("0"), ge=0)
    period_ids: list[int] | None = None


class PenaltyApplyRequest(BaseModel):
    as_of: date
    annual_rate: Decimal | None = Field(None, ge=0)
    min_penalty: Decimal = Field(Decimal("0"), ge=0)


class PenaltyRecalcRequest(BaseModel):
    as_of: date
    annual_rate: Decimal | None = Field(None, ge=0)
    plot_ids: list[int] | None = None


class PenaltyActionRequest(BaseModel):
    reason: str | None = None


# Response schemas
class PeriodResponse(BaseModel):
    id: int
    name: str
    date_from: date
    date_to: date
    status: PeriodStatus
    locked_at: datetime | None = None
    updated_by_user_id: int | None = None
    generation_note: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AccrualResponse(BaseModel):
    id: int
    period_id: int
    plot_id: int
    type: AccrualType
    amount_accrued: Decimal
    amount_paid: Decimal
    override_applied: bool
    note: str | None = None

    model_config = ConfigDict(from_attributes=True)


class GenerationItemResponse(BaseModel):
    plot_id: int
    type: str
    amount: Decimal | None = None
    override_applied: bool = False
    reason: str | None = None


class GenerationResponse(BaseModel):
    period_id: int
    plot_count: int
    created: int
    updated: int
    generated: list[GenerationItemResponse]
    skipped: list[GenerationItemResponse]
    needs_review: list[GenerationItemResponse]
    returned_to_credit: Decimal = Decimal("0")


class PaymentResponse(BaseModel):
    id: int
    plot_id: int | None = None
    amount: Decimal
    paid_at: date
    method: PaymentMethod
    reference: str | None = None
    category: str | None = None
    credit_amount: Decimal
    import_batch_id: int | None = None
    is_voided: bool

    model_config = ConfigDict(from_attributes=True)


class RowOutcomeResponse(BaseModel):
    row_index: int | None = None
    payment_id: int | None = None
    reason: str | None = None
    detail: str | None = None


class ImportResponse(BaseModel):
    batch_id: int
    total_rows: int
    created_count: int
    skipped_count: int
    skip_reasons: dict[str, int]
    created: list[RowOutcomeResponse]
    skipped: list[RowOutcomeResponse]


class ImportBatchResponse(BaseModel):
    id: int
    status: str
    total_rows: int
    created_count: int
    skipped_count: int
    rolled_back_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class AllocationResponse(BaseModel):
    id: int
    payment_id: int
    accrual_id: int
    amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class TypeTotalsResponse(BaseModel):
    accrued: Decimal
    paid: Decimal
    debt: Decimal


class ReconciliationRowResponse(BaseModel):
    plot_id: int
    plot_number: str | None = None
    accrued: Decimal
    paid: Decimal
    debt: Decimal
    by_type: dict[str, TypeTotalsResponse]


class ReconciliationResponse(BaseModel):
    period_id: int
    rows: list[ReconciliationRowResponse]
    totals: dict[str, Any]


class CreditResponse(BaseModel):
    plot_id: int
    credit: Decimal


class OverrideResponse(BaseModel):
    id: int
    tariff_id: int
    plot_id: int
    amount: Decimal
    comment: str | None = None

    model_config = ConfigDict(from_attributes=True)


class RepaymentPlanResponse(BaseModel):
    id: int
    plot_id: int
    period_id: int | None = None
    status: str
    comment: str | None = None
    agreed_amount: Decimal | None = None
    agreed_date: date | None = None

    model_config = ConfigDict(from_attributes=True)


class AuditEntryResponse(BaseModel):
    id: int
    entity_type: str
    entity_id: int
    action: str
    actor_id: int | None = None
    changes: dict[str, Any] | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PenaltyLineResponse(BaseModel):
    accrual_id: int
    plot_id: int
    plot_number: str | None = None
    period_id: int
    due_date: date
    remaining: Decimal
    days_overdue: int
    amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class PenaltyPreviewResponse(BaseModel):
    as_of: date
    annual_rate: Decimal
    total: Decimal
    lines: list[PenaltyLineResponse]


class PenaltyRunResponse(BaseModel):
    period_id: int
    created: int
    updated: int
    skipped_frozen: int
    skipped_zero_debt: int
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class PenaltyResponse(BaseModel):
    id: int
    plot_id: int
    period_id: int
    amount: Decimal
    status: PenaltyStatus
    as_of: date
    annual_rate: Decimal
    base_debt: Decimal
    days_overdue: int
    policy_version: str
    void_reason: str | None = None
    freeze_reason: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PenaltySummaryResponse(BaseModel):
    total: int
    active: int
    frozen: int
    voided: int
    total_amount: Decimal
    active_amount: Decimal

    model_config = ConfigDict(from_attributes=True)


def _row_response(row: ReconciliationRow) -> ReconciliationRowResponse:
    return ReconciliationRowResponse(
        plot_id=row.plot_id,
        plot_number=row.plot_number,
        accrued=row.accrued,
        paid=row.paid,
        debt=row.debt,
        by_type={
            accrual_type.value: TypeTotalsResponse(
                accrued=totals.accrued, paid=totals.paid, debt=totals.debt
            )
            for accrual_type, totals in row.by_type.items()
        },
    )


def _plan_response(plan) -> RepaymentPlanResponse:
    return RepaymentPlanResponse(
        id=plan.id,
        plot_id=plan.plot_id,
        period_id=plan.period_id,
        status=PlanStatus(plan.status).value,
        comment=plan.comment,
        agreed_amount=plan.agreed_amount,
        agreed_date=plan.agreed_date,
    )


# Periods
@router.get("/periods", response_model=list[PeriodResponse])
def list_periods(db: Session = Depends(get_db)) -> list[PeriodResponse]:  # noqa: B008
    return [PeriodResponse.model_validate(p) for p in BillingPeriodService(db).list_periods()]


@router.post("/periods", response_model=PeriodResponse, status_code=201)
def create_period(
    body: PeriodCreateRequest,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> PeriodResponse:
    period = BillingPeriodService(db).create_period(body.name, body.date_from, body.date_to, actor_id)
    return PeriodResponse.model_validate(period)


@router.get("/periods/{period_id}", response_model=PeriodResponse)
def get_period(period_id: int, db: Session = Depends(get_db)) -> PeriodResponse:  # noqa: B008
    return PeriodResponse.model_validate(BillingPeriodService(db).get_period(period_id))


@router.post("/periods/{period_id}/lock", response_model=PeriodResponse)
def lock_period(
    period_id: int,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> PeriodResponse:
    return PeriodResponse.model_validate(BillingPeriodService(db).lock_period(period_id, actor_id))


@router.post("/periods/{period_id}/unlock", response_model=PeriodResponse)
def unlock_period(
    period_id: int,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> PeriodResponse:
    return PeriodResponse.model_validate(BillingPeriodService(db).unlock_period(period_id, actor_id))


# Accruals
@router.post("/periods/{period_id}/generate", response_model=GenerationResponse)
def generate_accruals(
    period_id: int,
    body: GenerateRequest | None = None,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> GenerationResponse:
    """Generate accruals for a draft period.

    Raises:
        404: Unknown period
        409: Period locked, or accruals exist and force is not set
        400: Unknown type, no active tariff or no plots
    """
    body = body or GenerateRequest()
    result = AccrualService(db).generate(period_id, body.types, body.force, actor_id)
    return GenerationResponse(
        period_id=result.period_id,
        plot_count=result.plot_count,
        created=result.created,
        updated=result.updated,
        generated=[
            GenerationItemResponse(
                plot_id=g.plot_id, type=g.type.value, amount=g.amount, override_applied=g.override_applied
            )
            for g in result.generated
        ],
        skipped=[
            GenerationItemResponse(plot_id=s.plot_id, type=s.type.value, reason=s.reason)
            for s in result.skipped
        ],
        needs_review=[
            GenerationItemResponse(plot_id=n.plot_id, type=n.type.value, amount=n.amount)
            for n in result.needs_review
        ],
        returned_to_credit=result.returned_to_credit,
    )


@router.get("/periods/{period_id}/accruals", response_model=list[AccrualResponse])
def list_accruals(
    period_id: int,
    plot_id: int | None = None,
    db: Session = Depends(get_db),  # noqa: B008
) -> list[AccrualResponse]:
    BillingPeriodService(db).get_period(period_id)
    return [
        AccrualResponse.model_validate(a) for a in AccrualService(db).list_accruals(period_id, plot_id)
    ]


# Reconciliation
@router.get("/periods/{period_id}/reconciliation", response_model=ReconciliationResponse)
def get_reconciliation(
    period_id: int,
    only_with_debt: bool = False,
    min_debt: Decimal | None = None,
    sort: str | None = None,
    db: Session = Depends(get_db),  # noqa: B008
) -> ReconciliationResponse:
    reconciliation = ReconciliationService(db).build(period_id)
    rows = filter_rows(reconciliation.rows, only_with_debt=only_with_debt, min_debt=min_debt)
    if sort:
        rows = sort_rows(rows, sort)
    return ReconciliationResponse(
        period_id=period_id,
        rows=[_row_response(r) for r in rows],
        totals=summarize(reconciliation).as_dict(),
    )


@router.get("/periods/{period_id}/debtors.csv", response_class=PlainTextResponse)
def export_debtors(
    period_id: int,
    min_debt: Decimal | None = None,
    sort: str = "debt_desc",
    db: Session = Depends(get_db),  # noqa: B008
) -> PlainTextResponse:
    reconciliation = ReconciliationService(db).build(period_id)
    rows = sort_rows(filter_rows(reconciliation.rows, only_with_debt=True, min_debt=min_debt), sort)
    return PlainTextResponse(rows_to_csv(rows), media_type="text/csv")


# Payments
def _to_row(body: PaymentRowRequest) -> PaymentRow:
    return PaymentRow(**body.model_dump())


@router.post("/payments", response_model=PaymentResponse, status_code=201)
def create_payment(
    body: PaymentRowRequest,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> PaymentResponse:
    """Record a single payment (manual entry).

    Raises:
        400: Unparseable date or non-positive amount
        404: Plot not resolved or unknown
        409: Duplicate payment
    """
    service = PaymentImportService(db)
    outcome = service.import_payment(_to_row(body), actor_id)
    if outcome.skipped == SkipReason.DUPLICATE:
        raise DuplicatePaymentError(f"Payment already recorded (reference={body.reference!r})")
    if outcome.skipped == SkipReason.NOT_FOUND:
        raise NotFoundError(outcome.detail or "Plot not found")
    if outcome.skipped == SkipReason.INVALID:
        raise ValidationError(outcome.detail or "Invalid payment")
    return PaymentResponse.model_validate(service.get_payment(outcome.payment_id))


@router.post("/payments/import", response_model=ImportResponse)
def import_payments(
    body: ImportRequest,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> ImportResponse:
    result = PaymentImportService(db).import_payments(
        [_to_row(r) for r in body.rows], body.file_name, body.comment, actor_id
    )
    return ImportResponse(
        batch_id=result.batch_id,
        total_rows=result.total_rows,
        created_count=result.created_count,
        skipped_count=result.skipped_count,
        skip_reasons=result.skip_reasons,
        created=[
            RowOutcomeResponse(row_index=o.row_index, payment_id=o.payment_id) for o in result.created
        ],
        skipped=[
            RowOutcomeResponse(row_index=o.row_index, reason=o.skipped, detail=o.detail)
            for o in result.skipped
        ],
    )


@router.post("/payments/{payment_id}/void", response_model=PaymentResponse)
def void_payment(
    payment_id: int,
    body: VoidRequest | None = None,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> PaymentResponse:
    reason = body.reason if body else None
    payment = PaymentImportService(db).void_payment(payment_id, reason, actor_id)
    return PaymentResponse.model_validate(payment)


@router.post("/import-batches/{batch_id}/rollback", response_model=ImportBatchResponse)
def rollback_batch(
    batch_id: int,
    body: VoidRequest | None = None,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> ImportBatchResponse:
    reason = body.reason if body else None
    batch = PaymentImportService(db).rollback_batch(batch_id, reason, actor_id)
    return ImportBatchResponse(
        id=batch.id,
        status=batch.status.value,
        total_rows=batch.total_rows,
        created_count=batch.created_count,
        skipped_count=batch.skipped_count,
        rolled_back_at=batch.rolled_back_at,
    )


@router.post("/allocations", response_model=AllocationResponse, status_code=201)
def allocate_manual(
    body: ManualAllocationRequest,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> AllocationResponse:
    allocation = AllocationService(db).allocate_manual(
        body.payment_id, body.accrual_id, body.amount, actor_id
    )
    return AllocationResponse.model_validate(allocation)


@router.get("/plots/{plot_id}/credit", response_model=CreditResponse)
def get_credit(plot_id: int, db: Session = Depends(get_db)) -> CreditResponse:  # noqa: B008
    return CreditResponse(plot_id=plot_id, credit=AllocationService(db).get_credit_balance(plot_id))


@router.post("/plots/{plot_id}/apply-credit", response_model=list[AllocationResponse])
def apply_credit(
    plot_id: int,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> list[AllocationResponse]:
    allocations = AllocationService(db).apply_credit(plot_id, actor_id)
    return [AllocationResponse.model_validate(a) for a in allocations]


# Tariff overrides
@router.get("/tariffs/{tariff_id}/overrides", response_model=list[OverrideResponse])
def list_overrides(tariff_id: int, db: Session = Depends(get_db)) -> list[OverrideResponse]:  # noqa: B008
    service = TariffService(db)
    service.get_tariff(tariff_id)
    return [OverrideResponse.model_validate(o) for o in service.list_overrides(tariff_id)]


@router.post("/tariffs/{tariff_id}/overrides", response_model=OverrideResponse, status_code=201)
def create_override(
    tariff_id: int,
    body: OverrideCreateRequest,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> OverrideResponse:
    override = TariffService(db).create_override(
        tariff_id, body.plot_id, body.amount, body.comment, actor_id
    )
    return OverrideResponse.model_validate(override)


@router.delete("/overrides/{override_id}", status_code=204)
def delete_override(
    override_id: int,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> None:
    TariffService(db).delete_override(override_id, actor_id)


# Repayment plans
@router.put("/repayment-plans", response_model=RepaymentPlanResponse)
def upsert_repayment_plan(
    body: RepaymentPlanRequest,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> RepaymentPlanResponse:
    patch = body.model_dump(exclude={"plot_id", "period_id"}, exclude_unset=True)
    plan = RepaymentPlanService(db).upsert(body.plot_id, body.period_id, patch, actor_id)
    return _plan_response(plan)


@router.get("/repayment-plans", response_model=list[RepaymentPlanResponse])
def list_repayment_plans(
    status: str | None = None,
    db: Session = Depends(get_db),  # noqa: B008
) -> list[RepaymentPlanResponse]:
    if status is not None:
        try:
            status = PlanStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown plan status '{status}'") from e
    return [_plan_response(p) for p in RepaymentPlanService(db).list_plans(status)]


# Penalties
@router.post("/penalties/preview", response_model=PenaltyPreviewResponse)
def preview_penalties(
    body: PenaltyPreviewRequest, db: Session = Depends(get_db)  # noqa: B008
) -> PenaltyPreviewResponse:
    preview = PenaltyService(db).preview(body.as_of, body.annual_rate, body.min_penalty, body.period_ids)
    return PenaltyPreviewResponse(
        as_of=preview.as_of,
        annual_rate=preview.annual_rate,
        total=preview.total,
        lines=[PenaltyLineResponse.model_validate(line) for line in preview.lines],
    )


@router.post("/periods/{period_id}/penalties/apply", response_model=PenaltyRunResponse)
def apply_penalties(
    period_id: int,
    body: PenaltyApplyRequest,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> PenaltyRunResponse:
    """Charge penalties for overdue debt to a draft period.

    Raises:
        404: Unknown period
        409: Period locked
    """
    result = PenaltyService(db).apply(period_id, body.as_of, body.annual_rate, body.min_penalty, actor_id)
    return PenaltyRunResponse.model_validate(result)


@router.post("/periods/{period_id}/penalties/recalc", response_model=PenaltyRunResponse)
def recalc_penalties(
    period_id: int,
    body: PenaltyRecalcRequest,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> PenaltyRunResponse:
    result = PenaltyService(db).recalc(period_id, body.as_of, body.annual_rate, body.plot_ids, actor_id)
    return PenaltyRunResponse.model_validate(result)


@router.get("/penalties", response_model=list[PenaltyResponse])
def list_penalties(
    period_id: int | None = None,
    plot_id: int | None = None,
    status: str | None = None,
    db: Session = Depends(get_db),  # noqa: B008
) -> list[PenaltyResponse]:
    if status is not None:
        try:
            status = PenaltyStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown penalty status '{status}'") from e
    penalties = PenaltyService(db).list_penalties(period_id, plot_id, status)
    return [PenaltyResponse.model_validate(p) for p in penalties]


@router.get("/penalties/summary", response_model=PenaltySummaryResponse)
def penalty_summary(
    period_id: int | None = None, db: Session = Depends(get_db)  # noqa: B008
) -> PenaltySummaryResponse:
    return PenaltySummaryResponse.model_validate(PenaltyService(db).summary(period_id))


@router.post("/penalties/{penalty_id}/void", response_model=PenaltyResponse)
def void_penalty(
    penalty_id: int,
    body: PenaltyActionRequest,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> PenaltyResponse:
    return PenaltyResponse.model_validate(PenaltyService(db).void(penalty_id, body.reason, actor_id))


@router.post("/penalties/{penalty_id}/freeze", response_model=PenaltyResponse)
def freeze_penalty(
    penalty_id: int,
    body: PenaltyActionRequest,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> PenaltyResponse:
    return PenaltyResponse.model_validate(PenaltyService(db).freeze(penalty_id, body.reason, actor_id))


@router.post("/penalties/{penalty_id}/unfreeze", response_model=PenaltyResponse)
def unfreeze_penalty(
    penalty_id: int,
    db: Session = Depends(get_db),  # noqa: B008
    actor_id: int | None = Header(None, alias="X-Actor-Id"),  # noqa: B008
) -> PenaltyResponse:
    return PenaltyResponse.model_validate(PenaltyService(db).unfreeze(penalty_id, actor_id))


# Audit
@router.get("/audit/{entity_type}/{entity_id}", response_model=list[AuditEntryResponse])
def get_audit_history(
    entity_type: str, entity_id: int, db: Session = Depends(get_db)  # noqa: B008
) -> list[AuditEntryResponse]:
    return [AuditEntryResponse.model_validate(e) for e in AuditService.history(db, entity_type, entity_id)]


__all__ = ["router", "billing_error_handler"]
