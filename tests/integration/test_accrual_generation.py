"""Integration tests for accrual generation."""

from datetime import date
from decimal import Decimal

import pytest

from src.models import (
    AuditLog,
    Payment,
    PeriodAccrual,
    PeriodStatus,
    PlotStatus,
    TariffStatus,
    TariffType,
    TariffUnit,
)
from src.models.period_accrual import NEEDS_REVIEW, AccrualType
from src.services.accrual_service import GENERATION_FAILED, AccrualService, SkipReason
from src.services.allocation_service import AllocationService
from src.services.errors import AccrualsExistError, PeriodLockedError, ValidationError
from src.services.payment_service import PaymentImportService, PaymentRow
from src.services.period_service import BillingPeriodService, period_lock
from src.services.tariff_service import TariffService


@pytest.fixture
def three_plots(make_plot):
    return [make_plot(area="6"), make_plot(area="8"), make_plot(area="10")]


def accrual_rows(db_session, period_id):
    return (
        db_session.query(PeriodAccrual)
        .filter(PeriodAccrual.period_id == period_id)
        .order_by(PeriodAccrual.plot_id, PeriodAccrual.type)
        .all()
    )


class TestGenerate:
    """Generation over a draft period."""

    def test_flat_member_tariff_for_three_plots(self, db_session, three_plots, make_tariff, make_period):
        make_tariff(TariffType.MEMBER, amount="1000")
        period = make_period()

        result = AccrualService(db_session).generate(period.id, types=["membership"])

        assert result.created == 3
        assert result.plot_count == 3
        rows = accrual_rows(db_session, period.id)
        assert len(rows) == 3
        assert all(r.type == AccrualType.MEMBERSHIP for r in rows)
        assert all(r.amount_accrued == Decimal("1000") for r in rows)
        assert all(r.amount_paid == Decimal("0") for r in rows)
        assert not any(r.override_applied for r in rows)

    def test_locked_period_rejected_and_rows_unchanged(
        self, db_session, three_plots, make_tariff, make_period
    ):
        make_tariff(TariffType.MEMBER, amount="1000")
        period = make_period()
        service = AccrualService(db_session)
        service.generate(period.id, types=["membership"])
        BillingPeriodService(db_session).lock_period(period.id, actor_id=1)

        with pytest.raises(PeriodLockedError):
            service.generate(period.id, types=["membership"], force=True)

        rows = accrual_rows(db_session, period.id)
        assert len(rows) == 3
        assert all(r.amount_accrued == Decimal("1000") for r in rows)

    def test_locked_period_rejected_before_any_write(self, db_session, three_plots, make_tariff, make_period):
        make_tariff(TariffType.MEMBER)
        period = make_period(status=PeriodStatus.LOCKED)

        with pytest.raises(PeriodLockedError):
            AccrualService(db_session).generate(period.id)

        assert accrual_rows(db_session, period.id) == []
        assert db_session.query(AuditLog).count() == 0

    def test_override_applied_to_one_plot(self, db_session, three_plots, make_tariff, make_period):
        tariff = make_tariff(TariffType.MEMBER, amount="1000")
        plot_x = three_plots[1]
        TariffService(db_session).create_override(tariff.id, plot_x.id, Decimal("500"))
        period = make_period()

        AccrualService(db_session).generate(period.id, types=["membership"])

        by_plot = {r.plot_id: r for r in accrual_rows(db_session, period.id)}
        assert by_plot[plot_x.id].amount_accrued == Decimal("500")
        assert by_plot[plot_x.id].override_applied is True
        for plot in (three_plots[0], three_plots[2]):
            assert by_plot[plot.id].amount_accrued == Decimal("1000")
            assert by_plot[plot.id].override_applied is False

    def test_second_run_without_force_conflicts(self, db_session, three_plots, make_tariff, make_period):
        make_tariff(TariffType.MEMBER)
        period = make_period()
        service = AccrualService(db_session)
        service.generate(period.id)

        with pytest.raises(AccrualsExistError) as exc_info:
            service.generate(period.id)

        assert exc_info.value.existing_count == 3
        assert len(accrual_rows(db_session, period.id)) == 3

    def test_force_overwrites_and_preserves_paid(self, db_session, three_plots, make_tariff, make_period):
        tariff = make_tariff(TariffType.MEMBER, amount="1000")
        period = make_period()
        service = AccrualService(db_session)
        service.generate(period.id)
        first = accrual_rows(db_session, period.id)[0]
        first.amount_paid = Decimal("300")
        db_session.commit()

        tariff.amount = Decimal("1200")
        db_session.commit()
        result = service.generate(period.id, force=True)

        assert result.created == 0
        assert result.updated == 3
        rows = accrual_rows(db_session, period.id)
        assert len(rows) == 3
        assert all(r.amount_accrued == Decimal("1200") for r in rows)
        assert rows[0].amount_paid == Decimal("300")

    def test_force_below_paid_returns_excess_to_credit(self, db_session, make_plot, make_tariff, make_period):
        plot = make_plot()
        tariff = make_tariff(TariffType.MEMBER, amount="1000")
        period = make_period()
        service = AccrualService(db_session)
        service.generate(period.id, types=["membership"])
        outcome = PaymentImportService(db_session).import_payment(
            PaymentRow(paid_at="2025-01-20", amount="1000", plot_id=plot.id, reference="R")
        )

        tariff.amount = Decimal("300")
        db_session.commit()
        result = service.generate(period.id, types=["membership"], force=True)

        assert result.returned_to_credit == Decimal("700")
        assert Decimal(result.as_dict()["returned_to_credit"]) == Decimal("700")
        accrual = accrual_rows(db_session, period.id)[0]
        assert accrual.amount_accrued == Decimal("300")
        assert accrual.amount_paid == Decimal("300")
        payment = db_session.get(Payment, outcome.payment_id)
        assert payment.credit_amount == Decimal("700")
        assert [a.amount for a in payment.allocations] == [Decimal("300")]
        assert AllocationService(db_session).get_credit_balance(plot.id) == Decimal("700")

    def test_area_tariff_and_missing_area_needs_review(self, db_session, make_plot, make_tariff, make_period):
        with_area = make_plot(area="6")
        without_area = make_plot(area=None)
        make_tariff(TariffType.TARGET, amount="150", unit=TariffUnit.AREA)
        period = make_period()

        result = AccrualService(db_session).generate(period.id, types=["target"])

        by_plot = {r.plot_id: r for r in accrual_rows(db_session, period.id)}
        assert by_plot[with_area.id].amount_accrued == Decimal("900")
        assert by_plot[with_area.id].note is None
        assert by_plot[without_area.id].amount_accrued == Decimal("0")
        assert by_plot[without_area.id].note == NEEDS_REVIEW
        assert by_plot[without_area.id].needs_review
        assert [n.plot_id for n in result.needs_review] == [without_area.id]
        assert result.created == 2

    def test_default_types_skip_missing_target_tariff(self, db_session, three_plots, make_tariff, make_period):
        make_tariff(TariffType.MEMBER)
        period = make_period()

        result = AccrualService(db_session).generate(period.id)

        assert result.created == 3
        assert len(result.skipped) == 3
        assert {s.reason for s in result.skipped} == {SkipReason.NO_ACTIVE_TARIFF}
        assert {s.type for s in result.skipped} == {AccrualType.TARGET}

    def test_electric_is_reported_as_skipped(self, db_session, three_plots, make_tariff, make_period):
        make_tariff(TariffType.MEMBER)
        period = make_period()

        result = AccrualService(db_session).generate(period.id, types=["membership", "electric"])

        electric = [s for s in result.skipped if s.type == AccrualType.ELECTRIC]
        assert len(electric) == 3
        assert all(s.reason == SkipReason.METER_READINGS_REQUIRED for s in electric)
        assert all(r.type == AccrualType.MEMBERSHIP for r in accrual_rows(db_session, period.id))

    def test_archived_plots_excluded(self, db_session, make_plot, make_tariff, make_period):
        active = make_plot()
        make_plot(status=PlotStatus.ARCHIVED)
        make_tariff(TariffType.MEMBER)
        period = make_period()

        result = AccrualService(db_session).generate(period.id, types=["membership"])

        assert result.plot_count == 1
        assert [r.plot_id for r in accrual_rows(db_session, period.id)] == [active.id]

    def test_tariff_selected_at_period_midpoint(self, db_session, three_plots, make_tariff, make_period):
        make_tariff(TariffType.MEMBER, amount="800", active_from=date(2024, 1, 1), active_to=date(2025, 1, 10))
        make_tariff(TariffType.MEMBER, amount="900", active_from=date(2025, 1, 11))
        period = make_period()

        AccrualService(db_session).generate(period.id, types=["membership"])

        assert {r.amount_accrued for r in accrual_rows(db_session, period.id)} == {Decimal("900")}

    def test_no_active_tariff_rejected(self, db_session, three_plots, make_tariff, make_period):
        make_tariff(TariffType.MEMBER, status=TariffStatus.DRAFT)
        period = make_period()

        with pytest.raises(ValidationError) as exc_info:
            AccrualService(db_session).generate(period.id)

        assert exc_info.value.code == "no_active_tariff"
        assert accrual_rows(db_session, period.id) == []

    def test_empty_plot_registry_rejected(self, db_session, make_tariff, make_period):
        make_tariff(TariffType.MEMBER)
        period = make_period()

        with pytest.raises(ValidationError) as exc_info:
            AccrualService(db_session).generate(period.id)

        assert exc_info.value.code == "no_plots"

    def test_unknown_type_rejected(self, db_session, make_period):
        period = make_period()

        with pytest.raises(ValidationError):
            AccrualService(db_session).generate(period.id, types=["water"])

    def test_generation_is_audited(self, db_session, three_plots, make_tariff, make_period):
        make_tariff(TariffType.MEMBER)
        period = make_period()

        AccrualService(db_session).generate(period.id, types=["membership"], actor_id=9)

        entry = db_session.query(AuditLog).filter_by(action="generate_accruals").one()
        assert entry.entity_type == "billing_period"
        assert entry.entity_id == period.id
        assert entry.actor_id == 9
        assert entry.changes["after"]["created"] == 3
        assert entry.changes["after"]["force"] is False

    def test_failure_midway_leaves_no_rows_and_marks_period(
        self, db_session, three_plots, make_tariff, make_period, monkeypatch
    ):
        make_tariff(TariffType.MEMBER)
        period = make_period()
        service = AccrualService(db_session)

        def explode(period_id, plots, *args):
            db_session.add(
                PeriodAccrual(
                    period_id=period_id,
                    plot_id=plots[0].id,
                    type=AccrualType.MEMBERSHIP,
                    amount_accrued=Decimal("1"),
                    amount_paid=Decimal("0"),
                )
            )
            db_session.flush()
            raise RuntimeError("storage went away")

        monkeypatch.setattr(service, "_write_accruals", explode)

        with pytest.raises(RuntimeError):
            service.generate(period.id)

        assert accrual_rows(db_session, period.id) == []
        db_session.refresh(period)
        assert period.generation_note == GENERATION_FAILED

    def test_successful_run_clears_failure_note(self, db_session, three_plots, make_tariff, make_period):
        make_tariff(TariffType.MEMBER)
        period = make_period()
        period.generation_note = GENERATION_FAILED
        db_session.commit()

        AccrualService(db_session).generate(period.id)

        db_session.refresh(period)
        assert period.generation_note is None


def test_period_lock_is_shared_per_period():
    assert period_lock(101) is period_lock(101)
    assert period_lock(101) is not period_lock(102)
