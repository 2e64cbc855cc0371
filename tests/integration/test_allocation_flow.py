"""Integration tests for payment allocation and plot credit."""

import threading
import time
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from src.models import AuditLog, Payment, PaymentAllocation, PeriodStatus
from src.models.period_accrual import AccrualType
from src.services.allocation_service import AllocationService
from src.services.errors import NotFoundError, PeriodLockedError, ValidationError
from src.services.payment_service import PaymentImportService, PaymentRow
from src.services.period_service import period_lock, periods_guard


@pytest.fixture
def plot(make_plot):
    return make_plot()


@pytest.fixture
def periods(make_period):
    return (
        make_period("2025-01", date(2025, 1, 1), date(2025, 1, 31)),
        make_period("2025-02", date(2025, 2, 1), date(2025, 2, 28)),
    )


def pay(db_session, plot_id, amount, reference, category=None, paid_at="2025-02-10"):
    outcome = PaymentImportService(db_session).import_payment(
        PaymentRow(
            paid_at=paid_at, amount=amount, plot_id=plot_id, reference=reference, category=category
        )
    )
    assert outcome.created, outcome
    return db_session.get(Payment, outcome.payment_id)


class TestAutomaticAllocation:
    def test_oldest_period_first_then_credit(self, db_session, plot, periods, make_accrual):
        january, february = periods
        jan = make_accrual(january, plot, AccrualType.MEMBERSHIP, accrued="1000")
        feb = make_accrual(february, plot, AccrualType.MEMBERSHIP, accrued="1000")

        payment = pay(db_session, plot.id, "2300", "R1")

        db_session.refresh(jan)
        db_session.refresh(feb)
        assert jan.amount_paid == Decimal("1000")
        assert feb.amount_paid == Decimal("1000")
        assert payment.credit_amount == Decimal("300")
        assert payment.allocated_amount + payment.credit_amount == payment.amount
        assert AllocationService(db_session).get_credit_balance(plot.id) == Decimal("300")

    def test_partial_payment_goes_to_oldest(self, db_session, plot, periods, make_accrual):
        january, february = periods
        feb = make_accrual(february, plot, AccrualType.MEMBERSHIP, accrued="1000")
        jan = make_accrual(january, plot, AccrualType.MEMBERSHIP, accrued="1000")

        pay(db_session, plot.id, "400", "R1")

        db_session.refresh(jan)
        db_session.refresh(feb)
        assert jan.amount_paid == Decimal("400")
        assert feb.amount_paid == Decimal("0")

    def test_category_limits_charge_type(self, db_session, plot, periods, make_accrual):
        january, _ = periods
        membership = make_accrual(january, plot, AccrualType.MEMBERSHIP, accrued="1000")
        target = make_accrual(january, plot, AccrualType.TARGET, accrued="500")

        pay(db_session, plot.id, "200", "R1", category="target")

        db_session.refresh(membership)
        db_session.refresh(target)
        assert membership.amount_paid == Decimal("0")
        assert target.amount_paid == Decimal("200")

    def test_locked_period_is_skipped(self, db_session, plot, periods, make_accrual):
        january, february = periods
        jan = make_accrual(january, plot, AccrualType.MEMBERSHIP, accrued="1000")
        feb = make_accrual(february, plot, AccrualType.MEMBERSHIP, accrued="1000")
        january.status = PeriodStatus.LOCKED
        db_session.commit()

        pay(db_session, plot.id, "400", "R1")

        db_session.refresh(jan)
        db_session.refresh(feb)
        assert jan.amount_paid == Decimal("0")
        assert feb.amount_paid == Decimal("400")

    def test_no_debt_keeps_whole_payment_as_credit(self, db_session, plot):
        payment = pay(db_session, plot.id, "750", "R1")

        assert payment.allocations == []
        assert payment.credit_amount == Decimal("750")


class TestApplyCredit:
    def test_credit_is_spent_on_new_accruals(self, db_session, plot, periods, make_accrual):
        january, _ = periods
        payment = pay(db_session, plot.id, "750", "R1")
        accrual = make_accrual(january, plot, AccrualType.MEMBERSHIP, accrued="1000")

        created = AllocationService(db_session).apply_credit(plot.id, actor_id=3)

        assert len(created) == 1
        db_session.refresh(payment)
        db_session.refresh(accrual)
        assert payment.credit_amount == Decimal("0")
        assert accrual.amount_paid == Decimal("750")
        entry = db_session.query(AuditLog).filter_by(action="apply_credit").one()
        assert entry.entity_id == plot.id

    def test_nothing_to_spend(self, db_session, plot):
        assert AllocationService(db_session).apply_credit(plot.id) == []
        assert db_session.query(AuditLog).filter_by(action="apply_credit").count() == 0


class TestManualAllocation:
    def test_allocates_from_remainder(self, db_session, plot, periods, make_accrual):
        january, _ = periods
        payment = pay(db_session, plot.id, "500", "R1")
        accrual = make_accrual(january, plot, AccrualType.TARGET, accrued="300")

        allocation = AllocationService(db_session).allocate_manual(
            payment.id, accrual.id, Decimal("200"), actor_id=6
        )

        assert allocation.amount == Decimal("200")
        db_session.refresh(payment)
        db_session.refresh(accrual)
        assert payment.credit_amount == Decimal("300")
        assert accrual.amount_paid == Decimal("200")
        assert db_session.query(PaymentAllocation).count() == 1

    def test_rejects_amount_over_payment_remainder(self, db_session, plot, periods, make_accrual):
        january, _ = periods
        payment = pay(db_session, plot.id, "100", "R1")
        accrual = make_accrual(january, plot, AccrualType.MEMBERSHIP, accrued="1000")

        with pytest.raises(ValidationError) as exc_info:
            AllocationService(db_session).allocate_manual(payment.id, accrual.id, Decimal("150"))

        assert exc_info.value.code == "exceeds_payment_remainder"

    def test_rejects_amount_over_accrual_remainder(self, db_session, plot, periods, make_accrual):
        january, _ = periods
        payment = pay(db_session, plot.id, "500", "R1")
        accrual = make_accrual(january, plot, AccrualType.MEMBERSHIP, accrued="100")

        with pytest.raises(ValidationError) as exc_info:
            AllocationService(db_session).allocate_manual(payment.id, accrual.id, Decimal("150"))

        assert exc_info.value.code == "exceeds_accrual_remainder"

    def test_rejects_other_plot(self, db_session, plot, periods, make_plot, make_accrual):
        january, _ = periods
        other = make_plot()
        payment = pay(db_session, plot.id, "500", "R1")
        accrual = make_accrual(january, other, AccrualType.MEMBERSHIP, accrued="100")

        with pytest.raises(ValidationError):
            AllocationService(db_session).allocate_manual(payment.id, accrual.id, Decimal("50"))

    def test_rejects_locked_period(self, db_session, plot, make_period, make_accrual):
        locked = make_period(status=PeriodStatus.LOCKED)
        payment = pay(db_session, plot.id, "500", "R1")
        accrual = make_accrual(locked, plot, AccrualType.MEMBERSHIP, accrued="100")

        with pytest.raises(PeriodLockedError):
            AllocationService(db_session).allocate_manual(payment.id, accrual.id, Decimal("50"))

    def test_unknown_payment(self, db_session):
        with pytest.raises(NotFoundError):
            AllocationService(db_session).allocate_manual(1, 1, Decimal("1"))


class TestTrimAllocations:
    def test_newest_allocation_is_cut_first(self, db_session, plot, periods, make_accrual):
        january, _ = periods
        accrual = make_accrual(january, plot, AccrualType.MEMBERSHIP, accrued="1000")
        first = pay(db_session, plot.id, "600", "R1")
        second = pay(db_session, plot.id, "400", "R2")

        returned = AllocationService(db_session).trim_allocations(accrual, Decimal("500"))
        db_session.commit()

        assert returned == Decimal("500")
        db_session.refresh(accrual)
        db_session.refresh(first)
        db_session.refresh(second)
        assert accrual.amount_paid == Decimal("500")
        assert second.allocations == []
        assert second.credit_amount == Decimal("400")
        assert [a.amount for a in first.allocations] == [Decimal("500")]
        assert first.credit_amount == Decimal("100")
        assert db_session.query(PaymentAllocation).count() == 1

    def test_nothing_to_trim(self, db_session, plot, periods, make_accrual):
        january, _ = periods
        accrual = make_accrual(january, plot, AccrualType.MEMBERSHIP, accrued="1000")
        pay(db_session, plot.id, "300", "R1")

        assert AllocationService(db_session).trim_allocations(accrual, Decimal("500")) == Decimal("0")
        db_session.refresh(accrual)
        assert accrual.amount_paid == Decimal("300")

    def test_paid_without_allocations_is_lowered(self, db_session, plot, periods, make_accrual):
        january, _ = periods
        accrual = make_accrual(january, plot, AccrualType.MEMBERSHIP, accrued="1000", paid="800")

        returned = AllocationService(db_session).trim_allocations(accrual, Decimal("200"))

        assert returned == Decimal("0")
        assert accrual.amount_paid == Decimal("200")


def run_in_thread(engine, work):
    """Start work(session) in a thread with its own session.

    Returns the thread and a dict that receives "result" or "error".
    """
    outcome = {}

    def target():
        session = sessionmaker(bind=engine, autoflush=False)()
        try:
            outcome["result"] = work(session)
        except Exception as e:
            outcome["error"] = e
        finally:
            session.close()

    thread = threading.Thread(target=target)
    thread.start()
    return thread, outcome


class TestPeriodGuard:
    """Allocation writes wait for a period's guard and re-check its status."""

    def test_periods_guard_locks_in_id_order(self, db_session, periods):
        january, february = periods

        with periods_guard(db_session, [february.id, january.id, february.id]) as guarded:
            assert list(guarded) == [january.id, february.id]
            assert guarded[january.id].status == PeriodStatus.DRAFT
            assert period_lock(january.id).locked()
            assert period_lock(february.id).locked()

        assert not period_lock(january.id).locked()
        assert not period_lock(february.id).locked()

    def test_import_racing_lock_keeps_money_as_credit(
        self, engine, db_session, plot, periods, make_accrual
    ):
        january, _ = periods
        accrual = make_accrual(january, plot, AccrualType.MEMBERSHIP, accrued="1000")
        row = PaymentRow(paid_at="2025-02-10", amount="400", plot_id=plot.id, reference="R1")

        with period_lock(january.id):
            thread, outcome = run_in_thread(
                engine, lambda session: PaymentImportService(session).import_payment(row)
            )
            time.sleep(0.2)
            january.status = PeriodStatus.LOCKED
            db_session.commit()
        thread.join(timeout=10)

        assert not thread.is_alive()
        assert "error" not in outcome
        db_session.refresh(accrual)
        assert accrual.amount_paid == Decimal("0")
        payment = db_session.get(Payment, outcome["result"].payment_id)
        assert payment.allocations == []
        assert payment.credit_amount == Decimal("400")

    def test_manual_allocation_racing_lock_is_rejected(
        self, engine, db_session, plot, periods, make_accrual
    ):
        january, _ = periods
        payment = pay(db_session, plot.id, "500", "R1")
        accrual = make_accrual(january, plot, AccrualType.TARGET, accrued="300")
        payment_id, accrual_id, period_id = payment.id, accrual.id, january.id

        with period_lock(period_id):
            thread, outcome = run_in_thread(
                engine,
                lambda session: AllocationService(session).allocate_manual(
                    payment_id, accrual_id, Decimal("200")
                ),
            )
            time.sleep(0.2)
            january.status = PeriodStatus.LOCKED
            db_session.commit()
        thread.join(timeout=10)

        assert isinstance(outcome.get("error"), PeriodLockedError)
        db_session.refresh(accrual)
        db_session.refresh(payment)
        assert accrual.amount_paid == Decimal("0")
        assert payment.credit_amount == Decimal("500")
        assert db_session.query(PaymentAllocation).count() == 0

    def test_apply_credit_racing_lock_spends_nothing(
        self, engine, db_session, plot, periods, make_accrual
    ):
        january, _ = periods
        payment = pay(db_session, plot.id, "500", "R1")
        accrual = make_accrual(january, plot, AccrualType.MEMBERSHIP, accrued="300")
        plot_id, period_id = plot.id, january.id

        with period_lock(period_id):
            thread, outcome = run_in_thread(
                engine, lambda session: AllocationService(session).apply_credit(plot_id)
            )
            time.sleep(0.2)
            january.status = PeriodStatus.LOCKED
            db_session.commit()
        thread.join(timeout=10)

        assert outcome == {"result": []}
        db_session.refresh(accrual)
        db_session.refresh(payment)
        assert accrual.amount_paid == Decimal("0")
        assert payment.credit_amount == Decimal("500")
