"""Tests for the billing command line."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from src.cli import billing as cli
from src.models import BillingPeriod, PenaltyAccrual, PeriodAccrual, PeriodStatus, TariffType
from src.models.period_accrual import AccrualType


@pytest.fixture(autouse=True)
def cli_env(engine, monkeypatch):
    """Point the CLI at the test database and keep logging untouched."""
    monkeypatch.setattr("src.services.SessionLocal", sessionmaker(bind=engine, autoflush=False))
    monkeypatch.setattr(cli, "setup_server_logging", lambda *args, **kwargs: None)


def test_create_generate_lock_flow(db_session, make_plot, make_tariff, capsys):
    make_plot()
    make_plot()
    make_tariff(TariffType.MEMBER, amount="1000")

    assert cli.main(["create-period", "2025-01", "2025-01-01", "2025-01-31"]) == 0
    period = db_session.query(BillingPeriod).filter_by(name="2025-01").one()

    assert cli.main(["--actor-id", "4", "generate", str(period.id), "--types", "membership"]) == 0
    assert db_session.query(PeriodAccrual).count() == 2

    assert cli.main(["lock", str(period.id)]) == 0
    db_session.refresh(period)
    assert period.status == PeriodStatus.LOCKED

    out = capsys.readouterr().out
    assert "created=2" in out
    assert f"Period {period.id} locked" in out


def test_rejected_operation_exits_with_one(db_session, make_period):
    period = make_period(status=PeriodStatus.LOCKED)

    assert cli.main(["generate", str(period.id)]) == 1
    assert db_session.query(PeriodAccrual).count() == 0


def test_unknown_period_exits_with_one():
    assert cli.main(["unlock", "77"]) == 1


def test_reconcile_prints_csv(make_plot, make_period, make_accrual, capsys):
    period = make_period()
    plot = make_plot(number="9")
    make_accrual(period, plot, AccrualType.MEMBERSHIP, accrued="1000", paid="250")

    assert cli.main(["reconcile", str(period.id), "--only-with-debt"]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("plot_id;plot_number")
    assert lines[1].startswith(f"{plot.id};9;")


def test_apply_penalties(db_session, make_plot, make_period, make_accrual, capsys):
    january = make_period("2025-01", date(2025, 1, 1), date(2025, 1, 31))
    february = make_period("2025-02", date(2025, 2, 1), date(2025, 2, 28))
    make_accrual(january, make_plot(), AccrualType.MEMBERSHIP, accrued="1000")

    code = cli.main(
        ["--actor-id", "2", "apply-penalties", str(february.id), "--as-of", "2025-03-02", "--rate", "0.365"]
    )

    assert code == 0
    penalty = db_session.query(PenaltyAccrual).one()
    assert penalty.period_id == february.id
    assert penalty.amount == Decimal("30.00")
    assert penalty.created_by_user_id == 2
    assert "penalties created=1" in capsys.readouterr().out


def test_apply_penalties_to_locked_period_fails(db_session, make_period):
    period = make_period(status=PeriodStatus.LOCKED)

    assert cli.main(["apply-penalties", str(period.id), "--as-of", "2025-03-02"]) == 1
    assert db_session.query(PenaltyAccrual).count() == 0
