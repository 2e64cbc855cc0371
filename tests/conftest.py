"""Pytest configuration: in-memory database, sessions and small factories."""

import os

# Set test database URL BEFORE any imports from src
# This ensures the SessionLocal and engine use an in-memory database
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from datetime import date  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from src.models import (  # noqa: E402
    Base,
    BillingPeriod,
    PeriodAccrual,
    PeriodStatus,
    Plot,
    PlotStatus,
    Tariff,
    TariffStatus,
    TariffType,
    TariffUnit,
)


@pytest.fixture
def engine():
    """Fresh in-memory database per test, shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Create test database session."""
    SessionLocal = sessionmaker(bind=engine, autoflush=False)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def make_plot(db_session):
    """Factory for plots."""

    def _make(number: str = None, area=None, status: PlotStatus = PlotStatus.ACTIVE) -> Plot:
        count = db_session.query(Plot).count()
        plot = Plot(
            number=number or str(count + 1),
            area=Decimal(str(area)) if area is not None else None,
            status=status,
        )
        db_session.add(plot)
        db_session.commit()
        return plot

    return _make


@pytest.fixture
def make_tariff(db_session):
    """Factory for tariffs (active for the whole of 2025 by default)."""

    def _make(
        tariff_type: TariffType = TariffType.MEMBER,
        amount="1000",
        unit: TariffUnit = TariffUnit.PLOT,
        active_from: date = date(2025, 1, 1),
        active_to: date | None = None,
        status: TariffStatus = TariffStatus.ACTIVE,
        name: str | None = None,
    ) -> Tariff:
        tariff = Tariff(
            name=name or f"{tariff_type.value} tariff",
            type=tariff_type,
            unit=unit,
            amount=Decimal(str(amount)),
            active_from=active_from,
            active_to=active_to,
            status=status,
        )
        db_session.add(tariff)
        db_session.commit()
        return tariff

    return _make


@pytest.fixture
def make_period(db_session):
    """Factory for billing periods."""

    def _make(
        name: str = "2025-01",
        date_from: date = date(2025, 1, 1),
        date_to: date = date(2025, 1, 31),
        status: PeriodStatus = PeriodStatus.DRAFT,
    ) -> BillingPeriod:
        period = BillingPeriod(name=name, date_from=date_from, date_to=date_to, status=status)
        db_session.add(period)
        db_session.commit()
        return period

    return _make


@pytest.fixture
def make_accrual(db_session):
    """Factory for accrual rows written directly (bypassing generation)."""

    def _make(period, plot, accrual_type, accrued="1000", paid="0") -> PeriodAccrual:
        accrual = PeriodAccrual(
            period_id=period.id,
            plot_id=plot.id,
            type=accrual_type,
            amount_accrued=Decimal(str(accrued)),
            amount_paid=Decimal(str(paid)),
        )
        db_session.add(accrual)
        db_session.commit()
        return accrual

    return _make
