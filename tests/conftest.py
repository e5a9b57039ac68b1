"""Shared fixtures: a throwaway SQLite billing database and seed helpers."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from rentbill.models import Base
from rentbill.models.contract import Contract, ContractStatus
from rentbill.models.meter_reading import MeterReading, MeterReadingItem, MeterType
from rentbill.models.unit import Unit
from rentbill.services import create_engine_from_url, create_session_factory
from rentbill.services.clock import FixedClock


@pytest.fixture
async def engine(tmp_path):
    """Async engine over a file database, one per test.

    A file database gives every session its own connection, like production.
    """
    engine = create_engine_from_url(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def async_db_session(session_factory):
    """Create async test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    """Clock fixed at 2025-03-01 09:00 UTC."""
    return FixedClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def seed(session_factory):
    """Store objects in their own committed session and return them."""

    async def _seed(*objects):
        async with session_factory() as session:
            session.add_all(objects)
            await session.commit()
        return objects[0] if len(objects) == 1 else objects

    return _seed


@pytest.fixture
def make_reading():
    """Build a meter reading whose items carry the given new indexes."""

    def _make(unit_id: int, meter_type: MeterType, period: str, *new_indexes: str) -> MeterReading:
        year, month = (int(part) for part in period.split("-"))
        return MeterReading(
            unit_id=unit_id,
            meter_type=meter_type,
            period=period,
            reading_date=date(year, month, 1),
            items=[
                MeterReadingItem(name=f"Meter {i + 1}", new_index=Decimal(value))
                for i, value in enumerate(new_indexes)
            ],
        )

    return _make


@pytest.fixture
async def unit_u1(seed) -> Unit:
    """Unit U1 billed 3,500 per kWh."""
    return await seed(
        Unit(
            building_id=1,
            name="U1",
            rent_price=Decimal("5000000"),
            electricity_price_per_kwh=Decimal("3500"),
        )
    )


@pytest.fixture
async def contract_c1(seed, unit_u1) -> Contract:
    """Contract C1: monthly rent 5,000,000 from 2025-01-01 to 2025-03-01."""
    return await seed(
        Contract(
            building_id=1,
            unit_id=unit_u1.id,
            customer_id=501,
            status=ContractStatus.ACTIVE,
            rent_amount=Decimal("5000000"),
            payment_cycle="monthly",
            billing_start_date=date(2025, 1, 1),
            expiry_date=date(2025, 3, 1),
        )
    )
