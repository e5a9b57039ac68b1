"""Unit tests for rent schedule generation and status updates."""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from rentbill.models.audit_log import AuditLog
from rentbill.models.contract import Contract, ContractStatus, PaymentCycle
from rentbill.models.rent_schedule import RentSchedule, RentScheduleStatus
from rentbill.services.clock import FixedClock
from rentbill.services.errors import ContractNotFoundError, PersistenceError, ScheduleNotFoundError
from rentbill.services.schedule_service import (
    RentScheduleService,
    parse_payment_cycle,
    plan_due_dates,
)
from rentbill.services.stores import RentScheduleStore


def contract(**fields) -> Contract:
    values = {
        "id": 1,
        "unit_id": 10,
        "customer_id": 20,
        "status": ContractStatus.ACTIVE,
        "rent_amount": Decimal("5000000"),
        "payment_cycle": "monthly",
        "billing_start_date": date(2025, 1, 1),
        "expiry_date": date(2025, 3, 1),
    }
    values.update(fields)
    return Contract(**values)


@pytest.fixture
def service(async_db_session, clock):
    return RentScheduleService(async_db_session, clock)


async def stored_dates(session_factory, contract_id: int) -> list[date]:
    async with session_factory() as session:
        schedules = await RentScheduleStore(session).find_by_contract(contract_id)
        return [s.scheduled_date for s in schedules]


class TestPlanDueDates:
    def test_monthly(self):
        assert plan_due_dates(date(2025, 1, 1), date(2025, 3, 1), PaymentCycle.MONTHLY) == [
            date(2025, 1, 1),
            date(2025, 2, 1),
            date(2025, 3, 1),
        ]

    def test_quarterly(self):
        assert plan_due_dates(date(2025, 1, 15), date(2025, 12, 31), PaymentCycle.QUARTERLY) == [
            date(2025, 1, 15),
            date(2025, 4, 15),
            date(2025, 7, 15),
            date(2025, 10, 15),
        ]

    def test_month_end_start_clamps_without_drift(self):
        assert plan_due_dates(date(2025, 1, 31), date(2025, 4, 30), PaymentCycle.MONTHLY) == [
            date(2025, 1, 31),
            date(2025, 2, 28),
            date(2025, 3, 31),
            date(2025, 4, 30),
        ]

    def test_unknown_cycle_plans_start_only(self):
        assert plan_due_dates(date(2025, 1, 1), date(2025, 12, 1), None) == [date(2025, 1, 1)]

    def test_start_after_end_plans_nothing(self):
        assert plan_due_dates(date(2025, 5, 1), date(2025, 4, 1), PaymentCycle.MONTHLY) == []

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("monthly", PaymentCycle.MONTHLY),
            ("Quarterly", PaymentCycle.QUARTERLY),
            ("yearly", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse_payment_cycle(self, value, expected):
        assert parse_payment_cycle(value) is expected


class TestGenerateSchedules:
    """Schedule generation for one contract."""

    async def test_scenario_c1(self, service, session_factory, contract_c1):
        created = await service.generate_schedules(contract_c1)

        assert [s.scheduled_date for s in created] == [
            date(2025, 1, 1),
            date(2025, 2, 1),
            date(2025, 3, 1),
        ]
        assert all(s.amount == Decimal("5000000") for s in created)
        assert all(s.status == RentScheduleStatus.PENDING for s in created)
        assert all(s.customer_id == 501 for s in created)
        assert await stored_dates(session_factory, contract_c1.id) == [
            date(2025, 1, 1),
            date(2025, 2, 1),
            date(2025, 3, 1),
        ]

    async def test_generation_is_idempotent(self, session_factory, clock, contract_c1):
        async with session_factory() as session:
            await RentScheduleService(session, clock).generate_schedules(contract_c1)
        async with session_factory() as session:
            again = await RentScheduleService(session, clock).generate_schedules(contract_c1)

        assert again == []
        assert len(await stored_dates(session_factory, contract_c1.id)) == 3

    async def test_only_missing_dates_are_added(self, seed, service, session_factory, contract_c1):
        existing = await seed(
            RentSchedule(
                contract_id=contract_c1.id,
                unit_id=contract_c1.unit_id,
                scheduled_date=date(2025, 2, 1),
                amount=Decimal("4000000"),
                status=RentScheduleStatus.PAID,
            )
        )

        created = await service.generate_schedules(contract_c1)

        assert [s.scheduled_date for s in created] == [date(2025, 1, 1), date(2025, 3, 1)]
        async with session_factory() as session:
            untouched = await session.get(RentSchedule, existing.id)
        assert untouched.amount == Decimal("4000000")
        assert untouched.status == RentScheduleStatus.PAID

    async def test_month_end_start(self, seed, service, unit_u1):
        stored = await seed(
            contract(id=None, unit_id=unit_u1.id, billing_start_date=date(2025, 1, 31), expiry_date=date(2025, 3, 31))
        )

        created = await service.generate_schedules(stored)

        assert [s.scheduled_date for s in created] == [
            date(2025, 1, 31),
            date(2025, 2, 28),
            date(2025, 3, 31),
        ]

    async def test_without_expiry_runs_one_year(self, seed, service, unit_u1):
        stored = await seed(contract(id=None, unit_id=unit_u1.id, expiry_date=None))

        created = await service.generate_schedules(stored)

        assert created[0].scheduled_date == date(2025, 1, 1)
        assert created[-1].scheduled_date == date(2026, 1, 1)
        assert len(created) == 13

    async def test_quarterly_contract(self, seed, service, unit_u1):
        stored = await seed(
            contract(id=None, unit_id=unit_u1.id, payment_cycle="quarterly", expiry_date=date(2025, 12, 31))
        )

        created = await service.generate_schedules(stored)

        assert [s.scheduled_date.month for s in created] == [1, 4, 7, 10]

    async def test_unknown_cycle_stops_after_start(self, seed, service, unit_u1, caplog):
        stored = await seed(contract(id=None, unit_id=unit_u1.id, payment_cycle="fortnightly"))

        created = await service.generate_schedules(stored)

        assert [s.scheduled_date for s in created] == [date(2025, 1, 1)]
        assert "Unsupported payment cycle 'fortnightly'" in caplog.text

    async def test_missing_rent_amount_is_zero(self, seed, service, unit_u1):
        stored = await seed(contract(id=None, unit_id=unit_u1.id, rent_amount=None))

        created = await service.generate_schedules(stored)

        assert all(s.amount == Decimal("0") for s in created)

    @pytest.mark.parametrize(
        "fields",
        [
            {"status": ContractStatus.TERMINATED},
            {"status": ContractStatus.EXPIRING_SOON},
            {"status": ContractStatus.EXPIRED},
            {"billing_start_date": None},
            {"payment_cycle": None},
            {"unit_id": None},
        ],
    )
    async def test_not_billable_is_a_no_op(self, fields):
        session = AsyncMock(spec=AsyncSession)
        schedules = AsyncMock(spec=RentScheduleStore)
        service = RentScheduleService(session, FixedClock(), schedules=schedules)

        assert await service.generate_schedules(contract(**fields)) == []
        schedules.save_all.assert_not_awaited()
        session.commit.assert_not_awaited()

    async def test_writes_audit_entry(self, service, session_factory, contract_c1):
        await service.generate_schedules(contract_c1)

        async with session_factory() as session:
            audits = (await session.scalars(select(AuditLog))).all()
        assert len(audits) == 1
        assert audits[0].entity_type == "contract"
        assert audits[0].action == "generate_schedules"
        assert audits[0].changes["scheduled_dates"] == ["2025-01-01", "2025-02-01", "2025-03-01"]

    async def test_store_failure_raises_persistence_error(self):
        session = AsyncMock(spec=AsyncSession)
        schedules = AsyncMock(spec=RentScheduleStore)
        schedules.find_dates_for_contract.return_value = set()
        schedules.save_all.side_effect = OperationalError("INSERT INTO rent_schedules", {}, Exception("locked"))
        service = RentScheduleService(session, FixedClock(), schedules=schedules)

        with pytest.raises(PersistenceError) as exc_info:
            await service.generate_schedules(contract())

        assert exc_info.value.contract_id == 1
        session.rollback.assert_awaited_once()


class TestCreateScheduleForContract:
    async def test_loads_contract(self, service, contract_c1):
        created = await service.create_schedule_for_contract(contract_c1.id)

        assert len(created) == 3

    async def test_missing_contract(self, service):
        with pytest.raises(ContractNotFoundError):
            await service.create_schedule_for_contract(12345)


class TestScheduleQueries:
    @pytest.fixture
    async def generated(self, service, contract_c1):
        return await service.generate_schedules(contract_c1)

    async def test_upcoming_is_after_today(self, async_db_session, generated):
        service = RentScheduleService(async_db_session, FixedClock(datetime(2025, 1, 15, tzinfo=timezone.utc)))

        upcoming = await service.get_upcoming(limit=1)

        assert [s.scheduled_date for s in upcoming] == [date(2025, 2, 1)]

    async def test_overdue_includes_today(self, service, generated):
        overdue = await service.get_overdue()

        assert [s.scheduled_date for s in overdue] == [date(2025, 1, 1), date(2025, 2, 1), date(2025, 3, 1)]

    async def test_find_by_contract_and_customer(self, service, contract_c1, generated):
        assert len(await service.find_by_contract(contract_c1.id)) == 3
        assert [s.scheduled_date for s in await service.find_by_customer(501)][0] == date(2025, 3, 1)


class TestStatusUpdates:
    @pytest.fixture
    async def pending(self, seed, contract_c1) -> RentSchedule:
        return await seed(
            RentSchedule(
                contract_id=contract_c1.id,
                unit_id=contract_c1.unit_id,
                scheduled_date=date(2025, 2, 1),
                amount=Decimal("5000000"),
            )
        )

    async def test_mark_as_paid(self, service, session_factory, pending):
        await service.mark_as_paid(pending.id, payment_id=55, invoice_id=66)

        async with session_factory() as session:
            stored = await session.get(RentSchedule, pending.id)
        assert stored.status == RentScheduleStatus.PAID
        assert stored.payment_id == 55
        assert stored.invoice_id == 66

    async def test_mark_as_paid_keeps_existing_invoice(self, seed, service, contract_c1):
        linked = await seed(
            RentSchedule(
                contract_id=contract_c1.id,
                unit_id=contract_c1.unit_id,
                scheduled_date=date(2025, 3, 1),
                amount=Decimal("5000000"),
                invoice_id=1,
            )
        )

        paid = await service.mark_as_paid(linked.id, payment_id=55, invoice_id=2)

        assert paid.invoice_id == 1

    async def test_mark_as_overdue(self, service, pending):
        overdue = await service.mark_as_overdue(pending.id)

        assert overdue.status == RentScheduleStatus.OVERDUE

    async def test_missing_schedule(self, service):
        with pytest.raises(ScheduleNotFoundError):
            await service.mark_as_paid(404, payment_id=1)
        with pytest.raises(ScheduleNotFoundError):
            await service.mark_as_overdue(404)
