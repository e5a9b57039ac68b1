"""Integration tests: schedules, daily scans and invoices over one database."""

import asyncio
from datetime import date, datetime, time, timezone
from decimal import Decimal

from sqlalchemy import select

from rentbill.models.contract import Contract, ContractStatus
from rentbill.models.invoice import Invoice
from rentbill.models.meter_reading import MeterType
from rentbill.services.clock import FixedClock
from rentbill.services.scanner_service import DueScheduleScanner, ScanOutcome
from rentbill.services.schedule_service import RentScheduleService
from rentbill.services.scheduler import BillingScheduler, DailyTicker
from rentbill.services.stores import RentScheduleStore


async def invoices_by_period(session_factory) -> dict[str, Invoice]:
    async with session_factory() as session:
        invoices = (await session.scalars(select(Invoice).order_by(Invoice.period))).all()
        return {invoice.period: invoice for invoice in invoices}


class TestDailyBilling:
    """A contract billed by the scheduler over three months."""

    async def test_scheduler_bills_each_month_once(self, seed, make_reading, session_factory, contract_c1):
        await seed(
            make_reading(contract_c1.unit_id, MeterType.ELECTRICITY, "2025-01", "100"),
            make_reading(contract_c1.unit_id, MeterType.ELECTRICITY, "2025-02", "120"),
        )
        clock = FixedClock(datetime(2024, 12, 31, 12, 0, tzinfo=timezone.utc))
        async with session_factory() as session:
            schedules = await RentScheduleService(session, clock).create_schedule_for_contract(contract_c1.id)
        assert len(schedules) == 3

        scanner = DueScheduleScanner(session_factory, clock, max_concurrency=1)
        scheduler = None
        stop_at = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

        async def fake_sleep(seconds: float) -> None:
            clock.advance(seconds=seconds)
            if clock.now() >= stop_at:
                scheduler.stop()

        scheduler = BillingScheduler(scanner, DailyTicker(clock, time(0, 0), sleep=fake_sleep))
        await asyncio.wait_for(scheduler.run_forever(), timeout=30)

        assert scheduler.runs == 60
        invoices = await invoices_by_period(session_factory)
        assert list(invoices) == ["2025-01", "2025-02", "2025-03"]
        assert [item.service_name for item in invoices["2025-01"].items] == ["Rent"]
        electricity = {item.service_name: item for item in invoices["2025-02"].items}["Electricity"]
        assert electricity.quantity == Decimal("20")
        assert electricity.amount == Decimal("70000.00")
        assert invoices["2025-02"].total_amount == Decimal("5070000.00")

        async with session_factory() as session:
            linked = await RentScheduleStore(session).find_by_contract(contract_c1.id)
        assert [s.invoice_id for s in linked] == [invoices[p].id for p in ("2025-01", "2025-02", "2025-03")]

    async def test_month_end_contract_is_billed_in_february(self, seed, session_factory, unit_u1):
        contract = await seed(
            Contract(
                unit_id=unit_u1.id,
                status=ContractStatus.ACTIVE,
                rent_amount=Decimal("3000000"),
                payment_cycle="monthly",
                billing_start_date=date(2025, 1, 31),
                expiry_date=date(2025, 4, 30),
            )
        )
        clock = FixedClock(datetime(2025, 2, 28, 0, 5, tzinfo=timezone.utc))
        async with session_factory() as session:
            schedules = await RentScheduleService(session, clock).generate_schedules(contract)
        assert [s.scheduled_date for s in schedules] == [
            date(2025, 1, 31),
            date(2025, 2, 28),
            date(2025, 3, 31),
            date(2025, 4, 30),
        ]

        report = await DueScheduleScanner(session_factory, clock, max_concurrency=1).run_due_scan()

        assert [(r.period, r.outcome) for r in report.results] == [
            ("2025-01", ScanOutcome.INVOICED),
            ("2025-02", ScanOutcome.INVOICED),
        ]
        assert list(await invoices_by_period(session_factory)) == ["2025-01", "2025-02"]

    async def test_manual_and_scheduled_billing_agree(self, session_factory, contract_c1):
        clock = FixedClock(datetime(2025, 2, 1, 0, 0, tzinfo=timezone.utc))
        async with session_factory() as session:
            await RentScheduleService(session, clock).generate_schedules(contract_c1)
        scanner = DueScheduleScanner(session_factory, clock, max_concurrency=1)

        manual = await scanner.generate_invoice_for_contract(contract_c1.id, "2025-01", actor_id=12)
        report = await scanner.run_due_scan()

        outcomes = {r.period: r for r in report.results}
        assert outcomes["2025-01"].outcome == ScanOutcome.ALREADY_LINKED
        assert outcomes["2025-01"].invoice_id == manual.id
        assert outcomes["2025-02"].outcome == ScanOutcome.INVOICED
        invoices = await invoices_by_period(session_factory)
        assert invoices["2025-01"].created_by == 12
        assert invoices["2025-02"].created_by is None
