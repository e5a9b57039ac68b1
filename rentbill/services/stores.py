"""Data-access stores used by the billing engine.

Each store wraps one AsyncSession and exposes only the narrow operations the
billing services need. Services receive stores through their constructors, so
tests can hand in stores over a throwaway database or mocks.
"""

import logging
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rentbill.models.contract import Contract
from rentbill.models.invoice import Invoice
from rentbill.models.meter_reading import MeterReading, MeterType
from rentbill.models.rent_schedule import RentSchedule, RentScheduleStatus
from rentbill.models.unit import Unit
from rentbill.services.periods import period_end, period_start

logger = logging.getLogger(__name__)


class ContractStore:
    """Read-only access to contracts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_id(self, contract_id: int) -> Contract | None:
        return await self.session.get(Contract, contract_id)


class UnitStore:
    """Read-only access to units and their rates."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_id(self, unit_id: int) -> Unit | None:
        return await self.session.get(Unit, unit_id)


class MeterReadingStore:
    """Read-only access to meter readings."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_unit_type_period(
        self,
        unit_id: int,
        meter_type: MeterType,
        period: str,
    ) -> MeterReading | None:
        """Get the reading for a unit, meter type and period.

        Returns:
            MeterReading with its items loaded, or None if absent
        """
        stmt = select(MeterReading).where(
            MeterReading.unit_id == unit_id,
            MeterReading.meter_type == meter_type,
            MeterReading.period == period,
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()


class InvoiceLedger:
    """Invoice persistence boundary.

    The ledger never updates or deletes invoices. Creation is create-if-absent on
    (contract_id, period): the insert runs inside a savepoint and a unique-constraint
    violation means another writer won, in which case its invoice is returned.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def find_by_id(self, invoice_id: int) -> Invoice | None:
        return await self.session.get(Invoice, invoice_id)

    async def find_by_contract_and_period(self, contract_id: int, period: str) -> Invoice | None:
        stmt = select(Invoice).where(
            Invoice.contract_id == contract_id,
            Invoice.period == period,
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def create_if_absent(self, invoice: Invoice) -> tuple[Invoice, bool]:
        """Persist the invoice unless one already exists for its contract and period.

        Returns:
            Tuple (invoice, created) where invoice is the stored one
        """
        existing = await self.find_by_contract_and_period(invoice.contract_id, invoice.period)
        if existing is not None:
            return existing, False

        try:
            async with self.session.begin_nested():
                self.session.add(invoice)
        except IntegrityError:
            existing = await self.find_by_contract_and_period(invoice.contract_id, invoice.period)
            if existing is None:
                raise
            logger.info(
                "Invoice for contract %d period %s was created concurrently, reusing id=%d",
                invoice.contract_id,
                invoice.period,
                existing.id,
            )
            return existing, False

        return invoice, True


class RentScheduleStore:
    """Persistence for rent schedules."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def save(self, schedule: RentSchedule) -> RentSchedule:
        self.session.add(schedule)
        await self.session.flush()
        return schedule

    async def save_all(self, schedules: list[RentSchedule]) -> list[RentSchedule]:
        self.session.add_all(schedules)
        await self.session.flush()
        return schedules

    async def find_by_id(self, schedule_id: int) -> RentSchedule | None:
        return await self.session.get(RentSchedule, schedule_id)

    async def find_by_contract(self, contract_id: int) -> list[RentSchedule]:
        """All schedules of a contract, earliest first."""
        stmt = (
            select(RentSchedule)
            .where(RentSchedule.contract_id == contract_id)
            .order_by(RentSchedule.scheduled_date.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_customer(self, customer_id: int) -> list[RentSchedule]:
        """All schedules of a tenant, latest first."""
        stmt = (
            select(RentSchedule)
            .where(RentSchedule.customer_id == customer_id)
            .order_by(RentSchedule.scheduled_date.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_dates_for_contract(self, contract_id: int) -> set[date]:
        """Due dates already materialized for a contract."""
        stmt = select(RentSchedule.scheduled_date).where(RentSchedule.contract_id == contract_id)
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    async def find_due(self, as_of: date) -> list[RentSchedule]:
        """Every pending schedule due on or before ``as_of``, with no cap."""
        stmt = (
            select(RentSchedule)
            .where(
                RentSchedule.status == RentScheduleStatus.PENDING,
                RentSchedule.scheduled_date <= as_of,
            )
            .order_by(RentSchedule.scheduled_date.asc(), RentSchedule.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_upcoming(self, as_of: date, limit: int = 10) -> list[RentSchedule]:
        """Pending schedules strictly after ``as_of``, earliest first."""
        stmt = (
            select(RentSchedule)
            .where(
                RentSchedule.status == RentScheduleStatus.PENDING,
                RentSchedule.scheduled_date > as_of,
            )
            .order_by(RentSchedule.scheduled_date.asc(), RentSchedule.id.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_unlinked_for_period(self, contract_id: int, period: str) -> RentSchedule | None:
        """Earliest schedule of the contract due within ``period`` that has no invoice yet."""
        stmt = (
            select(RentSchedule)
            .where(
                RentSchedule.contract_id == contract_id,
                RentSchedule.scheduled_date >= period_start(period),
                RentSchedule.scheduled_date <= period_end(period),
                RentSchedule.invoice_id.is_(None),
            )
            .order_by(RentSchedule.scheduled_date.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def link_invoice(self, schedule_id: int, invoice_id: int) -> bool:
        """Set the schedule's invoice_id if it is still empty.

        Returns:
            True if the link was written, False if the schedule was already linked or is missing
        """
        stmt = (
            update(RentSchedule)
            .where(RentSchedule.id == schedule_id, RentSchedule.invoice_id.is_(None))
            .values(invoice_id=invoice_id)
            .execution_options(synchronize_session="fetch")
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


__all__ = [
    "ContractStore",
    "UnitStore",
    "MeterReadingStore",
    "InvoiceLedger",
    "RentScheduleStore",
]
