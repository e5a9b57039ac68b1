"""Rent schedule generation and schedule status operations."""

import logging
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rentbill.models.contract import Contract, ContractStatus, PaymentCycle
from rentbill.models.rent_schedule import RentSchedule, RentScheduleStatus
from rentbill.services.audit_service import AuditService
from rentbill.services.clock import Clock, SystemClock
from rentbill.services.errors import (
    ContractNotFoundError,
    PersistenceError,
    ScheduleNotFoundError,
)
from rentbill.services.money import to_decimal
from rentbill.services.periods import add_months
from rentbill.services.stores import ContractStore, RentScheduleStore

logger = logging.getLogger(__name__)

DEFAULT_TERM_MONTHS = 12


def parse_payment_cycle(value: str | None) -> PaymentCycle | None:
    """Map the stored payment cycle text to a PaymentCycle, None if unsupported."""
    if not value:
        return None
    try:
        return PaymentCycle(value.strip().lower())
    except ValueError:
        return None


def plan_due_dates(start: date, end: date, cycle: PaymentCycle | None) -> list[date]:
    """Due dates from ``start`` through ``end`` inclusive.

    Each date is computed from ``start`` rather than from the previous date, so a
    start on the 31st lands on the last day of short months and returns to the 31st
    afterwards. With an unsupported cycle only ``start`` is planned.
    """
    dates: list[date] = []
    step = 0
    while True:
        due = start if cycle is None else add_months(start, step * cycle.months)
        if due > end:
            break
        dates.append(due)
        if cycle is None:
            break
        step += 1
    return dates


class RentScheduleService:
    """Materializes rent schedules for contracts and records their payment state.

    Generation is idempotent: due dates that already have a schedule for the contract
    are skipped and existing schedules are never modified.
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock | None = None,
        *,
        schedules: RentScheduleStore | None = None,
        contracts: ContractStore | None = None,
    ) -> None:
        """Initialize with async database session and a clock for "today"."""
        self.session = session
        self.clock = clock or SystemClock()
        self.schedules = schedules or RentScheduleStore(session)
        self.contracts = contracts or ContractStore(session)

    async def generate_schedules(self, contract: Contract) -> list[RentSchedule]:
        """Create the missing schedules of an active contract.

        Args:
            contract: Contract to generate schedules for

        Returns:
            Newly created schedules, earliest first (empty when nothing to do)

        Raises:
            PersistenceError: If the schedules cannot be stored
        """
        if contract.status != ContractStatus.ACTIVE:
            logger.debug("Contract %d is %s, no schedules generated", contract.id, contract.status)
            return []

        if contract.billing_start_date is None or not contract.payment_cycle:
            logger.debug("Contract %d has no billing start date or payment cycle", contract.id)
            return []

        if contract.unit_id is None:
            logger.warning("Contract %d has no unit, no schedules generated", contract.id)
            return []

        start = contract.billing_start_date
        end = contract.expiry_date or add_months(start, DEFAULT_TERM_MONTHS)
        cycle = parse_payment_cycle(contract.payment_cycle)
        if cycle is None:
            logger.warning(
                "Unsupported payment cycle %r on contract %d, stopping after %s",
                contract.payment_cycle,
                contract.id,
                start,
            )

        contract_id = contract.id
        existing = await self.schedules.find_dates_for_contract(contract.id)
        amount = to_decimal(contract.rent_amount)
        new_schedules = [
            RentSchedule(
                contract_id=contract.id,
                unit_id=contract.unit_id,
                customer_id=contract.customer_id,
                scheduled_date=due,
                amount=amount,
                status=RentScheduleStatus.PENDING,
            )
            for due in plan_due_dates(start, end, cycle)
            if due not in existing
        ]
        if not new_schedules:
            logger.debug("Contract %d schedules already up to date", contract.id)
            return []

        try:
            await self.schedules.save_all(new_schedules)
            await AuditService.log(
                self.session,
                "contract",
                contract.id,
                "generate_schedules",
                None,
                {"scheduled_dates": [s.scheduled_date.isoformat() for s in new_schedules]},
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to store %d schedules for contract %d",
                len(new_schedules),
                contract_id,
                exc_info=True,
            )
            raise PersistenceError(
                f"Failed to store schedules for contract {contract_id}",
                contract_id=contract_id,
            ) from e

        logger.info(
            "Generated %d schedules for contract %d (%s to %s)",
            len(new_schedules),
            contract.id,
            new_schedules[0].scheduled_date,
            new_schedules[-1].scheduled_date,
        )
        return new_schedules

    async def create_schedule_for_contract(self, contract_id: int) -> list[RentSchedule]:
        """Load a contract by ID and generate its schedules.

        Raises:
            ContractNotFoundError: If the contract does not exist
        """
        contract = await self.contracts.find_by_id(contract_id)
        if contract is None:
            raise ContractNotFoundError(contract_id)
        return await self.generate_schedules(contract)

    async def get_upcoming(self, limit: int = 10) -> list[RentSchedule]:
        """Pending schedules due after today."""
        return await self.schedules.find_upcoming(self.clock.today(), limit)

    async def get_overdue(self) -> list[RentSchedule]:
        """Pending schedules due today or earlier."""
        return await self.schedules.find_due(self.clock.today())

    async def find_by_contract(self, contract_id: int) -> list[RentSchedule]:
        return await self.schedules.find_by_contract(contract_id)

    async def find_by_customer(self, customer_id: int) -> list[RentSchedule]:
        return await self.schedules.find_by_customer(customer_id)

    async def mark_as_paid(
        self,
        schedule_id: int,
        payment_id: int,
        invoice_id: int | None = None,
    ) -> RentSchedule:
        """Record the payment of a schedule.

        An invoice_id is only written when the schedule has none yet.

        Raises:
            ScheduleNotFoundError: If the schedule does not exist
        """
        schedule = await self._get_schedule(schedule_id)
        schedule.status = RentScheduleStatus.PAID
        schedule.payment_id = payment_id
        if invoice_id is not None and schedule.invoice_id is None:
            schedule.invoice_id = invoice_id
        await self._save_status(schedule, {"payment_id": payment_id, "invoice_id": schedule.invoice_id})
        return schedule

    async def mark_as_overdue(self, schedule_id: int) -> RentSchedule:
        """Flag a schedule as overdue.

        Raises:
            ScheduleNotFoundError: If the schedule does not exist
        """
        schedule = await self._get_schedule(schedule_id)
        schedule.status = RentScheduleStatus.OVERDUE
        await self._save_status(schedule, None)
        return schedule

    async def _get_schedule(self, schedule_id: int) -> RentSchedule:
        schedule = await self.schedules.find_by_id(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)
        return schedule

    async def _save_status(self, schedule: RentSchedule, extra: dict | None) -> None:
        schedule_id = schedule.id
        contract_id = schedule.contract_id
        changes = {"status": schedule.status.value}
        if extra:
            changes.update(extra)
        try:
            await self.schedules.save(schedule)
            await AuditService.log(self.session, "rent_schedule", schedule.id, "update_status", None, changes)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Failed to update schedule %d: %s", schedule_id, changes, exc_info=True)
            raise PersistenceError(
                f"Failed to update schedule {schedule_id}",
                contract_id=contract_id,
            ) from e
        logger.info("Schedule %d marked %s", schedule.id, schedule.status.value)


__all__ = ["RentScheduleService", "parse_payment_cycle", "plan_due_dates"]
