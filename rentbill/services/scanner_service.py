"""Daily due-schedule scan and the manual invoice trigger."""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import AsyncIterator, Callable, NamedTuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rentbill.models.contract import ContractStatus
from rentbill.models.invoice import Invoice
from rentbill.services.clock import Clock
from rentbill.services.config import BillingSettings
from rentbill.services.invoice_service import InvoiceCalculator
from rentbill.services.periods import parse_period, period_of
from rentbill.services.stores import ContractStore, RentScheduleStore

logger = logging.getLogger(__name__)

CalculatorFactory = Callable[[AsyncSession], InvoiceCalculator]


class ScanOutcome(str, Enum):
    """What happened to one due schedule during a scan."""

    INVOICED = "invoiced"
    ALREADY_LINKED = "already_linked"
    SKIPPED_INACTIVE = "skipped_inactive"
    FAILED = "failed"
    NOT_STARTED = "not_started"


class DueSchedule(NamedTuple):
    """Snapshot of a due schedule taken while collecting."""

    schedule_id: int
    contract_id: int
    scheduled_date: date
    invoice_id: int | None


class ScheduleResult(NamedTuple):
    """Result of processing one due schedule."""

    schedule_id: int
    contract_id: int
    scheduled_date: date
    period: str
    outcome: ScanOutcome
    invoice_id: int | None = None
    error: str | None = None


@dataclass
class ScanReport:
    """Summary of one due scan run."""

    as_of: date
    started_at: datetime
    finished_at: datetime | None = None
    skipped: bool = False
    stopped: bool = False
    results: list[ScheduleResult] = field(default_factory=list)

    def count(self, outcome: ScanOutcome) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)

    @property
    def invoiced(self) -> int:
        return self.count(ScanOutcome.INVOICED)

    @property
    def failed(self) -> int:
        return self.count(ScanOutcome.FAILED)

    def summary(self) -> dict[str, int]:
        """Number of schedules per outcome."""
        return {outcome.value: self.count(outcome) for outcome in ScanOutcome}


class DueScheduleScanner:
    """Finds pending schedules whose due date has arrived and invoices them.

    One scan runs at a time. Each schedule is processed in its own session, up to
    ``max_concurrency`` at once, and work for the same (contract_id, period) is
    serialized by a keyed lock shared with the manual trigger. A failure while
    processing one schedule is logged and recorded in the report; the scan goes on.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock,
        *,
        max_concurrency: int = 4,
        calculator_factory: CalculatorFactory | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.session_factory = session_factory
        self.clock = clock
        self.max_concurrency = max_concurrency
        self.calculator_factory = calculator_factory or InvoiceCalculator
        self._run_lock = asyncio.Lock()
        self._key_locks: dict[tuple[int, str], asyncio.Lock] = {}
        self._key_users: dict[tuple[int, str], int] = {}
        self._stop_requested = False

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock,
        settings: BillingSettings,
    ) -> "DueScheduleScanner":
        """Build a scanner whose calculators use the configured due days and occupants."""

        def calculator_factory(session: AsyncSession) -> InvoiceCalculator:
            return InvoiceCalculator(
                session,
                due_days=settings.invoice_due_days,
                default_occupant_count=settings.default_occupant_count,
            )

        return cls(
            session_factory,
            clock,
            max_concurrency=settings.scan_max_concurrency,
            calculator_factory=calculator_factory,
        )

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @asynccontextmanager
    async def key_lock(self, contract_id: int, period: str) -> AsyncIterator[None]:
        """Hold the lock serializing invoice work for one contract and period.

        The lock is dropped once no task holds or waits for it.
        """
        key = (contract_id, period)
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        self._key_users[key] = self._key_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._key_users[key] -= 1
            if not self._key_users[key]:
                del self._key_users[key]
                del self._key_locks[key]

    @property
    def held_keys(self) -> set[tuple[int, str]]:
        """(contract_id, period) keys currently locked or awaited."""
        return set(self._key_locks)

    def request_stop(self) -> None:
        """Stop enqueuing schedules of the running scan; in-flight ones complete."""
        if self.is_running:
            logger.info("Stop requested, no further schedules will be started")
        self._stop_requested = True

    async def collect_due(self, as_of: date) -> list[DueSchedule]:
        """Every pending schedule due on or before ``as_of``."""
        async with self.session_factory() as session:
            schedules = await RentScheduleStore(session).find_due(as_of)
            return [
                DueSchedule(s.id, s.contract_id, s.scheduled_date, s.invoice_id) for s in schedules
            ]

    async def contract_status(self, contract_id: int) -> ContractStatus | None:
        """Status of a contract, None when it does not exist.

        Read in a short session of its own so the transaction (and, on SQLite,
        the write lock) ends before the invoice is calculated.
        """
        async with self.session_factory() as session:
            contract = await ContractStore(session).find_by_id(contract_id)
            return None if contract is None else contract.status

    async def run_due_scan(self) -> ScanReport:
        """Run one due scan.

        Returns:
            ScanReport with one result per due schedule, or marked skipped when a
            scan is already running
        """
        if self._run_lock.locked():
            logger.warning("Due scan already running, skipping this trigger")
            return ScanReport(as_of=self.clock.today(), started_at=self.clock.now(), skipped=True)

        async with self._run_lock:
            self._stop_requested = False
            report = ScanReport(as_of=self.clock.today(), started_at=self.clock.now())

            due = await self.collect_due(report.as_of)
            logger.info("Due scan for %s: %d pending schedules", report.as_of, len(due))

            semaphore = asyncio.Semaphore(self.max_concurrency)
            tasks: list[asyncio.Task] = []
            for item in due:
                if not self._stop_requested:
                    await semaphore.acquire()
                    if not self._stop_requested:
                        tasks.append(asyncio.create_task(self._process_with_slot(item, semaphore)))
                        continue
                    semaphore.release()
                report.stopped = True
                report.results.append(self._result(item, ScanOutcome.NOT_STARTED))

            report.results.extend(await asyncio.gather(*tasks))
            report.results.sort(key=lambda r: (r.scheduled_date, r.schedule_id))
            report.finished_at = self.clock.now()

        logger.info("Due scan for %s finished: %s", report.as_of, report.summary())
        return report

    async def _process_with_slot(self, item: DueSchedule, semaphore: asyncio.Semaphore) -> ScheduleResult:
        try:
            return await self.process_schedule(item)
        finally:
            semaphore.release()

    async def process_schedule(self, item: DueSchedule) -> ScheduleResult:
        """Invoice one due schedule, never raising.

        Returns:
            ScheduleResult describing the outcome
        """
        if item.invoice_id is not None:
            logger.debug("Schedule %d already linked to invoice %d", item.schedule_id, item.invoice_id)
            return self._result(item, ScanOutcome.ALREADY_LINKED, invoice_id=item.invoice_id)

        period = period_of(item.scheduled_date)
        try:
            async with self.key_lock(item.contract_id, period):
                status = await self.contract_status(item.contract_id)
                if status != ContractStatus.ACTIVE:
                    logger.info(
                        "Skipping schedule %d: contract %d is %s",
                        item.schedule_id,
                        item.contract_id,
                        "missing" if status is None else status.value,
                    )
                    return self._result(item, ScanOutcome.SKIPPED_INACTIVE)

                async with self.session_factory() as session:
                    calculator = self.calculator_factory(session)
                    invoice = await calculator.calculate_and_create_invoice(item.contract_id, period)
                    return self._result(item, ScanOutcome.INVOICED, invoice_id=invoice.id)
        except Exception as e:
            logger.exception(
                "Failed to invoice schedule %d (contract %d, period %s)",
                item.schedule_id,
                item.contract_id,
                period,
            )
            return self._result(item, ScanOutcome.FAILED, error=str(e))

    async def generate_invoice_for_contract(
        self,
        contract_id: int,
        period: str,
        actor_id: int | None = None,
    ) -> Invoice:
        """Operator-initiated invoicing of one contract and period.

        Uses the same calculator and key lock as the scan; errors propagate.

        Raises:
            InvalidPeriodError: If period is not YYYY-MM
            NotFoundError: If the contract or unit cannot be resolved
            PersistenceError: If storing the invoice fails
        """
        parse_period(period)
        async with self.key_lock(contract_id, period):
            async with self.session_factory() as session:
                calculator = self.calculator_factory(session)
                invoice = await calculator.calculate_and_create_invoice(contract_id, period, actor_id)
        logger.info(
            "Manual invoice %d for contract %d period %s (actor %s)",
            invoice.id,
            contract_id,
            period,
            actor_id,
        )
        return invoice

    @staticmethod
    def _result(item: DueSchedule, outcome: ScanOutcome, **kwargs) -> ScheduleResult:
        return ScheduleResult(
            schedule_id=item.schedule_id,
            contract_id=item.contract_id,
            scheduled_date=item.scheduled_date,
            period=period_of(item.scheduled_date),
            outcome=outcome,
            **kwargs,
        )


__all__ = [
    "DueSchedule",
    "DueScheduleScanner",
    "ScanOutcome",
    "ScanReport",
    "ScheduleResult",
]
