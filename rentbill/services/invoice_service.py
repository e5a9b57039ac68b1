"""Invoice calculation: rent, metered utilities, fixed fees and discount for one period."""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import NamedTuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rentbill.models.contract import Contract
from rentbill.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from rentbill.models.meter_reading import MeterType
from rentbill.models.rent_schedule import RentSchedule
from rentbill.models.unit import Unit
from rentbill.services.audit_service import AuditService
from rentbill.services.errors import ContractNotFoundError, PersistenceError, UnitNotFoundError
from rentbill.services.meter_service import MeterConsumptionResolver
from rentbill.services.money import (
    ZERO,
    is_positive,
    percent_of,
    quantize_amount,
    to_decimal,
)
from rentbill.services.periods import parse_period, period_start
from rentbill.services.stores import (
    ContractStore,
    InvoiceLedger,
    MeterReadingStore,
    RentScheduleStore,
    UnitStore,
)

logger = logging.getLogger(__name__)

RENT_LINE = "Rent"
ELECTRICITY_LINE = "Electricity"
WATER_LINE = "Water"
INTERNET_LINE = "Internet"
COMMON_FEE_LINE = "Common service fee"
DISCOUNT_LINE = "Discount"

UTILITY_LINES = {
    MeterType.ELECTRICITY: ELECTRICITY_LINE,
    MeterType.WATER: WATER_LINE,
}


class LineItem(NamedTuple):
    """Computed invoice line before it is stored."""

    service_name: str
    unit_price: Decimal
    quantity: Decimal
    amount: Decimal
    meter_index: Decimal | None = None
    from_date: date | None = None
    to_date: date | None = None


class InvoiceDraft(NamedTuple):
    """Fully computed invoice for one contract and period, not yet persisted."""

    contract_id: int
    unit_id: int
    building_id: int | None
    period: str
    issue_date: date
    due_date: date
    lines: list[LineItem]
    subtotal: Decimal
    discount: Decimal
    total: Decimal

    @property
    def note(self) -> str:
        return f"Invoice for {self.period} - generated automatically"

    def to_invoice(self, actor_id: int | None = None) -> Invoice:
        """Build the ORM invoice with its items."""
        return Invoice(
            building_id=self.building_id,
            unit_id=self.unit_id,
            contract_id=self.contract_id,
            period=self.period,
            issue_date=self.issue_date,
            due_date=self.due_date,
            note=self.note,
            created_by=actor_id,
            total_amount=self.total,
            paid_amount=ZERO,
            status=InvoiceStatus.DRAFT,
            items=[
                InvoiceItem(
                    service_name=line.service_name,
                    unit_price=line.unit_price,
                    quantity=line.quantity,
                    meter_index=line.meter_index,
                    from_date=line.from_date,
                    to_date=line.to_date,
                    amount=line.amount,
                )
                for line in self.lines
            ],
        )

    def payload(self) -> dict:
        """JSON-safe snapshot used in logs and audit entries."""
        return {
            "contract_id": self.contract_id,
            "period": self.period,
            "subtotal": str(self.subtotal),
            "discount": str(self.discount),
            "total": str(self.total),
            "lines": [
                {"service_name": line.service_name, "quantity": str(line.quantity), "amount": str(line.amount)}
                for line in self.lines
            ],
        }


class InvoiceCalculator:
    """Composes invoices for a contract and period and stores them in the ledger.

    Invoice creation is idempotent per (contract_id, period): an existing invoice is
    returned unchanged. After creation the matching rent schedule is linked to the
    invoice; a missing schedule or a failed link is logged and never fails the call.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        contracts: ContractStore | None = None,
        units: UnitStore | None = None,
        meter_resolver: MeterConsumptionResolver | None = None,
        ledger: InvoiceLedger | None = None,
        schedules: RentScheduleStore | None = None,
        due_days: int = 7,
        default_occupant_count: int = 1,
    ) -> None:
        """Initialize with a database session and optional store overrides."""
        self.session = session
        self.contracts = contracts or ContractStore(session)
        self.units = units or UnitStore(session)
        self.meter_resolver = meter_resolver or MeterConsumptionResolver(MeterReadingStore(session))
        self.ledger = ledger or InvoiceLedger(session)
        self.schedules = schedules or RentScheduleStore(session)
        self.due_days = due_days
        self.default_occupant_count = default_occupant_count

    async def _resolve(self, contract_id: int) -> tuple[Contract, Unit]:
        contract = await self.contracts.find_by_id(contract_id)
        if contract is None:
            raise ContractNotFoundError(contract_id)
        if contract.unit_id is None:
            raise UnitNotFoundError(None, contract_id)
        unit = await self.units.find_by_id(contract.unit_id)
        if unit is None:
            raise UnitNotFoundError(contract.unit_id, contract_id)
        return contract, unit

    def occupant_count(self, contract: Contract) -> int:
        """Occupants billed for the common service fee."""
        if contract.occupant_count and contract.occupant_count > 0:
            return contract.occupant_count
        return self.default_occupant_count

    async def calculate_service_fees(self, contract: Contract, unit: Unit, period: str) -> list[LineItem]:
        """Utility and service fee lines for the period, in billing order.

        Metered lines are omitted when the unit has no rate or there is no
        chargeable consumption.
        """
        fees: list[LineItem] = []

        for meter_type, rate in (
            (MeterType.ELECTRICITY, unit.electricity_price_per_kwh),
            (MeterType.WATER, unit.water_price_per_m3),
        ):
            if not is_positive(rate):
                continue
            consumption = await self.meter_resolver.resolve_consumption(unit.id, meter_type, period)
            if consumption is None:
                continue
            price = to_decimal(rate)
            fees.append(
                LineItem(
                    service_name=UTILITY_LINES[meter_type],
                    unit_price=price,
                    quantity=consumption.quantity,
                    amount=quantize_amount(consumption.quantity * price),
                    meter_index=consumption.current_index,
                    from_date=consumption.from_date,
                    to_date=consumption.to_date,
                )
            )

        if is_positive(unit.internet_price_per_room):
            price = to_decimal(unit.internet_price_per_room)
            fees.append(LineItem(INTERNET_LINE, price, Decimal(1), quantize_amount(price)))

        if is_positive(unit.common_service_fee_per_person):
            price = to_decimal(unit.common_service_fee_per_person)
            occupants = Decimal(self.occupant_count(contract))
            fees.append(LineItem(COMMON_FEE_LINE, price, occupants, quantize_amount(price * occupants)))

        return fees

    @staticmethod
    def calculate_discount(unit: Unit, subtotal: Decimal) -> Decimal:
        """Discount for the pre-discount subtotal, never more than the subtotal.

        A percent discount takes precedence over a fixed amount.
        """
        if subtotal <= ZERO:
            return ZERO
        if is_positive(unit.discount_percent):
            discount = quantize_amount(percent_of(subtotal, unit.discount_percent))
        elif is_positive(unit.discount_amount):
            discount = quantize_amount(to_decimal(unit.discount_amount))
        else:
            return ZERO
        return min(discount, subtotal)

    async def build_draft(self, contract: Contract, unit: Unit, period: str) -> InvoiceDraft:
        """Compute every line and the totals for a contract and period."""
        rent = to_decimal(contract.rent_amount)
        lines = [LineItem(RENT_LINE, rent, Decimal(1), quantize_amount(rent))]
        lines.extend(await self.calculate_service_fees(contract, unit, period))

        subtotal = sum((line.amount for line in lines), ZERO)
        discount = self.calculate_discount(unit, subtotal)
        if discount > ZERO:
            lines.append(LineItem(DISCOUNT_LINE, -discount, Decimal(1), -discount))

        issue_date = period_start(period)
        return InvoiceDraft(
            contract_id=contract.id,
            unit_id=unit.id,
            building_id=contract.building_id or unit.building_id,
            period=period,
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=self.due_days),
            lines=lines,
            subtotal=subtotal,
            discount=discount,
            total=max(subtotal - discount, ZERO),
        )

    async def preview_invoice(self, contract_id: int, period: str) -> InvoiceDraft:
        """Compute the invoice for a contract and period without storing anything."""
        parse_period(period)
        contract, unit = await self._resolve(contract_id)
        return await self.build_draft(contract, unit, period)

    async def calculate_and_create_invoice(
        self,
        contract_id: int,
        period: str,
        actor_id: int | None = None,
    ) -> Invoice:
        """Calculate the invoice for a contract and period and store it.

        Args:
            contract_id: Contract ID
            period: Billing period (YYYY-MM)
            actor_id: Operator requesting the invoice (None for the automated scan)

        Returns:
            The created invoice, or the existing one for (contract_id, period)

        Raises:
            InvalidPeriodError: If period is not YYYY-MM
            ContractNotFoundError: If the contract does not exist
            UnitNotFoundError: If the contract's unit cannot be resolved
            PersistenceError: If storing the invoice fails
        """
        parse_period(period)
        contract, unit = await self._resolve(contract_id)

        existing = await self.ledger.find_by_contract_and_period(contract_id, period)
        if existing is not None:
            logger.info(
                "Invoice %d already exists for contract %d period %s",
                existing.id,
                contract_id,
                period,
            )
            await self.link_invoice_to_schedule(existing, actor_id)
            await self._commit(contract_id, period, None)
            return existing

        draft = await self.build_draft(contract, unit, period)

        try:
            invoice, created = await self.ledger.create_if_absent(draft.to_invoice(actor_id))
            if created:
                await AuditService.log(
                    self.session,
                    "invoice",
                    invoice.id,
                    "create",
                    actor_id,
                    draft.payload(),
                )
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to store invoice for contract %d period %s: payload=%s",
                contract_id,
                period,
                draft.payload(),
                exc_info=True,
            )
            raise PersistenceError(
                f"Failed to store invoice for contract {contract_id} period {period}",
                contract_id=contract_id,
                period=period,
            ) from e

        await self.link_invoice_to_schedule(invoice, actor_id)
        await self._commit(contract_id, period, draft)

        if created:
            logger.info(
                "Created invoice %d for contract %d period %s: total=%s (%d lines)",
                invoice.id,
                contract_id,
                period,
                invoice.total_amount,
                len(draft.lines),
            )
        return invoice

    async def link_invoice_to_schedule(
        self,
        invoice: Invoice,
        actor_id: int | None = None,
    ) -> RentSchedule | None:
        """Link the invoice to the unlinked schedule of its contract due in its period.

        Failures are logged and swallowed; the invoice stands on its own.

        Returns:
            The linked schedule, or None if nothing was linked
        """
        invoice_id, contract_id, period = invoice.id, invoice.contract_id, invoice.period
        try:
            async with self.session.begin_nested():
                schedule = await self.schedules.find_unlinked_for_period(contract_id, period)
                if schedule is None:
                    logger.info(
                        "No unlinked schedule for contract %d period %s, invoice %d left unlinked",
                        contract_id,
                        period,
                        invoice_id,
                    )
                    return None

                if not await self.schedules.link_invoice(schedule.id, invoice_id):
                    return None

                await AuditService.log(
                    self.session,
                    "rent_schedule",
                    schedule.id,
                    "link_invoice",
                    actor_id,
                    {"invoice_id": invoice_id, "period": period},
                )
        except SQLAlchemyError:
            logger.exception(
                "Failed to link invoice %d to schedule for contract %d period %s",
                invoice_id,
                contract_id,
                period,
            )
            return None

        logger.info("Linked schedule %d to invoice %d", schedule.id, invoice_id)
        return schedule

    async def _commit(self, contract_id: int, period: str, draft: InvoiceDraft | None) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(
                "Failed to commit invoice for contract %d period %s: payload=%s",
                contract_id,
                period,
                draft.payload() if draft else None,
                exc_info=True,
            )
            raise PersistenceError(
                f"Failed to store invoice for contract {contract_id} period {period}",
                contract_id=contract_id,
                period=period,
            ) from e


__all__ = [
    "InvoiceCalculator",
    "InvoiceDraft",
    "LineItem",
]
