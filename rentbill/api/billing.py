"""Billing administration API: manual invoicing, schedule generation and due scans."""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import AsyncGenerator, NoReturn

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from rentbill.models.invoice import InvoiceStatus
from rentbill.models.rent_schedule import RentScheduleStatus
from rentbill.services.clock import Clock
from rentbill.services.errors import BillingError, InvalidPeriodError, NotFoundError
from rentbill.services.scanner_service import DueScheduleScanner, ScanOutcome
from rentbill.services.schedule_service import RentScheduleService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])


# Request / response schemas
class CreateInvoiceRequest(BaseModel):
    """Body of a manual invoice request."""

    contract_id: int
    period: str  # YYYY-MM


class InvoiceItemResponse(BaseModel):
    service_name: str
    unit_price: Decimal | None = None
    quantity: Decimal | None = None
    meter_index: Decimal | None = None
    from_date: date | None = None
    to_date: date | None = None
    amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class InvoiceResponse(BaseModel):
    """Response schema for an invoice with its lines."""

    id: int
    contract_id: int
    unit_id: int
    building_id: int | None = None
    period: str
    issue_date: date
    due_date: date
    note: str | None = None
    created_by: int | None = None
    total_amount: Decimal
    paid_amount: Decimal
    status: InvoiceStatus
    items: list[InvoiceItemResponse]

    model_config = ConfigDict(from_attributes=True)


class ScheduleResponse(BaseModel):
    """Response schema for a rent schedule."""

    id: int
    contract_id: int
    unit_id: int
    customer_id: int | None = None
    scheduled_date: date
    amount: Decimal
    status: RentScheduleStatus
    invoice_id: int | None = None
    payment_id: int | None = None

    model_config = ConfigDict(from_attributes=True)


class ScheduleResultResponse(BaseModel):
    schedule_id: int
    contract_id: int
    scheduled_date: date
    period: str
    outcome: ScanOutcome
    invoice_id: int | None = None
    error: str | None = None


class ScanReportResponse(BaseModel):
    """Response schema for a due scan run."""

    as_of: date
    started_at: datetime
    finished_at: datetime | None = None
    skipped: bool
    stopped: bool
    summary: dict[str, int]
    results: list[ScheduleResultResponse]


# Dependencies wired by the application factory through app.state
def get_scanner(request: Request) -> DueScheduleScanner:
    return request.app.state.scanner


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.session_factory() as session:
        yield session


def raise_billing_error(error: BillingError) -> NoReturn:
    """Translate a billing error into an HTTP error response."""
    if isinstance(error, NotFoundError):
        status_code = 404
    elif isinstance(error, InvalidPeriodError):
        status_code = 422
    else:
        status_code = 500
    raise HTTPException(
        status_code=status_code,
        detail={"code": error.code, "message": error.message},
    ) from error


@router.post("/scan", response_model=ScanReportResponse)
async def run_scan(
    scanner: DueScheduleScanner = Depends(get_scanner),  # noqa: B008
) -> ScanReportResponse:
    """Run the due scan now, the same pass the daily scheduler runs.

    Returns a report marked skipped when a scan is already in progress.
    """
    report = await scanner.run_due_scan()
    return ScanReportResponse(
        as_of=report.as_of,
        started_at=report.started_at,
        finished_at=report.finished_at,
        skipped=report.skipped,
        stopped=report.stopped,
        summary=report.summary(),
        results=[ScheduleResultResponse(**result._asdict()) for result in report.results],
    )


@router.post("/invoices", response_model=InvoiceResponse)
async def create_invoice(
    body: CreateInvoiceRequest,
    scanner: DueScheduleScanner = Depends(get_scanner),  # noqa: B008
    x_actor_id: int | None = Header(None),  # noqa: B008
) -> InvoiceResponse:
    """
    Invoice one contract for one period on operator request.

    Returns the existing invoice when the period was already billed.

    Raises:
        404: Contract or unit not found
        422: Period is not YYYY-MM
        500: Invoice could not be stored
    """
    try:
        invoice = await scanner.generate_invoice_for_contract(body.contract_id, body.period, x_actor_id)
        return InvoiceResponse.model_validate(invoice)
    except BillingError as e:
        logger.info("Manual invoice for contract %d period %s failed: %s", body.contract_id, body.period, e)
        raise_billing_error(e)
    except Exception as e:
        logger.error("Error in /api/billing/invoices: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Server error") from e


@router.post("/contracts/{contract_id}/schedules", response_model=list[ScheduleResponse])
async def generate_contract_schedules(
    contract_id: int,
    session: AsyncSession = Depends(get_session),  # noqa: B008
    clock: Clock = Depends(get_clock),  # noqa: B008
) -> list[ScheduleResponse]:
    """Generate the missing schedules of a contract and return the new ones."""
    try:
        schedules = await RentScheduleService(session, clock).create_schedule_for_contract(contract_id)
        return [ScheduleResponse.model_validate(s) for s in schedules]
    except BillingError as e:
        raise_billing_error(e)
    except Exception as e:
        logger.error("Error generating schedules for contract %d: %s", contract_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail="Server error") from e


@router.get("/contracts/{contract_id}/schedules", response_model=list[ScheduleResponse])
async def list_contract_schedules(
    contract_id: int,
    session: AsyncSession = Depends(get_session),  # noqa: B008
    clock: Clock = Depends(get_clock),  # noqa: B008
) -> list[ScheduleResponse]:
    schedules = await RentScheduleService(session, clock).find_by_contract(contract_id)
    return [ScheduleResponse.model_validate(s) for s in schedules]


@router.get("/schedules/upcoming", response_model=list[ScheduleResponse])
async def list_upcoming_schedules(
    limit: int = Query(10, ge=1, le=1000),  # noqa: B008
    session: AsyncSession = Depends(get_session),  # noqa: B008
    clock: Clock = Depends(get_clock),  # noqa: B008
) -> list[ScheduleResponse]:
    """Pending schedules due after today, earliest first."""
    schedules = await RentScheduleService(session, clock).get_upcoming(limit)
    return [ScheduleResponse.model_validate(s) for s in schedules]


__all__ = ["router", "raise_billing_error"]
