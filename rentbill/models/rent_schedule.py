"""Rent schedule ORM model: one expected rent payment for a contract."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, DateTime, Index, Numeric, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from rentbill.models import Base, BaseModel


class RentScheduleStatus(str, Enum):
    """Payment state of a rent schedule."""

    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class RentSchedule(Base, BaseModel):
    """A single rent due date materialized from a contract.

    At most one schedule exists per (contract_id, scheduled_date). invoice_id is
    written once, when the invoice for the schedule's period is linked, and is
    never cleared.
    """

    __tablename__ = "rent_schedules"

    contract_id: Mapped[int] = mapped_column(nullable=False, index=True)
    unit_id: Mapped[int] = mapped_column(nullable=False, index=True)
    customer_id: Mapped[int | None] = mapped_column(nullable=True, index=True)

    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        comment="Rent due, copied from the contract when the schedule was generated",
    )

    status: Mapped[RentScheduleStatus] = mapped_column(
        SQLEnum(RentScheduleStatus),
        nullable=False,
        default=RentScheduleStatus.PENDING,
        index=True,
    )

    invoice_id: Mapped[int | None] = mapped_column(nullable=True, index=True)
    payment_id: Mapped[int | None] = mapped_column(nullable=True, index=True)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    late_fee: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
    )

    __table_args__ = (
        UniqueConstraint("contract_id", "scheduled_date", name="uq_rent_schedule_contract_date"),
        Index("idx_rent_schedule_status_date", "status", "scheduled_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<RentSchedule(id={self.id}, contract_id={self.contract_id}, "
            f"scheduled_date={self.scheduled_date}, amount={self.amount}, "
            f"status={self.status}, invoice_id={self.invoice_id})>"
        )


__all__ = ["RentSchedule", "RentScheduleStatus"]
