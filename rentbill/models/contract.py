"""Contract ORM model for signed lease agreements consulted by the billing engine."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, Index, Numeric, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from rentbill.models import Base, BaseModel


class ContractStatus(str, Enum):
    """Lifecycle status of a lease contract."""

    ACTIVE = "active"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    TERMINATED = "terminated"


class PaymentCycle(str, Enum):
    """How often rent falls due, with the number of calendar months per step."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"

    @property
    def months(self) -> int:
        return 3 if self is PaymentCycle.QUARTERLY else 1


class Contract(Base, BaseModel):
    """Lease agreement between the operator and a tenant (customer).

    Status transitions are owned by the contract-management side of the back office;
    the billing engine only reads contracts. Schedules are generated while the contract
    is ACTIVE and has both a billing start date and a payment cycle.
    """

    __tablename__ = "contracts"

    building_id: Mapped[int | None] = mapped_column(nullable=True, index=True)
    unit_id: Mapped[int | None] = mapped_column(
        nullable=True,
        index=True,
        comment="Rented unit (apartment)",
    )
    customer_id: Mapped[int | None] = mapped_column(
        nullable=True,
        index=True,
        comment="Tenant",
    )

    status: Mapped[ContractStatus] = mapped_column(
        SQLEnum(ContractStatus),
        nullable=False,
        default=ContractStatus.ACTIVE,
        index=True,
    )

    rent_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Signed monthly rent",
    )

    # Kept as free text: legacy rows may carry cycles the engine does not support
    payment_cycle: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        comment="monthly or quarterly",
    )
    billing_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    occupant_count: Mapped[int | None] = mapped_column(
        nullable=True,
        comment="Number of tenants living in the unit (common service fee multiplier)",
    )

    created_by: Mapped[int | None] = mapped_column(nullable=True)

    __table_args__ = (Index("idx_contract_unit_status", "unit_id", "status"),)

    def __repr__(self) -> str:
        return (
            f"<Contract(id={self.id}, unit_id={self.unit_id}, customer_id={self.customer_id}, "
            f"status={self.status}, rent_amount={self.rent_amount}, "
            f"payment_cycle={self.payment_cycle!r}, billing_start_date={self.billing_start_date}, "
            f"expiry_date={self.expiry_date})>"
        )


__all__ = ["Contract", "ContractStatus", "PaymentCycle"]
