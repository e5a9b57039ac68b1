"""Invoice ORM models: a billed statement for one contract and period, with line items."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, ForeignKey, Numeric, String, Text, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentbill.models import Base, BaseModel


class InvoiceStatus(str, Enum):
    """Collection status of an invoice."""

    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class Invoice(Base, BaseModel):
    """Invoice stored in the billing ledger.

    The unique (contract_id, period) constraint is what makes invoice creation
    create-if-absent: a second insert for the same key fails and the existing
    invoice is returned instead.
    """

    __tablename__ = "invoices"

    building_id: Mapped[int | None] = mapped_column(nullable=True, index=True)
    unit_id: Mapped[int] = mapped_column(nullable=False, index=True)
    contract_id: Mapped[int] = mapped_column(nullable=False, index=True)

    period: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        index=True,
        comment="Billing period as YYYY-MM",
    )
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int | None] = mapped_column(nullable=True)

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        default=Decimal("0"),
    )
    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2),
        nullable=False,
        default=Decimal("0"),
    )

    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(InvoiceStatus),
        nullable=False,
        default=InvoiceStatus.DRAFT,
    )

    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InvoiceItem.id",
    )

    __table_args__ = (
        UniqueConstraint("contract_id", "period", name="uq_invoice_contract_period"),
    )

    def __repr__(self) -> str:
        return (
            f"<Invoice(id={self.id}, contract_id={self.contract_id}, period={self.period}, "
            f"total_amount={self.total_amount}, status={self.status})>"
        )


class InvoiceItem(Base, BaseModel):
    """One line of an invoice (rent, a utility, a service fee or the discount)."""

    __tablename__ = "invoice_items"

    invoice_id: Mapped[int] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    service_name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    meter_index: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(14, 4), nullable=True)
    vat: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    from_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    to_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    def __repr__(self) -> str:
        return (
            f"<InvoiceItem(id={self.id}, service_name={self.service_name!r}, "
            f"quantity={self.quantity}, amount={self.amount})>"
        )


__all__ = ["Invoice", "InvoiceItem", "InvoiceStatus"]
