"""Unit ORM model: the rented apartment with its service rates and discounts."""

from decimal import Decimal

from sqlalchemy import Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from rentbill.models import Base, BaseModel


class Unit(Base, BaseModel):
    """A rentable apartment.

    Rates left empty mean the corresponding fee line is never billed. Only one of
    discount_percent or discount_amount is applied to an invoice; the percent wins.
    """

    __tablename__ = "units"

    building_id: Mapped[int | None] = mapped_column(nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    rent_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    electricity_price_per_kwh: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    water_price_per_m3: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    internet_price_per_room: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    common_service_fee_per_person: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )

    discount_percent: Mapped[int | None] = mapped_column(
        nullable=True,
        comment="Percent discount (0-100) applied to the whole invoice",
    )
    discount_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Fixed discount used when no percent discount is set",
    )

    def __repr__(self) -> str:
        return (
            f"<Unit(id={self.id}, name={self.name!r}, building_id={self.building_id}, "
            f"discount_percent={self.discount_percent}, discount_amount={self.discount_amount})>"
        )


__all__ = ["Unit"]
