"""Meter reading ORM models - per-period utility indexes for usage-based billing."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentbill.models import Base, BaseModel


class MeterType(str, Enum):
    """Metered utilities."""

    ELECTRICITY = "electricity"
    WATER = "water"


class MeterReading(Base, BaseModel):
    """Meter reading recorded for a unit and a billing period.

    Attributes:
        unit_id: Unit the meter belongs to
        meter_type: Electricity or water
        period: Billing period as YYYY-MM
        reading_date: Date the indexes were read
        items: Index lines (a unit may have several meters of one type)
    """

    __tablename__ = "meter_readings"

    building_id: Mapped[int | None] = mapped_column(nullable=True)
    unit_id: Mapped[int] = mapped_column(nullable=False, index=True)
    meter_type: Mapped[MeterType] = mapped_column(SQLEnum(MeterType), nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    reading_date: Mapped[date] = mapped_column(Date, nullable=False)

    items: Mapped[list["MeterReadingItem"]] = relationship(
        "MeterReadingItem",
        back_populates="meter_reading",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("unit_id", "meter_type", "period", name="uq_meter_reading_unit_type_period"),
    )

    def __repr__(self) -> str:
        return (
            f"<MeterReading(id={self.id}, unit_id={self.unit_id}, "
            f"meter_type={self.meter_type}, period={self.period})>"
        )


class MeterReadingItem(Base, BaseModel):
    """One meter index line of a reading."""

    __tablename__ = "meter_reading_items"

    meter_reading_id: Mapped[int] = mapped_column(
        ForeignKey("meter_readings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    previous_index: Mapped[Decimal | None] = mapped_column(
        Numeric(precision=14, scale=4),
        nullable=True,
    )
    new_index: Mapped[Decimal] = mapped_column(
        Numeric(precision=14, scale=4),
        nullable=False,
    )

    meter_reading: Mapped["MeterReading"] = relationship("MeterReading", back_populates="items")

    def __repr__(self) -> str:
        return f"<MeterReadingItem(id={self.id}, name={self.name!r}, new_index={self.new_index})>"


__all__ = ["MeterReading", "MeterReadingItem", "MeterType"]
