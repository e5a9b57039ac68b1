"""Meter consumption resolution for usage-based invoice lines."""

import logging
from datetime import date
from decimal import Decimal
from typing import NamedTuple

from rentbill.models.meter_reading import MeterReading, MeterType
from rentbill.services.money import ZERO, to_decimal
from rentbill.services.periods import period_start, previous_period
from rentbill.services.stores import MeterReadingStore

logger = logging.getLogger(__name__)


class Consumption(NamedTuple):
    """Chargeable usage of one utility between two consecutive periods."""

    quantity: Decimal
    current_index: Decimal
    from_date: date
    to_date: date


class MeterConsumptionResolver:
    """Computes consumption from a unit's current and previous period readings."""

    def __init__(self, readings: MeterReadingStore) -> None:
        self.readings = readings

    @staticmethod
    def total_index(reading: MeterReading) -> Decimal:
        """Sum of new_index over the reading's items."""
        return sum((to_decimal(item.new_index) for item in reading.items), ZERO)

    async def resolve_consumption(
        self,
        unit_id: int,
        meter_type: MeterType,
        period: str,
    ) -> Consumption | None:
        """Resolve chargeable consumption for ``period``.

        Consumption = sum of current new indexes - sum of previous new indexes.

        Args:
            unit_id: Unit ID
            meter_type: Electricity or water
            period: Billing period (YYYY-MM)

        Returns:
            Consumption, or None when there is nothing to charge: either reading is
            missing or empty (the usual first-reading case), or the delta is not
            positive (meter reset, duplicate read, no usage)
        """
        prev_period = previous_period(period)

        current = await self.readings.find_by_unit_type_period(unit_id, meter_type, period)
        if current is None or not current.items:
            logger.debug("No %s reading for unit %d in %s", meter_type.value, unit_id, period)
            return None

        previous = await self.readings.find_by_unit_type_period(unit_id, meter_type, prev_period)
        if previous is None or not previous.items:
            logger.debug(
                "No previous %s reading for unit %d in %s", meter_type.value, unit_id, prev_period
            )
            return None

        current_total = self.total_index(current)
        quantity = current_total - self.total_index(previous)
        if quantity <= ZERO:
            logger.info(
                "Non-positive %s consumption for unit %d in %s (%s), not billing",
                meter_type.value,
                unit_id,
                period,
                quantity,
            )
            return None

        return Consumption(
            quantity=quantity,
            current_index=current_total,
            from_date=period_start(prev_period),
            to_date=period_start(period),
        )


__all__ = ["Consumption", "MeterConsumptionResolver"]
