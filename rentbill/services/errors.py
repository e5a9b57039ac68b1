"""Exception classes for the billing engine.

Every error carries a machine-readable ``code`` so the HTTP layer and the scan
report can classify failures without parsing messages.

Conditions that are *not* errors never raise: an inactive contract or missing
billing parameters is a no-op, missing meter data omits the fee line, and an
already existing invoice is returned as is.
"""


class BillingError(Exception):
    """Base exception for billing errors."""

    code = "billing_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFoundError(BillingError):
    """A record required for billing does not exist."""

    code = "not_found"


class ContractNotFoundError(NotFoundError):
    """Contract could not be resolved."""

    code = "contract_not_found"

    def __init__(self, contract_id: int):
        self.contract_id = contract_id
        super().__init__(f"Contract {contract_id} not found")


class UnitNotFoundError(NotFoundError):
    """Contract has no unit, or the unit could not be resolved."""

    code = "unit_not_found"

    def __init__(self, unit_id: int | None, contract_id: int):
        self.unit_id = unit_id
        self.contract_id = contract_id
        if unit_id is None:
            message = f"Contract {contract_id} has no unit"
        else:
            message = f"Unit {unit_id} not found for contract {contract_id}"
        super().__init__(message)


class ScheduleNotFoundError(NotFoundError):
    """Rent schedule could not be resolved."""

    code = "schedule_not_found"

    def __init__(self, schedule_id: int):
        self.schedule_id = schedule_id
        super().__init__(f"Schedule {schedule_id} not found")


class InvalidPeriodError(BillingError, ValueError):
    """Period string is not a valid YYYY-MM value."""

    code = "invalid_period"

    def __init__(self, period: str):
        self.period = period
        super().__init__(f"Invalid billing period {period!r}, expected YYYY-MM")


class PersistenceError(BillingError):
    """A store write failed while billing one contract/period."""

    code = "persistence_failure"

    def __init__(self, message: str, contract_id: int | None = None, period: str | None = None):
        self.contract_id = contract_id
        self.period = period
        super().__init__(message)


__all__ = [
    "BillingError",
    "NotFoundError",
    "ContractNotFoundError",
    "UnitNotFoundError",
    "ScheduleNotFoundError",
    "InvalidPeriodError",
    "PersistenceError",
]
