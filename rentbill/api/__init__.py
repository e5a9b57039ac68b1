"""HTTP API for the billing engine."""

from rentbill.api.billing import router as billing_router

__all__ = ["billing_router"]
