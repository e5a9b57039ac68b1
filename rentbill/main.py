"""Main application entry point."""

import argparse
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from rentbill.api import billing_router
from rentbill.services import create_engine_from_url, create_session_factory, init_models
from rentbill.services.clock import Clock, SystemClock
from rentbill.services.config import BillingSettings, get_settings
from rentbill.services.logging import setup_server_logging
from rentbill.services.scanner_service import DueScheduleScanner
from rentbill.services.scheduler import BillingScheduler, DailyTicker

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Seconds to wait for an in-flight scan on shutdown
SHUTDOWN_TIMEOUT = 30.0


def create_app(
    settings: BillingSettings | None = None,
    engine: AsyncEngine | None = None,
    clock: Clock | None = None,
    start_scheduler: bool | None = None,
) -> FastAPI:
    """Build the FastAPI application with its billing runtime.

    Args:
        settings: Billing settings (defaults to get_settings())
        engine: Async engine (defaults to one built from settings.database_url)
        clock: Time source (defaults to the system clock in the billing timezone)
        start_scheduler: Run the daily scan in the background (defaults to
            settings.scheduler_enabled)

    Returns:
        FastAPI app; runtime objects are exposed on app.state
    """
    settings = settings or get_settings()
    engine = engine or create_engine_from_url(settings.database_url, echo=settings.database_echo)
    session_factory = create_session_factory(engine)
    clock = clock or SystemClock(settings.billing_timezone)
    scanner = DueScheduleScanner.from_settings(session_factory, clock, settings)
    scheduler = BillingScheduler(scanner, DailyTicker(clock, settings.scan_time))
    run_scheduler = settings.scheduler_enabled if start_scheduler is None else start_scheduler

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_models(engine)
        if run_scheduler:
            scheduler.start()
            logger.info(
                "Daily due scan scheduled at %s %s",
                settings.scan_run_at,
                settings.billing_timezone,
            )
        try:
            yield
        finally:
            await scheduler.shutdown(timeout=SHUTDOWN_TIMEOUT)
            await engine.dispose()
            logger.info("Billing runtime stopped")

    app = FastAPI(
        title="Rent Billing Engine",
        description="Recurring rent schedules, due scans and invoice calculation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.clock = clock
    app.state.scanner = scanner
    app.state.scheduler = scheduler

    app.include_router(billing_router)

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint for monitoring."""
        return {"status": "ok", "scan_running": scanner.is_running}

    return app


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Rent billing engine")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Serve the API without the daily due scan",
    )
    args = parser.parse_args()

    settings = get_settings()
    setup_server_logging(settings.log_file, settings.log_level)
    logger.info("Starting billing server on %s:%d", args.host, args.port)

    app = create_app(settings, start_scheduler=False if args.no_scheduler else None)
    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
