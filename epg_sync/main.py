from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from epg_sync import __version__
from epg_sync.config import settings, setup_logging
from epg_sync.database import close_db, init_db
from epg_sync.services.sample_source import SampleProgramSource
from epg_sync.services.scheduler_service import sync_scheduler
from epg_sync.utils.timezone import HOUR_MS

from epg_sync.routers import main_router


setup_logging()
logger = logging.getLogger(__name__)


def register_configured_sources() -> None:
    """Register sources enabled through settings and schedule their periodic syncs"""
    if settings.epg_sample_input_id:
        sync_scheduler.register_source(settings.epg_sample_input_id, SampleProgramSource())
        sync_scheduler.request_periodic_sync(
            settings.epg_sample_input_id,
            settings.epg_periodic_window_hours * HOUR_MS,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    logger.info("Starting EPG Sync Service...")

    try:
        logger.info("Initializing database...")
        await init_db()
        logger.info("Database initialized successfully")

        register_configured_sources()

        logger.info("Starting scheduler...")
        sync_scheduler.start()
        logger.info("Scheduler started successfully")

        logger.info("EPG Sync Service started successfully")
    except Exception as e:
        logger.error(f"Failed to start EPG Sync Service: {e}", exc_info=True)
        raise

    yield

    logger.info("Shutting down EPG Sync Service...")

    try:
        sync_scheduler.shutdown()
        # Cancelled sessions finish their current channel before the database goes away
        await sync_scheduler.drain()
        logger.info("Scheduler stopped")
    except Exception as e:
        logger.error(f"Error during scheduler shutdown: {e}", exc_info=True)

    await close_db()
    logger.info("EPG Sync Service stopped")


app = FastAPI(
    title="EPG Sync Service",
    version=__version__,
    lifespan=lifespan
)

app.include_router(main_router)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors with details"""
    logger.error(f"Validation error for {request.method} {request.url.path}")
    logger.error(f"Validation details: {exc.errors()}")

    errors = []
    for error in exc.errors():
        error_dict = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
            "input": str(error.get("input", ""))[:100]
        }
        errors.append(error_dict)

    return JSONResponse(
        status_code=422,
        content={
            "detail": errors
        }
    )
