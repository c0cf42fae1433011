"""
FastAPI application factory with store lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from nudge.config import Settings, settings
from nudge.infrastructure.observability.logging import get_logger, setup_logging
from nudge.routes import health, reminders
from nudge.services.reminder_service import ReminderService, create_reminder_service

logger = get_logger(__name__)


def create_app(app_settings: Settings | None = None, service: ReminderService | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        app_settings: Environment settings (module settings by default)
        service: Prebuilt service, used by tests to inject a fixed clock and fakes
    """
    app_settings = app_settings or settings
    setup_logging(log_level=app_settings.log_level, json_logs=app_settings.json_logs)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown."""
        logger.info(
            "Application starting",
            environment=app_settings.environment,
            store_backend=app_settings.store_backend,
            profile=app_settings.config_profile,
        )

        reminder_service = service or create_reminder_service(app_settings)
        try:
            store_ok = await reminder_service.ctx.store.ping()
            if not store_ok:
                logger.warning("Store not reachable at startup", backend=app_settings.store_backend)
        except Exception as e:
            logger.error("Failed to initialize store", error=str(e))
            await reminder_service.close()
            raise

        app.state.reminder_service = reminder_service
        logger.info("All services initialized successfully")

        yield

        logger.info("Application shutting down")
        try:
            await reminder_service.close()
        except Exception as e:
            logger.error("Error closing store", error=str(e))

    app = FastAPI(
        title="Nudge",
        description="Reminder scheduling engine for shared work trackers",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(reminders.router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log HTTP requests with timing."""
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        logger.info(
            "HTTP request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(process_time, 2),
        )
        return response

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
