from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from surplus_api.core.settings import settings
from surplus_api.db.session import async_session, dispose_engine
from .api.errors import register_error_handlers
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing, shutdown_tracing
from .scheduling import MarketplaceJobScheduler


APP_VERSION = "0.1.0"
SERVICE_NAME = "surplus-api"


def _session_factory():
    return async_session()


def resolve_schedule_path(raw: str) -> Path:
    schedule_path = Path(raw)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    return schedule_path


@asynccontextmanager
async def lifespan(app: FastAPI):
    schedule_path = resolve_schedule_path(settings.marketplace_job_schedule_path)
    job_scheduler = MarketplaceJobScheduler(
        session_factory=_session_factory,
        config_path=schedule_path,
    )
    app.state.marketplace_job_scheduler = job_scheduler

    scheduler_enabled = settings.marketplace_job_scheduler_enabled
    if scheduler_enabled:
        try:
            job_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Marketplace job scheduler failed to start", error=str(exc))
        else:
            logger.info(
                "Marketplace job scheduler enabled",
                schedule_path=str(schedule_path),
            )
    else:
        logger.info(
            "Marketplace job scheduler disabled",
            reason="marketplace_job_scheduler_enabled is false",
        )

    try:
        yield
    finally:
        if job_scheduler.is_running:
            await job_scheduler.stop()
        await dispose_engine()
        shutdown_tracing()


def create_app() -> FastAPI:
    """Application factory for the surplus marketplace API."""
    configure_logging(
        service_name=SERVICE_NAME,
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Surplus Marketplace API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if settings.tracing_enabled:
        configure_tracing(
            app,
            service_name=SERVICE_NAME,
            service_version=APP_VERSION,
            environment=settings.environment,
        )

    register_error_handlers(app)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
