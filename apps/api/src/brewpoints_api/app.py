from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from brewpoints_api.core.settings import settings
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing


APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Loyalty service starting",
        environment=settings.environment,
        silver_threshold=settings.loyalty_silver_threshold,
        gold_threshold=settings.loyalty_gold_threshold,
        email_enabled=settings.notification_email_enabled,
    )
    if not settings.admin_api_key:
        logger.warning("Admin API key not configured; admin endpoints are unauthenticated")
    try:
        yield
    finally:
        logger.info("Loyalty service stopped")


def create_app() -> FastAPI:
    """Application factory for the Brewpoints loyalty API."""
    configure_logging(
        service_name="brewpoints-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="Brewpoints API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="brewpoints-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
