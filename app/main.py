"""TracePulse API application.

Run with ``uvicorn app.main:app``.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.elasticsearch import close_client
from app.core.exceptions import register_exception_handlers
from app.core.health import router as health_router
from app.core.logging import configure_logging, get_logger
from app.core.middleware import RequestIdMiddleware
from app.features.analytics.routes import router as analytics_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging on startup; release the store client on shutdown."""
    settings = get_settings()
    configure_logging(settings)
    logger.info(
        "app.startup_completed",
        app_env=settings.app_env,
        elasticsearch_url=settings.elasticsearch_url,
        traces_index=settings.elasticsearch_traces_index,
    )

    try:
        yield
    finally:
        await close_client()
        logger.info("app.shutdown_completed")


def create_app() -> FastAPI:
    """Build the FastAPI application from settings."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Daily analytics series over LLM traces, "
        "compared with the preceding period.",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # Last added runs first: request IDs are set before CORS handling
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    for router in (health_router, analytics_router):
        app.include_router(router)

    return app


app = create_app()
