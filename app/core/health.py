"""Health check endpoints."""

from typing import Literal

from elasticsearch import AsyncElasticsearch
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.core.elasticsearch import get_client
from app.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: Literal["ok", "degraded", "unhealthy"]
    store: Literal["connected", "disconnected"] | None = None


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic liveness check.

    Returns:
        Health status response.
    """
    logger.debug("health.check_started")
    return HealthResponse(status="ok")


@router.get("/health/ready", response_model=HealthResponse)
async def readiness_check(
    client: AsyncElasticsearch = Depends(get_client),
) -> HealthResponse:
    """Readiness check including document store connectivity.

    Args:
        client: Elasticsearch client dependency.

    Returns:
        Health status with store state.
    """
    logger.debug("health.readiness_check_started")

    try:
        reachable = await client.ping()
    except Exception as e:
        logger.error(
            "health.store_disconnected",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return HealthResponse(status="unhealthy", store="disconnected")

    if not reachable:
        logger.warning("health.store_ping_failed")
        return HealthResponse(status="unhealthy", store="disconnected")

    logger.info("health.store_connected")
    return HealthResponse(status="ok", store="connected")
