"""Async Elasticsearch client setup."""

from functools import lru_cache
from typing import Any

from elasticsearch import AsyncElasticsearch

from app.core.config import get_settings


def create_client() -> AsyncElasticsearch:
    """Create an async Elasticsearch client from settings."""
    settings = get_settings()
    kwargs: dict[str, Any] = {
        "hosts": [settings.elasticsearch_url],
        "request_timeout": settings.elasticsearch_request_timeout_seconds,
        # Retries belong to the caller, not this service
        "max_retries": 0,
        "retry_on_timeout": False,
    }
    if settings.elasticsearch_api_key:
        kwargs["api_key"] = settings.elasticsearch_api_key
    return AsyncElasticsearch(**kwargs)


@lru_cache
def get_client() -> AsyncElasticsearch:
    """Get the cached process-wide client."""
    return create_client()


async def close_client() -> None:
    """Close the cached client if it was ever created."""
    if get_client.cache_info().currsize:
        await get_client().close()
        get_client.cache_clear()
