"""Tests for application wiring."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.main import app, create_app, lifespan


def test_routes_are_registered():
    """Health and analytics routers should be mounted."""
    paths = {route.path for route in app.routes}

    assert "/health" in paths
    assert "/health/ready" in paths
    assert "/analytics/timeseries" in paths
    assert "/analytics/metrics" in paths
    assert "/analytics/groups" in paths


def test_create_app_uses_settings_title():
    """The app title comes from settings."""
    assert create_app().title == "TracePulse"


@pytest.mark.asyncio
async def test_openapi_documents_timeseries(client):
    """The OpenAPI schema should expose the camelCase request model."""
    response = await client.get("/openapi.json")

    assert response.status_code == 200
    schema = response.json()
    request_schema = schema["components"]["schemas"]["TimeseriesRequest"]
    assert "projectId" in request_schema["properties"]
    assert "groupBy" in request_schema["properties"]


@pytest.mark.asyncio
async def test_lifespan_closes_store_client():
    """Shutdown should close the store client."""
    close = AsyncMock()
    with (
        patch("app.main.close_client", close),
        patch("app.main.configure_logging", MagicMock()),
    ):
        async with lifespan(app):
            close.assert_not_awaited()

    close.assert_awaited_once()
