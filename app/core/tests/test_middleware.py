"""Tests for request middleware."""

import uuid

import pytest

from app.core.logging import request_id_ctx


@pytest.mark.asyncio
async def test_generated_request_id_is_uuid(client):
    """Requests without an ID get a fresh UUID."""
    response = await client.get("/health")

    uuid.UUID(response.headers["X-Request-ID"])


@pytest.mark.asyncio
async def test_caller_request_id_is_echoed(client):
    """A caller-supplied ID is returned unchanged."""
    response = await client.get("/health", headers={"X-Request-ID": "dashboard-7f3a"})

    assert response.headers["X-Request-ID"] == "dashboard-7f3a"


@pytest.mark.asyncio
async def test_each_request_gets_its_own_id(client):
    """Generated IDs are not reused across requests."""
    first = await client.get("/health")
    second = await client.get("/health")

    assert first.headers["X-Request-ID"] != second.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_on_error_responses(client):
    """Problem details carry the same ID as the response header."""
    response = await client.post(
        "/analytics/timeseries",
        json={"projectId": "p"},
        headers={"X-Request-ID": "req-err"},
    )

    assert response.status_code == 422
    assert response.headers["X-Request-ID"] == "req-err"
    assert response.json()["request_id"] == "req-err"


@pytest.mark.asyncio
async def test_request_id_does_not_leak(client):
    """The context variable is reset once the request is done."""
    await client.get("/health", headers={"X-Request-ID": "req-leak"})

    assert request_id_ctx.get() is None
