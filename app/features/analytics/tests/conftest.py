"""Test fixtures for analytics module."""

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, time, timedelta
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.config import Settings
from app.features.analytics.groups import filters_group, terms_group
from app.features.analytics.paths import AggregationChain, AggregationLayer
from app.features.analytics.periods import from_epoch_ms, to_epoch_ms
from app.features.analytics.pipelines import default_pipeline_translator
from app.features.analytics.registry import (
    AnalyticsRegistry,
    MetricDefinition,
    RequiresKey,
    build_default_registry,
    get_registry,
)
from app.features.analytics.schemas import AggregationType
from app.features.analytics.store import get_analytics_store
from app.main import app

HistogramFactory = Callable[..., dict[str, Any]]

# Fixed "now", far after every date used in requests so nothing snaps
NOW = datetime(2024, 3, 1, tzinfo=UTC)
JAN_1 = datetime(2024, 1, 1, tzinfo=UTC)


class FakeStore:
    """AnalyticsStore stub that records every search."""

    def __init__(self, aggregations: dict[str, Any] | None = None, error: Exception | None = None):
        self.aggregations = aggregations or {}
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def search(
        self, *, query: dict[str, Any], aggregations: dict[str, Any]
    ) -> dict[str, Any]:
        self.calls.append({"query": query, "aggregations": aggregations})
        if self.error is not None:
            raise self.error
        return self.aggregations


class HistogramStore(FakeStore):
    """Store stub that answers like Elasticsearch would for the compiled bounds.

    Emits one UTC-day bucket for every day touched by the date histogram's
    ``extended_bounds``; ``contents(index)`` supplies each bucket's contents.
    """

    def __init__(self, contents: Callable[[int], dict[str, Any]]):
        super().__init__()
        self.contents = contents

    async def search(
        self, *, query: dict[str, Any], aggregations: dict[str, Any]
    ) -> dict[str, Any]:
        self.calls.append({"query": query, "aggregations": aggregations})
        bounds = aggregations["traces_per_day"]["date_histogram"]["extended_bounds"]
        first = from_epoch_ms(bounds["min"])
        last = from_epoch_ms(bounds["max"])

        buckets = []
        day = datetime.combine(first.date(), time.min, tzinfo=UTC)
        while day <= last:
            buckets.append(date_bucket(day, self.contents(len(buckets))))
            day += timedelta(days=1)
        return {"traces_per_day": {"buckets": buckets}}


def date_bucket(day: datetime, contents: dict[str, Any]) -> dict[str, Any]:
    return {
        "key": to_epoch_ms(day),
        "key_as_string": day.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
        "doc_count": 1,
        **contents,
    }


def _single_layer(name: str, field: str):
    def build(aggregation: AggregationType, _key, _subkey) -> AggregationChain:
        return AggregationChain.of(AggregationLayer(name, {aggregation.value: {"field": field}}))

    return build


# =============================================================================
# Registry Fixtures
# =============================================================================


@pytest.fixture
def default_registry() -> AnalyticsRegistry:
    """Registry with the built-in metrics and groups."""
    return build_default_registry()


@pytest.fixture
def fake_registry() -> AnalyticsRegistry:
    """Minimal registry: one plain metric, one keyed metric, two groups."""
    return AnalyticsRegistry.build(
        metrics=[
            MetricDefinition(
                id="metric",
                label="Metric",
                category="test",
                allowed_aggregations=frozenset({AggregationType.SUM, AggregationType.AVG}),
                builder=_single_layer("agg", "trace.metrics.value"),
            ),
            MetricDefinition(
                id="keyed",
                label="Keyed metric",
                category="test",
                allowed_aggregations=frozenset({AggregationType.AVG}),
                builder=_single_layer("keyed_agg", "trace_checks.score"),
                requires_key=RequiresKey(filter_field="trace_checks.check_id"),
            ),
        ],
        groups=[
            terms_group("model", "Model", "trace.model", 10),
            filters_group(
                "has_error",
                "Contains error",
                {
                    "with_error": {"term": {"trace.has_error": True}},
                    "without_error": {"term": {"trace.has_error": False}},
                },
            ),
        ],
        pipelines=default_pipeline_translator(bucket_size=100),
    )


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def fake_store() -> FakeStore:
    """Store stub returning an empty response."""
    return FakeStore()


@pytest.fixture
def make_store() -> Callable[..., FakeStore]:
    """Build store stubs with a canned response or error."""
    return FakeStore


@pytest.fixture
def make_histogram_store() -> Callable[..., HistogramStore]:
    """Build store stubs whose buckets follow the compiled histogram bounds."""
    return HistogramStore


@pytest.fixture
def now() -> datetime:
    """Fixed current time, well after every requested range."""
    return NOW


@pytest.fixture
def make_histogram() -> HistogramFactory:
    """Build a ``traces_per_day`` response from per-day bucket contents.

    Usage: ``make_histogram([{...day 1 aggs...}, {...day 2 aggs...}])``.
    """

    def build(days: list[dict[str, Any]], start: datetime = JAN_1) -> dict[str, Any]:
        buckets = [
            date_bucket(start + timedelta(days=offset), contents)
            for offset, contents in enumerate(days)
        ]
        return {"traces_per_day": {"buckets": buckets}}

    return build


@pytest.fixture
def test_settings() -> Settings:
    """Settings with small limits for service tests."""
    return Settings(app_env="testing", analytics_max_series=3, analytics_max_date_range_days=31)


# =============================================================================
# HTTP Fixtures
# =============================================================================


@pytest.fixture
async def client(fake_store: FakeStore) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with the store replaced by a stub."""
    app.dependency_overrides[get_analytics_store] = lambda: fake_store
    app.dependency_overrides[get_registry] = build_default_registry

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
