"""API routes for analytics endpoints.

Time-series analytics over LLM traces, with a previous-period comparison,
plus the metric and group catalogs used to build requests.
"""

from fastapi import APIRouter, Depends

from app.core.logging import get_logger
from app.features.analytics.registry import AnalyticsRegistry, get_registry
from app.features.analytics.schemas import (
    GroupCatalogResponse,
    MetricCatalogResponse,
    TimeseriesRequest,
    TimeseriesResponse,
)
from app.features.analytics.service import AnalyticsService, CatalogService
from app.features.analytics.store import AnalyticsStore, get_analytics_store

logger = get_logger(__name__)

router = APIRouter(prefix="/analytics", tags=["analytics"])


# =============================================================================
# Time-series Endpoints
# =============================================================================


@router.post(
    "/timeseries",
    response_model=TimeseriesResponse,
    summary="Compute per-day analytics series",
    description="""
Compute one or more daily series for a project, plus the same series for the
equal-length period immediately before the requested range.

**Series**: each entry names a `metric` and an `aggregation`. Some metrics need
a `key` (event type, evaluation check id) and a `subkey` (event metric name).
Use GET /analytics/metrics to see the requirements.

**Pipelines**: `pipeline: {field, aggregation}` first buckets traces by an
identity field (`trace_id`, `user_id`, `thread_id`, `customer_id`), then
aggregates across those buckets, e.g. average cost per user.
`cumulative_sum` runs a total across the days of each period.

**Grouping**: `groupBy` splits every day into groups (model, topic, ...).

**Response**: `previousPeriod` and `currentPeriod`, each a list of rows:
- ungrouped: `{"date": ..., "trace_id/cardinality": 42}`
- grouped: `{"date": ..., "model": {"gpt-4": {"trace_id/cardinality": 42}}}`
""",
)
async def get_timeseries(
    request: TimeseriesRequest,
    store: AnalyticsStore = Depends(get_analytics_store),
    registry: AnalyticsRegistry = Depends(get_registry),
) -> TimeseriesResponse:
    """Compute series for the requested and previous period.

    Args:
        request: Time-series request.
        store: Document store.
        registry: Metric/group configuration.

    Returns:
        Rows split into previous and current period.
    """
    service = AnalyticsService(store=store, registry=registry)
    return await service.get_timeseries(request)


# =============================================================================
# Catalog Endpoints
# =============================================================================


@router.get(
    "/metrics",
    response_model=MetricCatalogResponse,
    summary="List available metrics",
)
async def list_metrics(
    registry: AnalyticsRegistry = Depends(get_registry),
) -> MetricCatalogResponse:
    """List metrics with their allowed aggregations and key requirements."""
    return CatalogService(registry).list_metrics()


@router.get(
    "/groups",
    response_model=GroupCatalogResponse,
    summary="List available group-bys",
)
async def list_groups(
    registry: AnalyticsRegistry = Depends(get_registry),
) -> GroupCatalogResponse:
    """List groups usable as groupBy."""
    return CatalogService(registry).list_groups()
