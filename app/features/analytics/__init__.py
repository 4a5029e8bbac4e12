"""Analytics module for time-series metrics over LLM traces.

This module compiles metric/group/pipeline requests into a single
Elasticsearch aggregation query and flattens the response into per-day
rows for the requested period and the period before it.
"""

from app.features.analytics.registry import AnalyticsRegistry, get_registry
from app.features.analytics.routes import router
from app.features.analytics.schemas import (
    AggregationType,
    PipelineAggregationType,
    SeriesInput,
    TimeseriesRequest,
    TimeseriesResponse,
)
from app.features.analytics.service import AnalyticsService, CatalogService

__all__ = [
    "AggregationType",
    "AnalyticsRegistry",
    "AnalyticsService",
    "CatalogService",
    "PipelineAggregationType",
    "SeriesInput",
    "TimeseriesRequest",
    "TimeseriesResponse",
    "get_registry",
    "router",
]
