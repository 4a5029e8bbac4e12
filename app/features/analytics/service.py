"""Service layer for analytics operations.

Orchestrates one time-series request: date math, compilation, a single store
search, extraction and the previous/current period split. The catalog
listings only need the registry.
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from app.core.config import Settings, get_settings
from app.core.exceptions import BadRequestError
from app.core.logging import get_logger
from app.features.analytics.compiler import (
    build_filter_query,
    compile_timeseries,
    date_histogram,
)
from app.features.analytics.extractor import extract_timeseries
from app.features.analytics.periods import current_vs_previous_dates, split_periods
from app.features.analytics.registry import AnalyticsRegistry
from app.features.analytics.schemas import (
    GroupCatalogResponse,
    GroupInfo,
    KeyRequirementInfo,
    MetricCatalogResponse,
    MetricInfo,
    TimeseriesRequest,
    TimeseriesResponse,
)
from app.features.analytics.store import AnalyticsStore

logger = get_logger(__name__)


class AnalyticsService:
    """Service for trace analytics.

    Stateless apart from its collaborators; one instance per request is fine.
    """

    def __init__(
        self,
        store: AnalyticsStore,
        registry: AnalyticsRegistry,
        settings: Settings | None = None,
    ) -> None:
        """Initialize analytics service.

        Args:
            store: Document store to search.
            registry: Metric/group/pipeline configuration.
            settings: Settings override (defaults to the cached settings).
        """
        self.store = store
        self.registry = registry
        self.settings = settings or get_settings()

    def _check_limits(self, request: TimeseriesRequest, days_difference: int) -> None:
        if len(request.series) > self.settings.analytics_max_series:
            raise BadRequestError(
                f"At most {self.settings.analytics_max_series} series can be requested at once",
                details={"series_count": len(request.series)},
            )
        if days_difference > self.settings.analytics_max_date_range_days:
            raise BadRequestError(
                f"Date range exceeds {self.settings.analytics_max_date_range_days} days",
                details={"days": days_difference},
            )

    async def get_timeseries(
        self,
        request: TimeseriesRequest,
        now: datetime | None = None,
    ) -> TimeseriesResponse:
        """Compute per-day series for the requested and the previous period.

        All validation happens before the store is called; either both
        periods are returned in full or an error is raised.

        Args:
            request: Time-series request.
            now: Current time override.

        Returns:
            Rows split into previous and current period.
        """
        dates = current_vs_previous_dates(
            request.start_date,
            request.end_date,
            now=now,
            live_window=timedelta(minutes=self.settings.analytics_live_window_minutes),
            time_zone=ZoneInfo(self.settings.analytics_time_zone),
        )
        self._check_limits(request, dates.days_difference)

        compiled = compile_timeseries(
            series=request.series,
            group_by=request.group_by,
            registry=self.registry,
            histogram=date_histogram(
                self.settings.analytics_timestamp_field,
                dates,
                self.settings.analytics_time_zone,
            ),
        )
        query = build_filter_query(
            project_id=request.project_id,
            filters=request.filters,
            dates=dates,
            timestamp_field=self.settings.analytics_timestamp_field,
        )

        aggregations = await self.store.search(query=query, aggregations=compiled.aggregations)
        rows = extract_timeseries(compiled, aggregations, period_length=dates.days_difference)
        previous_period, current_period = split_periods(rows, dates.days_difference)

        logger.info(
            "analytics.timeseries_computed",
            project_id=request.project_id,
            series=[item.result_key for item in compiled.series],
            group_by=request.group_by,
            days_difference=dates.days_difference,
            bucket_count=len(rows),
        )

        return TimeseriesResponse(
            previous_period=previous_period,
            current_period=current_period,
        )


class CatalogService:
    """Read-only listings of the registered metrics and groups."""

    def __init__(self, registry: AnalyticsRegistry) -> None:
        self.registry = registry

    def list_metrics(self) -> MetricCatalogResponse:
        """List registered metrics."""
        metrics = [
            MetricInfo(
                id=metric.id,
                label=metric.label,
                category=metric.category,
                allowed_aggregations=sorted(
                    metric.allowed_aggregations, key=lambda aggregation: aggregation.value
                ),
                requires_key=(
                    KeyRequirementInfo(
                        optional=metric.requires_key.optional,
                        filter_field=metric.requires_key.filter_field,
                    )
                    if metric.requires_key
                    else None
                ),
                requires_subkey=(
                    KeyRequirementInfo(
                        optional=metric.requires_subkey.optional,
                        filter_field=metric.requires_subkey.filter_field,
                    )
                    if metric.requires_subkey
                    else None
                ),
            )
            for metric in self.registry.metrics.values()
        ]
        return MetricCatalogResponse(metrics=metrics)

    def list_groups(self) -> GroupCatalogResponse:
        """List registered groups."""
        return GroupCatalogResponse(
            groups=[
                GroupInfo(id=group.id, label=group.label)
                for group in self.registry.groups.values()
            ]
        )
