"""Compile time-series requests into one Elasticsearch aggregation query.

Compilation output (``CompiledQuery``) carries both the aggregation body and
the extraction plan for every series, so the extractor walks exactly the
paths the compiler built.

Shape of the compiled aggregations::

    traces_per_day (date_histogram, 1 day)
    └── [group layers, e.g. model_group > child (terms) > back_to_root]
        ├── trace_id/cardinality
        ├── total_cost.sum.user_id (terms)  ┐ pipeline series
        └── total_cost/sum/user_id/avg      ┘
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from app.core.exceptions import BadRequestError
from app.core.logging import get_logger
from app.features.analytics.paths import AggregationPath
from app.features.analytics.periods import ComparisonDates
from app.features.analytics.registry import AnalyticsRegistry
from app.features.analytics.schemas import SeriesInput, SharedFilters

logger = get_logger(__name__)

DATE_HISTOGRAM_NAME = "traces_per_day"
DATE_INTERVAL = "1d"


@dataclass(frozen=True)
class CompiledSeries:
    """Aggregations and extraction plan for one series.

    Attributes:
        series: The requested series.
        result_key: Key of the series value in each flat result row.
        path: Path from the (group) bucket to the value node.
        aggregations: Aggregations contributed to the composite mapping.
        accumulate: Running-total values across date buckets.
    """

    series: SeriesInput
    result_key: str
    path: AggregationPath
    aggregations: dict[str, Any]
    accumulate: bool = False


@dataclass(frozen=True)
class CompiledGroup:
    """Extraction plan for a group-by.

    Attributes:
        id: Group id, also the key of the grouped results in each row.
        container_path: Path from a date bucket to the bucket container.
        bucket_path: Path applied inside each group bucket before series paths.
    """

    id: str
    container_path: AggregationPath
    bucket_path: AggregationPath


@dataclass(frozen=True)
class CompiledQuery:
    """Complete aggregation body plus its extraction plan."""

    aggregations: dict[str, Any]
    series: tuple[CompiledSeries, ...]
    group: CompiledGroup | None = None


def validate_series(series: Sequence[SeriesInput], registry: AnalyticsRegistry) -> None:
    """Check every series against its metric before building anything.

    Raises:
        UnknownMetricError: If a metric id is not registered.
        BadRequestError: On the first missing key/subkey or disallowed aggregation.
    """
    for item in series:
        metric = registry.get_metric(item.metric)
        metric.validate(item.aggregation, item.key, item.subkey)


def compile_series(series: SeriesInput, registry: AnalyticsRegistry) -> CompiledSeries:
    """Build the aggregations and extraction path for one series.

    Args:
        series: Requested series.
        registry: Metric/group/pipeline configuration.

    Returns:
        Compiled series.
    """
    metric = registry.get_metric(series.metric)
    metric.validate(series.aggregation, series.key, series.subkey)
    chain = metric.chain(series.aggregation, series.key, series.subkey)
    aggregations = chain.wrap()
    path = chain.path()

    if series.pipeline is not None:
        pipeline = registry.pipelines.build(
            metric_id=metric.id,
            aggregation=series.aggregation,
            pipeline=series.pipeline,
            metric_aggregations=aggregations,
            metric_path=path,
        )
        return CompiledSeries(
            series=series,
            result_key=pipeline.result_key,
            path=pipeline.path,
            aggregations=pipeline.aggregations,
            accumulate=pipeline.accumulate,
        )

    return CompiledSeries(
        series=series,
        result_key=f"{metric.id}/{series.aggregation.value}",
        path=path,
        aggregations=aggregations,
    )


def merge_series(compiled: Sequence[CompiledSeries]) -> dict[str, Any]:
    """Merge series aggregations into one composite mapping.

    Raises:
        BadRequestError: If two series share an aggregation name or a result key.
    """
    merged: dict[str, Any] = {}
    result_keys: set[str] = set()
    for item in compiled:
        if item.result_key in result_keys:
            raise BadRequestError(
                f"Series {item.result_key} is requested more than once",
                details={"series": item.result_key},
            )
        result_keys.add(item.result_key)

        for name, body in item.aggregations.items():
            if name in merged:
                raise BadRequestError(
                    f"Series aggregation {name} is requested more than once",
                    details={"series": item.result_key, "aggregation": name},
                )
            merged[name] = body
    return merged


def date_histogram(
    field: str,
    dates: ComparisonDates,
    time_zone: str = "UTC",
) -> dict[str, Any]:
    """Daily date histogram spanning both comparison periods.

    ``extended_bounds`` with ``min_doc_count=0`` yields one bucket per day
    even for days without traces; ``hard_bounds`` drops anything outside.
    Both bounds sit inside the first and last local day, so the histogram
    has exactly ``2 * days_difference`` buckets.
    """
    bounds = {"min": dates.previous_period_start_ms, "max": dates.last_day_ms}
    return {
        "field": field,
        "calendar_interval": DATE_INTERVAL,
        "min_doc_count": 0,
        "time_zone": time_zone,
        "extended_bounds": bounds,
        "hard_bounds": dict(bounds),
    }


def build_filter_query(
    project_id: str,
    filters: SharedFilters,
    dates: ComparisonDates,
    timestamp_field: str,
) -> dict[str, Any]:
    """Bool filter query for a project, date range and metadata filters.

    Args:
        project_id: Project whose traces are queried.
        filters: Caller filters.
        dates: Comparison boundaries (previous period start to end).
        timestamp_field: Trace timestamp field.

    Returns:
        Elasticsearch query clause.
    """
    conditions: list[dict[str, Any]] = [
        {"term": {"trace.project_id": project_id}},
        {
            "range": {
                timestamp_field: {
                    "gte": dates.previous_period_start_ms,
                    "lt": dates.end_ms,
                    "format": "epoch_millis",
                }
            }
        },
    ]

    metadata = filters.metadata
    if metadata is not None:
        for name, values in (
            ("user_id", metadata.user_id),
            ("thread_id", metadata.thread_id),
            ("customer_id", metadata.customer_id),
            ("labels", metadata.labels),
        ):
            if values:
                conditions.append({"terms": {f"trace.metadata.{name}": values}})

    if filters.topics is not None and filters.topics.topics:
        conditions.append({"terms": {"trace.metadata.topics": filters.topics.topics}})

    return {"bool": {"filter": conditions}}


def compile_timeseries(
    series: Sequence[SeriesInput],
    group_by: str | None,
    registry: AnalyticsRegistry,
    histogram: dict[str, Any],
) -> CompiledQuery:
    """Compile requested series into one composite aggregation.

    Args:
        series: Requested series, in display order.
        group_by: Optional group id.
        registry: Metric/group/pipeline configuration.
        histogram: Date histogram clause (see ``date_histogram``).

    Returns:
        Compiled query with its extraction plan.

    Raises:
        BadRequestError: Missing key/subkey, disallowed aggregation or duplicate series.
        UnknownMetricError: Unregistered metric.
        UnknownGroupError: Unregistered group.
        UnsupportedPipelineKindError: Pipeline without an engine operator.
    """
    validate_series(series, registry)
    group = registry.get_group(group_by) if group_by else None

    compiled = tuple(compile_series(item, registry) for item in series)
    aggs = merge_series(compiled)

    compiled_group: CompiledGroup | None = None
    if group is not None:
        aggs = group.wrap(aggs)
        container_path, bucket_path = group.extraction_path().split_at_buckets()
        compiled_group = CompiledGroup(
            id=group.id,
            container_path=container_path,
            bucket_path=bucket_path,
        )

    aggregations = {DATE_HISTOGRAM_NAME: {"date_histogram": histogram, "aggs": aggs}}

    logger.debug(
        "analytics.timeseries_compiled",
        series=[item.result_key for item in compiled],
        paths=[str(item.path) for item in compiled],
        group_by=group_by,
    )

    return CompiledQuery(aggregations=aggregations, series=compiled, group=compiled_group)
