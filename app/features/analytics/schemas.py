"""Pydantic schemas for analytics endpoints.

The wire format is camelCase (``projectId``, ``groupBy``, ``previousPeriod``)
to match the dashboard client; snake_case names are accepted as well.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# =============================================================================
# Enums
# =============================================================================


class AggregationType(str, Enum):
    """Metric aggregations a series can request."""

    CARDINALITY = "cardinality"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


class PipelineAggregationType(str, Enum):
    """Second-stage aggregations computed over per-field buckets.

    Separate namespace from AggregationType: ``cumulative_sum`` has no
    first-stage counterpart.
    """

    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    CUMULATIVE_SUM = "cumulative_sum"


class PipelineField(str, Enum):
    """Identity fields a pipeline can bucket by before aggregating."""

    TRACE_ID = "trace_id"
    USER_ID = "user_id"
    THREAD_ID = "thread_id"
    CUSTOMER_ID = "customer_id"


class AnalyticsModel(BaseModel):
    """Base for analytics wire models (camelCase aliases, no extra fields)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# =============================================================================
# Request Schemas
# =============================================================================


class PipelineInput(AnalyticsModel):
    """Pipeline post-aggregation for a series."""

    model_config = ConfigDict(frozen=True)

    field: PipelineField = Field(
        ...,
        description="Identity field to bucket by before the pipeline aggregation.",
    )
    aggregation: PipelineAggregationType = Field(
        ...,
        description="Aggregation applied across the per-field buckets.",
    )


class SeriesInput(AnalyticsModel):
    """One requested metric + aggregation combination."""

    model_config = ConfigDict(frozen=True)

    metric: str = Field(
        ...,
        min_length=1,
        description="Metric id. Use GET /analytics/metrics to list valid ids.",
    )
    aggregation: AggregationType = Field(
        ...,
        description="Aggregation to apply. Must be allowed by the metric.",
    )
    key: str | None = Field(
        None,
        description="Metric key (e.g. event type or evaluation check id), "
        "required when the metric declares it.",
    )
    subkey: str | None = Field(
        None,
        description="Metric subkey (e.g. event metric name), required when the metric declares it.",
    )
    pipeline: PipelineInput | None = Field(
        None,
        description="Optional pipeline aggregation over identity-field buckets.",
    )


class TopicFilters(AnalyticsModel):
    """Topic filters."""

    topics: list[str] | None = None


class MetadataFilters(AnalyticsModel):
    """Trace metadata filters. Each list matches any of its values."""

    user_id: list[str] | None = None
    thread_id: list[str] | None = None
    customer_id: list[str] | None = None
    labels: list[str] | None = None


class SharedFilters(AnalyticsModel):
    """Filters shared by every analytics query."""

    topics: TopicFilters | None = None
    metadata: MetadataFilters | None = None


class TimeseriesRequest(AnalyticsModel):
    """Time-series analytics request.

    Dates are epoch milliseconds. The response covers the requested range
    plus an equal-length previous period for comparison.
    """

    project_id: str = Field(..., min_length=1, description="Project whose traces are queried.")
    start_date: int = Field(..., ge=0, description="Range start, epoch milliseconds.")
    end_date: int = Field(..., ge=0, description="Range end, epoch milliseconds.")
    filters: SharedFilters = Field(default_factory=SharedFilters)
    series: list[SeriesInput] = Field(
        ...,
        min_length=1,
        description="Series to compute, in display order.",
    )
    group_by: str | None = Field(
        None,
        description="Optional group id. Use GET /analytics/groups to list valid ids.",
    )

    @model_validator(mode="after")
    def validate_date_range(self) -> "TimeseriesRequest":
        """Ensure end_date >= start_date."""
        if self.end_date < self.start_date:
            msg = "endDate must be >= startDate"
            raise ValueError(msg)
        return self


# =============================================================================
# Response Schemas
# =============================================================================


class TimeseriesResponse(AnalyticsModel):
    """Flattened per-day results split into comparison periods.

    Each row is ``{"date": ..., "<metric>/<aggregation>": value, ...}`` or,
    when grouped, ``{"date": ..., "<groupBy>": {"<group key>": {...}}}``.
    """

    model_config = ConfigDict(extra="ignore")

    previous_period: list[dict[str, Any]] = Field(
        ...,
        description="Rows for the period immediately preceding the requested range.",
    )
    current_period: list[dict[str, Any]] = Field(
        ...,
        description="Rows for the requested range.",
    )


class KeyRequirementInfo(AnalyticsModel):
    """Describes a metric's key or subkey requirement."""

    optional: bool
    filter_field: str | None = None


class MetricInfo(AnalyticsModel):
    """Catalog entry for a registered metric."""

    id: str
    label: str
    category: str
    allowed_aggregations: list[AggregationType]
    requires_key: KeyRequirementInfo | None = None
    requires_subkey: KeyRequirementInfo | None = None


class GroupInfo(AnalyticsModel):
    """Catalog entry for a registered group."""

    id: str
    label: str


class MetricCatalogResponse(AnalyticsModel):
    """All registered metrics."""

    metrics: list[MetricInfo]


class GroupCatalogResponse(AnalyticsModel):
    """All registered groups."""

    groups: list[GroupInfo]
