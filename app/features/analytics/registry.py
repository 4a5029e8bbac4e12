"""Metric and group registry.

The registry is an immutable lookup object built once at startup and
passed to the compiler, extractor and service. Tests build their own
minimal registries with ``AnalyticsRegistry.build``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from types import MappingProxyType
from typing import Any

from app.core.exceptions import BadRequestError, TracePulseError
from app.core.problem_details import ERROR_TYPES
from app.features.analytics.paths import AggregationChain, AggregationPath
from app.features.analytics.pipelines import PipelineTranslator
from app.features.analytics.schemas import AggregationType

MetricBuilder = Callable[[AggregationType, str | None, str | None], AggregationChain]


# =============================================================================
# Errors
# =============================================================================


class UnknownMetricError(TracePulseError):
    """Requested metric id is not registered."""

    error_type_uri: str = ERROR_TYPES["UNKNOWN_METRIC"]

    def __init__(self, metric_id: str, available: Iterable[str] = ()) -> None:
        super().__init__(
            message=f"Unknown metric '{metric_id}'",
            code="UNKNOWN_METRIC",
            status_code=400,
            details={"metric": metric_id, "available": sorted(available)},
        )


class UnknownGroupError(TracePulseError):
    """Requested group id is not registered."""

    error_type_uri: str = ERROR_TYPES["UNKNOWN_GROUP"]

    def __init__(self, group_id: str, available: Iterable[str] = ()) -> None:
        super().__init__(
            message=f"Unknown group '{group_id}'",
            code="UNKNOWN_GROUP",
            status_code=400,
            details={"group": group_id, "available": sorted(available)},
        )


# =============================================================================
# Definitions
# =============================================================================


@dataclass(frozen=True)
class RequiresKey:
    """Key or subkey requirement of a metric.

    Attributes:
        optional: When True the metric also works without the key.
        filter_field: Store field the key values come from (used by clients
            to suggest values).
    """

    optional: bool = False
    filter_field: str | None = None


@dataclass(frozen=True)
class MetricDefinition:
    """A registered metric.

    ``builder`` is the only place a metric's structure is described; the
    aggregation body and the extraction path are both rendered from the
    chain it returns.
    """

    id: str
    label: str
    category: str
    allowed_aggregations: frozenset[AggregationType]
    builder: MetricBuilder
    requires_key: RequiresKey | None = None
    requires_subkey: RequiresKey | None = None

    def validate(
        self,
        aggregation: AggregationType,
        key: str | None,
        subkey: str | None,
    ) -> None:
        """Check a request against this metric's declared requirements.

        Raises:
            BadRequestError: Naming the metric and the violated requirement.
        """
        if self.requires_key and not self.requires_key.optional and not key:
            raise BadRequestError(
                f"Metric {self.id} requires a key to be defined",
                details={"metric": self.id, "field": "key"},
            )
        if self.requires_subkey and not self.requires_subkey.optional and not subkey:
            raise BadRequestError(
                f"Metric {self.id} requires a subkey to be defined",
                details={"metric": self.id, "field": "subkey"},
            )
        if aggregation not in self.allowed_aggregations:
            raise BadRequestError(
                f"Metric {self.id} does not support aggregation '{aggregation.value}'",
                details={
                    "metric": self.id,
                    "field": "aggregation",
                    "allowed": sorted(a.value for a in self.allowed_aggregations),
                },
            )

    def chain(
        self,
        aggregation: AggregationType,
        key: str | None = None,
        subkey: str | None = None,
    ) -> AggregationChain:
        """Build the metric's aggregation chain."""
        chain = self.builder(aggregation, key, subkey)
        if chain.bucket_layer_count:
            raise ValueError(f"Metric {self.id} must resolve to a single value, not buckets")
        return chain

    def aggregation(
        self,
        aggregation: AggregationType,
        key: str | None = None,
        subkey: str | None = None,
    ) -> dict[str, Any]:
        """Render the aggregation body keyed by its composite name."""
        return self.chain(aggregation, key, subkey).wrap()

    def extraction_path(
        self,
        aggregation: AggregationType,
        key: str | None = None,
        subkey: str | None = None,
    ) -> AggregationPath:
        """Render the path from a bucket to this metric's value node."""
        return self.chain(aggregation, key, subkey).path()


@dataclass(frozen=True)
class GroupDefinition:
    """A registered group-by.

    The chain holds exactly one bucketing layer. Layers above it locate the
    bucket list inside a date bucket; layers below it are applied inside
    every group bucket before the series paths.
    """

    id: str
    label: str
    chain: AggregationChain

    def __post_init__(self) -> None:
        if self.chain.bucket_layer_count != 1:
            raise ValueError(
                f"Group {self.id} needs exactly one bucket layer, "
                f"found {self.chain.bucket_layer_count}"
            )

    def wrap(self, inner: Mapping[str, Any]) -> dict[str, Any]:
        """Nest series aggregations inside the group's bucketing."""
        return self.chain.wrap(inner)

    def extraction_path(self) -> AggregationPath:
        """Path with one group buckets marker."""
        return self.chain.path()


# =============================================================================
# Registry
# =============================================================================


@dataclass(frozen=True)
class AnalyticsRegistry:
    """Read-only metric, group and pipeline configuration."""

    metrics: Mapping[str, MetricDefinition]
    groups: Mapping[str, GroupDefinition]
    pipelines: PipelineTranslator

    @classmethod
    def build(
        cls,
        metrics: Iterable[MetricDefinition],
        groups: Iterable[GroupDefinition],
        pipelines: PipelineTranslator,
    ) -> AnalyticsRegistry:
        """Create a registry, rejecting duplicate ids.

        Raises:
            ValueError: If two metrics or two groups share an id.
        """
        metric_table: dict[str, MetricDefinition] = {}
        for metric in metrics:
            if metric.id in metric_table:
                raise ValueError(f"Duplicate metric id '{metric.id}'")
            metric_table[metric.id] = metric

        group_table: dict[str, GroupDefinition] = {}
        for group in groups:
            if group.id in group_table:
                raise ValueError(f"Duplicate group id '{group.id}'")
            group_table[group.id] = group

        return cls(
            metrics=MappingProxyType(metric_table),
            groups=MappingProxyType(group_table),
            pipelines=pipelines,
        )

    def get_metric(self, metric_id: str) -> MetricDefinition:
        """Look up a metric.

        Raises:
            UnknownMetricError: If the id is not registered.
        """
        try:
            return self.metrics[metric_id]
        except KeyError:
            raise UnknownMetricError(metric_id, self.metrics.keys()) from None

    def get_group(self, group_id: str) -> GroupDefinition:
        """Look up a group.

        Raises:
            UnknownGroupError: If the id is not registered.
        """
        try:
            return self.groups[group_id]
        except KeyError:
            raise UnknownGroupError(group_id, self.groups.keys()) from None


def build_default_registry() -> AnalyticsRegistry:
    """Build the registry of built-in metrics, groups and pipelines."""
    from app.core.config import get_settings
    from app.features.analytics.groups import default_groups
    from app.features.analytics.metrics import DEFAULT_METRICS
    from app.features.analytics.pipelines import default_pipeline_translator

    settings = get_settings()
    return AnalyticsRegistry.build(
        metrics=DEFAULT_METRICS,
        groups=default_groups(bucket_size=settings.analytics_group_bucket_size),
        pipelines=default_pipeline_translator(
            bucket_size=settings.analytics_pipeline_bucket_size
        ),
    )


@lru_cache
def get_registry() -> AnalyticsRegistry:
    """Get the cached default registry."""
    return build_default_registry()
