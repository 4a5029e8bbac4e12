"""Pipeline aggregation translation.

A pipeline series is computed in two stages inside each date bucket:

1. ``<metric>.<aggregation>.<field>``: a terms aggregation over the mapped
   identity field, wrapping the metric's own aggregation.
2. ``<metric>/<aggregation>/<field>/<pipeline>``: a sibling bucket pipeline
   (``sum_bucket``, ``avg_bucket``, ...) over stage 1, gaps filled with zero.

``cumulative_sum`` is a per-day ``sum_bucket`` whose values are accumulated
across consecutive date buckets during extraction. Elasticsearch's own
``cumulative_sum`` needs a histogram parent, which a terms bucket or a
group-by bucket is not.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, ClassVar

from app.core.exceptions import TracePulseError
from app.core.problem_details import ERROR_TYPES
from app.features.analytics.paths import AggregationPath
from app.features.analytics.schemas import (
    AggregationType,
    PipelineAggregationType,
    PipelineField,
    PipelineInput,
)


class UnsupportedPipelineKindError(TracePulseError):
    """No engine operator or store field is configured for a pipeline."""

    error_type_uri: str = ERROR_TYPES["UNSUPPORTED_PIPELINE_KIND"]

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            message=message,
            code="UNSUPPORTED_PIPELINE_KIND",
            status_code=500,
            details=details,
        )


@dataclass(frozen=True)
class PipelineOperator:
    """Engine operator for a pipeline aggregation.

    Attributes:
        name: Elasticsearch pipeline aggregation type.
        accumulate: Running-total the per-day values across date buckets.
    """

    name: str
    accumulate: bool = False


DEFAULT_OPERATORS: Mapping[PipelineAggregationType, PipelineOperator] = MappingProxyType(
    {
        PipelineAggregationType.SUM: PipelineOperator("sum_bucket"),
        PipelineAggregationType.AVG: PipelineOperator("avg_bucket"),
        PipelineAggregationType.MIN: PipelineOperator("min_bucket"),
        PipelineAggregationType.MAX: PipelineOperator("max_bucket"),
        PipelineAggregationType.CUMULATIVE_SUM: PipelineOperator("sum_bucket", accumulate=True),
    }
)

DEFAULT_FIELDS: Mapping[PipelineField, str] = MappingProxyType(
    {
        PipelineField.TRACE_ID: "trace.trace_id",
        PipelineField.USER_ID: "trace.metadata.user_id",
        PipelineField.THREAD_ID: "trace.metadata.thread_id",
        PipelineField.CUSTOMER_ID: "trace.metadata.customer_id",
    }
)


@dataclass(frozen=True)
class CompiledPipeline:
    """Two-stage pipeline aggregation and where its value lands."""

    aggregations: dict[str, Any]
    result_key: str
    path: AggregationPath
    accumulate: bool


def pipeline_bucket_key(
    metric_id: str, aggregation: AggregationType, pipeline: PipelineInput
) -> str:
    """Name of the inner terms stage."""
    return f"{metric_id}.{aggregation.value}.{pipeline.field.value}"


def pipeline_result_key(
    metric_id: str, aggregation: AggregationType, pipeline: PipelineInput
) -> str:
    """Name of the outer pipeline stage, also the flat result key."""
    return (
        f"{metric_id}/{aggregation.value}/{pipeline.field.value}/{pipeline.aggregation.value}"
    )


@dataclass(frozen=True)
class PipelineTranslator:
    """Maps logical pipelines onto Elasticsearch pipeline aggregations."""

    GAP_POLICY: ClassVar[str] = "insert_zeros"

    fields: Mapping[PipelineField, str]
    operators: Mapping[PipelineAggregationType, PipelineOperator]
    bucket_size: int = 10000

    def pipeline_operator_for(self, kind: PipelineAggregationType) -> PipelineOperator:
        """Get the engine operator for a pipeline aggregation.

        Raises:
            UnsupportedPipelineKindError: If no operator is configured.
        """
        operator = self.operators.get(kind)
        if operator is None:
            raise UnsupportedPipelineKindError(
                f"Pipeline aggregation '{kind.value}' is not supported",
                details={"pipeline_aggregation": kind.value},
            )
        return operator

    def field_mapping(self, field: PipelineField) -> str:
        """Get the store field for a pipeline identity field.

        Raises:
            UnsupportedPipelineKindError: If the field has no store mapping.
        """
        store_field = self.fields.get(field)
        if store_field is None:
            raise UnsupportedPipelineKindError(
                f"Pipeline field '{field.value}' has no store mapping",
                details={"pipeline_field": field.value},
            )
        return store_field

    def build(
        self,
        metric_id: str,
        aggregation: AggregationType,
        pipeline: PipelineInput,
        metric_aggregations: Mapping[str, Any],
        metric_path: AggregationPath,
    ) -> CompiledPipeline:
        """Wrap a metric's aggregation in the two-stage pipeline form.

        Args:
            metric_id: Metric id.
            aggregation: Metric aggregation.
            pipeline: Requested pipeline.
            metric_aggregations: The metric's own aggregation mapping.
            metric_path: Path from a terms bucket to the metric value.

        Returns:
            Compiled pipeline with its aggregations and result path.
        """
        operator = self.pipeline_operator_for(pipeline.aggregation)
        store_field = self.field_mapping(pipeline.field)
        bucket_key = pipeline_bucket_key(metric_id, aggregation, pipeline)
        result_key = pipeline_result_key(metric_id, aggregation, pipeline)

        aggregations = {
            bucket_key: {
                "terms": {"field": store_field, "size": self.bucket_size},
                "aggs": dict(metric_aggregations),
            },
            result_key: {
                operator.name: {
                    "buckets_path": f"{bucket_key}>{metric_path.buckets_path()}",
                    "gap_policy": self.GAP_POLICY,
                }
            },
        }
        return CompiledPipeline(
            aggregations=aggregations,
            result_key=result_key,
            path=AggregationPath.of(result_key),
            accumulate=operator.accumulate,
        )


def default_pipeline_translator(bucket_size: int = 10000) -> PipelineTranslator:
    """Translator with the built-in operators and trace field mapping."""
    return PipelineTranslator(
        fields=DEFAULT_FIELDS,
        operators=DEFAULT_OPERATORS,
        bucket_size=bucket_size,
    )
