"""Built-in group-by definitions.

Terms groups produce a bucket list (``[{"key": ..., ...}]``); filters groups
produce a keyed bucket mapping (``{"positive": {...}}``). Groups over nested
documents step back to the trace with ``reverse_nested`` so series
aggregations keep operating on trace fields.
"""

from typing import Any

from app.features.analytics.paths import AggregationChain, AggregationLayer
from app.features.analytics.registry import GroupDefinition


def terms_group(group_id: str, label: str, field: str, bucket_size: int) -> GroupDefinition:
    """Group by the values of a trace-level keyword field."""
    return GroupDefinition(
        id=group_id,
        label=label,
        chain=AggregationChain.of(
            AggregationLayer(
                f"{group_id}_group",
                {"terms": {"field": field, "size": bucket_size}},
                buckets=True,
            )
        ),
    )


def nested_terms_group(
    group_id: str, label: str, path: str, field: str, bucket_size: int
) -> GroupDefinition:
    """Group by a keyword field of nested documents."""
    return GroupDefinition(
        id=group_id,
        label=label,
        chain=AggregationChain.of(
            AggregationLayer(f"{group_id}_group", {"nested": {"path": path}}),
            AggregationLayer(
                "child",
                {"terms": {"field": field, "size": bucket_size}},
                buckets=True,
            ),
            AggregationLayer("back_to_root", {"reverse_nested": {}}),
        ),
    )


def filters_group(group_id: str, label: str, filters: dict[str, Any]) -> GroupDefinition:
    """Group into fixed, named buckets."""
    return GroupDefinition(
        id=group_id,
        label=label,
        chain=AggregationChain.of(
            AggregationLayer(f"{group_id}_group", {"filters": {"filters": filters}}, buckets=True)
        ),
    )


def default_groups(bucket_size: int = 50) -> tuple[GroupDefinition, ...]:
    """Build the built-in groups.

    Args:
        bucket_size: Maximum number of buckets for terms groups.
    """
    has_error = {"term": {"trace.has_error": True}}
    satisfaction = "trace.input.satisfaction_score"

    return (
        terms_group("topics", "Topic", "trace.metadata.topics", bucket_size),
        terms_group("user_id", "User", "trace.metadata.user_id", bucket_size),
        terms_group("thread_id", "Thread", "trace.metadata.thread_id", bucket_size),
        terms_group("customer_id", "Customer", "trace.metadata.customer_id", bucket_size),
        terms_group("labels", "Label", "trace.metadata.labels", bucket_size),
        nested_terms_group("model", "Model", "spans", "spans.model", bucket_size),
        nested_terms_group("span_type", "Span type", "spans", "spans.type", bucket_size),
        filters_group(
            "has_error",
            "Contains error",
            {
                "with_error": has_error,
                "without_error": {"bool": {"must_not": has_error}},
            },
        ),
        filters_group(
            "input_sentiment",
            "Input sentiment",
            {
                "positive": {"range": {satisfaction: {"gte": 0.1}}},
                "negative": {"range": {satisfaction: {"lte": -0.1}}},
                "neutral": {"range": {satisfaction: {"gt": -0.1, "lt": 0.1}}},
            },
        ),
        GroupDefinition(
            id="evaluation_passed",
            label="Evaluation passed",
            chain=AggregationChain.of(
                AggregationLayer("evaluation_passed_group", {"nested": {"path": "trace_checks"}}),
                AggregationLayer(
                    "child",
                    {
                        "filters": {
                            "filters": {
                                "passed": {"term": {"trace_checks.passed": True}},
                                "failed": {"term": {"trace_checks.passed": False}},
                            }
                        }
                    },
                    buckets=True,
                ),
                AggregationLayer("back_to_root", {"reverse_nested": {}}),
            ),
        ),
    )
