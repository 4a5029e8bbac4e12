"""Built-in metrics over the traces pivot index.

Each metric is described once, as an aggregation chain. The outermost layer
is named ``<metric>/<aggregation>[/<key>[/<subkey>]]``; inner layers of
nested or filtered metrics are named ``child`` so the innermost name is
always safe as the last element of a pipeline ``buckets_path``.
"""

from app.features.analytics.paths import AggregationChain, AggregationLayer, aggregation_name
from app.features.analytics.registry import MetricBuilder, MetricDefinition, RequiresKey
from app.features.analytics.schemas import AggregationType

CHILD = "child"

COUNT_AGGREGATIONS = frozenset({AggregationType.CARDINALITY})
NUMERIC_AGGREGATIONS = frozenset(
    {AggregationType.SUM, AggregationType.AVG, AggregationType.MIN, AggregationType.MAX}
)
SCORE_AGGREGATIONS = frozenset({AggregationType.AVG, AggregationType.MIN, AggregationType.MAX})


def _leaf(aggregation: AggregationType, field: str, name: str = CHILD) -> AggregationLayer:
    return AggregationLayer(name, {aggregation.value: {"field": field}})


def _term_filter(field: str, value: str) -> AggregationLayer:
    return AggregationLayer(CHILD, {"filter": {"term": {field: value}}})


def _nested(name: str, path: str) -> AggregationLayer:
    return AggregationLayer(name, {"nested": {"path": path}})


def field_metric(metric_id: str, field: str) -> MetricBuilder:
    """Metric aggregating a single trace-level field."""

    def build(
        aggregation: AggregationType, _key: str | None, _subkey: str | None
    ) -> AggregationChain:
        return AggregationChain.of(
            _leaf(aggregation, field, name=aggregation_name(metric_id, aggregation.value))
        )

    return build


def _error_traces(
    aggregation: AggregationType, _key: str | None, _subkey: str | None
) -> AggregationChain:
    return AggregationChain.of(
        AggregationLayer(
            aggregation_name("errors", aggregation.value),
            {"filter": {"term": {"trace.has_error": True}}},
        ),
        _leaf(aggregation, "trace.trace_id"),
    )


def _event_type(
    aggregation: AggregationType, key: str | None, _subkey: str | None
) -> AggregationChain:
    parts = [key] if key else []
    layers = [_nested(aggregation_name("event_type", aggregation.value, *parts), "events")]
    if key:
        layers.append(_term_filter("events.event_type", key))
    layers.append(_leaf(aggregation, "events.event_id"))
    return AggregationChain.of(*layers)


def _event_score(
    aggregation: AggregationType, key: str | None, subkey: str | None
) -> AggregationChain:
    if not key or not subkey:
        raise ValueError("Metric event_score needs an event type and a metric key")
    return AggregationChain.of(
        _nested(aggregation_name("event_score", aggregation.value, key, subkey), "events"),
        _term_filter("events.event_type", key),
        _nested(CHILD, "events.metrics"),
        _term_filter("events.metrics.key", subkey),
        _leaf(aggregation, "events.metrics.value"),
    )


def _check_metric(metric_id: str, field: str, key_optional: bool = False) -> MetricBuilder:
    """Metric over the nested trace_checks of one (or every) evaluation check."""

    def build(
        aggregation: AggregationType, key: str | None, _subkey: str | None
    ) -> AggregationChain:
        if not key and not key_optional:
            raise ValueError(f"Metric {metric_id} needs a check id")
        parts = [key] if key else []
        layers = [_nested(aggregation_name(metric_id, aggregation.value, *parts), "trace_checks")]
        if key:
            layers.append(_term_filter("trace_checks.check_id", key))
        layers.append(_leaf(aggregation, field))
        return AggregationChain.of(*layers)

    return build


DEFAULT_METRICS: tuple[MetricDefinition, ...] = (
    # Metadata
    MetricDefinition(
        id="trace_id",
        label="Traces",
        category="metadata",
        allowed_aggregations=COUNT_AGGREGATIONS,
        builder=field_metric("trace_id", "trace.trace_id"),
    ),
    MetricDefinition(
        id="user_id",
        label="Users",
        category="metadata",
        allowed_aggregations=COUNT_AGGREGATIONS,
        builder=field_metric("user_id", "trace.metadata.user_id"),
    ),
    MetricDefinition(
        id="thread_id",
        label="Threads",
        category="metadata",
        allowed_aggregations=COUNT_AGGREGATIONS,
        builder=field_metric("thread_id", "trace.metadata.thread_id"),
    ),
    MetricDefinition(
        id="errors",
        label="Traces with error",
        category="metadata",
        allowed_aggregations=COUNT_AGGREGATIONS,
        builder=_error_traces,
    ),
    # Performance
    MetricDefinition(
        id="total_cost",
        label="Total cost",
        category="performance",
        allowed_aggregations=NUMERIC_AGGREGATIONS,
        builder=field_metric("total_cost", "trace.metrics.total_cost"),
    ),
    MetricDefinition(
        id="prompt_tokens",
        label="Prompt tokens",
        category="performance",
        allowed_aggregations=NUMERIC_AGGREGATIONS,
        builder=field_metric("prompt_tokens", "trace.metrics.prompt_tokens"),
    ),
    MetricDefinition(
        id="completion_tokens",
        label="Completion tokens",
        category="performance",
        allowed_aggregations=NUMERIC_AGGREGATIONS,
        builder=field_metric("completion_tokens", "trace.metrics.completion_tokens"),
    ),
    MetricDefinition(
        id="completion_time",
        label="Completion time",
        category="performance",
        allowed_aggregations=NUMERIC_AGGREGATIONS,
        builder=field_metric("completion_time", "trace.metrics.total_time_ms"),
    ),
    MetricDefinition(
        id="first_token",
        label="Time to first token",
        category="performance",
        allowed_aggregations=NUMERIC_AGGREGATIONS,
        builder=field_metric("first_token", "trace.metrics.first_token_ms"),
    ),
    # Sentiment
    MetricDefinition(
        id="input_sentiment",
        label="Input sentiment score",
        category="sentiment",
        allowed_aggregations=SCORE_AGGREGATIONS,
        builder=field_metric("input_sentiment", "trace.input.satisfaction_score"),
    ),
    # Events
    MetricDefinition(
        id="event_type",
        label="Event type",
        category="events",
        allowed_aggregations=COUNT_AGGREGATIONS,
        builder=_event_type,
        requires_key=RequiresKey(optional=True, filter_field="events.event_type"),
    ),
    MetricDefinition(
        id="event_score",
        label="Event score",
        category="events",
        allowed_aggregations=NUMERIC_AGGREGATIONS,
        builder=_event_score,
        requires_key=RequiresKey(filter_field="events.event_type"),
        requires_subkey=RequiresKey(filter_field="events.metrics.key"),
    ),
    # Evaluations
    MetricDefinition(
        id="evaluation_score",
        label="Evaluation score",
        category="evaluations",
        allowed_aggregations=NUMERIC_AGGREGATIONS,
        builder=_check_metric("evaluation_score", "trace_checks.score"),
        requires_key=RequiresKey(filter_field="trace_checks.check_id"),
    ),
    MetricDefinition(
        id="evaluation_pass_rate",
        label="Evaluation pass rate",
        category="evaluations",
        allowed_aggregations=frozenset({AggregationType.AVG}),
        builder=_check_metric("evaluation_pass_rate", "trace_checks.passed"),
        requires_key=RequiresKey(filter_field="trace_checks.check_id"),
    ),
    MetricDefinition(
        id="evaluation_runs",
        label="Evaluation runs",
        category="evaluations",
        allowed_aggregations=COUNT_AGGREGATIONS,
        builder=_check_metric("evaluation_runs", "trace_checks.trace_id", key_optional=True),
        requires_key=RequiresKey(optional=True, filter_field="trace_checks.check_id"),
    ),
)
