"""Tests for the time-series query compiler."""

from datetime import UTC, datetime

import pytest

from app.core.exceptions import BadRequestError
from app.features.analytics.compiler import (
    DATE_HISTOGRAM_NAME,
    build_filter_query,
    compile_series,
    compile_timeseries,
    date_histogram,
)
from app.features.analytics.paths import AggregationPath
from app.features.analytics.periods import current_vs_previous_dates, to_epoch_ms
from app.features.analytics.registry import UnknownGroupError, UnknownMetricError
from app.features.analytics.schemas import (
    MetadataFilters,
    SeriesInput,
    SharedFilters,
    TopicFilters,
)

HISTOGRAM = {"field": "trace.timestamps.started_at", "calendar_interval": "1d"}


@pytest.fixture
def dates(now):
    return current_vs_previous_dates(
        to_epoch_ms(datetime(2024, 1, 8, tzinfo=UTC)),
        to_epoch_ms(datetime(2024, 1, 15, tzinfo=UTC)),
        now=now,
    )


def series(**kwargs) -> SeriesInput:
    return SeriesInput.model_validate(kwargs)


class TestCompileSeries:
    """Tests for compile_series."""

    def test_plain_series(self, default_registry):
        """A plain series keeps the metric aggregation and path."""
        compiled = compile_series(
            series(metric="trace_id", aggregation="cardinality"), default_registry
        )

        assert compiled.result_key == "trace_id/cardinality"
        assert compiled.path == AggregationPath.of("trace_id/cardinality")
        assert compiled.aggregations == {
            "trace_id/cardinality": {"cardinality": {"field": "trace.trace_id"}}
        }
        assert compiled.accumulate is False

    def test_pipeline_series(self, default_registry):
        """A pipeline series reads the sibling pipeline aggregation."""
        compiled = compile_series(
            series(
                metric="total_cost",
                aggregation="sum",
                pipeline={"field": "user_id", "aggregation": "avg"},
            ),
            default_registry,
        )

        assert compiled.result_key == "total_cost/sum/user_id/avg"
        assert compiled.path == AggregationPath.of("total_cost/sum/user_id/avg")
        assert set(compiled.aggregations) == {
            "total_cost.sum.user_id",
            "total_cost/sum/user_id/avg",
        }

    def test_cumulative_pipeline_series(self, default_registry):
        """cumulative_sum series are marked for accumulation."""
        compiled = compile_series(
            series(
                metric="total_cost",
                aggregation="sum",
                pipeline={"field": "trace_id", "aggregation": "cumulative_sum"},
            ),
            default_registry,
        )
        assert compiled.accumulate is True


class TestCompileTimeseries:
    """Tests for compile_timeseries."""

    def test_ungrouped_query_shape(self, default_registry):
        """Series are nested directly under the date histogram."""
        compiled = compile_timeseries(
            series=[
                series(metric="trace_id", aggregation="cardinality"),
                series(metric="total_cost", aggregation="avg"),
            ],
            group_by=None,
            registry=default_registry,
            histogram=HISTOGRAM,
        )

        histogram = compiled.aggregations[DATE_HISTOGRAM_NAME]
        assert histogram["date_histogram"] == HISTOGRAM
        assert set(histogram["aggs"]) == {"trace_id/cardinality", "total_cost/avg"}
        assert compiled.group is None
        assert [item.result_key for item in compiled.series] == [
            "trace_id/cardinality",
            "total_cost/avg",
        ]

    def test_grouped_query_shape(self, default_registry):
        """Group layers wrap the series inside each date bucket."""
        compiled = compile_timeseries(
            series=[series(metric="trace_id", aggregation="cardinality")],
            group_by="model",
            registry=default_registry,
            histogram=HISTOGRAM,
        )

        group = compiled.aggregations[DATE_HISTOGRAM_NAME]["aggs"]["model_group"]
        assert group["nested"] == {"path": "spans"}
        terms = group["aggs"]["child"]
        assert terms["terms"] == {"field": "spans.model", "size": 50}
        assert terms["aggs"]["back_to_root"]["aggs"] == {
            "trace_id/cardinality": {"cardinality": {"field": "trace.trace_id"}}
        }

        assert compiled.group is not None
        assert compiled.group.id == "model"
        assert str(compiled.group.container_path) == "model_group>child"
        assert str(compiled.group.bucket_path) == "back_to_root"

    def test_missing_key_fails_before_building(self, default_registry):
        """Validation of every series happens up front."""
        with pytest.raises(BadRequestError, match="requires a key"):
            compile_timeseries(
                series=[
                    series(metric="trace_id", aggregation="cardinality"),
                    series(metric="evaluation_score", aggregation="avg"),
                ],
                group_by=None,
                registry=default_registry,
                histogram=HISTOGRAM,
            )

    def test_unknown_metric(self, default_registry):
        """Unknown metrics are rejected."""
        with pytest.raises(UnknownMetricError):
            compile_timeseries(
                series=[series(metric="nope", aggregation="sum")],
                group_by=None,
                registry=default_registry,
                histogram=HISTOGRAM,
            )

    def test_unknown_group(self, default_registry):
        """Unknown groups are rejected."""
        with pytest.raises(UnknownGroupError):
            compile_timeseries(
                series=[series(metric="trace_id", aggregation="cardinality")],
                group_by="nope",
                registry=default_registry,
                histogram=HISTOGRAM,
            )

    def test_duplicate_series_rejected(self, default_registry):
        """The same series twice would collide in the result rows."""
        with pytest.raises(BadRequestError, match="more than once"):
            compile_timeseries(
                series=[
                    series(metric="trace_id", aggregation="cardinality"),
                    series(metric="trace_id", aggregation="cardinality"),
                ],
                group_by=None,
                registry=default_registry,
                histogram=HISTOGRAM,
            )

    def test_same_metric_with_different_keys_collides(self, default_registry):
        """Result keys are '<metric>/<aggregation>', so two keys of one metric collide."""
        with pytest.raises(BadRequestError, match="Series evaluation_score/avg"):
            compile_timeseries(
                series=[
                    series(metric="evaluation_score", aggregation="avg", key="a"),
                    series(metric="evaluation_score", aggregation="avg", key="b"),
                ],
                group_by=None,
                registry=default_registry,
                histogram=HISTOGRAM,
            )

    def test_fake_registry(self, fake_registry):
        """The compiler only uses what the injected registry defines."""
        compiled = compile_timeseries(
            series=[series(metric="metric", aggregation="sum")],
            group_by="has_error",
            registry=fake_registry,
            histogram=HISTOGRAM,
        )

        aggs = compiled.aggregations[DATE_HISTOGRAM_NAME]["aggs"]
        assert aggs["has_error_group"]["aggs"] == {"agg": {"sum": {"field": "trace.metrics.value"}}}
        assert compiled.series[0].result_key == "metric/sum"


class TestDateHistogram:
    """Tests for date_histogram."""

    def test_bounds_cover_both_periods(self, dates):
        """The histogram spans both periods, one bucket per local day."""
        histogram = date_histogram("trace.timestamps.started_at", dates, "Europe/Amsterdam")

        assert histogram == {
            "field": "trace.timestamps.started_at",
            "calendar_interval": "1d",
            "min_doc_count": 0,
            "time_zone": "Europe/Amsterdam",
            "extended_bounds": {
                "min": to_epoch_ms(datetime(2024, 1, 1, tzinfo=UTC)),
                "max": to_epoch_ms(datetime(2024, 1, 15, tzinfo=UTC)) - 1,
            },
            "hard_bounds": {
                "min": to_epoch_ms(datetime(2024, 1, 1, tzinfo=UTC)),
                "max": to_epoch_ms(datetime(2024, 1, 15, tzinfo=UTC)) - 1,
            },
        }

    def test_exclusive_midnight_end_adds_no_bucket(self, dates):
        """A range ending at midnight stops inside the day before it."""
        bounds = date_histogram("ts", dates)["extended_bounds"]

        last_day = datetime(2024, 1, 14, tzinfo=UTC)
        assert to_epoch_ms(last_day) <= bounds["max"] < to_epoch_ms(last_day) + 86_400_000


class TestBuildFilterQuery:
    """Tests for build_filter_query."""

    def test_project_and_range(self, dates):
        """Every query is scoped to a project and the combined range."""
        query = build_filter_query("project-1", SharedFilters(), dates, "ts")

        assert query == {
            "bool": {
                "filter": [
                    {"term": {"trace.project_id": "project-1"}},
                    {
                        "range": {
                            "ts": {
                                "gte": dates.previous_period_start_ms,
                                "lt": dates.end_ms,
                                "format": "epoch_millis",
                            }
                        }
                    },
                ]
            }
        }

    def test_metadata_and_topic_filters(self, dates):
        """Non-empty filters become terms clauses."""
        filters = SharedFilters(
            topics=TopicFilters(topics=["billing"]),
            metadata=MetadataFilters(user_id=["u1", "u2"], labels=[], customer_id=["c1"]),
        )

        conditions = build_filter_query("project-1", filters, dates, "ts")["bool"]["filter"]

        assert {"terms": {"trace.metadata.user_id": ["u1", "u2"]}} in conditions
        assert {"terms": {"trace.metadata.customer_id": ["c1"]}} in conditions
        assert {"terms": {"trace.metadata.topics": ["billing"]}} in conditions
        assert not any("trace.metadata.labels" in c.get("terms", {}) for c in conditions)
