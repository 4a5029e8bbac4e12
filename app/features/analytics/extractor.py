"""Flatten nested aggregation responses back into per-day rows.

Extraction walks the ``CompiledQuery`` produced by the compiler. Any node
missing at a compiled path means the compiler and the response disagree;
that is a bug and aborts the whole response with
``ExtractionPathMismatchError`` instead of yielding partial numbers.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from app.core.exceptions import TracePulseError
from app.core.problem_details import ERROR_TYPES
from app.features.analytics.compiler import (
    DATE_HISTOGRAM_NAME,
    CompiledGroup,
    CompiledQuery,
    CompiledSeries,
)
from app.features.analytics.paths import BUCKETS, AggregationPath, Key

SeriesValues = dict[str, float | None]


class ExtractionPathMismatchError(TracePulseError):
    """The response does not contain a node the compiled query produces."""

    error_type_uri: str = ERROR_TYPES["EXTRACTION_PATH_MISMATCH"]

    def __init__(self, message: str, path: AggregationPath | str) -> None:
        super().__init__(
            message=message,
            code="EXTRACTION_PATH_MISMATCH",
            status_code=500,
            details={"path": str(path)},
        )


def resolve(node: Any, path: AggregationPath) -> Any:  # noqa: ANN401
    """Descend ``path`` from ``node``.

    Raises:
        ExtractionPathMismatchError: If a segment is missing or the path
            crosses a bucket list.
    """
    current = node
    for segment in path.segments:
        if not isinstance(segment, Key):
            raise ExtractionPathMismatchError(
                f"Path '{path}' crosses a bucket list where a single node is expected",
                path,
            )
        if not isinstance(current, Mapping) or segment.name not in current:
            raise ExtractionPathMismatchError(
                f"No '{segment.name}' node while resolving '{path}'",
                path,
            )
        current = current[segment.name]
    return current


def read_value(node: Any, path: AggregationPath) -> float | None:  # noqa: ANN401
    """Read the numeric ``value`` of the node at ``path``.

    ``None`` is a legitimate value (e.g. ``avg`` over no documents).
    """
    leaf = resolve(node, path)
    if not isinstance(leaf, Mapping) or "value" not in leaf:
        raise ExtractionPathMismatchError(f"Node at '{path}' has no value", path)
    value = leaf["value"]
    if value is not None and (isinstance(value, bool) or not isinstance(value, int | float)):
        raise ExtractionPathMismatchError(
            f"Node at '{path}' has a non-numeric value {value!r}", path
        )
    return value


def extract_series(bucket: Mapping[str, Any], series: Sequence[CompiledSeries]) -> SeriesValues:
    """Read every series value from one (date or group) bucket."""
    return {item.result_key: read_value(bucket, item.path) for item in series}


def _bucket_key(bucket: Any, path: AggregationPath) -> str:  # noqa: ANN401
    if not isinstance(bucket, Mapping):
        raise ExtractionPathMismatchError(f"Bucket at '{path}' is not an object", path)
    key = bucket.get("key_as_string", bucket.get("key"))
    if key is None:
        raise ExtractionPathMismatchError(f"Bucket at '{path}' has no key", path)
    return str(key)


def group_buckets(
    date_bucket: Mapping[str, Any], group: CompiledGroup
) -> list[tuple[str, Mapping[str, Any]]]:
    """Locate a date bucket's group buckets.

    Supports both bucket lists (terms: ``[{"key": ...}]``) and keyed bucket
    mappings (filters: ``{"name": {...}}``).

    Raises:
        ExtractionPathMismatchError: If no bucket container is found.
    """
    location = str(group.container_path + AggregationPath.of(BUCKETS))
    container = resolve(date_bucket, group.container_path)
    buckets = container.get(BUCKETS) if isinstance(container, Mapping) else None
    if buckets is None:
        raise ExtractionPathMismatchError(
            f"Could not find buckets for {group.id} groupBy at {location}",
            location,
        )

    if isinstance(buckets, list):
        return [(_bucket_key(bucket, group.container_path), bucket) for bucket in buckets]
    if isinstance(buckets, Mapping):
        return [(str(key), bucket) for key, bucket in buckets.items()]
    raise ExtractionPathMismatchError(
        f"Buckets for {group.id} groupBy at {location} are neither a list nor an object",
        location,
    )


class RunningTotals:
    """Accumulates cumulative series across consecutive date buckets.

    Totals are tracked per group key; a missing or null value adds zero.
    """

    def __init__(self, series: Sequence[CompiledSeries]) -> None:
        self._keys = {item.result_key for item in series if item.accumulate}
        self._totals: dict[tuple[str | None, str], float] = {}

    def reset(self) -> None:
        self._totals.clear()

    def apply(self, group_key: str | None, values: SeriesValues) -> SeriesValues:
        if not self._keys:
            return values
        for result_key in self._keys:
            total = self._totals.get((group_key, result_key), 0.0) + (values[result_key] or 0)
            self._totals[(group_key, result_key)] = total
            values[result_key] = total
        return values


def extract_timeseries(
    compiled: CompiledQuery,
    aggregations: Mapping[str, Any],
    period_length: int | None = None,
) -> list[dict[str, Any]]:
    """Flatten a store response into one row per date bucket.

    Args:
        compiled: The query the response was produced for.
        aggregations: The ``aggregations`` section of the store response.
        period_length: Rows per comparison period; running totals restart
            at each period boundary.

    Returns:
        Date-ordered rows, ``{"date": ..., "<result key>": value}`` or, when
        grouped, ``{"date": ..., "<group id>": {"<group key>": {...}}}``.

    Raises:
        ExtractionPathMismatchError: If the response does not match the query.
    """
    histogram_path = AggregationPath.of(DATE_HISTOGRAM_NAME, BUCKETS)
    date_buckets = resolve(aggregations, histogram_path)
    if not isinstance(date_buckets, list):
        raise ExtractionPathMismatchError("Date histogram buckets are not a list", histogram_path)
    for date_bucket in date_buckets:
        if not isinstance(date_bucket, Mapping):
            raise ExtractionPathMismatchError(
                f"Bucket at '{histogram_path}' is not an object", histogram_path
            )

    totals = RunningTotals(compiled.series)
    rows: list[dict[str, Any]] = []

    ordered = sorted(date_buckets, key=lambda bucket: bucket.get("key", 0))
    for index, date_bucket in enumerate(ordered):
        if period_length and index % period_length == 0:
            totals.reset()
        row: dict[str, Any] = {"date": _bucket_key(date_bucket, histogram_path)}

        if compiled.group is None:
            row.update(totals.apply(None, extract_series(date_bucket, compiled.series)))
        else:
            grouped: dict[str, SeriesValues] = {}
            for group_key, group_bucket in group_buckets(date_bucket, compiled.group):
                inner = resolve(group_bucket, compiled.group.bucket_path)
                grouped[group_key] = totals.apply(
                    group_key, extract_series(inner, compiled.series)
                )
            row[compiled.group.id] = grouped

        rows.append(row)

    return rows
