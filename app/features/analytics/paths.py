"""Typed aggregation paths.

An ``AggregationChain`` is the single source for both halves of a series:
``wrap()`` renders the nested Elasticsearch aggregation body and ``path()``
renders the route back down the executed response. Compilation and
extraction both consume the chain, so they cannot disagree on structure.

Paths render to the familiar ``>``-joined form for logs and for pipeline
``buckets_path`` values, e.g. ``model_group>child>buckets>back_to_root``.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

PATH_SEPARATOR = ">"
BUCKETS = "buckets"

# Characters Elasticsearch rejects in aggregation names
_FORBIDDEN_NAME_CHARS = re.compile(r"[\[\]>]")


def aggregation_name(*parts: str) -> str:
    """Join parts into a composite aggregation name.

    Caller-supplied parts (event types, check ids) are sanitized so the name
    stays valid inside an aggregation body and a ``buckets_path``.

    Example:
        >>> aggregation_name("event_score", "avg", "thumbs>up")
        'event_score/avg/thumbs_up'
    """
    return "/".join(_FORBIDDEN_NAME_CHARS.sub("_", part) for part in parts)


@dataclass(frozen=True)
class Key:
    """Descend into the child named ``name``."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class GroupBuckets:
    """Descend into each bucket of a multi-bucket aggregation."""

    def __str__(self) -> str:
        return BUCKETS


GROUP_BUCKETS = GroupBuckets()

PathSegment = Key | GroupBuckets


@dataclass(frozen=True)
class AggregationPath:
    """Ordered, typed route from a response node to a descendant."""

    segments: tuple[PathSegment, ...] = ()

    @classmethod
    def of(cls, *names: str) -> AggregationPath:
        """Build a path of plain keys."""
        return cls(tuple(Key(name) for name in names))

    def __add__(self, other: AggregationPath) -> AggregationPath:
        return AggregationPath(self.segments + other.segments)

    def __str__(self) -> str:
        return PATH_SEPARATOR.join(str(segment) for segment in self.segments)

    def __len__(self) -> int:
        return len(self.segments)

    @property
    def has_group_buckets(self) -> bool:
        """Whether the path crosses a multi-bucket aggregation."""
        return any(isinstance(segment, GroupBuckets) for segment in self.segments)

    def keys(self) -> tuple[str, ...]:
        """Return the key names of a path that crosses no bucket list.

        Raises:
            ValueError: If the path contains a group buckets marker.
        """
        if self.has_group_buckets:
            raise ValueError(f"Path '{self}' crosses a bucket list")
        return tuple(segment.name for segment in self.segments if isinstance(segment, Key))

    def split_at_buckets(self) -> tuple[AggregationPath, AggregationPath]:
        """Split at the single group buckets marker.

        Returns:
            Tuple of (path to the bucket container, path inside each bucket).

        Raises:
            ValueError: If the path does not contain exactly one marker.
        """
        markers = [i for i, s in enumerate(self.segments) if isinstance(s, GroupBuckets)]
        if len(markers) != 1:
            raise ValueError(
                f"Path '{self}' must contain exactly one '{BUCKETS}' marker, found {len(markers)}"
            )
        index = markers[0]
        return (
            AggregationPath(self.segments[:index]),
            AggregationPath(self.segments[index + 1 :]),
        )

    def buckets_path(self) -> str:
        """Render as an Elasticsearch pipeline ``buckets_path`` value."""
        return PATH_SEPARATOR.join(self.keys())


@dataclass(frozen=True)
class AggregationLayer:
    """One aggregation in a chain.

    Attributes:
        name: Aggregation name in the request and response.
        body: Aggregation definition without ``aggs``, e.g.
            ``{"nested": {"path": "spans"}}``.
        buckets: True for the multi-bucket layer whose buckets extraction
            iterates (terms, filters).
    """

    name: str
    body: Mapping[str, Any]
    buckets: bool = False


@dataclass(frozen=True)
class AggregationChain:
    """Linear stack of aggregations, outermost first."""

    layers: tuple[AggregationLayer, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.layers:
            raise ValueError("An aggregation chain needs at least one layer")

    @classmethod
    def of(cls, *layers: AggregationLayer) -> AggregationChain:
        """Build a chain from layers, outermost first."""
        return cls(tuple(layers))

    @property
    def bucket_layer_count(self) -> int:
        """Number of multi-bucket layers in the chain."""
        return sum(1 for layer in self.layers if layer.buckets)

    def wrap(self, inner: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Render the chain as an aggregation mapping.

        Args:
            inner: Aggregations to nest under the innermost layer.

        Returns:
            ``{outermost_name: {...body, "aggs": {...}}}``.
        """
        aggs: dict[str, Any] | None = dict(inner) if inner else None
        for layer in reversed(self.layers):
            node = copy.deepcopy(dict(layer.body))
            if aggs:
                node["aggs"] = aggs
            aggs = {layer.name: node}
        assert aggs is not None
        return aggs

    def path(self) -> AggregationPath:
        """Render the extraction path matching ``wrap()``."""
        segments: list[PathSegment] = []
        for layer in self.layers:
            segments.append(Key(layer.name))
            if layer.buckets:
                segments.append(GROUP_BUCKETS)
        return AggregationPath(tuple(segments))
