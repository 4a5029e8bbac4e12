"""Document store boundary for analytics queries."""

from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any, Protocol

from elasticsearch import ApiError, AsyncElasticsearch, ConnectionTimeout
from elasticsearch import ConnectionError as ESConnectionError

from app.core.config import get_settings
from app.core.elasticsearch import get_client
from app.core.exceptions import StoreUnavailableError
from app.core.logging import get_logger

logger = get_logger(__name__)

# Statuses that mean "try again later" rather than "bad query"
TRANSIENT_STATUSES = frozenset({429, 502, 503, 504})


class AnalyticsStore(Protocol):
    """Executes aggregation searches."""

    async def search(
        self,
        *,
        query: dict[str, Any],
        aggregations: dict[str, Any],
    ) -> Mapping[str, Any]:
        """Run a size-0 search and return its ``aggregations`` section."""
        ...


class ElasticsearchAnalyticsStore:
    """AnalyticsStore backed by the traces pivot index.

    Transport failures and overload responses surface as
    ``StoreUnavailableError``; nothing is retried here.
    """

    def __init__(self, client: AsyncElasticsearch, index: str) -> None:
        self.client = client
        self.index = index

    async def search(
        self,
        *,
        query: dict[str, Any],
        aggregations: dict[str, Any],
    ) -> Mapping[str, Any]:
        """Run a size-0 aggregation search.

        Args:
            query: Query clause.
            aggregations: Aggregations to compute.

        Returns:
            The response's ``aggregations`` section.

        Raises:
            StoreUnavailableError: On connection errors, timeouts and
                overload statuses.
        """
        started = time.perf_counter()
        try:
            response = await self.client.search(
                index=self.index,
                query=query,
                aggs=aggregations,
                size=0,
            )
        except (ESConnectionError, ConnectionTimeout) as exc:
            logger.warning(
                "analytics.store_unreachable",
                index=self.index,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise StoreUnavailableError(
                "Document store is unreachable",
                details={"index": self.index, "error_type": type(exc).__name__},
            ) from exc
        except ApiError as exc:
            if exc.meta.status not in TRANSIENT_STATUSES:
                raise
            logger.warning(
                "analytics.store_overloaded",
                index=self.index,
                status_code=exc.meta.status,
            )
            raise StoreUnavailableError(
                "Document store is temporarily unavailable",
                details={"index": self.index, "status_code": exc.meta.status},
            ) from exc

        body = response.body
        logger.info(
            "analytics.store_search_completed",
            index=self.index,
            took_ms=body.get("took"),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        aggs: Mapping[str, Any] = body.get("aggregations") or {}
        return aggs


def get_analytics_store() -> AnalyticsStore:
    """Dependency providing the Elasticsearch-backed store."""
    settings = get_settings()
    return ElasticsearchAnalyticsStore(get_client(), settings.elasticsearch_traces_index)
