"""Serving path: build the query, run it against the live alias, project it."""

from __future__ import annotations

import logging
import time

from pkgsearch.engine.base import SearchEngine
from pkgsearch.exceptions import EngineError, SearchError
from pkgsearch.query.builder import build_query
from pkgsearch.query.models import SearchRequest, SearchResults
from pkgsearch.query.projector import project

logger = logging.getLogger(__name__)


class PackageSearchService:
    """Stateless package search against a stable alias.

    The alias is the only thing the serving path knows about the index; which
    generation it resolves to is decided by the indexing pipeline.
    """

    def __init__(self, engine: SearchEngine, *, alias: str, max_page_size: int = 100) -> None:
        self._engine = engine
        self.alias = alias
        self.max_page_size = max_page_size

    async def search(self, request: SearchRequest) -> SearchResults:
        """Run one search.

        Raises `ValueError` for invalid paging and `SearchError` when the engine
        fails or answers with a malformed response.
        """
        if request.page_size > self.max_page_size:
            raise ValueError(f"page_size must be <= {self.max_page_size}, got {request.page_size}")
        started = time.perf_counter()
        try:
            response = await self._engine.search(self.alias, build_query(request))
        except EngineError as exc:
            raise SearchError(f"Search against {self.alias} failed: {exc}") from exc
        results = project(response, request)
        logger.debug(
            "Search %r page %d returned %d of %d hits in %.1fms",
            request.query,
            request.page,
            len(results.hits),
            results.total,
            (time.perf_counter() - started) * 1000,
        )
        return results
