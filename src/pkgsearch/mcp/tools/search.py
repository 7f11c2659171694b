"""Package search tools for FastMCP.

Search failures become tool errors for the calling client; they never take
the server down.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from pkgsearch.exceptions import EngineError, SearchError
from pkgsearch.query.models import SearchRequest, SortMode

logger = logging.getLogger(__name__)


def register_search_tools(mcp: FastMCP, get_state: Callable[[], Any]) -> None:
    """Register search tools on the given FastMCP instance.

    The `get_state` callable should return an object with attributes
    `settings`, `engine` and `search_service`.
    """

    def _service(state_obj: Any) -> Any:
        service = getattr(state_obj, "search_service", None)
        if service is None:
            raise ToolError("Search is not configured. Set PKGSEARCH_ENGINE__URL or PKGSEARCH_ENGINE__BACKEND.")
        return service

    @mcp.tool
    async def search_packages(
        query: str = "",
        page: int = 1,
        page_size: Optional[int] = None,
        sort: str = "relevance",
        author: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Search packages by id and summary, ranked by relevance and popularity.

        Parameters
        ----------
        query: str
            Free text. An exact package id (any casing) ranks that package first.
        page: int
            1-indexed result page.
        page_size: int | None
            Hits per page (default from configuration).
        sort: str
            "relevance" (default), "downloads" or "recent".
        author: str | None
            Only packages with an author named exactly this.

        Returns hits, total, total_pages and author_facets (author -> count).
        """
        state = get_state()
        service = _service(state)
        size = page_size or state.settings.search.default_page_size
        try:
            request = SearchRequest(
                query=query,
                page=int(page),
                page_size=int(size),
                sort=SortMode(sort.lower()),
                author=author,
            )
            results = await service.search(request)
        except ValueError as exc:
            raise ToolError(f"Invalid search request: {exc}") from exc
        except SearchError as exc:
            logger.warning("Search failed: %s", exc)
            raise ToolError(f"Search is temporarily unavailable: {exc}") from exc
        return results.to_dict()

    @mcp.tool
    async def package_aliases() -> Dict[str, List[str]]:
        """Show which index generations the live and previous aliases point at."""
        state = get_state()
        engine = getattr(state, "engine", None)
        if engine is None:
            raise ToolError("Search is not configured.")
        cfg = state.settings.indexing
        try:
            return {
                "live": await engine.get_alias(cfg.live_alias),
                "previous": await engine.get_alias(cfg.previous_alias),
            }
        except EngineError as exc:
            raise ToolError(f"Could not read aliases: {exc}") from exc
