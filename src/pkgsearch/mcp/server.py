"""pkgsearch MCP server entrypoint using FastMCP.

Exposes package search over the live alias as MCP tools.
Run with:
  - pkgsearch-mcp
  - or: python -m pkgsearch.mcp.server (ensure PYTHONPATH includes ./src)
"""
from __future__ import annotations

from typing import Optional

from fastmcp import FastMCP

from pkgsearch.config import Settings, load_settings
from pkgsearch.engine import SearchEngine, create_engine
from pkgsearch.logging_config import configure_logging
from pkgsearch.mcp.tools import register_search_tools
from pkgsearch.query.service import PackageSearchService


class AppState:
    """Application state shared by MCP tools."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.engine: Optional[SearchEngine] = None
        self.search_service: Optional[PackageSearchService] = None

    def init_engine(self) -> None:
        """Initialize the engine backend and search service from configuration."""
        self.engine = create_engine(self.settings.engine)
        self.search_service = PackageSearchService(
            self.engine,
            alias=self.settings.indexing.live_alias,
            max_page_size=self.settings.search.max_page_size,
        )


# Global state and server instance
_state: Optional[AppState] = None
mcp = FastMCP("pkgsearch")


# ----- Tools -----

@mcp.tool
def health() -> str:
    """Simple health check tool."""
    return "ok"


# ----- Entrypoint -----

def main() -> None:
    """Initialize state and run the MCP server."""
    global _state
    settings = load_settings()
    configure_logging(settings.app.log_level, settings.app.log_json)
    _state = AppState(settings)
    _state.init_engine()
    register_search_tools(mcp, get_state=lambda: _state)
    # Choose transport based on configuration: stdio (default), http, or sse
    transport = settings.app.transport
    if transport in ("http", "sse"):
        mcp.run(transport=transport, host=settings.app.host, port=settings.app.port)
    else:
        mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()
