"""Search engine backends and the factory selecting one from settings."""

from __future__ import annotations

from pkgsearch.config import EngineConfig
from pkgsearch.engine.base import AliasAction, BulkResult, SearchEngine
from pkgsearch.engine.elasticsearch import ElasticsearchEngine
from pkgsearch.engine.whoosh_engine import WhooshEngine
from pkgsearch.exceptions import ConfigError


def create_engine(cfg: EngineConfig) -> SearchEngine:
    """Build the configured engine backend."""
    if cfg.backend == "elasticsearch":
        return ElasticsearchEngine(
            base_url=cfg.url,
            username=cfg.username,
            password=cfg.password,
            verify_ssl=cfg.verify_ssl,
            timeout=cfg.timeout,
        )
    if cfg.backend == "whoosh":
        return WhooshEngine(cfg.whoosh_path)
    raise ConfigError(f"Unknown engine backend: {cfg.backend!r}")


__all__ = [
    "AliasAction",
    "BulkResult",
    "ElasticsearchEngine",
    "SearchEngine",
    "WhooshEngine",
    "create_engine",
]
