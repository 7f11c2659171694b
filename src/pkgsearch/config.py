from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseModel):
    """Application-specific configuration values."""

    name: str = "pkgsearch"
    env: str = "development"
    debug: bool = False
    port: int = 8000
    log_level: str = "INFO"
    log_json: bool = False
    # Transport settings for FastMCP: "stdio" (default), "http", or "sse"
    transport: Literal["stdio", "http", "sse"] = "stdio"
    host: str = "127.0.0.1"


class DatabaseConfig(BaseModel):
    """Generation ledger database. The ledger is disabled when no URL is set."""

    url: Optional[str] = None  # e.g. "postgresql+psycopg://user:password@db:5432/pkgsearch"
    echo: bool = False


class EngineConfig(BaseModel):
    """Search engine connection values."""

    backend: Literal["elasticsearch", "whoosh"] = "elasticsearch"
    url: str = "http://localhost:9200"
    username: Optional[str] = None
    password: Optional[str] = None
    verify_ssl: bool = True
    timeout: float = 30.0
    # Directory for the Whoosh backend; in-memory when unset
    whoosh_path: Optional[str] = None


class IndexingConfig(BaseModel):
    """Index build pipeline values."""

    package_path: str = "./nuget-data"
    index_prefix: str = "nusearch"
    live_alias: str = "nusearch"
    previous_alias: str = "nusearch-old"
    shards: int = 2
    replicas: int = 0
    batch_size: int = 1000
    max_parallelism: int = 4
    backoff_retries: int = 2
    backoff_time: float = 30.0  # seconds, fixed per attempt
    refresh_on_completed: bool = True
    retention: int = 2
    # Fail promotion instead of demoting every generation when the live alias
    # unexpectedly points at more than one index
    strict_single_live: bool = False
    max_documents: Optional[int] = None
    rebuild_interval_hours: float = 24.0


class SearchConfig(BaseModel):
    """Serving-side query values."""

    default_page_size: int = 25
    max_page_size: int = 100


class Settings(BaseSettings):
    """Top-level settings loaded from environment variables and .env only."""

    model_config = SettingsConfigDict(
        env_prefix="PKGSEARCH_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    app: AppConfig = AppConfig()
    database: DatabaseConfig = DatabaseConfig()
    engine: EngineConfig = EngineConfig()
    indexing: IndexingConfig = IndexingConfig()
    search: SearchConfig = SearchConfig()


def load_settings() -> Settings:
    """Load settings from environment variables and .env only."""
    return Settings()  # type: ignore[call-arg]
