"""Connection setup for the generation ledger.

The ledger runs on PostgreSQL (psycopg driver) in deployments and on SQLite
for local runs and tests. Nothing else is accepted.
"""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pkgsearch.exceptions import ConfigError, StorageError

from .models import Base

_PSYCOPG = "postgresql+psycopg://"


def normalize_url(url: str) -> str:
    """Pin PostgreSQL URLs to psycopg; reject any other database."""
    if url.startswith("postgresql://"):
        return _PSYCOPG + url[len("postgresql://") :]
    if url.startswith((_PSYCOPG, "sqlite:")):
        return url
    raise ConfigError(f"Unsupported ledger database URL {url!r}; use postgresql+psycopg:// or sqlite://")


def open_ledger_database(url: str, *, echo: bool = False) -> sessionmaker[Session]:
    """Connect, create the ledger table if missing and return a session factory.

    Raises `ConfigError` for an unsupported URL and `StorageError` when the
    database cannot be reached or the table cannot be created.
    """
    engine: Engine = create_engine(normalize_url(url), echo=echo, pool_pre_ping=True)
    try:
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as exc:
        engine.dispose()
        raise StorageError(f"Could not initialize generation ledger: {exc}") from exc
    # records are read after the session closes
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
