"""Custom exception hierarchy for pkgsearch.

These exceptions allow callers to discriminate error categories
and handle them appropriately while preserving the original context.
Indexing-side errors are fatal for a build cycle; serving-side errors are
turned into error responses.
"""

from __future__ import annotations

from typing import Optional


class PkgSearchError(Exception):
    """Base class for all pkgsearch exceptions."""


class ConfigError(PkgSearchError):
    """Raised when configuration, schema or analyzer definitions are rejected."""


class ParsingError(PkgSearchError):
    """Raised when a source record is malformed (e.g., a package without an Id)."""


class EngineError(PkgSearchError):
    """Raised when the search engine rejects a request."""

    retryable = False

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class TransientEngineError(EngineError):
    """Engine busy or unreachable; the same request may succeed later."""

    retryable = True


class LoadError(PkgSearchError):
    """Raised when a bulk load aborts. The generation must not be promoted."""


class PromotionError(PkgSearchError):
    """Raised when alias rebinding fails. The previous live generation stays live."""


class SearchError(PkgSearchError):
    """Raised for query execution issues on the serving path."""


class ProtocolError(SearchError):
    """Raised when an engine response is structurally malformed."""


class StorageError(PkgSearchError):
    """Raised when the generation ledger encounters an error."""
