"""Abstract search engine interface for index generations and queries.

Defines the minimal surface the indexing pipeline and the search service need
from a backend (Elasticsearch over REST, Whoosh in process), so both can be
swapped and faked in tests via a common contract.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal, Sequence

from pkgsearch.index.schema import IndexDefinition
from pkgsearch.query.ast import SearchQuery


@dataclass(frozen=True, slots=True)
class AliasAction:
    """One binding change inside an atomic alias update."""

    action: Literal["add", "remove"]
    index: str
    alias: str

    def to_dict(self) -> Dict[str, Any]:
        return {self.action: {"index": self.index, "alias": self.alias}}


@dataclass(frozen=True, slots=True)
class BulkResult:
    indexed: int
    took_ms: int = 0


class SearchEngine(ABC):
    """Abstract interface for search engine backends."""

    @abstractmethod
    async def create_index(self, name: str, definition: IndexDefinition) -> None:
        """Create an index with settings, analysis and mappings."""

    @abstractmethod
    async def bulk_index(self, index: str, documents: Sequence[Dict[str, Any]]) -> BulkResult:
        """Index a batch of documents keyed by their ``id``.

        Raises `TransientEngineError` when the whole batch may be retried.
        """

    @abstractmethod
    async def refresh(self, index: str) -> None:
        """Make all indexed documents searchable."""

    @abstractmethod
    async def count(self, index: str) -> int:
        """Number of searchable documents in an index or alias."""

    @abstractmethod
    async def list_indices(self, pattern: str) -> List[str]:
        """Index names matching a glob pattern (``nusearch-*``)."""

    @abstractmethod
    async def get_alias(self, alias: str) -> List[str]:
        """Names of indices bound to `alias` (empty when unbound)."""

    @abstractmethod
    async def update_aliases(self, actions: Iterable[AliasAction]) -> None:
        """Apply all alias actions atomically."""

    @abstractmethod
    async def delete_index(self, name: str) -> None:
        """Permanently delete an index."""

    @abstractmethod
    async def search(self, index: str, query: SearchQuery) -> Dict[str, Any]:
        """Execute a search and return an Elasticsearch-shaped response."""
        raise NotImplementedError
