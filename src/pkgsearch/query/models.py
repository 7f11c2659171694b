"""Request and result shapes of the serving path."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pkgsearch.packages import Package


class SortMode(str, Enum):
    RELEVANCE = "relevance"
    DOWNLOADS = "downloads"
    RECENT = "recent"


@dataclass(frozen=True, slots=True)
class SearchRequest:
    """A user search: free text, 1-indexed page, sort and optional author facet."""

    query: str = ""
    page: int = 1
    page_size: int = 25
    sort: SortMode = SortMode.RELEVANCE
    author: Optional[str] = None

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValueError(f"page must be >= 1, got {self.page}")
        if self.page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {self.page_size}")


@dataclass(slots=True)
class SearchResults:
    hits: List[Package] = field(default_factory=list)
    total: int = 0
    total_pages: int = 0
    author_facets: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hits": [p.to_document() for p in self.hits],
            "total": self.total,
            "total_pages": self.total_pages,
            "author_facets": dict(self.author_facets),
        }
