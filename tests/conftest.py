from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

import pytest

from pkgsearch.engine.base import AliasAction, BulkResult, SearchEngine
from pkgsearch.exceptions import EngineError, TransientEngineError
from pkgsearch.index.schema import IndexDefinition
from pkgsearch.packages import Package, PackageAuthor, PackageDependency, PackageVersion
from pkgsearch.query.ast import SearchQuery


def make_package(
    pid: str,
    summary: str = "",
    downloads: int = 0,
    authors: Sequence[str] = (),
    updated: str = "2015-01-01T00:00:00Z",
    version: str = "1.0.0",
) -> Package:
    return Package(
        id=pid,
        summary=summary,
        download_count=downloads,
        authors=[PackageAuthor(a) for a in authors],
        versions=[
            PackageVersion(
                version=version,
                last_updated=datetime.fromisoformat(updated.replace("Z", "+00:00")).astimezone(timezone.utc),
                dependencies=(PackageDependency("Dep.Core", "[1.0, )", "net45"),),
            )
        ],
    )


class FakeEngine(SearchEngine):
    """In-memory engine recording every call, with injectable failures."""

    def __init__(self) -> None:
        self.indices: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.aliases: Dict[str, Set[str]] = {}
        self.bulk_calls: List[int] = []
        self.alias_updates: List[List[AliasAction]] = []
        self.refreshed: List[str] = []
        self.deleted: List[str] = []
        self.searches: List[SearchQuery] = []
        # Failure injection
        self.transient_bulk_failures = 0
        self.permanent_bulk_failure_on: Optional[int] = None
        self.create_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.undeletable: Set[str] = set()
        self.search_response: Dict[str, Any] = {
            "hits": {"total": {"value": 0}, "hits": []},
            "aggregations": {"authors": {"doc_count": 0, "author-names": {"buckets": []}}},
        }
        self.search_error: Optional[Exception] = None

    async def create_index(self, name: str, definition: IndexDefinition) -> None:
        if self.create_error is not None:
            raise self.create_error
        if name in self.indices:
            raise EngineError(f"index [{name}] already exists", status=400)
        self.indices[name] = {}

    async def bulk_index(self, index: str, documents: Sequence[Dict[str, Any]]) -> BulkResult:
        self.bulk_calls.append(len(documents))
        if self.permanent_bulk_failure_on == len(self.bulk_calls):
            raise EngineError("mapper_parsing_exception", status=400)
        if self.transient_bulk_failures > 0:
            self.transient_bulk_failures -= 1
            raise TransientEngineError("es_rejected_execution_exception", status=429)
        for doc in documents:
            self.indices[index][doc["id"]] = doc
        return BulkResult(indexed=len(documents))

    async def refresh(self, index: str) -> None:
        self.refreshed.append(index)

    async def count(self, index: str) -> int:
        return len(self.indices[index])

    async def list_indices(self, pattern: str) -> List[str]:
        prefix = pattern.rstrip("*")
        return sorted(n for n in self.indices if n.startswith(prefix))

    async def get_alias(self, alias: str) -> List[str]:
        return sorted(self.aliases.get(alias, ()))

    async def update_aliases(self, actions: Iterable[AliasAction]) -> None:
        actions = list(actions)
        if self.update_error is not None:
            raise self.update_error
        self.alias_updates.append(actions)
        for act in actions:
            bound = self.aliases.setdefault(act.alias, set())
            if act.action == "add":
                bound.add(act.index)
            else:
                bound.discard(act.index)

    async def delete_index(self, name: str) -> None:
        if name in self.undeletable:
            raise EngineError(f"cannot delete [{name}]", status=403)
        self.indices.pop(name, None)
        for bound in self.aliases.values():
            bound.discard(name)
        self.deleted.append(name)

    async def search(self, index: str, query: SearchQuery) -> Dict[str, Any]:
        self.searches.append(query)
        if self.search_error is not None:
            raise self.search_error
        return self.search_response


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def sample_packages() -> List[Package]:
    return [
        make_package("Newtonsoft.Json", "Json.NET is a popular high-performance JSON framework", 5_000_000, ["James Newton-King"], "2016-03-01T00:00:00Z"),
        make_package("Newtonsoft.Json.Bson", "BSON support for Json.NET", 900_000, ["James Newton-King"], "2017-06-01T00:00:00Z"),
        make_package("Json.Schema", "JSON schema validation for Json.NET", 20_000, ["Someone Else"], "2014-01-01T00:00:00Z"),
        make_package("EntityFramework", "Object relational mapper for .NET", 3_000_000, ["Microsoft"], "2015-05-01T00:00:00Z"),
    ]
