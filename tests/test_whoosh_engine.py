import asyncio
from pathlib import Path
from typing import List

import pytest

from pkgsearch.engine.base import AliasAction
from pkgsearch.engine.whoosh_engine import WhooshEngine
from pkgsearch.exceptions import EngineError
from pkgsearch.index.schema import package_index_definition
from pkgsearch.packages import Package
from pkgsearch.query.builder import build_query
from pkgsearch.query.models import SearchRequest, SortMode
from pkgsearch.query.service import PackageSearchService

from conftest import make_package


async def make_live(engine: WhooshEngine, name: str, packages: List[Package], alias: str = "nusearch") -> None:
    await engine.create_index(name, package_index_definition())
    await engine.bulk_index(name, [p.to_document() for p in packages])
    await engine.update_aliases([AliasAction("add", name, alias)])


def ids(results) -> List[str]:
    return [p.id for p in results.hits]


@pytest.mark.asyncio
async def test_exact_id_ranks_first_regardless_of_popularity(sample_packages: List[Package]) -> None:
    engine = WhooshEngine()
    await make_live(engine, "nusearch-1", sample_packages)
    service = PackageSearchService(engine, alias="nusearch")

    results = await service.search(SearchRequest(query="json.schema"))
    assert ids(results)[0] == "Json.Schema"

    results = await service.search(SearchRequest(query="NEWTONSOFT.JSON"))
    assert ids(results)[0] == "Newtonsoft.Json"
    assert "Newtonsoft.Json.Bson" in ids(results)


@pytest.mark.asyncio
async def test_text_match_requires_all_terms_and_uses_popularity() -> None:
    packages = [
        make_package("Alpha.Logging", "structured logging", 5_000),
        make_package("Beta.Logging", "structured logging", 20_000),
        make_package("Gamma.Tracing", "structured tracing", 9_000_000),
    ]
    engine = WhooshEngine()
    await make_live(engine, "nusearch-1", packages)
    service = PackageSearchService(engine, alias="nusearch")

    results = await service.search(SearchRequest(query="structured logging"))
    assert ids(results) == ["Beta.Logging", "Alpha.Logging"]
    assert results.total == 2


@pytest.mark.asyncio
async def test_popularity_boost_is_capped() -> None:
    packages = [
        make_package("Alpha.Logging", "structured logging", 5_000_000),
        make_package("Beta.Logging", "structured logging", 500_000),
        make_package("Gamma.Logging", "structured logging", 100_000),
    ]
    engine = WhooshEngine()
    await make_live(engine, "nusearch-1", packages)

    response = await engine.search("nusearch", build_query(SearchRequest(query="logging")))
    scores = {h["_id"]: h["_score"] for h in response["hits"]["hits"]}
    assert scores["Alpha.Logging"] == pytest.approx(scores["Beta.Logging"])
    assert scores["Gamma.Logging"] < scores["Beta.Logging"]


@pytest.mark.asyncio
async def test_zero_downloads_only_match_through_exact_id() -> None:
    packages = [make_package("Quiet.Package", "rarely used", 0), make_package("Other", "rarely used", 10)]
    engine = WhooshEngine()
    await make_live(engine, "nusearch-1", packages)
    service = PackageSearchService(engine, alias="nusearch")

    results = await service.search(SearchRequest(query="quiet.package"))
    assert ids(results)[0] == "Quiet.Package"


@pytest.mark.asyncio
async def test_sort_modes(sample_packages: List[Package]) -> None:
    engine = WhooshEngine()
    await make_live(engine, "nusearch-1", sample_packages)
    service = PackageSearchService(engine, alias="nusearch")

    by_downloads = await service.search(SearchRequest(sort=SortMode.DOWNLOADS))
    assert ids(by_downloads) == ["Newtonsoft.Json", "EntityFramework", "Newtonsoft.Json.Bson", "Json.Schema"]

    recent = await service.search(SearchRequest(sort=SortMode.RECENT))
    assert ids(recent) == ["Newtonsoft.Json.Bson", "Newtonsoft.Json", "EntityFramework", "Json.Schema"]


@pytest.mark.asyncio
async def test_empty_query_matches_everything_and_paginates(sample_packages: List[Package]) -> None:
    engine = WhooshEngine()
    await make_live(engine, "nusearch-1", sample_packages)
    service = PackageSearchService(engine, alias="nusearch")

    first = await service.search(SearchRequest(page=1, page_size=3, sort=SortMode.DOWNLOADS))
    second = await service.search(SearchRequest(page=2, page_size=3, sort=SortMode.DOWNLOADS))
    beyond = await service.search(SearchRequest(page=9, page_size=3))
    assert first.total == second.total == beyond.total == 4
    assert first.total_pages == 2
    assert len(first.hits) == 3
    assert ids(second) == ["Json.Schema"]
    assert beyond.hits == []


@pytest.mark.asyncio
async def test_author_filter_and_facets(sample_packages: List[Package]) -> None:
    engine = WhooshEngine()
    await make_live(engine, "nusearch-1", sample_packages)
    service = PackageSearchService(engine, alias="nusearch")

    everything = await service.search(SearchRequest())
    assert everything.author_facets == {"James Newton-King": 2, "Microsoft": 1, "Someone Else": 1}
    assert list(everything.author_facets)[0] == "James Newton-King"

    filtered = await service.search(SearchRequest(query="json", author="James Newton-King"))
    assert set(ids(filtered)) == {"Newtonsoft.Json", "Newtonsoft.Json.Bson"}
    assert filtered.author_facets == {"James Newton-King": 2}

    nobody = await service.search(SearchRequest(author="Nobody"))
    assert nobody.total == 0
    assert nobody.author_facets == {}


@pytest.mark.asyncio
async def test_author_names_with_commas_filter_exactly() -> None:
    packages = [
        make_package("EntityFramework", "orm", 3_000_000, ["Microsoft, Inc."]),
        make_package("Microsoft.Extensions", "hosting", 1_000, ["Microsoft"]),
    ]
    engine = WhooshEngine()
    await make_live(engine, "nusearch-1", packages)
    service = PackageSearchService(engine, alias="nusearch")

    everything = await service.search(SearchRequest())
    assert everything.author_facets == {"Microsoft, Inc.": 1, "Microsoft": 1}

    filtered = await service.search(SearchRequest(author="Microsoft, Inc."))
    assert filtered.total == 1
    assert ids(filtered) == ["EntityFramework"]

    plain = await service.search(SearchRequest(author="Microsoft"))
    assert ids(plain) == ["Microsoft.Extensions"]


@pytest.mark.asyncio
async def test_facets_count_each_package_once(sample_packages: List[Package]) -> None:
    packages = sample_packages + [make_package("Twice.Listed", "json", 5, ["Ann", "Ann", "Bob"])]
    engine = WhooshEngine()
    await make_live(engine, "nusearch-1", packages)
    service = PackageSearchService(engine, alias="nusearch")

    results = await service.search(SearchRequest(author="Ann"))
    assert results.total == 1
    assert results.author_facets == {"Ann": 1, "Bob": 1}

    # single-author packages: one bucket entry per package
    single = await service.search(SearchRequest(query="json", author="James Newton-King"))
    assert sum(single.author_facets.values()) == single.total

    response = await engine.search("nusearch", build_query(SearchRequest(author="Ann")))
    bucket = response["aggregations"]["authors"]["author-names"]["buckets"][0]
    assert bucket["key"] == "Ann"
    assert bucket["doc_count"] == 2
    assert bucket["packages"] == {"doc_count": 1}


@pytest.mark.asyncio
async def test_concurrent_bulk_batches_all_land() -> None:
    engine = WhooshEngine()
    await engine.create_index("nusearch-1", package_index_definition())
    batches = [
        [make_package(f"Pkg.{b}.{i}", downloads=i).to_document() for i in range(20)]
        for b in range(6)
    ]
    results = await asyncio.gather(*(engine.bulk_index("nusearch-1", batch) for batch in batches))
    assert sum(r.indexed for r in results) == 120
    assert await engine.count("nusearch-1") == 120


@pytest.mark.asyncio
async def test_reindexing_same_id_replaces_document() -> None:
    engine = WhooshEngine()
    await engine.create_index("nusearch-1", package_index_definition())
    await engine.bulk_index("nusearch-1", [make_package("Foo", downloads=1).to_document()])
    await engine.bulk_index("nusearch-1", [make_package("Foo", downloads=2).to_document()])
    assert await engine.count("nusearch-1") == 1


@pytest.mark.asyncio
async def test_alias_updates_are_all_or_nothing() -> None:
    engine = WhooshEngine()
    await engine.create_index("nusearch-1", package_index_definition())
    await engine.update_aliases([AliasAction("add", "nusearch-1", "nusearch")])

    with pytest.raises(EngineError):
        await engine.update_aliases(
            [
                AliasAction("remove", "nusearch-1", "nusearch"),
                AliasAction("add", "nusearch-missing", "nusearch"),
            ]
        )
    assert await engine.get_alias("nusearch") == ["nusearch-1"]

    with pytest.raises(EngineError):
        await engine.create_index("nusearch-1", package_index_definition())


@pytest.mark.asyncio
async def test_delete_unbinds_and_unknown_index_errors() -> None:
    engine = WhooshEngine()
    await engine.create_index("nusearch-1", package_index_definition())
    await engine.update_aliases([AliasAction("add", "nusearch-1", "nusearch-old")])
    await engine.delete_index("nusearch-1")
    assert await engine.get_alias("nusearch-old") == []
    assert await engine.list_indices("nusearch-*") == []
    with pytest.raises(EngineError) as info:
        await engine.search("nusearch", build_query(SearchRequest()))
    assert info.value.status == 404


@pytest.mark.asyncio
async def test_generations_and_aliases_persist_on_disk(tmp_path: Path, sample_packages: List[Package]) -> None:
    engine = WhooshEngine(str(tmp_path))
    await make_live(engine, "nusearch-20240101000000000000", sample_packages)

    reopened = WhooshEngine(str(tmp_path))
    assert await reopened.list_indices("nusearch-*") == ["nusearch-20240101000000000000"]
    assert await reopened.get_alias("nusearch") == ["nusearch-20240101000000000000"]
    assert await reopened.count("nusearch") == 4

    await reopened.delete_index("nusearch-20240101000000000000")
    assert not (tmp_path / "nusearch-20240101000000000000").exists()
