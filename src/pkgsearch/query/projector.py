"""Map a raw engine search response into `SearchResults`."""

from __future__ import annotations

import math
from typing import Any, Dict, List

from pkgsearch.exceptions import ParsingError, ProtocolError
from pkgsearch.packages import Package
from pkgsearch.query.builder import AUTHOR_FACET
from pkgsearch.query.models import SearchRequest, SearchResults


def _total(hits: Dict[str, Any]) -> int:
    total = hits.get("total")
    if isinstance(total, dict):
        total = total.get("value")
    if isinstance(total, bool) or not isinstance(total, int) or total < 0:
        raise ProtocolError(f"Malformed hits.total: {hits.get('total')!r}")
    return total


def _author_facets(response: Dict[str, Any]) -> Dict[str, int]:
    aggs = response.get("aggregations")
    if aggs is None:
        raise ProtocolError("Search response has no aggregations")
    try:
        buckets = aggs[AUTHOR_FACET.name][AUTHOR_FACET.terms_name]["buckets"]
        facets: Dict[str, int] = {}
        for b in buckets:
            # packages per author; older responses only carry the nested count
            packages = b.get(AUTHOR_FACET.count_name)
            count = packages["doc_count"] if packages is not None else b["doc_count"]
            facets[str(b["key"])] = int(count)
        return facets
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ProtocolError(f"Malformed author aggregation: {exc}") from exc


def project(response: Dict[str, Any], request: SearchRequest) -> SearchResults:
    """Project hits, totals and author buckets.

    Raises `ProtocolError` when the response does not have the expected shape;
    a malformed response never turns into an empty result.
    """
    if not isinstance(response, dict) or not isinstance(response.get("hits"), dict):
        raise ProtocolError("Search response has no hits object")
    hits = response["hits"]
    total = _total(hits)
    raw_hits = hits.get("hits")
    if not isinstance(raw_hits, list):
        raise ProtocolError("Search response hits.hits is not a list")

    packages: List[Package] = []
    for hit in raw_hits:
        source = hit.get("_source") if isinstance(hit, dict) else None
        try:
            packages.append(Package.from_document(source))  # type: ignore[arg-type]
        except ParsingError as exc:
            raise ProtocolError(f"Undecodable hit source: {exc}") from exc

    return SearchResults(
        hits=packages,
        total=total,
        total_pages=math.ceil(total / request.page_size),
        author_facets=_author_facets(response),
    )
