"""Compose the ranked package query from a search request.

Two scoring branches are OR-ed together:

* exact identifier: the case-insensitive keyword form of ``id`` matched with a
  large boost, so typing a package id puts that package first;
* relevance + popularity: a best-fields AND match on ``id`` and ``summary``
  multiplied by ``download_count * 0.0001``, capped at 50 so very popular
  packages cannot drown out text relevance.

An author facet value becomes a non-scoring nested filter.
"""

from __future__ import annotations

from typing import Tuple

from pkgsearch.query.ast import (
    BoolQuery,
    ExactMatch,
    FieldBoost,
    FieldSort,
    FunctionScore,
    MatchAll,
    MultiFieldMatch,
    NestedFilter,
    NestedTermsAggregation,
    Operator,
    Query,
    ScoreSort,
    SearchQuery,
    Sort,
    SortOrder,
)
from pkgsearch.query.models import SearchRequest, SortMode

EXACT_ID_FIELD = "id.keyword"
EXACT_ID_BOOST = 1000.0
TEXT_FIELDS = (FieldBoost("id", 1.5), FieldBoost("summary", 0.8))
POPULARITY_FIELD = "download_count"
POPULARITY_FACTOR = 0.0001
POPULARITY_MAX_BOOST = 50.0
AUTHOR_PATH = "authors"
AUTHOR_RAW_FIELD = "authors.name.raw"
LAST_UPDATED_FIELD = "versions.last_updated"

AUTHOR_FACET = NestedTermsAggregation(
    name="authors",
    path=AUTHOR_PATH,
    terms_name="author-names",
    field=AUTHOR_RAW_FIELD,
)


def relevance_query(text: str) -> Query:
    text = (text or "").strip()
    if not text:
        return MatchAll()
    exact = ExactMatch(EXACT_ID_FIELD, text, boost=EXACT_ID_BOOST)
    popular = FunctionScore(
        query=MultiFieldMatch(TEXT_FIELDS, text, operator=Operator.AND),
        field=POPULARITY_FIELD,
        factor=POPULARITY_FACTOR,
        max_boost=POPULARITY_MAX_BOOST,
    )
    return BoolQuery(should=(exact, popular))


def sort_for(mode: SortMode) -> Tuple[Sort, ...]:
    if mode is SortMode.DOWNLOADS:
        return (FieldSort(POPULARITY_FIELD, SortOrder.DESC),)
    if mode is SortMode.RECENT:
        return (FieldSort(LAST_UPDATED_FIELD, SortOrder.DESC, nested_path="versions", mode="max"),)
    return (ScoreSort(SortOrder.DESC),)


def build_query(request: SearchRequest) -> SearchQuery:
    """Build the full search (query, page window, sort, author facet)."""
    query = relevance_query(request.query)
    author = (request.author or "").strip()
    if author:
        query = BoolQuery(
            must=(query,),
            filter=(NestedFilter(AUTHOR_PATH, AUTHOR_RAW_FIELD, author),),
        )
    return SearchQuery(
        query=query,
        from_=(request.page - 1) * request.page_size,
        size=request.page_size,
        sort=sort_for(SortMode(request.sort)),
        aggregations=(AUTHOR_FACET,),
    )
