"""Serialize the query AST into the Elasticsearch query DSL."""

from __future__ import annotations

from typing import Any, Dict

from pkgsearch.query.ast import (
    BoolQuery,
    ExactMatch,
    FieldSort,
    FunctionScore,
    MatchAll,
    MultiFieldMatch,
    NestedFilter,
    NestedTermsAggregation,
    Query,
    ScoreSort,
    SearchQuery,
    Sort,
)


def query_to_dsl(node: Query) -> Dict[str, Any]:
    if isinstance(node, MatchAll):
        return {"match_all": {"boost": node.boost}} if node.boost != 1.0 else {"match_all": {}}
    if isinstance(node, ExactMatch):
        return {"match": {node.field: {"query": node.text, "boost": node.boost}}}
    if isinstance(node, MultiFieldMatch):
        return {
            "multi_match": {
                "query": node.text,
                "fields": [f"{f.field}^{f.boost:g}" for f in node.fields],
                "operator": node.operator.value,
            }
        }
    if isinstance(node, FunctionScore):
        return {
            "function_score": {
                "query": query_to_dsl(node.query),
                "functions": [
                    {
                        "field_value_factor": {
                            "field": node.field,
                            "factor": node.factor,
                            "missing": node.missing,
                        }
                    }
                ],
                "max_boost": node.max_boost,
                "boost_mode": "multiply",
            }
        }
    if isinstance(node, NestedFilter):
        return {
            "nested": {
                "path": node.path,
                "query": {"bool": {"filter": [{"term": {node.field: node.value}}]}},
            }
        }
    if isinstance(node, BoolQuery):
        body: Dict[str, Any] = {}
        if node.should:
            body["should"] = [query_to_dsl(q) for q in node.should]
        if node.must:
            body["must"] = [query_to_dsl(q) for q in node.must]
        if node.filter:
            body["filter"] = [query_to_dsl(q) for q in node.filter]
        return {"bool": body}
    raise TypeError(f"Unsupported query node: {type(node).__name__}")


def sort_to_dsl(node: Sort) -> Any:
    if isinstance(node, ScoreSort):
        return {"_score": {"order": node.order.value}}
    if isinstance(node, FieldSort):
        spec: Dict[str, Any] = {"order": node.order.value}
        if node.nested_path:
            spec["nested"] = {"path": node.nested_path}
        if node.mode:
            spec["mode"] = node.mode
        return {node.field: spec}
    raise TypeError(f"Unsupported sort node: {type(node).__name__}")


def aggregation_to_dsl(node: NestedTermsAggregation) -> Dict[str, Any]:
    return {
        "nested": {"path": node.path},
        "aggs": {
            node.terms_name: {
                "terms": {"field": node.field, "size": node.size, "order": {node.count_name: "desc"}},
                "aggs": {node.count_name: {"reverse_nested": {}}},
            }
        },
    }


def to_dsl(search: SearchQuery) -> Dict[str, Any]:
    """Render a full ``_search`` request body."""
    body: Dict[str, Any] = {
        "query": query_to_dsl(search.query),
        "from": search.from_,
        "size": search.size,
        "track_total_hits": True,
    }
    if search.sort:
        body["sort"] = [sort_to_dsl(s) for s in search.sort]
    if search.aggregations:
        body["aggs"] = {a.name: aggregation_to_dsl(a) for a in search.aggregations}
    return body
