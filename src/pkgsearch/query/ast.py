"""Small query AST built by the query builder.

Relevance logic is expressed with these nodes and asserted on directly in
tests; `pkgsearch.query.dsl` turns them into Elasticsearch JSON and the
Whoosh backend evaluates them in process.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union


class Operator(str, Enum):
    OR = "or"
    AND = "and"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True, slots=True)
class MatchAll:
    boost: float = 1.0


@dataclass(frozen=True, slots=True)
class ExactMatch:
    """Match `text` against a single field, analyzed with that field's analyzer."""

    field: str
    text: str
    boost: float = 1.0


@dataclass(frozen=True, slots=True)
class FieldBoost:
    field: str
    boost: float = 1.0


@dataclass(frozen=True, slots=True)
class MultiFieldMatch:
    """Best-fields match over several boosted fields."""

    fields: Tuple[FieldBoost, ...]
    text: str
    operator: Operator = Operator.OR


@dataclass(frozen=True, slots=True)
class FunctionScore:
    """Multiply the inner score by ``min(field * factor, max_boost)``."""

    query: Query
    field: str
    factor: float
    max_boost: float
    missing: float = 0.0


@dataclass(frozen=True, slots=True)
class NestedFilter:
    """Exact term on a field of nested sub-documents; contributes no score."""

    path: str
    field: str
    value: str


@dataclass(frozen=True, slots=True)
class BoolQuery:
    """Boolean combinator.

    ``should`` clauses add their scores; at least one must match when there are
    no ``must``/``filter`` clauses. ``filter`` clauses never score.
    """

    should: Tuple[Query, ...] = ()
    must: Tuple[Query, ...] = ()
    filter: Tuple[Query, ...] = ()


Query = Union[MatchAll, ExactMatch, MultiFieldMatch, FunctionScore, NestedFilter, BoolQuery]


@dataclass(frozen=True, slots=True)
class ScoreSort:
    order: SortOrder = SortOrder.DESC


@dataclass(frozen=True, slots=True)
class FieldSort:
    """Sort on a field; nested fields reduce their values with `mode`."""

    field: str
    order: SortOrder = SortOrder.DESC
    nested_path: Optional[str] = None
    mode: Optional[str] = None


Sort = Union[ScoreSort, FieldSort]


@dataclass(frozen=True, slots=True)
class NestedTermsAggregation:
    """Bucket nested sub-documents by the exact value of `field`.

    Each bucket also carries the number of distinct top-level documents under
    `count_name`, which is what the buckets are ordered by.
    """

    name: str
    path: str
    terms_name: str
    field: str
    size: int = 10
    count_name: str = "packages"


@dataclass(frozen=True, slots=True)
class SearchQuery:
    """A complete search request against one index or alias."""

    query: Query
    from_: int = 0
    size: int = 10
    sort: Tuple[Sort, ...] = ()
    aggregations: Tuple[NestedTermsAggregation, ...] = ()
