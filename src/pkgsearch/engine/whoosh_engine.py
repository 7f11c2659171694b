"""In-process search engine backed by Whoosh.

Each generation is its own Whoosh index (in RAM, or one directory per
generation under `path`). Aliases live next to them in ``aliases.json``,
replaced atomically on every update. Nested sub-documents are flattened into
multi-valued fields, which gives the same answers as true nested queries for
the single-term filters and aggregations the search service issues.

The query AST is evaluated clause by clause with BM25F scoring, and responses
mirror the Elasticsearch ``_search`` shape so the projector works unchanged.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
import os
import shutil
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from whoosh import scoring
from whoosh.analysis import RegexTokenizer
from whoosh.fields import DATETIME, ID, NUMERIC, STORED, TEXT, Schema
from whoosh.filedb.filestore import FileStorage, RamStorage
from whoosh.index import Index
from whoosh.query import And, Or, Term

from pkgsearch.engine.base import AliasAction, BulkResult, SearchEngine
from pkgsearch.exceptions import ConfigError, EngineError
from pkgsearch.index.analysis import build_whoosh_analyzer
from pkgsearch.index.schema import FieldType, IndexDefinition, LeafField, iter_leaf_fields
from pkgsearch.packages import parse_timestamp
from pkgsearch.query.ast import (
    BoolQuery,
    ExactMatch,
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

logger = logging.getLogger(__name__)

DOC_ID = "doc_id"
SOURCE = "source_json"
ALIASES_FILE = "aliases.json"
LAYOUT_FILE = "layout.json"
# Joins nested keyword values; never occurs in package metadata
VALUE_SEPARATOR = "\x1f"


def _field_name(path: str) -> str:
    return path.replace(".", "__")


def _values_at(doc: Any, path: str) -> List[Any]:
    """Collect every value at a dotted path, descending through lists."""
    current = [doc]
    for part in path.split("."):
        nxt: List[Any] = []
        for item in current:
            if isinstance(item, list):
                item_list = item
            else:
                item_list = [item]
            for it in item_list:
                if isinstance(it, dict) and it.get(part) is not None:
                    value = it[part]
                    nxt.extend(value if isinstance(value, list) else [value])
        current = nxt
    return current


@dataclass(frozen=True, slots=True)
class _Leaf:
    path: str
    source_path: str
    type: str
    nested_path: Optional[str]

    @property
    def field(self) -> str:
        return _field_name(self.path)


@dataclass(slots=True)
class _Generation:
    index: Index
    leaves: Dict[str, _Leaf]
    directory: Optional[Path] = None
    # Whoosh allows one writer per index at a time
    write_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


@dataclass(slots=True)
class _Hit:
    index: str
    docnum: int
    score: float
    source: Dict[str, Any]


def _whoosh_field(leaf: LeafField, definition: IndexDefinition):
    d = leaf.descriptor
    multi = leaf.nested_path is not None
    if d.type is FieldType.TEXT:
        return TEXT(analyzer=build_whoosh_analyzer(definition.analysis, d.analyzer), phrase=False)
    if d.type is FieldType.KEYWORD:
        if not multi:
            return ID()
        return TEXT(analyzer=RegexTokenizer(rf"[^{VALUE_SEPARATOR}]+"), phrase=False)
    if d.type is FieldType.LONG:
        return NUMERIC(int, bits=64)
    if d.type is FieldType.DATE:
        return DATETIME()
    raise ConfigError(f"Field type {d.type.value!r} is not supported by the Whoosh backend")


class WhooshEngine(SearchEngine):
    """Search engine keeping generations and aliases in process.

    Parameters
    ----------
    path:
        Directory for persistent generations. When None, everything is kept in
        RAM and lost with the process (tests, previews).
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = Path(path) if path else None
        self._generations: Dict[str, _Generation] = {}
        self._aliases: Dict[str, Set[str]] = {}
        if self.path is not None:
            self.path.mkdir(parents=True, exist_ok=True)
            self._load()

    # ----- persistence -----

    def _load(self) -> None:
        assert self.path is not None
        for layout_file in sorted(self.path.glob(f"*/{LAYOUT_FILE}")):
            directory = layout_file.parent
            leaves = {
                item["path"]: _Leaf(**item)
                for item in json.loads(layout_file.read_text(encoding="utf-8"))
            }
            index = FileStorage(str(directory)).open_index()
            self._generations[directory.name] = _Generation(index, leaves, directory)
        aliases_file = self.path / ALIASES_FILE
        if aliases_file.exists():
            data = json.loads(aliases_file.read_text(encoding="utf-8"))
            self._aliases = {alias: set(names) for alias, names in data.items()}

    def _save_aliases(self, aliases: Dict[str, Set[str]]) -> None:
        if self.path is None:
            return
        target = self.path / ALIASES_FILE
        tmp = target.with_suffix(".tmp")
        payload = {alias: sorted(names) for alias, names in aliases.items() if names}
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, target)

    def _generation(self, name: str) -> _Generation:
        gen = self._generations.get(name)
        if gen is None:
            raise EngineError(f"no such index [{name}]", status=404)
        return gen

    def _resolve(self, name: str) -> List[str]:
        if name in self._aliases and self._aliases[name]:
            return sorted(self._aliases[name])
        if name in self._generations:
            return [name]
        raise EngineError(f"no such index [{name}]", status=404)

    # ----- index side -----

    async def create_index(self, name: str, definition: IndexDefinition) -> None:
        if name in self._generations or name in self._aliases:
            raise EngineError(f"index [{name}] already exists", status=400)
        definition.analysis.validate()

        leaves: Dict[str, _Leaf] = {}
        fields: Dict[str, Any] = {DOC_ID: ID(stored=True, unique=True), SOURCE: STORED()}
        for leaf in iter_leaf_fields(definition.properties):
            item = _Leaf(leaf.path, leaf.source_path, leaf.descriptor.type.value, leaf.nested_path)
            leaves[leaf.path] = item
            fields[item.field] = _whoosh_field(leaf, definition)
        schema = Schema(**fields)

        directory: Optional[Path] = None
        if self.path is None:
            index = RamStorage().create_index(schema)
        else:
            directory = self.path / name
            directory.mkdir(parents=True)
            index = FileStorage(str(directory)).create_index(schema)
            (directory / LAYOUT_FILE).write_text(
                json.dumps([{
                    "path": lf.path,
                    "source_path": lf.source_path,
                    "type": lf.type,
                    "nested_path": lf.nested_path,
                } for lf in leaves.values()]),
                encoding="utf-8",
            )
        self._generations[name] = _Generation(index, leaves, directory)
        logger.debug("Created Whoosh generation %s with %d fields", name, len(fields))

    def _row(self, gen: _Generation, doc: Dict[str, Any]) -> Dict[str, Any]:
        row: Dict[str, Any] = {DOC_ID: str(doc["id"]), SOURCE: json.dumps(doc)}
        for leaf in gen.leaves.values():
            values = _values_at(doc, leaf.source_path)
            if not values:
                continue
            if leaf.type == FieldType.TEXT.value:
                row[leaf.field] = "\n".join(str(v) for v in values)
            elif leaf.type == FieldType.KEYWORD.value:
                row[leaf.field] = (
                    VALUE_SEPARATOR.join(str(v) for v in values) if leaf.nested_path else str(values[0])
                )
            elif leaf.type == FieldType.LONG.value:
                row[leaf.field] = max(int(v) for v in values)
            elif leaf.type == FieldType.DATE.value:
                latest = max(parse_timestamp(v) for v in values)
                row[leaf.field] = latest.replace(tzinfo=None)
        return row

    @staticmethod
    def _write(gen: _Generation, rows: List[Dict[str, Any]]) -> None:
        with gen.write_lock:
            writer = gen.index.writer()
            try:
                for row in rows:
                    writer.update_document(**row)
            except Exception:
                writer.cancel()
                raise
            writer.commit()

    async def bulk_index(self, index: str, documents: Sequence[Dict[str, Any]]) -> BulkResult:
        started = time.perf_counter()
        gen = self._generation(index)
        rows = [self._row(gen, doc) for doc in documents]
        await asyncio.to_thread(self._write, gen, rows)
        return BulkResult(indexed=len(documents), took_ms=int((time.perf_counter() - started) * 1000))

    async def refresh(self, index: str) -> None:
        # Whoosh commits are immediately visible; only validate the target
        self._resolve(index)

    async def count(self, index: str) -> int:
        return sum(self._generation(name).index.doc_count() for name in self._resolve(index))

    async def list_indices(self, pattern: str) -> List[str]:
        return sorted(name for name in self._generations if fnmatch.fnmatch(name, pattern))

    async def get_alias(self, alias: str) -> List[str]:
        return sorted(self._aliases.get(alias, ()))

    async def update_aliases(self, actions: Iterable[AliasAction]) -> None:
        updated = {alias: set(names) for alias, names in self._aliases.items()}
        for act in actions:
            if act.index not in self._generations:
                raise EngineError(f"no such index [{act.index}]", status=404)
            bound = updated.setdefault(act.alias, set())
            if act.action == "add":
                bound.add(act.index)
            elif act.index in bound:
                bound.discard(act.index)
            else:
                raise EngineError(f"aliases [{act.alias}] missing on [{act.index}]", status=404)
        updated = {alias: names for alias, names in updated.items() if names}
        self._save_aliases(updated)
        self._aliases = updated

    async def delete_index(self, name: str) -> None:
        gen = self._generation(name)
        gen.index.close()
        del self._generations[name]
        aliases = {alias: names - {name} for alias, names in self._aliases.items()}
        aliases = {alias: names for alias, names in aliases.items() if names}
        self._save_aliases(aliases)
        self._aliases = aliases
        if gen.directory is not None:
            shutil.rmtree(gen.directory, ignore_errors=True)

    # ----- query side -----

    def _leaf(self, gen: _Generation, path: str) -> _Leaf:
        leaf = gen.leaves.get(path)
        if leaf is None:
            raise EngineError(f"No mapping found for field [{path}]", status=400)
        return leaf

    @staticmethod
    def _terms(searcher, field: str, text: str) -> List[str]:
        seen: List[str] = []
        for t in searcher.schema[field].process_text(text, mode="query"):
            if t not in seen:
                seen.append(t)
        return seen

    @staticmethod
    def _scored(searcher, query) -> Dict[int, float]:
        return {hit.docnum: float(hit.score or 0.0) for hit in searcher.search(query, limit=None)}

    def _evaluate(self, searcher, gen: _Generation, node: Query) -> Dict[int, float]:
        if isinstance(node, MatchAll):
            return {docnum: node.boost for docnum in searcher.reader().all_doc_ids()}
        if isinstance(node, ExactMatch):
            field = self._leaf(gen, node.field).field
            terms = self._terms(searcher, field, node.text)
            if not terms:
                return {}
            scores = self._scored(searcher, Or([Term(field, t) for t in terms]))
            return {d: s * node.boost for d, s in scores.items()}
        if isinstance(node, MultiFieldMatch):
            best: Dict[int, float] = {}
            for fb in node.fields:
                field = self._leaf(gen, fb.field).field
                terms = self._terms(searcher, field, node.text)
                if not terms:
                    continue
                clauses = [Term(field, t) for t in terms]
                query = And(clauses) if node.operator is Operator.AND else Or(clauses)
                for d, s in self._scored(searcher, query).items():
                    best[d] = max(best.get(d, 0.0), s * fb.boost)
            return best
        if isinstance(node, FunctionScore):
            inner = self._evaluate(searcher, gen, node.query)
            source_path = self._leaf(gen, node.field).source_path
            out: Dict[int, float] = {}
            for d, s in inner.items():
                values = _values_at(self._source(searcher, d), source_path)
                value = float(values[0]) if values else node.missing
                out[d] = s * min(value * node.factor, node.max_boost)
            return out
        if isinstance(node, NestedFilter):
            field = self._leaf(gen, node.field).field
            return {d: 0.0 for d in searcher.docs_for_query(Term(field, node.value))}
        if isinstance(node, BoolQuery):
            return self._evaluate_bool(searcher, gen, node)
        raise EngineError(f"Unsupported query node: {type(node).__name__}", status=400)

    def _evaluate_bool(self, searcher, gen: _Generation, node: BoolQuery) -> Dict[int, float]:
        must = [self._evaluate(searcher, gen, q) for q in node.must]
        filters = [self._evaluate(searcher, gen, q) for q in node.filter]
        should = [self._evaluate(searcher, gen, q) for q in node.should]

        required = must + filters
        if required:
            candidates = set(required[0])
            for scores in required[1:]:
                candidates &= set(scores)
        else:
            candidates = set()
            for scores in should:
                candidates |= set(scores)

        out: Dict[int, float] = {}
        for d in candidates:
            total = sum(scores[d] for scores in must)
            total += sum(scores[d] for scores in should if d in scores)
            out[d] = total
        return out

    @staticmethod
    def _source(searcher, docnum: int) -> Dict[str, Any]:
        return json.loads(searcher.stored_fields(docnum)[SOURCE])

    def _sort_value(self, hit: _Hit, spec: FieldSort, leaf: _Leaf) -> Any:
        values = _values_at(hit.source, leaf.source_path)
        if not values:
            return None
        if leaf.type == FieldType.DATE.value:
            values = [parse_timestamp(v) for v in values]
        elif leaf.type == FieldType.LONG.value:
            values = [int(v) for v in values]
        if spec.mode == "min" or (spec.mode is None and spec.order is SortOrder.ASC):
            return min(values)
        return max(values)

    def _sort(self, hits: List[_Hit], sorts: Tuple[Sort, ...], leaves: Dict[str, _Leaf]) -> List[_Hit]:
        for spec in reversed(sorts or (ScoreSort(),)):
            desc = spec.order is SortOrder.DESC
            if isinstance(spec, ScoreSort):
                hits = sorted(hits, key=lambda h: h.score, reverse=desc)
                continue
            leaf = leaves.get(spec.field)
            if leaf is None:
                raise EngineError(f"No mapping found for [{spec.field}] in order to sort on", status=400)
            keyed = [(self._sort_value(h, spec, leaf), h) for h in hits]
            present = [kh for kh in keyed if kh[0] is not None]
            present.sort(key=lambda kh: kh[0], reverse=desc)
            hits = [h for _, h in present] + [h for v, h in keyed if v is None]
        return hits

    def _aggregate(
        self, hits: List[_Hit], agg: NestedTermsAggregation, leaves: Dict[str, _Leaf]
    ) -> Dict[str, Any]:
        leaf = leaves.get(agg.field)
        if leaf is None:
            raise EngineError(f"No mapping found for field [{agg.field}]", status=400)
        nested_docs = 0
        nested: Counter[str] = Counter()
        packages: Counter[str] = Counter()
        for hit in hits:
            nested_docs += len(_values_at(hit.source, agg.path))
            values = [str(v) for v in _values_at(hit.source, leaf.source_path)]
            nested.update(values)
            packages.update(set(values))
        ordered = sorted(packages.items(), key=lambda kv: (-kv[1], kv[0]))[: agg.size]
        return {
            "doc_count": nested_docs,
            agg.terms_name: {
                "doc_count_error_upper_bound": 0,
                "sum_other_doc_count": sum(nested.values()) - sum(nested[k] for k, _ in ordered),
                "buckets": [
                    {"key": k, "doc_count": nested[k], agg.count_name: {"doc_count": c}}
                    for k, c in ordered
                ],
            },
        }

    async def search(self, index: str, query: SearchQuery) -> Dict[str, Any]:
        started = time.perf_counter()
        hits: List[_Hit] = []
        leaves: Dict[str, _Leaf] = {}
        for name in self._resolve(index):
            gen = self._generation(name)
            leaves.update(gen.leaves)
            with gen.index.searcher(weighting=scoring.BM25F()) as searcher:
                scores = self._evaluate(searcher, gen, query.query)
                for docnum in sorted(scores):
                    hits.append(_Hit(name, docnum, scores[docnum], self._source(searcher, docnum)))

        ordered = self._sort(hits, query.sort, leaves)
        window = ordered[query.from_ : query.from_ + query.size]
        response: Dict[str, Any] = {
            "took": int((time.perf_counter() - started) * 1000),
            "timed_out": False,
            "hits": {
                "total": {"value": len(hits), "relation": "eq"},
                "max_score": max((h.score for h in hits), default=None),
                "hits": [
                    {"_index": h.index, "_id": h.source.get("id"), "_score": h.score, "_source": h.source}
                    for h in window
                ],
            },
        }
        if query.aggregations:
            response["aggregations"] = {
                agg.name: self._aggregate(hits, agg, leaves) for agg in query.aggregations
            }
        return response
