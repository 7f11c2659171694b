"""Index schema for package documents, expressed as field descriptors.

Each `FieldDescriptor` is a tagged field (text, keyword, nested, long, date)
with an optional analyzer, optional multi-fields (``fields``) and, for nested
types, child ``properties``. The same descriptors render the Elasticsearch
mapping and drive the field layout of the Whoosh backend.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple

from pkgsearch.index.analysis import (
    ID_ANALYZER,
    ID_KEYWORD_ANALYZER,
    AnalysisDefinition,
    package_analysis,
)


class FieldType(str, Enum):
    TEXT = "text"
    KEYWORD = "keyword"
    NESTED = "nested"
    LONG = "long"
    DATE = "date"


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """One mapped field.

    Attributes
    ----------
    name: str
        Field name relative to its parent.
    type: FieldType
        Field kind.
    analyzer: str | None
        Analyzer name for text fields (None means the engine default).
    fielddata: bool
        Allow sorting/aggregating on an analyzed text field.
    fields: tuple[FieldDescriptor, ...]
        Multi-fields indexing the same value differently (``id.keyword``).
    properties: tuple[FieldDescriptor, ...]
        Child fields of a nested field.
    """

    name: str
    type: FieldType
    analyzer: Optional[str] = None
    fielddata: bool = False
    fields: Tuple[FieldDescriptor, ...] = ()
    properties: Tuple[FieldDescriptor, ...] = ()

    def to_mapping(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type.value}
        if self.analyzer:
            out["analyzer"] = self.analyzer
        if self.fielddata:
            out["fielddata"] = True
        if self.fields:
            out["fields"] = {f.name: f.to_mapping() for f in self.fields}
        if self.properties:
            out["properties"] = {p.name: p.to_mapping() for p in self.properties}
        return out


@dataclass(frozen=True, slots=True)
class LeafField:
    """A non-nested field reached by walking descriptors.

    ``path`` is the query-side name (``authors.name.raw``), ``source_path`` the
    location of the value in the document (``authors.name``) and
    ``nested_path`` the outermost nested ancestor, if any.
    """

    path: str
    source_path: str
    descriptor: FieldDescriptor
    nested_path: Optional[str] = None


def package_properties() -> Tuple[FieldDescriptor, ...]:
    """Field descriptors for the package document."""
    dependency = (
        FieldDescriptor("name", FieldType.KEYWORD),
        FieldDescriptor("version", FieldType.KEYWORD),
        FieldDescriptor("framework", FieldType.KEYWORD),
    )
    return (
        FieldDescriptor(
            "id",
            FieldType.TEXT,
            analyzer=ID_ANALYZER,
            fields=(
                FieldDescriptor("keyword", FieldType.TEXT, analyzer=ID_KEYWORD_ANALYZER),
                FieldDescriptor("raw", FieldType.KEYWORD),
            ),
        ),
        FieldDescriptor("summary", FieldType.TEXT),
        FieldDescriptor("download_count", FieldType.LONG),
        FieldDescriptor(
            "authors",
            FieldType.NESTED,
            properties=(
                FieldDescriptor(
                    "name",
                    FieldType.TEXT,
                    fielddata=True,
                    fields=(FieldDescriptor("raw", FieldType.KEYWORD),),
                ),
            ),
        ),
        FieldDescriptor(
            "versions",
            FieldType.NESTED,
            properties=(
                FieldDescriptor("version", FieldType.KEYWORD),
                FieldDescriptor("last_updated", FieldType.DATE),
                FieldDescriptor("dependencies", FieldType.NESTED, properties=dependency),
            ),
        ),
    )


def iter_leaf_fields(
    properties: Tuple[FieldDescriptor, ...],
    prefix: str = "",
    nested_path: Optional[str] = None,
) -> Iterator[LeafField]:
    """Walk descriptors depth-first, yielding every leaf and multi-field."""
    for prop in properties:
        path = f"{prefix}{prop.name}"
        if prop.type is FieldType.NESTED:
            yield from iter_leaf_fields(prop.properties, f"{path}.", nested_path or path)
            continue
        yield LeafField(path, path, prop, nested_path)
        for sub in prop.fields:
            yield LeafField(f"{path}.{sub.name}", path, sub, nested_path)


@dataclass(frozen=True, slots=True)
class IndexDefinition:
    """Everything needed to create one index generation."""

    shards: int
    replicas: int
    analysis: AnalysisDefinition
    properties: Tuple[FieldDescriptor, ...]

    def to_body(self) -> Dict[str, Any]:
        """Render the Elasticsearch create-index request body."""
        return {
            "settings": {
                "number_of_shards": self.shards,
                "number_of_replicas": self.replicas,
                "analysis": self.analysis.to_settings(),
            },
            "mappings": {
                "dynamic": "strict",
                "properties": {p.name: p.to_mapping() for p in self.properties},
            },
        }


def package_index_definition(*, shards: int = 2, replicas: int = 0) -> IndexDefinition:
    return IndexDefinition(
        shards=shards,
        replicas=replicas,
        analysis=package_analysis(),
        properties=package_properties(),
    )
