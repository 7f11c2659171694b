"""Document model for indexed packages.

A `Package` exclusively owns its versions, authors and (through versions)
dependencies; none of them has an identity outside its parent. The document
form produced by `to_document()` is the shape stored in the engine and
returned in search hits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pkgsearch.exceptions import ParsingError


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp (or datetime) into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ParsingError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise ParsingError(f"Invalid timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class PackageDependency:
    """A dependency of one package version on another package id."""

    name: str
    version: str = ""
    framework: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        return {"name": self.name, "version": self.version, "framework": self.framework}


@dataclass(frozen=True, slots=True)
class PackageVersion:
    """One published version of a package."""

    version: str
    last_updated: datetime
    dependencies: tuple[PackageDependency, ...] = ()

    def to_document(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "last_updated": format_timestamp(self.last_updated),
            "dependencies": [d.to_document() for d in self.dependencies],
        }


@dataclass(frozen=True, slots=True)
class PackageAuthor:
    name: str

    def to_document(self) -> Dict[str, Any]:
        return {"name": self.name}


@dataclass(slots=True)
class Package:
    """A package and everything indexed about it.

    Attributes
    ----------
    id: str
        Package identifier, unique within one index generation.
    summary: str
        Free text summary used for relevance matching.
    download_count: int
        Total downloads, used as the capped popularity signal.
    authors: list[PackageAuthor]
        Authors in source order.
    versions: list[PackageVersion]
        Versions in source order.
    """

    id: str
    summary: str = ""
    download_count: int = 0
    authors: List[PackageAuthor] = field(default_factory=list)
    versions: List[PackageVersion] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not isinstance(self.id, str) or not self.id.strip():
            raise ParsingError("Package is missing an Id")
        if self.download_count < 0:
            raise ParsingError(f"Package {self.id} has a negative download count")

    @property
    def last_updated(self) -> Optional[datetime]:
        """Most recent `last_updated` across all versions."""
        if not self.versions:
            return None
        return max(v.last_updated for v in self.versions)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "summary": self.summary,
            "download_count": self.download_count,
            "authors": [a.to_document() for a in self.authors],
            "versions": [v.to_document() for v in self.versions],
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> Package:
        """Rebuild a Package from its document form.

        Raises `ParsingError` when the document does not have the expected shape.
        """
        if not isinstance(doc, dict):
            raise ParsingError(f"Expected a package document, got {type(doc).__name__}")
        try:
            versions = [
                PackageVersion(
                    version=str(v["version"]),
                    last_updated=parse_timestamp(v["last_updated"]),
                    dependencies=tuple(
                        PackageDependency(
                            name=str(d["name"]),
                            version=str(d.get("version") or ""),
                            framework=d.get("framework"),
                        )
                        for d in v.get("dependencies") or []
                    ),
                )
                for v in doc.get("versions") or []
            ]
            authors = [PackageAuthor(name=str(a["name"])) for a in doc.get("authors") or []]
            return cls(
                id=doc.get("id"),  # type: ignore[arg-type]
                summary=str(doc.get("summary") or ""),
                download_count=int(doc.get("download_count") or 0),
                authors=authors,
                versions=versions,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ParsingError(f"Malformed package document: {exc}") from exc
