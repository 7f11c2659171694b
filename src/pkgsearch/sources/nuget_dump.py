"""Reader for NuGet OData feed dumps (``*.xml`` Atom feeds).

Each dump file holds ``<entry>`` elements, one per package version, with the
version's data under ``<m:properties>``. Files are parsed one at a time and
entries are grouped by package Id within a file, so memory use is bounded by
the largest dump file rather than the corpus.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from bs4 import BeautifulSoup  # type: ignore[import-untyped]
from bs4.element import Tag  # type: ignore[import-untyped]

from pkgsearch.exceptions import ConfigError, ParsingError
from pkgsearch.packages import (
    Package,
    PackageAuthor,
    PackageDependency,
    PackageVersion,
    parse_timestamp,
)
from pkgsearch.sources.base import PackageSource

logger = logging.getLogger(__name__)


def parse_dependencies(value: Optional[str]) -> Tuple[PackageDependency, ...]:
    """Parse ``Id:Range:Framework|Id:Range:Framework`` dependency strings."""
    deps: List[PackageDependency] = []
    for part in (value or "").split("|"):
        pieces = part.strip().split(":", 2)
        name = pieces[0].strip()
        if not name:
            continue
        version = pieces[1].strip() if len(pieces) > 1 else ""
        framework = pieces[2].strip() if len(pieces) > 2 and pieces[2].strip() else None
        deps.append(PackageDependency(name=name, version=version, framework=framework))
    return tuple(deps)


def _prop(props: Tag, name: str) -> Optional[str]:
    # html.parser lower-cases tag names: <d:Id> becomes "d:id"
    tag = props.find(f"d:{name.lower()}")
    if tag is None or tag.get("m:null") == "true":
        return None
    text = tag.get_text(strip=True)
    return text or None


def _child_text(entry: Tag, name: str) -> Optional[str]:
    tag = entry.find(name, recursive=False)
    if tag is None:
        return None
    return tag.get_text(" ", strip=True) or None


class _Entry:
    __slots__ = ("id", "version", "summary", "authors", "download_count", "last_updated", "dependencies")

    def __init__(self, entry: Tag, where: str) -> None:
        props = entry.find("m:properties")
        if props is None:
            raise ParsingError(f"{where}: entry has no m:properties")
        package_id = _prop(props, "Id")
        if not package_id:
            raise ParsingError(f"{where}: entry has no Id")
        self.id = package_id
        self.version = _prop(props, "Version") or ""
        self.summary = (
            _prop(props, "Summary") or _child_text(entry, "summary") or _prop(props, "Description") or ""
        )
        authors = _prop(props, "Authors")
        if authors is None:
            names = [a.get_text(strip=True) for a in entry.select("author > name")]
        else:
            names = authors.split(",")
        self.authors = [n.strip() for n in names if n and n.strip()]
        try:
            self.download_count = int(_prop(props, "DownloadCount") or 0)
        except ValueError as exc:
            raise ParsingError(f"{where}: {package_id} has an invalid DownloadCount") from exc
        updated = _prop(props, "LastUpdated") or _prop(props, "Published") or _child_text(entry, "updated")
        if not updated:
            raise ParsingError(f"{where}: {package_id} {self.version} has no LastUpdated")
        self.last_updated = parse_timestamp(updated)
        self.dependencies = parse_dependencies(_prop(props, "Dependencies"))


def _to_package(entries: List[_Entry]) -> Package:
    latest = max(entries, key=lambda e: e.last_updated)
    return Package(
        id=entries[0].id,
        summary=latest.summary,
        download_count=max(e.download_count for e in entries),
        authors=[PackageAuthor(name) for name in latest.authors],
        versions=[
            PackageVersion(e.version, e.last_updated, e.dependencies) for e in entries
        ],
    )


class NugetDumpReader(PackageSource):
    """Lazily read packages from every ``*.xml`` dump in `directory`."""

    def __init__(self, directory: str | Path, *, pattern: str = "*.xml") -> None:
        self.directory = Path(directory)
        self.pattern = pattern

    def files(self) -> List[Path]:
        if not self.directory.is_dir():
            raise ConfigError(f"Package dump directory not found: {self.directory}")
        return sorted(self.directory.glob(self.pattern))

    def check(self) -> None:
        self.files()

    def read_file(self, path: Path) -> List[Package]:
        """Parse one dump file into packages, grouping versions by Id."""
        soup = BeautifulSoup(path.read_text(encoding="utf-8"), "html.parser")
        grouped: Dict[str, List[_Entry]] = {}
        for n, tag in enumerate(soup.find_all("entry"), start=1):
            entry = _Entry(tag, f"{path.name} entry {n}")
            # Ids are case-insensitive on NuGet
            grouped.setdefault(entry.id.lower(), []).append(entry)
        return [_to_package(entries) for entries in grouped.values()]

    def iter_packages(self) -> Iterator[Package]:
        files = self.files()
        logger.info("Reading %d dump files from %s", len(files), self.directory)
        for path in files:
            packages = self.read_file(path)
            logger.debug("Read %d packages from %s", len(packages), path.name)
            yield from packages
