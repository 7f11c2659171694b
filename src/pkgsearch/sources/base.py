"""Base source abstraction used by the indexing pipeline.

A `PackageSource` presents a lazy, finite, single-pass stream of packages
regardless of where the records come from.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator

from pkgsearch.packages import Package


class PackageSource(ABC):
    """Abstract package source."""

    @abstractmethod
    def iter_packages(self) -> Iterator[Package]:
        """Yield packages one at a time without materializing the corpus."""
        raise NotImplementedError

    def check(self) -> None:
        """Raise `ConfigError` if the source cannot be read at all."""

    def __iter__(self) -> Iterator[Package]:
        return self.iter_packages()
