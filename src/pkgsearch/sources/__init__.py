"""Package sources feeding the indexing pipeline."""

from .base import PackageSource
from .nuget_dump import NugetDumpReader

__all__ = ["PackageSource", "NugetDumpReader"]
