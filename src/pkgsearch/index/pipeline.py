"""One indexing cycle: create a generation, load it, promote it.

A cycle never exposes a partially loaded generation: if loading fails the
generation is deleted unpromoted and the run fails. Promotion can be re-run
on its own for a generation that loaded but failed to promote.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from pkgsearch.config import IndexingConfig
from pkgsearch.engine.base import SearchEngine
from pkgsearch.exceptions import EngineError, LoadError, PromotionError, StorageError
from pkgsearch.index.builder import IndexBuilder
from pkgsearch.index.loader import BulkLoader, LoadResult
from pkgsearch.index.naming import GenerationNamer
from pkgsearch.index.promoter import AliasPromoter, PromotionResult
from pkgsearch.packages import Package
from pkgsearch.sources.base import PackageSource
from pkgsearch.storage.ledger import GenerationLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CycleResult:
    generation: str
    load: LoadResult
    document_count: int
    promotion: PromotionResult


class IndexingPipeline:
    def __init__(
        self,
        engine: SearchEngine,
        cfg: IndexingConfig,
        *,
        ledger: Optional[GenerationLedger] = None,
        namer: Optional[GenerationNamer] = None,
    ) -> None:
        self.engine = engine
        self.cfg = cfg
        self.ledger = ledger
        self.namer = namer or GenerationNamer(cfg.index_prefix)
        self.builder = IndexBuilder(engine, shards=cfg.shards, replicas=cfg.replicas)
        self.loader = BulkLoader(
            engine,
            batch_size=cfg.batch_size,
            max_parallelism=cfg.max_parallelism,
            backoff_retries=cfg.backoff_retries,
            backoff_time=cfg.backoff_time,
            refresh_on_completed=cfg.refresh_on_completed,
            max_documents=cfg.max_documents,
        )
        self.promoter = AliasPromoter(
            engine,
            live_alias=cfg.live_alias,
            previous_alias=cfg.previous_alias,
            retention=cfg.retention,
            strict_single_live=cfg.strict_single_live,
        )

    def _record(self, method: Callable[..., None], *args, **kwargs) -> None:
        # The engine's aliases are authoritative; a ledger outage must not fail a cycle
        if self.ledger is None:
            return
        try:
            method(*args, **kwargs)
        except StorageError as exc:
            logger.warning("Generation ledger update failed: %s", exc)

    async def _discard(self, name: str) -> None:
        try:
            await self.engine.delete_index(name)
        except EngineError as exc:
            logger.warning("Could not delete failed generation %s: %s", name, exc)
            return
        logger.info("Deleted failed generation %s", name)

    async def run(self, packages: Iterable[Package]) -> CycleResult:
        """Build, load and promote a new generation from `packages`.

        A `PackageSource` is checked before anything is created, so a bad
        source configuration fails with `ConfigError` and leaves the engine
        untouched. A generation that fails to load is deleted.
        """
        if isinstance(packages, PackageSource):
            packages.check()

        name = self.namer.next_name()
        handle = await self.builder.create_generation(name)
        if self.ledger is not None:
            self._record(self.ledger.record_created, name, handle.created_at)

        try:
            load = await self.loader.load(name, packages)
        except LoadError as exc:
            if self.ledger is not None:
                self._record(self.ledger.record_failed, name, str(exc))
            logger.error("Generation %s was not promoted: %s", name, exc)
            await self._discard(name)
            raise

        count = await self.engine.count(name)
        if self.ledger is not None:
            self._record(self.ledger.record_loaded, name, count)

        promotion = await self.promote(name)
        return CycleResult(generation=name, load=load, document_count=count, promotion=promotion)

    async def promote(self, generation: str) -> PromotionResult:
        """Promote an already loaded generation (also used to retry or roll back)."""
        try:
            result = await self.promoter.promote(generation)
        except PromotionError:
            logger.error("Promotion of %s failed; %s is unchanged", generation, self.cfg.live_alias)
            raise
        if self.ledger is not None:
            self._record(
                self.ledger.record_promoted,
                generation,
                demoted=result.demoted,
                deleted=result.deleted,
            )
        return result
