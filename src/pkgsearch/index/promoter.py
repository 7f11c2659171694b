"""Promote a loaded generation to the live alias and retire old ones.

Promotion is one atomic alias update: whatever the live alias points at is
re-bound to the previous alias, the live alias is removed from those indices
and bound to the new generation. Afterwards generations under the previous
alias beyond the retention window (newest first by name) are deleted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from pkgsearch.engine.base import AliasAction, SearchEngine
from pkgsearch.exceptions import EngineError, PromotionError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PromotionResult:
    generation: str
    demoted: List[str] = field(default_factory=list)
    retained: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed_deletions: List[str] = field(default_factory=list)


class AliasPromoter:
    def __init__(
        self,
        engine: SearchEngine,
        *,
        live_alias: str,
        previous_alias: str,
        retention: int = 2,
        strict_single_live: bool = False,
    ) -> None:
        if live_alias == previous_alias:
            raise ValueError("live and previous aliases must differ")
        if retention < 0:
            raise ValueError("retention must be >= 0")
        self._engine = engine
        self.live_alias = live_alias
        self.previous_alias = previous_alias
        self.retention = retention
        self.strict_single_live = strict_single_live

    async def promote(self, generation: str) -> PromotionResult:
        """Make `generation` the only live generation.

        Raises `PromotionError` if the alias update fails, in which case the
        previously live generation keeps serving. Pruning failures are logged
        and reported in the result only.
        """
        try:
            live = [n for n in await self._engine.get_alias(self.live_alias) if n != generation]
            previous = await self._engine.get_alias(self.previous_alias)
        except EngineError as exc:
            raise PromotionError(f"Could not read aliases before promoting {generation}: {exc}") from exc

        if len(live) > 1:
            if self.strict_single_live:
                raise PromotionError(
                    f"Alias {self.live_alias} points at {len(live)} generations: {', '.join(live)}"
                )
            logger.warning(
                "Alias %s points at %d generations (%s); demoting all of them",
                self.live_alias,
                len(live),
                ", ".join(live),
            )

        actions: List[AliasAction] = []
        for name in live:
            actions.append(AliasAction("add", name, self.previous_alias))
            actions.append(AliasAction("remove", name, self.live_alias))
        if generation in previous:
            # Promoting a retained generation again (rollback)
            actions.append(AliasAction("remove", generation, self.previous_alias))
        actions.append(AliasAction("add", generation, self.live_alias))

        try:
            await self._engine.update_aliases(actions)
        except EngineError as exc:
            raise PromotionError(f"Alias update for {generation} was rejected: {exc}") from exc
        logger.info("Alias %s now points at %s", self.live_alias, generation)

        result = PromotionResult(generation=generation, demoted=live)
        await self._prune(result)
        return result

    async def _prune(self, result: PromotionResult) -> None:
        try:
            previous = sorted(await self._engine.get_alias(self.previous_alias), reverse=True)
        except EngineError as exc:
            logger.warning("Could not list %s for pruning: %s", self.previous_alias, exc)
            return
        result.retained = previous[: self.retention]
        for name in previous[self.retention :]:
            try:
                await self._engine.delete_index(name)
            except EngineError as exc:
                logger.warning("Could not delete superseded generation %s: %s", name, exc)
                result.failed_deletions.append(name)
                continue
            logger.info("Deleted superseded generation %s", name)
            result.deleted.append(name)
