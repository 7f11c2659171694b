"""Create new, empty index generations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from pkgsearch.engine.base import SearchEngine
from pkgsearch.exceptions import ConfigError, EngineError
from pkgsearch.index.naming import generation_created_at
from pkgsearch.index.schema import IndexDefinition, package_index_definition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GenerationHandle:
    name: str
    created_at: datetime


class IndexBuilder:
    """Creates a generation with the package schema and analysis chain attached.

    Replicas default to zero: a generation is built on one copy and gains
    replicas, if any, only once it serves traffic.
    """

    def __init__(
        self,
        engine: SearchEngine,
        *,
        shards: int = 2,
        replicas: int = 0,
        definition: Optional[IndexDefinition] = None,
    ) -> None:
        self._engine = engine
        self.definition = definition or package_index_definition(shards=shards, replicas=replicas)

    async def create_generation(self, name: str) -> GenerationHandle:
        """Create the generation or raise `ConfigError` if the engine rejects it.

        Rejections are configuration errors and are never retried.
        """
        self.definition.analysis.validate()
        try:
            await self._engine.create_index(name, self.definition)
        except EngineError as exc:
            if exc.retryable:
                raise
            raise ConfigError(f"Engine rejected index definition for {name}: {exc}") from exc
        logger.info(
            "Created generation %s (%d shards, %d replicas)",
            name,
            self.definition.shards,
            self.definition.replicas,
        )
        return GenerationHandle(name, generation_created_at(name) or datetime.now(timezone.utc))
