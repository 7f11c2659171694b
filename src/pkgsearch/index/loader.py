"""Bulk loading of package documents into a generation.

Documents are drawn from a lazy source in fixed-size batches and sent with a
bounded number of batches in flight. A batch rejected with a transient engine
error is retried after a fixed delay; a batch that exhausts its retries, or is
rejected outright, aborts the whole load. `BulkLoader.load` returns only once
every dispatched batch has reached a terminal state.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set

from pkgsearch.engine.base import SearchEngine
from pkgsearch.exceptions import LoadError
from pkgsearch.packages import Package

logger = logging.getLogger(__name__)


class CountdownLatch:
    """Wait until every registered unit of work has reached a terminal state.

    Units are registered with `add()` as they are dispatched and released with
    `count_down()` when they finish, successfully or not. `wait()` returns
    once the count is back at zero.
    """

    def __init__(self, count: int = 0) -> None:
        if count < 0:
            raise ValueError("count must be >= 0")
        self._count = count
        self._event = asyncio.Event()
        if count == 0:
            self._event.set()

    @property
    def count(self) -> int:
        return self._count

    def add(self, n: int = 1) -> None:
        self._count += n
        if self._count > 0:
            self._event.clear()

    def count_down(self) -> None:
        if self._count <= 0:
            raise RuntimeError("count_down() called more times than add()")
        self._count -= 1
        if self._count == 0:
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(frozen=True, slots=True)
class LoadResult:
    generation: str
    documents: int
    batches: int
    retries: int
    elapsed: float


@dataclass(slots=True)
class _LoadState:
    documents: int = 0
    batches: int = 0
    retries: int = 0
    failure: Optional[BaseException] = None
    failed_batch: Optional[int] = None
    tasks: Set["asyncio.Task[None]"] = field(default_factory=set)


class BulkLoader:
    """Stream packages into a generation with bounded concurrency and retries.

    Parameters
    ----------
    engine: SearchEngine
        Target engine.
    batch_size: int
        Documents per bulk request (default 1000).
    max_parallelism: int
        Bulk requests in flight at once (default 4).
    backoff_retries: int
        Retries of a batch after a transient failure (default 2).
    backoff_time: float
        Fixed delay in seconds before each retry (default 30).
    refresh_on_completed: bool
        Refresh the generation after a successful load.
    max_documents: int | None
        Stop after this many documents.
    """

    def __init__(
        self,
        engine: SearchEngine,
        *,
        batch_size: int = 1000,
        max_parallelism: int = 4,
        backoff_retries: int = 2,
        backoff_time: float = 30.0,
        refresh_on_completed: bool = True,
        max_documents: Optional[int] = None,
    ) -> None:
        if batch_size < 1 or max_parallelism < 1 or backoff_retries < 0 or backoff_time < 0:
            raise ValueError("batch_size and max_parallelism must be >= 1, retries and backoff >= 0")
        self._engine = engine
        self.batch_size = batch_size
        self.max_parallelism = max_parallelism
        self.backoff_retries = backoff_retries
        self.backoff_time = backoff_time
        self.refresh_on_completed = refresh_on_completed
        self.max_documents = max_documents

    def _claim(self, source: Iterator[Package]) -> List[Dict[str, Any]]:
        return [p.to_document() for p in itertools.islice(source, self.batch_size)]

    async def _send(
        self,
        generation: str,
        number: int,
        docs: List[Dict[str, Any]],
        state: _LoadState,
    ) -> None:
        attempt = 0
        while True:
            try:
                await self._engine.bulk_index(generation, docs)
            except Exception as exc:  # recorded on state and raised by load()
                retryable = getattr(exc, "retryable", False)
                if retryable and attempt < self.backoff_retries and state.failure is None:
                    attempt += 1
                    state.retries += 1
                    logger.warning(
                        "Batch %d to %s failed (%s); retry %d/%d in %gs",
                        number,
                        generation,
                        exc,
                        attempt,
                        self.backoff_retries,
                        self.backoff_time,
                    )
                    await asyncio.sleep(self.backoff_time)
                    continue
                if state.failure is None:
                    state.failure = exc
                    state.failed_batch = number
                logger.error("Batch %d to %s failed after %d attempts: %s", number, generation, attempt + 1, exc)
                return
            state.documents += len(docs)
            logger.info("Indexed batch %d into %s (%d documents)", number, generation, len(docs))
            return

    async def load(self, generation: str, packages: Iterable[Package]) -> LoadResult:
        """Load every package into `generation`.

        Raises `LoadError` if any batch fails for good or the source is
        malformed; in-flight batches are awaited before raising and no new
        batches are started once a failure is seen.
        """
        started = time.perf_counter()
        source: Iterator[Package] = iter(packages)
        if self.max_documents is not None:
            source = itertools.islice(source, self.max_documents)

        state = _LoadState()
        slots = asyncio.Semaphore(self.max_parallelism)
        # One unit for the dispatcher itself, released once the source is drained
        latch = CountdownLatch(1)

        def _finished(task: "asyncio.Task[None]") -> None:
            state.tasks.discard(task)
            slots.release()
            latch.count_down()

        try:
            while state.failure is None:
                await slots.acquire()
                try:
                    docs = await asyncio.to_thread(self._claim, source)
                except Exception as exc:  # malformed source aborts the load
                    slots.release()
                    state.failure = exc
                    break
                if not docs or state.failure is not None:
                    slots.release()
                    break
                state.batches += 1
                latch.add()
                task = asyncio.create_task(self._send(generation, state.batches, docs, state))
                state.tasks.add(task)
                task.add_done_callback(_finished)
        finally:
            latch.count_down()
            await latch.wait()

        if state.failure is not None:
            where = f"batch {state.failed_batch}" if state.failed_batch else "the document source"
            raise LoadError(f"Loading {generation} aborted at {where}: {state.failure}") from state.failure

        if self.refresh_on_completed:
            await self._engine.refresh(generation)
        elapsed = time.perf_counter() - started
        logger.info(
            "Loaded %d documents into %s in %d batches (%d retries, %.1fs)",
            state.documents,
            generation,
            state.batches,
            state.retries,
            elapsed,
        )
        return LoadResult(generation, state.documents, state.batches, state.retries, elapsed)
