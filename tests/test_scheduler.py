import asyncio
from datetime import timedelta

import pytest

from pkgsearch.exceptions import LoadError
from pkgsearch.index.scheduler import RebuildScheduler


@pytest.mark.asyncio
async def test_schedule_rebuild_registers_job() -> None:
    scheduler = RebuildScheduler()

    async def rebuild() -> None:
        return None

    scheduler.start()
    try:
        scheduler.schedule_rebuild(rebuild, interval=timedelta(hours=6))
        scheduler.schedule_rebuild(rebuild, interval=timedelta(hours=12))
        assert scheduler.job_ids() == ["rebuild"]
    finally:
        scheduler.shutdown(wait=False)


@pytest.mark.asyncio
async def test_immediate_run_and_failures_do_not_stop_the_scheduler() -> None:
    scheduler = RebuildScheduler()
    calls = []
    done = asyncio.Event()

    async def rebuild() -> None:
        calls.append(1)
        done.set()
        raise LoadError("batch 3 rejected")

    scheduler.schedule_rebuild(rebuild, interval=timedelta(hours=24), run_immediately=True)
    scheduler.start()
    try:
        await asyncio.wait_for(done.wait(), timeout=5)
        await asyncio.sleep(0.05)
        assert calls == [1]
        assert scheduler.job_ids() == ["rebuild"]
    finally:
        scheduler.shutdown(wait=False)
