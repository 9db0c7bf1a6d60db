"""
Tests for the job queue poller.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from bulk_data_exchange.models.job import JobKind
from bulk_data_exchange.services.job_poller import JobPoller


def queue_claim(job_ids):
    """Claim function handing out the given ids, then None."""
    remaining = list(job_ids)

    async def claim(now):
        return remaining.pop(0) if remaining else None

    return claim


class TestJobPoller:
    """Tests for claiming and dispatching."""

    def test_concurrency_is_clamped(self):
        assert JobPoller(JobKind.IMPORT, AsyncMock(), AsyncMock(), concurrency=10).concurrency == 3
        assert JobPoller(JobKind.IMPORT, AsyncMock(), AsyncMock(), concurrency=0).concurrency == 1

    @pytest.mark.asyncio
    async def test_tick_claims_up_to_concurrency(self):
        release = asyncio.Event()
        processed = []

        async def process(job_id):
            await release.wait()
            processed.append(job_id)

        poller = JobPoller(JobKind.IMPORT, queue_claim(["a", "b", "c"]), process, concurrency=2)

        assert await poller.tick() == 2
        assert poller.in_flight == 2
        assert await poller.tick() == 0

        release.set()
        await poller.drain()
        assert sorted(processed) == ["a", "b"]
        assert poller.in_flight == 0

        assert await poller.tick() == 1
        await poller.drain()
        assert processed[-1] == "c"

    @pytest.mark.asyncio
    async def test_empty_queue(self):
        process = AsyncMock()
        poller = JobPoller(JobKind.EXPORT, queue_claim([]), process)

        assert await poller.tick() == 0
        process.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_processor_crash_frees_the_slot(self):
        process = AsyncMock(side_effect=RuntimeError("boom"))
        poller = JobPoller(JobKind.IMPORT, queue_claim(["a", "b"]), process)

        await poller.tick()
        await poller.drain()
        await poller.tick()
        await poller.drain()

        assert process.await_count == 2
        assert poller.in_flight == 0

    @pytest.mark.asyncio
    async def test_loop_processes_jobs_until_stopped(self):
        process = AsyncMock()
        poller = JobPoller(JobKind.IMPORT, queue_claim(["a"]), process, interval_seconds=0.01)

        await poller.start()
        assert poller.is_running
        for _ in range(100):
            if process.await_count:
                break
            await asyncio.sleep(0.01)
        await poller.stop()

        process.assert_awaited_once_with("a")
        assert not poller.is_running

    @pytest.mark.asyncio
    async def test_stop_cancels_jobs_after_grace_period(self):
        started = asyncio.Event()

        async def never_finishes(job_id):
            started.set()
            await asyncio.sleep(60)

        poller = JobPoller(JobKind.EXPORT, queue_claim(["a"]), never_finishes, shutdown_grace_seconds=0.05)
        await poller.tick()
        await started.wait()

        await asyncio.wait_for(poller.stop(), timeout=5)

        assert poller.in_flight == 0
