"""
Job queue poller.

One poller runs per job kind. On every tick it claims pending jobs from the
store, up to its concurrency ceiling, and dispatches each to a processor task.
The claim itself is the store's conditional update, so any number of pollers
across processes can share one queue.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Set

from ..core.config import MAX_CONCURRENCY
from ..models.job import JobKind, utcnow
from ..utils import metrics
from ..utils.logger import LoggerContext, get_logger

ClaimFunc = Callable[[datetime], Awaitable[Optional[str]]]
ProcessFunc = Callable[[str], Awaitable[Any]]


class JobPoller:
    """
    Polls the job store for one kind of job and runs a bounded worker pool.
    """

    def __init__(
        self,
        kind: JobKind,
        claim: ClaimFunc,
        process: ProcessFunc,
        interval_seconds: float = 2.0,
        concurrency: int = 1,
        shutdown_grace_seconds: float = 30.0
    ):
        """
        Initialize the poller.

        Args:
            kind: Job kind, used for logging and metrics
            claim: Store method claiming the oldest pending job
            process: Processor entry point taking a job id
            interval_seconds: Delay between ticks
            concurrency: Maximum processor invocations in flight, clamped to [1, 3]
            shutdown_grace_seconds: How long stop() waits for in-flight jobs
        """
        self.kind = kind
        self.claim = claim
        self.process = process
        self.interval_seconds = interval_seconds
        self.concurrency = max(1, min(MAX_CONCURRENCY, concurrency))
        self.shutdown_grace_seconds = shutdown_grace_seconds

        self._in_flight: Set[asyncio.Task] = set()
        self._ticking = False
        self._shutdown_event = asyncio.Event()
        self._poll_task: Optional[asyncio.Task] = None
        self.logger = get_logger(__name__)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def start(self) -> None:
        """Start the polling loop."""
        if self.is_running:
            return
        self._shutdown_event.clear()
        self._poll_task = asyncio.create_task(self._poll_loop(), name=f"bdx-{self.kind.value}-poller")
        self.logger.info("Job poller started", extra={
            "job_kind": self.kind.value,
            "concurrency": self.concurrency,
            "interval_seconds": self.interval_seconds
        })

    async def stop(self) -> None:
        """Stop polling, then wait for in-flight jobs up to the grace period."""
        self._shutdown_event.set()

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        if self._in_flight:
            pending = set(self._in_flight)
            _, still_running = await asyncio.wait(pending, timeout=self.shutdown_grace_seconds)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                self.logger.warning("Cancelled in-flight jobs at shutdown", extra={
                    "job_kind": self.kind.value,
                    "cancelled": len(still_running)
                })

        self.logger.info("Job poller stopped", extra={"job_kind": self.kind.value})

    async def tick(self) -> int:
        """
        Claim and dispatch as many jobs as free slots allow.

        Returns:
            Number of jobs claimed in this tick
        """
        if self._ticking:
            return 0
        self._ticking = True
        claimed = 0
        try:
            while len(self._in_flight) < self.concurrency:
                job_id = await self.claim(utcnow())
                if not job_id:
                    break
                claimed += 1
                metrics.JOBS_CLAIMED.labels(kind=self.kind.value).inc()
                self._dispatch(job_id)
        finally:
            self._ticking = False
        return claimed

    async def drain(self) -> None:
        """Wait until every dispatched job has finished."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def _dispatch(self, job_id: str) -> None:
        task = asyncio.create_task(self._run(job_id), name=f"bdx-{self.kind.value}-{job_id}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run(self, job_id: str) -> None:
        metrics.IN_FLIGHT.labels(kind=self.kind.value).inc()
        try:
            with LoggerContext(job_id=job_id, job_kind=self.kind.value):
                await self.process(job_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Processor crashed: {str(e)}", exc_info=True, extra={
                "job_kind": self.kind.value,
                "job_id": job_id
            })
        finally:
            metrics.IN_FLIGHT.labels(kind=self.kind.value).dec()

    async def _poll_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception:
                self.logger.error("Error in poll loop", exc_info=True, extra={"job_kind": self.kind.value})

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
