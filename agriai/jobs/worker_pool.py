"""Concurrent workers draining one :class:`PriorityJobQueue`.

A :class:`WorkerPool` runs ``concurrency`` worker loops plus a stall
monitor.  Each worker holds at most one job at a time; the job's handler
runs in its own task so the stall monitor can cancel an attempt that stopped
heartbeating without killing the worker.

Outcomes are reported through three optional hooks, so the pool knows
nothing about documents or notifications:

- ``on_completed(job, result)``
- ``on_failed(job, error, terminal)``, ``terminal`` is ``True`` exactly
  once per job, when no attempt is left
- ``on_stalled(job, terminal)``
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from agriai.jobs.job_queue import PriorityJobQueue
from agriai.models.queue import JobState, ProcessingJob
from agriai.utils.errors import AgriAIError, QueueStalledError, is_retryable

logger = structlog.get_logger(logger_name=__name__)

Heartbeat = Callable[[int], Awaitable[None]]
JobHandler = Callable[[ProcessingJob, Heartbeat], Awaitable[Any]]
CompletedHook = Callable[[ProcessingJob, Any], Awaitable[None]]
FailedHook = Callable[[ProcessingJob, BaseException, bool], Awaitable[None]]
StalledHook = Callable[[ProcessingJob, bool], Awaitable[None]]


class WorkerPool:
    """Fixed-size pool of workers for one queue.

    Parameters
    ----------
    queue:
        The queue to drain.
    handler:
        ``await handler(job, heartbeat)``; its return value is the job
        result, an exception fails the attempt.  ``await heartbeat(pct)``
        records progress and keeps the job from being considered stalled.
    concurrency:
        Number of worker loops.
    stall_timeout:
        Seconds without a heartbeat after which an active job is stalled.
    stall_check_interval:
        Seconds between stall checks.
    max_stalled_count:
        Stalls tolerated before the job fails with :class:`QueueStalledError`.
    poll_interval:
        How long an idle worker waits before re-checking for shutdown.
    """

    def __init__(
        self,
        queue: PriorityJobQueue,
        handler: JobHandler,
        concurrency: int = 1,
        stall_timeout: float = 60.0,
        stall_check_interval: float = 15.0,
        max_stalled_count: int = 1,
        poll_interval: float = 1.0,
        on_completed: CompletedHook | None = None,
        on_failed: FailedHook | None = None,
        on_stalled: StalledHook | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._handler = handler
        self._concurrency = concurrency
        self._stall_timeout = stall_timeout
        self._stall_check_interval = stall_check_interval
        self._max_stalled_count = max_stalled_count
        self._poll_interval = poll_interval
        self._on_completed = on_completed
        self._on_failed = on_failed
        self._on_stalled = on_stalled

        self._workers: dict[str, asyncio.Task] = {}
        self._monitor: asyncio.Task | None = None
        self._attempts: dict[str, asyncio.Task] = {}
        self._shutdown = asyncio.Event()

    @property
    def name(self) -> str:
        return self._queue.name

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def busy_workers(self) -> int:
        return len(self._attempts)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._workers:
            logger.warning("worker_pool_already_started", queue=self.name)
            return
        self._shutdown.clear()
        for index in range(self._concurrency):
            worker_id = f"{self.name}-worker-{index}"
            self._workers[worker_id] = asyncio.create_task(self._worker_loop(worker_id))
        self._monitor = asyncio.create_task(self._stall_monitor())
        logger.info("worker_pool_started", queue=self.name, workers=self._concurrency)

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop taking jobs, let running ones finish for *timeout* seconds."""
        self._shutdown.set()
        await self._queue.close()

        if self._monitor is not None:
            self._monitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._monitor
            self._monitor = None

        if self._workers:
            workers = list(self._workers.values())
            _, pending = await asyncio.wait(workers, timeout=timeout)
            for task in [*pending, *self._attempts.values()]:
                task.cancel()
            if pending:
                logger.warning("worker_pool_stop_timeout", queue=self.name, cancelled=len(pending))
                await asyncio.gather(*pending, return_exceptions=True)
        self._workers.clear()
        logger.info("worker_pool_stopped", queue=self.name)

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    async def _worker_loop(self, worker_id: str) -> None:
        while not self._shutdown.is_set():
            job = await self._queue.get(timeout=self._poll_interval)
            if job is None:
                continue
            try:
                await self._run(worker_id, job)
            except Exception as exc:  # noqa: BLE001 - a broken hook must not kill the worker
                logger.error(
                    "worker_error",
                    worker_id=worker_id,
                    job_id=job.job_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

    async def _run(self, worker_id: str, job: ProcessingJob) -> None:
        token = job.attempt_token
        self._queue.heartbeat(job.job_id, token)

        async def heartbeat(progress: int) -> None:
            self._queue.heartbeat(job.job_id, token, progress)

        logger.info(
            "job_started",
            queue=self.name,
            worker_id=worker_id,
            job_id=job.job_id,
            attempt=job.attempts_made,
            max_attempts=job.max_attempts,
        )
        attempt = asyncio.create_task(self._handler(job, heartbeat))
        self._attempts[job.job_id] = attempt
        try:
            await asyncio.wait({attempt})
        finally:
            if self._attempts.get(job.job_id) is attempt:
                del self._attempts[job.job_id]

        if attempt.cancelled():
            # Abandoned by the stall monitor, which already requeued or failed it.
            return

        error = attempt.exception()
        if error is None:
            result = attempt.result()
            if await self._queue.complete(job, token, result):
                logger.info("job_completed", queue=self.name, job_id=job.job_id)
                if self._on_completed is not None:
                    await self._on_completed(job, result)
            return

        message = error.message if isinstance(error, AgriAIError) else str(error)
        outcome = await self._queue.fail(job, token, message, retryable=is_retryable(error))
        if outcome is None:
            return
        terminal = outcome == JobState.FAILED
        logger.warning(
            "job_attempt_failed",
            queue=self.name,
            job_id=job.job_id,
            attempt=job.attempts_made,
            max_attempts=job.max_attempts,
            error=message,
            error_type=type(error).__name__,
            terminal=terminal,
        )
        if self._on_failed is not None:
            await self._on_failed(job, error, terminal)

    # ------------------------------------------------------------------
    # Stall monitor
    # ------------------------------------------------------------------

    async def _stall_monitor(self) -> None:
        while not self._shutdown.is_set():
            await asyncio.sleep(self._stall_check_interval)
            try:
                await self.check_stalled()
            except Exception as exc:  # noqa: BLE001 - keep monitoring
                logger.error("stall_check_failed", queue=self.name, error=str(exc))

    async def check_stalled(self) -> int:
        """Abandon every stalled attempt once; returns how many were found."""
        stalled = self._queue.find_stalled(self._stall_timeout)
        for job in stalled:
            outcome = await self._queue.mark_stalled(job, self._max_stalled_count)
            if outcome is None:
                continue
            attempt = self._attempts.pop(job.job_id, None)
            if attempt is not None and not attempt.done():
                attempt.cancel()

            terminal = outcome == JobState.FAILED
            if self._on_stalled is not None:
                await self._on_stalled(job, terminal)
            if terminal and self._on_failed is not None:
                await self._on_failed(job, QueueStalledError(), True)
        return len(stalled)
