"""In-process priority job queue.

One :class:`PriorityJobQueue` backs each logical queue (document processing,
notifications, cleanup).  It keeps pending jobs in a heap ordered by
:meth:`ProcessingJob.__lt__` and every job it has seen in a registry, so
status, stats and retry can look jobs up after they finish.

Rules enforced here rather than in the workers:

- A job becomes eligible only once its ``available_at`` has passed
  (start delay, retry backoff).
- Jobs sharing a ``group_key`` never run concurrently: while one is
  active, the others are skipped by :meth:`get` and keep their place.
- Every activation issues a new ``attempt_token``.  Completing or failing a
  job with a stale token is ignored, so a result from an attempt the stall
  monitor abandoned can never overwrite a newer one.
- The registry keeps at most ``keep_completed`` completed and
  ``keep_failed`` failed jobs; the oldest finished ones are dropped first.
"""

from __future__ import annotations

import asyncio
import heapq
import time
from collections import deque
from collections.abc import Callable

import structlog

from agriai.models.document import utc_now
from agriai.models.queue import JobState, ProcessingJob, QueueStats
from agriai.utils.errors import QueueStalledError

logger = structlog.get_logger(logger_name=__name__)


class PriorityJobQueue:
    """Priority heap plus job registry for one logical queue.

    Parameters
    ----------
    name:
        Queue name, used in logs.
    backoff_base:
        Seconds before the first retry; each later retry doubles it.
    clock:
        Monotonic clock, injectable for tests.
    keep_completed, keep_failed:
        How many completed / failed jobs the registry retains.  ``None``
        keeps them all.
    """

    def __init__(
        self,
        name: str,
        backoff_base: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        keep_completed: int | None = None,
        keep_failed: int | None = None,
    ) -> None:
        self.name = name
        self._backoff_base = backoff_base
        self._clock = clock
        self._heap: list[ProcessingJob] = []
        self._jobs: dict[str, ProcessingJob] = {}
        # Finished job ids, oldest first.
        self._finished: dict[JobState, deque[str]] = {
            JobState.COMPLETED: deque(),
            JobState.FAILED: deque(),
        }
        self._keep = {JobState.COMPLETED: keep_completed, JobState.FAILED: keep_failed}
        self._active_groups: set[str] = set()
        self._condition = asyncio.Condition()
        self._closed = False

    # ------------------------------------------------------------------
    # Producers
    # ------------------------------------------------------------------

    def has_job(self, job_id: str) -> bool:
        return job_id in self._jobs

    async def add(self, job: ProcessingJob) -> None:
        """Register *job* and make it available to :meth:`get`."""
        if job.job_id in self._jobs:
            raise ValueError(f"job {job.job_id} already exists in {self.name}")
        job.state = JobState.DELAYED if job.available_at > self._clock() else JobState.WAITING
        async with self._condition:
            self._jobs[job.job_id] = job
            heapq.heappush(self._heap, job)
            self._condition.notify_all()
        logger.debug(
            "job_added",
            queue=self.name,
            job_id=job.job_id,
            priority=job.priority.value,
            state=job.state.value,
        )

    # ------------------------------------------------------------------
    # Consumers
    # ------------------------------------------------------------------

    async def get(self, timeout: float | None = None) -> ProcessingJob | None:
        """Activate and return the best eligible job.

        Waits up to *timeout* seconds (forever when ``None``).  Returns
        ``None`` on timeout or once the queue is closed.
        """
        deadline = None if timeout is None else self._clock() + timeout
        async with self._condition:
            while not self._closed:
                job, wake_at = self._next_eligible()
                if job is not None:
                    self._activate(job)
                    return job

                now = self._clock()
                if deadline is not None and now >= deadline:
                    return None
                waits = [t - now for t in (wake_at, deadline) if t is not None]
                try:
                    await asyncio.wait_for(
                        self._condition.wait(),
                        timeout=max(0.0, min(waits)) if waits else None,
                    )
                except asyncio.TimeoutError:
                    pass
        return None

    def _next_eligible(self) -> tuple[ProcessingJob | None, float | None]:
        """Pop the first runnable job in priority order.

        Also returns the earliest time a currently delayed job becomes
        available, for the caller to sleep until.
        """
        now = self._clock()
        wake_at: float | None = None
        for job in sorted(self._heap):
            if job.available_at > now:
                wake_at = job.available_at if wake_at is None else min(wake_at, job.available_at)
                continue
            if job.group_key is not None and job.group_key in self._active_groups:
                continue
            self._heap.remove(job)
            heapq.heapify(self._heap)
            return job, wake_at
        return None, wake_at

    def _activate(self, job: ProcessingJob) -> None:
        job.state = JobState.ACTIVE
        job.attempts_made += 1
        job.attempt_token += 1
        job.started_at = utc_now()
        job.last_heartbeat = self._clock()
        if job.group_key is not None:
            self._active_groups.add(job.group_key)

    def heartbeat(self, job_id: str, token: int, progress: int | None = None) -> bool:
        """Record liveness (and optionally progress) for the current attempt."""
        job = self._jobs.get(job_id)
        if job is None or job.state != JobState.ACTIVE or job.attempt_token != token:
            return False
        job.last_heartbeat = self._clock()
        if progress is not None:
            job.progress = max(0, min(100, int(progress)))
        return True

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    async def complete(self, job: ProcessingJob, token: int, result: object = None) -> bool:
        """Mark the attempt identified by *token* as successful."""
        async with self._condition:
            if not self._owns(job, token):
                return False
            job.state = JobState.COMPLETED
            job.progress = 100
            job.result = result
            job.finished_at = utc_now()
            self._release(job)
            self._retain(job)
            self._condition.notify_all()
        return True

    async def fail(
        self,
        job: ProcessingJob,
        token: int,
        error: str,
        retryable: bool = True,
    ) -> JobState | None:
        """Record a failed attempt.

        Returns ``JobState.DELAYED`` when a retry was scheduled,
        ``JobState.FAILED`` when the job is terminally failed, and ``None``
        when *token* is stale.
        """
        async with self._condition:
            if not self._owns(job, token):
                return None
            job.last_error = error
            self._release(job)
            if retryable and job.attempts_left > 0:
                delay = self._backoff_base * 2 ** (job.attempts_made - 1)
                job.available_at = self._clock() + delay
                job.state = JobState.DELAYED
                heapq.heappush(self._heap, job)
                outcome = JobState.DELAYED
            else:
                job.state = JobState.FAILED
                job.finished_at = utc_now()
                self._retain(job)
                outcome = JobState.FAILED
            self._condition.notify_all()
        return outcome

    def find_stalled(self, stall_timeout: float) -> list[ProcessingJob]:
        """Active jobs whose last heartbeat is older than *stall_timeout*."""
        now = self._clock()
        return [
            job
            for job in self._jobs.values()
            if job.state == JobState.ACTIVE
            and job.last_heartbeat is not None
            and now - job.last_heartbeat > stall_timeout
        ]

    async def mark_stalled(self, job: ProcessingJob, max_stalled_count: int = 1) -> JobState | None:
        """Abandon the current attempt of a stalled *job*.

        The stalled attempt does not count against ``max_attempts``.  Up to
        *max_stalled_count* stalls the job is requeued (``WAITING``);
        beyond that it fails (``FAILED``).  Returns ``None`` if the job is no
        longer active.
        """
        async with self._condition:
            if job.state != JobState.ACTIVE:
                return None
            job.state = JobState.STALLED
            job.stalled_count += 1
            job.attempts_made = max(0, job.attempts_made - 1)
            # Invalidate the abandoned attempt.
            job.attempt_token += 1
            self._release(job)

            if job.stalled_count > max_stalled_count:
                job.state = JobState.FAILED
                job.last_error = QueueStalledError().message
                job.finished_at = utc_now()
                self._retain(job)
            else:
                job.state = JobState.WAITING
                job.available_at = self._clock()
                heapq.heappush(self._heap, job)
            self._condition.notify_all()
            outcome = job.state

        logger.warning(
            "job_stalled",
            queue=self.name,
            job_id=job.job_id,
            stalled_count=job.stalled_count,
            outcome=outcome.value,
        )
        return outcome

    def _owns(self, job: ProcessingJob, token: int) -> bool:
        return job.state == JobState.ACTIVE and job.attempt_token == token

    def _release(self, job: ProcessingJob) -> None:
        if job.group_key is not None:
            self._active_groups.discard(job.group_key)

    def _retain(self, job: ProcessingJob) -> None:
        """Record *job* as finished and drop the oldest beyond the limit."""
        finished = self._finished[job.state]
        finished.append(job.job_id)
        keep = self._keep[job.state]
        if keep is None:
            return
        while len(finished) > keep:
            dropped = finished.popleft()
            self._jobs.pop(dropped, None)
            logger.debug("job_pruned", queue=self.name, job_id=dropped)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    async def cancel_group(self, group_key: str) -> list[ProcessingJob]:
        """Remove every waiting or delayed job of *group_key*; active ones stay."""
        async with self._condition:
            removed = [job for job in self._heap if job.group_key == group_key]
            if removed:
                self._heap = [job for job in self._heap if job.group_key != group_key]
                heapq.heapify(self._heap)
                for job in removed:
                    self._jobs.pop(job.job_id, None)
        return removed

    async def remove(self, job_id: str) -> bool:
        """Forget a finished job."""
        async with self._condition:
            job = self._jobs.get(job_id)
            if job is None or not job.is_terminal:
                return False
            del self._jobs[job_id]
            finished = self._finished.get(job.state)
            if finished is not None and job_id in finished:
                finished.remove(job_id)
        return True

    def latest_for_group(
        self, group_key: str, state: JobState | None = None
    ) -> ProcessingJob | None:
        """Most recently submitted job of *group_key*, optionally in *state*."""
        candidates = [
            job
            for job in self._jobs.values()
            if job.group_key == group_key and (state is None or job.state == state)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda job: job.sequence)

    def get_job(self, job_id: str) -> ProcessingJob | None:
        return self._jobs.get(job_id)

    def jobs(self) -> list[ProcessingJob]:
        return list(self._jobs.values())

    def stats(self) -> QueueStats:
        """Counts per state; pending jobs not yet available count as delayed."""
        now = self._clock()
        counts = {"waiting": 0, "active": 0, "completed": 0, "failed": 0, "delayed": 0}
        for job in self._jobs.values():
            if job.state in (JobState.WAITING, JobState.DELAYED):
                counts["delayed" if job.available_at > now else "waiting"] += 1
            elif job.state in (JobState.ACTIVE, JobState.STALLED):
                counts["active"] += 1
            else:
                counts[job.state.value] += 1
        return QueueStats(**counts)

    async def close(self) -> None:
        """Wake every waiting consumer; :meth:`get` returns ``None`` from now on."""
        async with self._condition:
            self._closed = True
            self._condition.notify_all()
