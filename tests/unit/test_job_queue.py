"""Unit tests for PriorityJobQueue: ordering, delays, retries, stalls and stats."""

from __future__ import annotations

import pytest

from agriai.jobs.job_queue import PriorityJobQueue
from agriai.models.queue import DocumentJobData, JobPriority, JobState, ProcessingJob

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _job(
    job_id: str,
    clock: FakeClock,
    priority: JobPriority = JobPriority.NORMAL,
    sequence: int = 0,
    group_key: str | None = None,
    max_attempts: int = 3,
    delay: float = 0.0,
) -> ProcessingJob:
    return ProcessingJob(
        job_id=job_id,
        queue_name="test",
        name="noop",
        data={"document_id": group_key},
        priority=priority,
        max_attempts=max_attempts,
        sequence=sequence,
        group_key=group_key,
        available_at=clock() + delay,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(clock: FakeClock) -> PriorityJobQueue:
    return PriorityJobQueue("test", backoff_base=2.0, clock=clock)


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


class TestOrdering:
    @pytest.mark.asyncio
    async def test_higher_priority_first(self, queue, clock) -> None:
        await queue.add(_job("low", clock, JobPriority.LOW, sequence=1))
        await queue.add(_job("critical", clock, JobPriority.CRITICAL, sequence=2))
        await queue.add(_job("normal", clock, JobPriority.NORMAL, sequence=3))
        await queue.add(_job("high", clock, JobPriority.HIGH, sequence=4))

        order = [(await queue.get(timeout=0)).job_id for _ in range(4)]

        assert order == ["critical", "high", "normal", "low"]

    @pytest.mark.asyncio
    async def test_fifo_within_priority(self, queue, clock) -> None:
        for seq in (3, 1, 2):
            await queue.add(_job(f"job-{seq}", clock, sequence=seq))

        order = [(await queue.get(timeout=0)).job_id for _ in range(3)]

        assert order == ["job-1", "job-2", "job-3"]

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, queue, clock) -> None:
        await queue.add(_job("a", clock))
        with pytest.raises(ValueError):
            await queue.add(_job("a", clock))

    @pytest.mark.asyncio
    async def test_empty_queue_times_out(self, queue) -> None:
        assert await queue.get(timeout=0) is None


class TestDelays:
    @pytest.mark.asyncio
    async def test_delayed_job_waits_for_its_time(self, queue, clock) -> None:
        job = _job("later", clock, delay=5.0)
        await queue.add(job)

        assert job.state == JobState.DELAYED
        assert await queue.get(timeout=0) is None
        assert queue.stats().delayed == 1

        clock.advance(5.0)
        assert (await queue.get(timeout=0)).job_id == "later"

    @pytest.mark.asyncio
    async def test_ready_job_overtakes_delayed_higher_priority(self, queue, clock) -> None:
        await queue.add(_job("critical-later", clock, JobPriority.CRITICAL, delay=10.0))
        await queue.add(_job("low-now", clock, JobPriority.LOW, sequence=1))

        assert (await queue.get(timeout=0)).job_id == "low-now"


class TestGroups:
    @pytest.mark.asyncio
    async def test_same_group_never_runs_concurrently(self, queue, clock) -> None:
        await queue.add(_job("first", clock, group_key="doc-1", sequence=1))
        await queue.add(_job("second", clock, group_key="doc-1", sequence=2))
        await queue.add(_job("other", clock, group_key="doc-2", sequence=3))

        first = await queue.get(timeout=0)
        assert first.job_id == "first"
        # "second" is skipped while "first" is active.
        assert (await queue.get(timeout=0)).job_id == "other"
        assert await queue.get(timeout=0) is None

        await queue.complete(first, first.attempt_token)
        assert (await queue.get(timeout=0)).job_id == "second"

    @pytest.mark.asyncio
    async def test_cancel_group_removes_pending_only(self, queue, clock) -> None:
        await queue.add(_job("active", clock, group_key="doc-1", sequence=1))
        await queue.add(_job("pending", clock, group_key="doc-1", sequence=2))
        active = await queue.get(timeout=0)

        removed = await queue.cancel_group("doc-1")

        assert [j.job_id for j in removed] == ["pending"]
        assert not queue.has_job("pending")
        assert queue.get_job("active") is active

    @pytest.mark.asyncio
    async def test_latest_for_group(self, queue, clock) -> None:
        await queue.add(_job("old", clock, group_key="doc-1", sequence=1))
        await queue.add(_job("new", clock, group_key="doc-1", sequence=2))

        assert queue.latest_for_group("doc-1").job_id == "new"
        assert queue.latest_for_group("doc-1", JobState.COMPLETED) is None
        assert queue.latest_for_group("doc-9") is None


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class TestOutcomes:
    @pytest.mark.asyncio
    async def test_complete(self, queue, clock) -> None:
        await queue.add(_job("a", clock))
        job = await queue.get(timeout=0)

        assert job.state == JobState.ACTIVE
        assert job.attempts_made == 1
        assert await queue.complete(job, job.attempt_token, result={"ok": True}) is True
        assert job.state == JobState.COMPLETED
        assert job.progress == 100
        assert job.result == {"ok": True}
        assert job.finished_at is not None

    @pytest.mark.asyncio
    async def test_retry_backoff_doubles(self, queue, clock) -> None:
        await queue.add(_job("a", clock, max_attempts=3))

        job = await queue.get(timeout=0)
        assert await queue.fail(job, job.attempt_token, "boom") == JobState.DELAYED
        assert job.available_at == pytest.approx(clock() + 2.0)

        clock.advance(2.0)
        job = await queue.get(timeout=0)
        assert job.attempts_made == 2
        assert await queue.fail(job, job.attempt_token, "boom") == JobState.DELAYED
        assert job.available_at == pytest.approx(clock() + 4.0)

        clock.advance(4.0)
        job = await queue.get(timeout=0)
        assert await queue.fail(job, job.attempt_token, "boom again") == JobState.FAILED
        assert job.state == JobState.FAILED
        assert job.attempts_made == 3
        assert job.last_error == "boom again"

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self, queue, clock) -> None:
        await queue.add(_job("a", clock, max_attempts=3))
        job = await queue.get(timeout=0)

        assert await queue.fail(job, job.attempt_token, "bad input", retryable=False) == JobState.FAILED
        assert job.attempts_made == 1

    @pytest.mark.asyncio
    async def test_stale_token_is_ignored(self, queue, clock) -> None:
        await queue.add(_job("a", clock))
        job = await queue.get(timeout=0)
        stale = job.attempt_token - 1

        assert await queue.complete(job, stale) is False
        assert await queue.fail(job, stale, "late") is None
        assert job.state == JobState.ACTIVE

    @pytest.mark.asyncio
    async def test_heartbeat_updates_progress(self, queue, clock) -> None:
        await queue.add(_job("a", clock))
        job = await queue.get(timeout=0)
        clock.advance(3.0)

        assert queue.heartbeat("a", job.attempt_token, progress=140) is True
        assert job.progress == 100
        assert job.last_heartbeat == clock()
        assert queue.heartbeat("a", job.attempt_token + 1) is False
        assert queue.heartbeat("missing", 1) is False


# ---------------------------------------------------------------------------
# Stalls
# ---------------------------------------------------------------------------


class TestStalls:
    @pytest.mark.asyncio
    async def test_find_stalled(self, queue, clock) -> None:
        await queue.add(_job("a", clock))
        await queue.get(timeout=0)

        assert queue.find_stalled(30.0) == []
        clock.advance(31.0)
        assert [j.job_id for j in queue.find_stalled(30.0)] == ["a"]

    @pytest.mark.asyncio
    async def test_stall_requeues_without_using_an_attempt(self, queue, clock) -> None:
        await queue.add(_job("a", clock, max_attempts=1))
        job = await queue.get(timeout=0)
        token = job.attempt_token

        assert await queue.mark_stalled(job, max_stalled_count=1) == JobState.WAITING
        assert job.stalled_count == 1
        assert job.attempts_made == 0
        # The abandoned attempt can no longer report.
        assert await queue.complete(job, token) is False

        again = await queue.get(timeout=0)
        assert again is job
        assert job.attempts_made == 1

    @pytest.mark.asyncio
    async def test_stall_beyond_limit_fails(self, queue, clock) -> None:
        await queue.add(_job("a", clock))
        job = await queue.get(timeout=0)
        await queue.mark_stalled(job, max_stalled_count=1)
        job = await queue.get(timeout=0)

        assert await queue.mark_stalled(job, max_stalled_count=1) == JobState.FAILED
        assert job.state == JobState.FAILED
        assert "stalled" in job.last_error.lower()

    @pytest.mark.asyncio
    async def test_mark_stalled_ignores_inactive_job(self, queue, clock) -> None:
        job = _job("a", clock)
        await queue.add(job)
        assert await queue.mark_stalled(job) is None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    @pytest.mark.asyncio
    async def test_stats_by_state(self, queue, clock) -> None:
        await queue.add(_job("done", clock, sequence=1))
        await queue.add(_job("broken", clock, sequence=2, max_attempts=1))
        await queue.add(_job("running", clock, sequence=3))
        await queue.add(_job("waiting", clock, sequence=4))
        await queue.add(_job("later", clock, sequence=5, delay=60.0))

        done = await queue.get(timeout=0)
        await queue.complete(done, done.attempt_token)
        broken = await queue.get(timeout=0)
        await queue.fail(broken, broken.attempt_token, "x")
        await queue.get(timeout=0)

        stats = queue.stats()
        assert (stats.waiting, stats.active, stats.completed, stats.failed, stats.delayed) == (1, 1, 1, 1, 1)

    @pytest.mark.asyncio
    async def test_remove_only_finished(self, queue, clock) -> None:
        await queue.add(_job("a", clock))
        assert await queue.remove("a") is False

        job = await queue.get(timeout=0)
        await queue.complete(job, job.attempt_token)
        assert await queue.remove("a") is True
        assert queue.get_job("a") is None

    @pytest.mark.asyncio
    async def test_unbounded_by_default(self, queue, clock) -> None:
        for index in range(60):
            await queue.add(_job(f"j{index}", clock, sequence=index))
            job = await queue.get(timeout=0)
            await queue.complete(job, job.attempt_token)

        assert queue.stats().completed == 60


class TestRetention:
    @pytest.fixture
    def bounded(self, clock: FakeClock) -> PriorityJobQueue:
        return PriorityJobQueue("test", backoff_base=2.0, clock=clock, keep_completed=3, keep_failed=2)

    @pytest.mark.asyncio
    async def test_oldest_completed_jobs_dropped(self, bounded, clock) -> None:
        for index in range(60):
            await bounded.add(_job(f"j{index}", clock, sequence=index))
            job = await bounded.get(timeout=0)
            await bounded.complete(job, job.attempt_token)

        assert bounded.stats().completed == 3
        assert sorted(job.job_id for job in bounded.jobs()) == ["j57", "j58", "j59"]
        assert bounded.get_job("j0") is None

    @pytest.mark.asyncio
    async def test_failed_jobs_bounded_separately(self, bounded, clock) -> None:
        for index in range(5):
            await bounded.add(_job(f"ok{index}", clock, sequence=index))
            job = await bounded.get(timeout=0)
            await bounded.complete(job, job.attempt_token)
        for index in range(5):
            await bounded.add(_job(f"bad{index}", clock, sequence=10 + index, max_attempts=1))
            job = await bounded.get(timeout=0)
            assert await bounded.fail(job, job.attempt_token, "boom") == JobState.FAILED

        stats = bounded.stats()
        assert (stats.completed, stats.failed) == (3, 2)
        assert bounded.get_job("bad4").state == JobState.FAILED
        assert bounded.get_job("bad2") is None

    @pytest.mark.asyncio
    async def test_pending_and_retrying_jobs_never_dropped(self, bounded, clock) -> None:
        await bounded.add(_job("retrying", clock, sequence=0))
        job = await bounded.get(timeout=0)
        assert await bounded.fail(job, job.attempt_token, "flaky") == JobState.DELAYED
        await bounded.add(_job("waiting", clock, sequence=1, delay=60.0))
        for index in range(10):
            await bounded.add(_job(f"bad{index}", clock, sequence=10 + index, max_attempts=1))
            job = await bounded.get(timeout=0)
            await bounded.fail(job, job.attempt_token, "boom")

        assert bounded.get_job("retrying").state == JobState.DELAYED
        assert bounded.get_job("waiting") is not None
        assert bounded.stats().failed == 2

    @pytest.mark.asyncio
    async def test_stall_failures_count_towards_limit(self, bounded, clock) -> None:
        for index in range(3):
            await bounded.add(_job(f"s{index}", clock, sequence=index))
            job = await bounded.get(timeout=0)
            assert await bounded.mark_stalled(job, max_stalled_count=0) == JobState.FAILED

        assert [job.job_id for job in bounded.jobs()] == ["s1", "s2"]

    @pytest.mark.asyncio
    async def test_removed_job_frees_its_slot(self, bounded, clock) -> None:
        for index in range(3):
            await bounded.add(_job(f"bad{index}", clock, sequence=index, max_attempts=1))
            job = await bounded.get(timeout=0)
            await bounded.fail(job, job.attempt_token, "boom")
        assert await bounded.remove("bad2") is True

        await bounded.add(_job("bad3", clock, sequence=3, max_attempts=1))
        job = await bounded.get(timeout=0)
        await bounded.fail(job, job.attempt_token, "boom")

        assert sorted(job.job_id for job in bounded.jobs()) == ["bad1", "bad3"]


class TestClosing:
    @pytest.mark.asyncio
    async def test_closed_queue_returns_none(self, queue, clock) -> None:
        await queue.add(_job("a", clock))
        await queue.close()
        assert await queue.get(timeout=1.0) is None


class TestProcessingJobModel:
    def test_for_document_reprocessing_gets_one_attempt(self) -> None:
        data = DocumentJobData(document_id="doc-1", user_id="u", is_reprocessing=True)
        job = ProcessingJob.for_document("j1", data, default_attempts=3)

        assert job.max_attempts == 1
        assert job.group_key == "doc-1"
        assert job.document_id == "doc-1"

    def test_reprocessing_rejects_more_attempts(self) -> None:
        data = DocumentJobData(document_id="doc-1", user_id="u", is_reprocessing=True)
        with pytest.raises(ValueError):
            ProcessingJob(job_id="j", queue_name="q", name="n", data=data, max_attempts=3)

    def test_zero_attempts_rejected(self) -> None:
        with pytest.raises(ValueError):
            ProcessingJob(job_id="j", queue_name="q", name="n", data={}, max_attempts=0)
