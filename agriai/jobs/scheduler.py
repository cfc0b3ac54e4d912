"""Recurring maintenance schedules.

# ─── HOW SCHEDULING WORKS ──────────────────────────────────────────────
#
#   MaintenanceScheduler ──(due)──→ submit(job_name) ──→ cleanup queue
#
#   - Each schedule has a fixed id ("daily-cleanup-failed", ...), a job
#     name, an hour (UTC) and an optional weekday (0 = Monday).
#   - Registering an id that already exists is a no-op, so startup code
#     can register unconditionally.
#   - One loop sleeps until the earliest due time, submits every schedule
#     that is due, and recomputes.  The scheduler only *enqueues*; the
#     cleanup workers do the actual work.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog

from agriai.models.document import utc_now

logger = structlog.get_logger(logger_name=__name__)


@dataclass(frozen=True)
class Schedule:
    schedule_id: str
    job_name: str
    hour: int
    weekday: int | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23:
            raise ValueError(f"hour must be in 0-23, got {self.hour}")
        if self.weekday is not None and not 0 <= self.weekday <= 6:
            raise ValueError(f"weekday must be in 0-6, got {self.weekday}")


def next_run(schedule: Schedule, after: datetime) -> datetime:
    """First time strictly after *after* at which *schedule* is due."""
    candidate = after.replace(hour=schedule.hour, minute=0, second=0, microsecond=0)
    if candidate <= after:
        candidate += timedelta(days=1)
    if schedule.weekday is not None:
        candidate += timedelta(days=(schedule.weekday - candidate.weekday()) % 7)
    return candidate


class MaintenanceScheduler:
    """Fires registered schedules by calling ``submit(job_name)``.

    Parameters
    ----------
    submit:
        Awaited with the job name whenever a schedule is due.
    now:
        Clock returning an aware UTC datetime, injectable for tests.
    """

    def __init__(
        self,
        submit: Callable[[str], Awaitable[Any]],
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._submit = submit
        self._now = now
        self._schedules: dict[str, Schedule] = {}
        self._next: dict[str, datetime] = {}
        self._task: asyncio.Task | None = None
        self._changed = asyncio.Event()

    @property
    def schedule_ids(self) -> list[str]:
        return list(self._schedules)

    def register(self, schedule_id: str, job_name: str, hour: int, weekday: int | None = None) -> bool:
        """Add a schedule; returns ``False`` when *schedule_id* already exists."""
        if schedule_id in self._schedules:
            logger.debug("schedule_already_registered", schedule_id=schedule_id)
            return False
        schedule = Schedule(schedule_id=schedule_id, job_name=job_name, hour=hour, weekday=weekday)
        self._schedules[schedule_id] = schedule
        self._next[schedule_id] = next_run(schedule, self._now())
        self._changed.set()
        logger.info(
            "schedule_registered",
            schedule_id=schedule_id,
            job=job_name,
            next_run=self._next[schedule_id].isoformat(),
        )
        return True

    def next_run_at(self, schedule_id: str) -> datetime | None:
        return self._next.get(schedule_id)

    async def run_due(self) -> list[str]:
        """Submit every schedule that is due now; returns their ids."""
        now = self._now()
        fired = []
        for schedule_id, due in list(self._next.items()):
            if due > now:
                continue
            schedule = self._schedules[schedule_id]
            self._next[schedule_id] = next_run(schedule, now)
            try:
                await self._submit(schedule.job_name)
            except Exception as exc:  # noqa: BLE001 - next occurrence still fires
                logger.error("scheduled_submit_failed", schedule_id=schedule_id, error=str(exc))
                continue
            fired.append(schedule_id)
            logger.info("schedule_fired", schedule_id=schedule_id, job=schedule.job_name)
        return fired

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _loop(self) -> None:
        while True:
            await self.run_due()
            self._changed.clear()
            if self._next:
                delay = (min(self._next.values()) - self._now()).total_seconds()
            else:
                delay = None
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    self._changed.wait(),
                    timeout=None if delay is None else max(0.0, delay),
                )
