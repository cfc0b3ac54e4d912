"""Job queue models.

:class:`ProcessingJob` is a mutable, queue-resident record (a dataclass, not
a pydantic model) because workers and the stall monitor update it in place
many times per second.  It is never persisted relationally; the document's
processing log is the durable trail.

The rest are frozen pydantic snapshots handed to callers: :class:`JobHandle`
on enqueue, :class:`JobStatusReport` on polling, :class:`QueueStats` for
queue depth, :class:`CleanupReport` for maintenance runs.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from agriai.models.document import utc_now


class JobPriority(str, Enum):  # noqa: UP042
    """Submission priority; ``weight`` decides dequeue order."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> int:
        return _PRIORITY_WEIGHTS[self]


_PRIORITY_WEIGHTS = {
    JobPriority.CRITICAL: 100,
    JobPriority.HIGH: 75,
    JobPriority.NORMAL: 50,
    JobPriority.LOW: 25,
}


class JobState(str, Enum):  # noqa: UP042
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    STALLED = "stalled"


class QueueName(str, Enum):  # noqa: UP042
    DOCUMENTS = "document-processing"
    CLEANUP = "cleanup"
    NOTIFICATIONS = "notifications"


@dataclass(frozen=True)
class DocumentJobData:
    """Payload of a document-processing job."""

    document_id: str
    user_id: str
    priority: JobPriority = JobPriority.NORMAL
    is_reprocessing: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProcessingJob:
    """A job resident in one logical queue.

    Ordering (``__lt__``) puts higher priority weight first and, within one
    weight, the earlier submission first.  Timing fields ``available_at``
    and ``last_heartbeat`` are ``time.monotonic()`` readings.
    """

    job_id: str
    queue_name: str
    name: str
    data: Any
    priority: JobPriority = JobPriority.NORMAL
    max_attempts: int = 1
    sequence: int = 0
    group_key: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    state: JobState = JobState.WAITING
    attempts_made: int = 0
    stalled_count: int = 0
    progress: int = 0
    last_error: str | None = None
    result: Any = None

    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    available_at: float = field(default_factory=time.monotonic)
    last_heartbeat: float | None = None
    # Incremented on every activation; results carrying an older token
    # belong to an abandoned attempt.
    attempt_token: int = 0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        data = self.data
        if isinstance(data, DocumentJobData) and data.is_reprocessing and self.max_attempts != 1:
            raise ValueError("reprocessing jobs get exactly one attempt")

    def __lt__(self, other: ProcessingJob) -> bool:
        if self.priority.weight != other.priority.weight:
            return self.priority.weight > other.priority.weight
        return self.sequence < other.sequence

    @classmethod
    def for_document(
        cls,
        job_id: str,
        data: DocumentJobData,
        default_attempts: int,
        sequence: int = 0,
        available_at: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ProcessingJob:
        """Build a document job, deriving the attempt budget from the payload.

        Reprocessing is itself a corrective action, so it gets exactly one
        attempt; every other job gets *default_attempts*.
        """
        return cls(
            job_id=job_id,
            queue_name=QueueName.DOCUMENTS.value,
            name="process_document",
            data=data,
            priority=data.priority,
            max_attempts=1 if data.is_reprocessing else default_attempts,
            sequence=sequence,
            group_key=data.document_id,
            metadata=dict(metadata or data.metadata),
            available_at=time.monotonic() if available_at is None else available_at,
        )

    @property
    def document_id(self) -> str | None:
        if isinstance(self.data, DocumentJobData):
            return self.data.document_id
        if isinstance(self.data, dict):
            return self.data.get("document_id")
        return None

    @property
    def attempts_left(self) -> int:
        return max(0, self.max_attempts - self.attempts_made)

    @property
    def is_terminal(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)


class JobHandle(BaseModel):
    """What the caller gets back from an enqueue."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    document_id: str
    priority: JobPriority
    max_attempts: int
    state: JobState


class JobStatusReport(BaseModel):
    """Pollable status of the most recent job for a document."""

    model_config = ConfigDict(frozen=True)

    status: str = Field(description="not_found, waiting, active, completed or failed.")
    progress: int = 0
    last_error: str | None = None
    job_id: str | None = None
    attempts_made: int = 0
    max_attempts: int = 0


class QueueStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0


class CleanupReport(BaseModel):
    """Outcome of one maintenance task."""

    model_config = ConfigDict(frozen=True)

    task: str
    removed: int = 0
    warnings: list[str] = Field(default_factory=list)
