"""Queue manager: the single entry point for background work.

Three logical queues, each drained by its own :class:`WorkerPool`:

==========================  =========  ===========================================
Queue                       Workers    Jobs
==========================  =========  ===========================================
``document-processing``     5          ``process_document`` (one per document)
``notifications``           10         ``document_processed`` / ``document_failed``
``cleanup``                 1          ``cleanup_failed`` / ``cleanup_orphaned``
==========================  =========  ===========================================

Document jobs are ordered by priority then submission, wait a short delay
unless critical, retry with exponential backoff, and never run twice at the
same time for one document.  Every transition that matters to an operator
(queued, cancelled, completed, failed, stalled, retried) is appended to the
document's processing log.  Outcomes are announced by enqueuing a
notification job; only the notification worker talks to the session
registry.
"""

from __future__ import annotations

import itertools
import time
import uuid
from datetime import timedelta
from typing import Any

import structlog

from agriai.config.settings import Settings
from agriai.interfaces.document_store import IDocumentStore
from agriai.interfaces.object_storage import IObjectStorage
from agriai.interfaces.session_registry import ISessionRegistry
from agriai.jobs.job_queue import PriorityJobQueue
from agriai.jobs.scheduler import MaintenanceScheduler
from agriai.jobs.worker_pool import Heartbeat, WorkerPool
from agriai.models.document import DocumentStatus, ProcessingLogEntry, ProcessingStatus, utc_now
from agriai.models.queue import (
    CleanupReport,
    DocumentJobData,
    JobHandle,
    JobPriority,
    JobState,
    JobStatusReport,
    ProcessingJob,
    QueueName,
    QueueStats,
)
from agriai.models.rag import ProcessingResult
from agriai.services.ingestion.document_processor import DocumentProcessor
from agriai.utils.errors import (
    AgriAIError,
    DocumentNotFoundError,
    ProcessingFailedError,
)

logger = structlog.get_logger(logger_name=__name__)

NOTIFY_PROCESSED = "document_processed"
NOTIFY_FAILED = "document_failed"
CLEANUP_FAILED = "cleanup_failed"
CLEANUP_ORPHANED = "cleanup_orphaned"
CLEANUP_TASKS = (CLEANUP_FAILED, CLEANUP_ORPHANED)

# (keep_completed, keep_failed) per queue.
RETENTION = {
    QueueName.DOCUMENTS: (100, 50),
    QueueName.NOTIFICATIONS: (50, 25),
    QueueName.CLEANUP: (10, 5),
}

_STATUS_NAMES = {
    JobState.WAITING: "waiting",
    JobState.DELAYED: "waiting",
    JobState.STALLED: "waiting",
    JobState.ACTIVE: "active",
    JobState.COMPLETED: "completed",
    JobState.FAILED: "failed",
}


class QueueManager:
    """Owns the queues, their worker pools and the maintenance scheduler.

    Parameters
    ----------
    store:
        Document persistence; receives every processing-log event.
    storage:
        Object storage, used by the cleanup tasks.
    processor:
        Runs document jobs.
    sessions:
        Push-notification registry, used by the notification worker only.
    settings:
        Worker counts, attempts, backoff, delays and stall detection.
    maintenance:
        ``{schedule_id: {"job", "hour", "weekday"}}`` as loaded from YAML.
    clock:
        Monotonic clock shared by the queues, injectable for tests.
    """

    def __init__(
        self,
        store: IDocumentStore,
        storage: IObjectStorage,
        processor: DocumentProcessor,
        sessions: ISessionRegistry,
        settings: Settings,
        maintenance: dict[str, dict[str, Any]] | None = None,
        clock=time.monotonic,
    ) -> None:
        if settings.queue_backend_url != "memory://":
            raise ValueError(
                f"unsupported queue backend {settings.queue_backend_url!r}; only memory:// is available"
            )
        self._store = store
        self._storage = storage
        self._processor = processor
        self._sessions = sessions
        self._settings = settings
        self._maintenance = maintenance or {}
        self._clock = clock
        self._sequence = itertools.count(1)

        self.documents = self._build_queue(
            QueueName.DOCUMENTS, clock, backoff_base=settings.job_backoff_seconds
        )
        self.notifications = self._build_queue(QueueName.NOTIFICATIONS, clock)
        self.cleanup = self._build_queue(QueueName.CLEANUP, clock)

        stall = {
            "stall_timeout": settings.stall_timeout_seconds,
            "stall_check_interval": settings.stall_check_interval_seconds,
            "max_stalled_count": settings.max_stalled_count,
        }
        self._pools = [
            WorkerPool(
                self.documents,
                self._handle_document_job,
                concurrency=settings.document_workers,
                on_completed=self._on_document_completed,
                on_failed=self._on_document_failed,
                on_stalled=self._on_document_stalled,
                **stall,
            ),
            WorkerPool(
                self.notifications,
                self._handle_notification_job,
                concurrency=settings.notification_workers,
                **stall,
            ),
            WorkerPool(
                self.cleanup,
                self._handle_cleanup_job,
                concurrency=settings.cleanup_workers,
                **stall,
            ),
        ]
        self.scheduler = MaintenanceScheduler(self.enqueue_cleanup)

    @staticmethod
    def _build_queue(name: QueueName, clock, **kwargs: Any) -> PriorityJobQueue:
        keep_completed, keep_failed = RETENTION[name]
        return PriorityJobQueue(
            name.value, clock=clock, keep_completed=keep_completed, keep_failed=keep_failed, **kwargs
        )

    @property
    def document_pool(self) -> WorkerPool:
        return self._pools[0]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        for pool in self._pools:
            await pool.start()
        await self.scheduler.start()
        logger.info("queue_manager_started")

    async def shutdown(self, timeout: float = 30.0) -> None:
        await self.scheduler.stop()
        for pool in self._pools:
            await pool.stop(timeout=timeout)
        logger.info("queue_manager_stopped")

    # ------------------------------------------------------------------
    # Document jobs
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        document_id: str,
        priority: JobPriority | str = JobPriority.NORMAL,
        user_id: str = "system",
        is_reprocessing: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> JobHandle:
        """Queue *document_id* for processing.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist or is tombstoned.
        """
        document = await self._store.get_document(document_id)
        if document is None or document.is_deleted:
            raise DocumentNotFoundError(message=f"Document {document_id} not found")

        priority = JobPriority(priority)
        data = DocumentJobData(
            document_id=document_id,
            user_id=user_id,
            priority=priority,
            is_reprocessing=is_reprocessing,
            metadata=dict(metadata or {}),
        )
        delay = 0.0 if priority == JobPriority.CRITICAL else self._settings.non_critical_delay_seconds
        job = ProcessingJob.for_document(
            job_id=self._document_job_id(document_id),
            data=data,
            default_attempts=self._settings.job_max_attempts,
            sequence=next(self._sequence),
            available_at=self._clock() + delay,
        )
        await self.documents.add(job)

        await self._log_event(
            document_id,
            "queued",
            f"Queued for processing with {priority.value} priority",
            job_id=job.job_id,
            priority=priority.value,
            max_attempts=job.max_attempts,
            is_reprocessing=is_reprocessing,
        )
        logger.info(
            "document_job_queued",
            document_id=document_id,
            job_id=job.job_id,
            priority=priority.value,
        )
        return JobHandle(
            job_id=job.job_id,
            document_id=document_id,
            priority=priority,
            max_attempts=job.max_attempts,
            state=job.state,
        )

    async def submit(
        self,
        document_id: str,
        priority: JobPriority | str = JobPriority.NORMAL,
        user_id: str = "system",
        is_reprocessing: bool = False,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Like :meth:`enqueue` but returns the job id only."""
        handle = await self.enqueue(document_id, priority, user_id, is_reprocessing, metadata)
        return handle.job_id

    def stats(self) -> QueueStats:
        return self.documents.stats()

    def all_stats(self) -> dict[str, QueueStats]:
        return {queue.name: queue.stats() for queue in (self.documents, self.notifications, self.cleanup)}

    def status(self, document_id: str) -> JobStatusReport:
        """Status of the most recent job for *document_id*."""
        job = self.documents.latest_for_group(document_id)
        if job is None:
            return JobStatusReport(status="not_found")
        return JobStatusReport(
            status=_STATUS_NAMES[job.state],
            progress=job.progress,
            last_error=job.last_error,
            job_id=job.job_id,
            attempts_made=job.attempts_made,
            max_attempts=job.max_attempts,
        )

    async def cancel(self, document_id: str) -> bool:
        """Remove waiting or delayed jobs for *document_id*; active jobs keep running."""
        removed = await self.documents.cancel_group(document_id)
        if not removed:
            return False
        await self._log_event(
            document_id,
            "cancelled",
            "Queued processing cancelled",
            job_ids=[job.job_id for job in removed],
        )
        logger.info("document_job_cancelled", document_id=document_id, jobs=len(removed))
        return True

    async def retry(self, document_id: str) -> JobHandle | None:
        """Re-enqueue the most recent failed job for *document_id*."""
        failed = self.documents.latest_for_group(document_id, state=JobState.FAILED)
        if failed is None:
            return None

        data: DocumentJobData = failed.data
        handle = await self.enqueue(
            document_id,
            priority=data.priority,
            user_id=data.user_id,
            is_reprocessing=data.is_reprocessing,
            metadata={
                **data.metadata,
                "retry_of": failed.job_id,
                "retry_at": utc_now().isoformat(),
            },
        )
        await self.documents.remove(failed.job_id)
        await self._log_event(
            document_id,
            "retried",
            "Failed job re-enqueued",
            job_id=handle.job_id,
            retry_of=failed.job_id,
        )
        return handle

    def _document_job_id(self, document_id: str) -> str:
        base = f"doc-{document_id}-{int(time.time() * 1000)}"
        job_id = base
        suffix = 1
        while self.documents.has_job(job_id):
            job_id = f"{base}-{suffix}"
            suffix += 1
        return job_id

    async def _handle_document_job(self, job: ProcessingJob, heartbeat: Heartbeat) -> ProcessingResult:
        await heartbeat(10)
        result = await self._processor.process_document(job.document_id, progress=heartbeat)
        if not result.success:
            raise ProcessingFailedError(
                message=result.error or "Document processing failed",
                retryable=result.retryable,
                error_type=result.error_type,
            )
        await heartbeat(100)
        return result

    async def _on_document_completed(self, job: ProcessingJob, result: ProcessingResult) -> None:
        data: DocumentJobData = job.data
        await self._log_event(
            data.document_id,
            "completed",
            "Processing job completed",
            job_id=job.job_id,
            attempts=job.attempts_made,
            chunks_created=result.chunks_created,
            word_count=result.word_count,
        )
        await self._enqueue_notification(
            NOTIFY_PROCESSED,
            data,
            word_count=result.word_count,
            chunks_created=result.chunks_created,
            processing_time_ms=result.processing_time_ms,
        )

    async def _on_document_failed(self, job: ProcessingJob, error: BaseException, terminal: bool) -> None:
        data: DocumentJobData = job.data
        message = error.message if isinstance(error, AgriAIError) else str(error)
        error_type = (
            error.error_type if isinstance(error, ProcessingFailedError) else type(error).__name__
        )
        if not terminal:
            logger.info(
                "document_job_retry_scheduled",
                document_id=data.document_id,
                job_id=job.job_id,
                attempts_left=job.attempts_left,
            )
            return

        try:
            await self._store.update_document(
                data.document_id,
                status=DocumentStatus.FAILED,
                extraction_status=ProcessingStatus.FAILED,
                indexing_status=ProcessingStatus.FAILED,
            )
        except AgriAIError as exc:
            logger.warning("document_failure_not_recorded", document_id=data.document_id, error=str(exc))

        await self._log_event(
            data.document_id,
            "failed",
            message,
            level="error",
            job_id=job.job_id,
            error=message,
            error_type=error_type,
            attempts=job.attempts_made,
            max_attempts=job.max_attempts,
            stalled_count=job.stalled_count,
        )
        logger.error(
            "document_job_failed",
            document_id=data.document_id,
            job_id=job.job_id,
            error=message,
            error_type=error_type,
        )
        await self._enqueue_notification(
            NOTIFY_FAILED,
            data,
            error=message,
            error_type=error_type,
        )

    async def _on_document_stalled(self, job: ProcessingJob, terminal: bool) -> None:
        await self._log_event(
            job.document_id,
            "stalled",
            "Processing job stalled",
            level="warning",
            job_id=job.job_id,
            stalled_count=job.stalled_count,
            requeued=not terminal,
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def _enqueue_notification(self, kind: str, data: DocumentJobData, **payload: Any) -> str:
        job = ProcessingJob(
            job_id=f"notify-{uuid.uuid4().hex[:12]}",
            queue_name=QueueName.NOTIFICATIONS.value,
            name=kind,
            data={
                "type": kind,
                "document_id": data.document_id,
                "user_id": data.user_id,
                "payload": payload,
            },
            priority=JobPriority.NORMAL,
            max_attempts=1,
            sequence=next(self._sequence),
            available_at=self._clock(),
        )
        await self.notifications.add(job)
        return job.job_id

    async def _handle_notification_job(self, job: ProcessingJob, heartbeat: Heartbeat) -> int:
        data = job.data
        message = {
            "type": data["type"],
            "data": {"document_id": data["document_id"], **data["payload"]},
            "timestamp": utc_now().isoformat(),
        }
        delivered = await self._sessions.broadcast(message, user_id=data["user_id"])
        await self._log_event(
            data["document_id"],
            "notification_sent",
            f"{data['type']} notification sent",
            notification=data["type"],
            user_id=data["user_id"],
            delivered=delivered,
        )
        return delivered

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def enqueue_cleanup(self, task: str) -> str:
        """Queue one cleanup task; returns its job id."""
        if task not in CLEANUP_TASKS:
            raise ValueError(f"unknown cleanup task {task!r}")
        job = ProcessingJob(
            job_id=f"cleanup-{task}-{uuid.uuid4().hex[:8]}",
            queue_name=QueueName.CLEANUP.value,
            name=task,
            data={"task": task},
            max_attempts=1,
            sequence=next(self._sequence),
            available_at=self._clock(),
        )
        await self.cleanup.add(job)
        return job.job_id

    def schedule_maintenance(self) -> list[str]:
        """Register the configured maintenance schedules; returns the new ids."""
        registered = []
        for schedule_id, entry in self._maintenance.items():
            if self.scheduler.register(
                schedule_id,
                job_name=entry["job"],
                hour=int(entry.get("hour", 0)),
                weekday=entry.get("weekday"),
            ):
                registered.append(schedule_id)
        return registered

    async def _handle_cleanup_job(self, job: ProcessingJob, heartbeat: Heartbeat) -> CleanupReport:
        if job.name == CLEANUP_FAILED:
            return await self.cleanup_failed()
        if job.name == CLEANUP_ORPHANED:
            return await self.cleanup_orphaned()
        raise ValueError(f"unknown cleanup task {job.name!r}")

    async def cleanup_failed(self) -> CleanupReport:
        """Tombstone FAILED documents untouched for ``failed_retention_days``.

        The stored blob is deleted first; a deletion error is reported as a
        warning and the tombstone is still written.
        """
        cutoff = utc_now() - timedelta(days=self._settings.failed_retention_days)
        documents = await self._store.list_failed_before(cutoff)
        warnings: list[str] = []
        for document in documents:
            if document.source_key:
                try:
                    await self._storage.delete(document.source_key)
                except Exception as exc:  # noqa: BLE001 - reported, tombstone still applies
                    warnings.append(f"{document.source_key}: {exc}")
                    logger.warning(
                        "cleanup_blob_delete_failed",
                        document_id=document.id,
                        key=document.source_key,
                        error=str(exc),
                    )
            await self._store.soft_delete(document.id)

        logger.info("cleanup_failed_done", removed=len(documents), warnings=len(warnings))
        return CleanupReport(task=CLEANUP_FAILED, removed=len(documents), warnings=warnings)

    async def cleanup_orphaned(self) -> CleanupReport:
        """Delete stored files no live document references."""
        objects = await self._storage.list(self._settings.storage_prefix)
        live_keys = await self._store.live_source_keys()
        removed = 0
        warnings: list[str] = []
        for obj in objects:
            if obj.key in live_keys:
                continue
            try:
                await self._storage.delete(obj.key)
                removed += 1
            except Exception as exc:  # noqa: BLE001 - keep sweeping
                warnings.append(f"{obj.key}: {exc}")
                logger.warning("cleanup_orphan_delete_failed", key=obj.key, error=str(exc))

        logger.info("cleanup_orphaned_done", scanned=len(objects), removed=removed)
        return CleanupReport(task=CLEANUP_ORPHANED, removed=removed, warnings=warnings)

    # ------------------------------------------------------------------
    # Processing log
    # ------------------------------------------------------------------

    async def _log_event(
        self,
        document_id: str | None,
        event: str,
        message: str,
        level: str = "info",
        **metadata: Any,
    ) -> None:
        if document_id is None:
            return
        try:
            await self._store.append_processing_log(
                document_id,
                ProcessingLogEntry(level=level, event=event, message=message, metadata=metadata),
            )
        except AgriAIError as exc:
            logger.warning("processing_log_append_failed", document_id=document_id, event=event, error=str(exc))
