"""Background job processing: priority queues, worker pools, maintenance."""

from agriai.jobs.job_queue import PriorityJobQueue
from agriai.jobs.queue_manager import QueueManager
from agriai.jobs.scheduler import MaintenanceScheduler, Schedule, next_run
from agriai.jobs.worker_pool import WorkerPool

__all__ = [
    "MaintenanceScheduler",
    "PriorityJobQueue",
    "QueueManager",
    "Schedule",
    "WorkerPool",
    "next_run",
]
