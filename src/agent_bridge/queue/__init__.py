"""Durable agent job queue and worker."""

from agent_bridge.queue.models import FailureClass, JobCreate, JobDetails, JobStatus, JobView
from agent_bridge.queue.repository import JobRepository
from agent_bridge.queue.worker import JobWorker, WorkerRunSummary

__all__ = [
    "FailureClass",
    "JobCreate",
    "JobDetails",
    "JobRepository",
    "JobStatus",
    "JobView",
    "JobWorker",
    "WorkerRunSummary",
]
