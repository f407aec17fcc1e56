"""
Queue module for durable background job processing.

Provides the file-backed job store, the dispatcher, and a factory that
builds a queue from configuration.
"""

from datetime import timedelta
from typing import Optional

from memorygrove.config.settings import Settings, get_settings
from memorygrove.queue.filesystem import FileJobStore
from memorygrove.queue.interface import (
    JobPayload,
    JobProcessor,
    JobRecord,
    JobState,
    JobStatus,
    JobStore,
    JobStoreError,
)
from memorygrove.queue.supervisor import JobQueue


def create_job_queue(
    processor: JobProcessor,
    settings: Optional[Settings] = None,
) -> JobQueue:
    """
    Factory function to create a job queue from settings.

    Returns:
        JobQueue backed by a FileJobStore at ``settings.queue_path``
    """
    settings = settings or get_settings()
    return JobQueue(
        store=FileJobStore(settings.queue_path),
        processor=processor,
        concurrency=settings.queue_concurrency,
        poll_interval=settings.queue_poll_interval_ms / 1000,
        retention=timedelta(hours=settings.queue_retention_hours),
        sweep_interval=settings.queue_sweep_interval_seconds,
    )


__all__ = [
    "FileJobStore",
    "JobPayload",
    "JobProcessor",
    "JobQueue",
    "JobRecord",
    "JobState",
    "JobStatus",
    "JobStore",
    "JobStoreError",
    "create_job_queue",
]
