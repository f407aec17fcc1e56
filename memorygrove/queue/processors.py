"""
Job processors.

Adapters that run the media ingestion service for jobs claimed by the
queue and move each job to its terminal bucket.
"""

import logging

from pydantic import ValidationError

from memorygrove.common.metrics import track_job_processing
from memorygrove.media.service import IngestResult, MediaIngestService
from memorygrove.queue.interface import JobPayload, JobProcessor, JobRecord
from memorygrove.queue.supervisor import JobQueue

logger = logging.getLogger(__name__)


class MediaJobProcessor(JobProcessor):
    """
    Media job processor adapter.

    Wraps MediaIngestService to work with the queue system. Progress from
    each pipeline stage is written back to the job record.
    """

    def __init__(self, service: MediaIngestService):
        self.service = service

    def process(self, job: JobRecord, queue: JobQueue) -> None:
        try:
            result = self._run(job, queue)
        except Exception as e:
            logger.error(f"Media job {job.id} failed: {e}", exc_info=True)
            queue.fail_job(job.id, str(e) or type(e).__name__)
            return

        queue.complete_job(job.id)
        logger.info(f"Media job {job.id} stored image {result.asset_id}")

    @track_job_processing
    def _run(self, job: JobRecord, queue: JobQueue) -> IngestResult:
        try:
            payload = JobPayload.model_validate(job.data)
        except ValidationError as e:
            raise ValueError(f"Invalid job payload: {e.error_count()} error(s)") from e

        def report(progress: int, status: str) -> None:
            queue.report_progress(job.id, progress, status)

        return self.service.process(payload, report)
