# API routes

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from memorygrove.queue.interface import JobPayload, JobStoreError
from memorygrove.queue.supervisor import JobQueue

logger = logging.getLogger(__name__)

router = APIRouter()


class SubmitResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    status: str


class JobStatusResponse(BaseModel):
    state: str
    progress: Optional[int] = None
    status: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


def get_job_queue(request: Request) -> JobQueue:
    job_queue = getattr(request.app.state, "job_queue", None)
    if job_queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue is not running",
        )
    return job_queue


@router.post(
    "/jobs",
    response_model=SubmitResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
def submit_job(payload: JobPayload, job_queue: JobQueue = Depends(get_job_queue)):
    """
    Queue an uploaded image for processing.

    Returns 202 Accepted immediately with the job id; progress is read
    from the status endpoint.
    """
    try:
        job_id = job_queue.submit(payload.to_wire())
    except JobStoreError as e:
        logger.error(f"Failed to enqueue job: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to enqueue job: {e}")
    return SubmitResponse(job_id=job_id, status="queued")


@router.get(
    "/jobs/{job_id}/status",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
)
def get_job_status(job_id: str, job_queue: JobQueue = Depends(get_job_queue)):
    """
    Get processing state for a job.

    Unknown ids answer with state ``notfound`` rather than 404.
    """
    try:
        job_status = job_queue.query_state(job_id)
    except JobStoreError as e:
        logger.error(f"Failed to read job {job_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to read job: {e}")
    return JobStatusResponse(**job_status.to_dict())
