"""
Queue interface for ingestion jobs.

Defines the persisted job record, the status view returned to callers,
the submission payload, and the abstract store and processor contracts
the dispatcher is built on.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from memorygrove.queue.supervisor import JobQueue


class JobState(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    NOTFOUND = "notfound"


# Storage buckets, in the order lookups search them
BUCKETS = (JobState.PROCESSING, JobState.COMPLETED, JobState.FAILED)
TERMINAL_BUCKETS = (JobState.COMPLETED, JobState.FAILED)


class JobStoreError(Exception):
    """Raised when a job record cannot be read or written."""
    pass


@dataclass
class JobRecord:
    """One persisted job: {id, data, timestamp, progress, status}."""
    id: str
    data: Dict[str, Any]
    timestamp: int  # epoch milliseconds at submission
    progress: int = 0
    status: str = "queued"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "data": self.data,
            "timestamp": self.timestamp,
            "progress": self.progress,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "JobRecord":
        return cls(
            id=str(raw["id"]),
            data=dict(raw.get("data") or {}),
            timestamp=int(raw["timestamp"]),
            progress=int(raw.get("progress", 0)),
            status=str(raw.get("status", "")),
        )


@dataclass
class JobStatus:
    """Answer to a state query."""
    state: JobState
    progress: Optional[int] = None
    status: Optional[str] = None
    data: Optional[Dict[str, Any]] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"state": self.state.value}
        if self.progress is not None:
            result["progress"] = self.progress
        if self.status is not None:
            result["status"] = self.status
        if self.data is not None:
            result["data"] = self.data
        return result


class JobPayload(BaseModel):
    """
    Submitter-supplied job data.

    Wire keys are camelCase; unknown keys are kept so a payload survives a
    round trip through the store unchanged.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    source_path: str = Field(alias="sourcePath", min_length=1)
    original_name: str = Field(alias="originalName", min_length=1)
    group_id: Optional[int] = Field(default=None, alias="groupId")
    owner_id: int = Field(alias="ownerId")
    context_id: int = Field(alias="contextId")
    type_hint: Optional[str] = Field(default=None, alias="typeHint")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class JobStore(ABC):
    """
    Durable storage for job records, partitioned into buckets.

    A record lives in exactly one bucket; moving it is the only way it
    changes location.
    """

    @abstractmethod
    def save(self, bucket: JobState, record: JobRecord) -> None:
        """Write (or overwrite) a record in a bucket atomically."""
        pass

    @abstractmethod
    def load(self, bucket: JobState, job_id: str) -> Optional[JobRecord]:
        """
        Read a record from a bucket.

        Returns:
            The record, or None if it is not in that bucket

        Raises:
            JobStoreError: If the record exists but cannot be parsed
        """
        pass

    @abstractmethod
    def find(self, job_id: str) -> Optional[Tuple[JobState, JobRecord]]:
        """Locate a record in any bucket."""
        pass

    @abstractmethod
    def list_ids(self, bucket: JobState) -> List[str]:
        """Job ids in a bucket, oldest first."""
        pass

    @abstractmethod
    def move(
        self,
        job_id: str,
        source: JobState,
        target: JobState,
        record: Optional[JobRecord] = None,
    ) -> None:
        """
        Move a record between buckets, optionally rewriting it first.

        Raises:
            JobStoreError: If the record is not in the source bucket
        """
        pass

    @abstractmethod
    def delete(self, bucket: JobState, job_id: str) -> bool:
        """Delete a record; returns False if it was not there."""
        pass


class JobProcessor(ABC):
    """Executes one claimed job and moves it to a terminal bucket."""

    @abstractmethod
    def process(self, job: JobRecord, queue: "JobQueue") -> None:
        """
        Run a job to completion.

        Implementations report progress with ``queue.report_progress`` and
        finish with ``queue.complete_job`` or ``queue.fail_job``.
        """
        pass
