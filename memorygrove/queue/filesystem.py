"""
File-backed job store.

Each record is one JSON file named ``<job_id>.json`` inside a bucket
directory (processing/, completed/, failed/). Writes go through a temp
file and ``os.replace`` so readers never see a partial record, and bucket
transitions are single renames.
"""

import json
import logging
import os
import re
import uuid
from pathlib import Path
from typing import List, Optional, Tuple

from memorygrove.queue.interface import (
    BUCKETS,
    JobRecord,
    JobState,
    JobStore,
    JobStoreError,
)

logger = logging.getLogger(__name__)

_JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class FileJobStore(JobStore):
    """Job store rooted at a directory on the local filesystem."""

    def __init__(self, root: str = "./queue"):
        self.root = Path(root)
        for bucket in BUCKETS:
            self._bucket_dir(bucket).mkdir(parents=True, exist_ok=True)
        logger.info(f"Job store initialized at {self.root.resolve()}")

    def _bucket_dir(self, bucket: JobState) -> Path:
        if bucket not in BUCKETS:
            raise JobStoreError(f"Unknown bucket: {bucket}")
        return self.root / bucket.value

    def _record_path(self, bucket: JobState, job_id: str) -> Path:
        if not _JOB_ID_PATTERN.match(job_id):
            raise JobStoreError(f"Invalid job id: {job_id!r}")
        return self._bucket_dir(bucket) / f"{job_id}.json"

    def save(self, bucket: JobState, record: JobRecord) -> None:
        path = self._record_path(bucket, record.id)
        tmp_path = path.with_name(f".{record.id}.{uuid.uuid4().hex}.tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise JobStoreError(f"Failed to write job {record.id}: {e}") from e

    def load(self, bucket: JobState, job_id: str) -> Optional[JobRecord]:
        try:
            path = self._record_path(bucket, job_id)
        except JobStoreError:
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise JobStoreError(f"Corrupt job record {path}: {e}") from e

        try:
            return JobRecord.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            raise JobStoreError(f"Corrupt job record {path}: {e}") from e

    def find(self, job_id: str) -> Optional[Tuple[JobState, JobRecord]]:
        # Processing first: a record moved mid-search is found in its new bucket
        for bucket in BUCKETS:
            record = self.load(bucket, job_id)
            if record is not None:
                return bucket, record
        return None

    def list_ids(self, bucket: JobState) -> List[str]:
        entries = []
        with os.scandir(self._bucket_dir(bucket)) as it:
            for entry in it:
                if not entry.name.endswith(".json") or entry.name.startswith("."):
                    continue
                try:
                    mtime = entry.stat().st_mtime_ns
                except FileNotFoundError:
                    continue
                entries.append((mtime, entry.name[:-len(".json")]))
        entries.sort()
        return [job_id for _, job_id in entries]

    def move(
        self,
        job_id: str,
        source: JobState,
        target: JobState,
        record: Optional[JobRecord] = None,
    ) -> None:
        source_path = self._record_path(source, job_id)
        if not source_path.exists():
            raise JobStoreError(f"Job {job_id} is not in {source.value}")
        if record is not None:
            self.save(source, record)
        try:
            os.replace(source_path, self._record_path(target, job_id))
        except FileNotFoundError as e:
            raise JobStoreError(f"Job {job_id} is not in {source.value}") from e
        except OSError as e:
            raise JobStoreError(f"Failed to move job {job_id}: {e}") from e
        logger.debug(f"Moved job {job_id} from {source.value} to {target.value}")

    def delete(self, bucket: JobState, job_id: str) -> bool:
        try:
            self._record_path(bucket, job_id).unlink()
            return True
        except FileNotFoundError:
            return False
