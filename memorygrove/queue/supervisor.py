"""
Job queue with a background dispatcher.

The dispatcher thread wakes on a fixed interval, claims unclaimed records
from the processing bucket up to the concurrency bound, and runs each
claimed job on its own worker thread. Claims live in memory only, so a
record left in processing by a crash is picked up again on restart.
"""

import itertools
import logging
import threading
import time
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, Mapping, Optional, Set

from memorygrove.common.logging_config import job_context
from memorygrove.common.metrics import (
    jobs_in_flight,
    jobs_submitted_total,
    jobs_swept_total,
    queue_depth,
)
from memorygrove.queue.interface import (
    TERMINAL_BUCKETS,
    JobProcessor,
    JobRecord,
    JobState,
    JobStatus,
    JobStore,
    JobStoreError,
)

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Durable job queue and dispatcher.

    At most ``concurrency`` jobs run at once and a job id is never claimed
    twice while its worker is running. There are no retries: a job that
    fails is moved to the failed bucket and stays there.
    """

    def __init__(
        self,
        store: JobStore,
        processor: JobProcessor,
        concurrency: int = 1,
        poll_interval: float = 0.5,
        retention: timedelta = timedelta(hours=24),
        sweep_interval: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the queue.

        Args:
            store: Durable record storage
            processor: Executes claimed jobs
            concurrency: Maximum number of jobs running at once
            poll_interval: Seconds between dispatcher ticks
            retention: Age after which terminal records are swept
            sweep_interval: Seconds between retention sweeps
            clock: Wall-clock source in epoch seconds
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.store = store
        self.processor = processor
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.retention = retention
        self.sweep_interval = sweep_interval
        self.clock = clock

        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._claimed: Set[str] = set()
        self._workers: Dict[str, threading.Thread] = {}
        self._worker_seq = itertools.count(1)
        self._peak_active = 0
        self._shutdown_event = threading.Event()
        self._dispatcher: Optional[threading.Thread] = None
        self._last_sweep: Optional[float] = None
        self.running = False

    # ========== Submission and queries ==========

    def submit(self, payload: Mapping[str, Any]) -> str:
        """
        Persist a new job in the processing bucket.

        Returns:
            The new job id
        """
        job_id = uuid.uuid4().hex
        data = dict(payload)
        data["id"] = job_id
        record = JobRecord(
            id=job_id,
            data=data,
            timestamp=int(self.clock() * 1000),
            progress=0,
            status="queued",
        )
        self.store.save(JobState.PROCESSING, record)
        jobs_submitted_total.inc()
        logger.info(
            f"Job {job_id} submitted",
            extra={"extra_fields": {"job_id": job_id}},
        )
        return job_id

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        found = self.store.find(job_id)
        return found[1] if found else None

    def query_state(self, job_id: str) -> JobStatus:
        """Current state of a job; has no side effects."""
        found = self.store.find(job_id)
        if found is None:
            return JobStatus(state=JobState.NOTFOUND)
        bucket, record = found
        return JobStatus(
            state=bucket,
            progress=record.progress,
            status=record.status,
            data=record.data,
        )

    # ========== Worker-side transitions ==========

    def _load_in_flight(self, job_id: str) -> JobRecord:
        record = self.store.load(JobState.PROCESSING, job_id)
        if record is None:
            raise JobStoreError(f"Job {job_id} is not in processing")
        return record

    def update_job(self, record: JobRecord) -> JobRecord:
        """
        Rewrite an in-flight record. Progress never moves backwards.

        Raises:
            JobStoreError: If the job is not in the processing bucket
        """
        current = self._load_in_flight(record.id)
        if record.progress < current.progress:
            record = JobRecord(
                id=record.id,
                data=record.data,
                timestamp=record.timestamp,
                progress=current.progress,
                status=record.status,
            )
        self.store.save(JobState.PROCESSING, record)
        return record

    def report_progress(self, job_id: str, progress: int, status: str) -> JobRecord:
        record = self._load_in_flight(job_id)
        record.progress = max(0, min(100, int(progress)))
        record.status = status
        return self.update_job(record)

    def complete_job(self, job_id: str, status: str = "Completed") -> None:
        record = self._load_in_flight(job_id)
        record.progress = 100
        record.status = status
        self.store.move(job_id, JobState.PROCESSING, JobState.COMPLETED, record)
        logger.info(f"Job {job_id} completed")

    def fail_job(self, job_id: str, error: str) -> None:
        record = self._load_in_flight(job_id)
        record.progress = 0
        record.status = error or "Unknown error"
        self.store.move(job_id, JobState.PROCESSING, JobState.FAILED, record)
        logger.warning(f"Job {job_id} failed: {record.status}")

    # ========== Dispatcher ==========

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._claimed)

    @property
    def peak_active_count(self) -> int:
        with self._lock:
            return self._peak_active

    def _release(self, job_id: str) -> None:
        with self._lock:
            self._claimed.discard(job_id)
            self._workers.pop(job_id, None)
            self._idle.notify_all()

    def tick(self) -> int:
        """
        Claim and start as many pending jobs as capacity allows.

        Returns:
            Number of jobs started
        """
        pending = self.store.list_ids(JobState.PROCESSING)
        queue_depth.set(len(pending))
        started = 0

        for job_id in pending:
            with self._lock:
                if len(self._claimed) >= self.concurrency:
                    break
                if job_id in self._claimed:
                    continue
                self._claimed.add(job_id)
                self._peak_active = max(self._peak_active, len(self._claimed))

            try:
                record = self.store.load(JobState.PROCESSING, job_id)
            except JobStoreError as e:
                logger.error(f"Unreadable job record {job_id}, moving to failed: {e}")
                try:
                    self.store.move(job_id, JobState.PROCESSING, JobState.FAILED)
                finally:
                    self._release(job_id)
                continue

            if record is None:
                # Finished or deleted since the listing
                self._release(job_id)
                continue

            worker = threading.Thread(
                target=self._run_job,
                args=(record,),
                name=f"Worker-{next(self._worker_seq)}",
                daemon=True,
            )
            with self._lock:
                self._workers[job_id] = worker
            worker.start()
            started += 1

        if started:
            logger.debug(f"Dispatcher started {started} job(s)")
        return started

    def _run_job(self, record: JobRecord) -> None:
        jobs_in_flight.inc()
        try:
            with job_context(record.id):
                logger.info(f"{threading.current_thread().name} processing job {record.id}")
                try:
                    self.processor.process(record, self)
                except Exception as e:
                    logger.error(f"Job {record.id} raised: {e}", exc_info=True)
                    self._fail_if_in_flight(record.id, str(e) or type(e).__name__)
                else:
                    self._fail_if_in_flight(
                        record.id, "Processor returned without finishing the job")
        finally:
            jobs_in_flight.dec()
            self._release(record.id)

    def _fail_if_in_flight(self, job_id: str, error: str) -> None:
        try:
            if self.store.load(JobState.PROCESSING, job_id) is not None:
                self.fail_job(job_id, error)
        except JobStoreError as e:
            logger.error(f"Could not mark job {job_id} as failed: {e}")

    def sweep_expired(self, now: Optional[float] = None) -> int:
        """
        Delete terminal records older than the retention period.

        Args:
            now: Epoch seconds to measure age against (defaults to the clock)

        Returns:
            Number of records deleted
        """
        now = self.clock() if now is None else now
        cutoff_ms = int((now - self.retention.total_seconds()) * 1000)
        removed = 0

        for bucket in TERMINAL_BUCKETS:
            for job_id in self.store.list_ids(bucket):
                try:
                    record = self.store.load(bucket, job_id)
                except JobStoreError as e:
                    logger.warning(f"Skipping unreadable record during sweep: {e}")
                    continue
                if record is None or record.timestamp >= cutoff_ms:
                    continue
                if self.store.delete(bucket, job_id):
                    removed += 1
                    jobs_swept_total.labels(bucket=bucket.value).inc()

        if removed:
            logger.info(f"Retention sweep removed {removed} job record(s)")
        return removed

    def _dispatch_loop(self) -> None:
        logger.info("Dispatcher started")
        while not self._shutdown_event.is_set():
            try:
                self.tick()
                now = self.clock()
                if self._last_sweep is None or now - self._last_sweep >= self.sweep_interval:
                    self._last_sweep = now
                    self.sweep_expired(now)
            except Exception as e:
                logger.error(f"Dispatcher error: {e}", exc_info=True)
            self._shutdown_event.wait(self.poll_interval)
        logger.info("Dispatcher stopped")

    # ========== Lifecycle ==========

    def start(self) -> None:
        """Start the dispatcher thread."""
        if self.running:
            logger.warning("Job queue already running")
            return

        resumed = len(self.store.list_ids(JobState.PROCESSING))
        if resumed:
            logger.info(f"Resuming {resumed} job(s) left in processing")

        self.running = True
        self._shutdown_event.clear()
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop,
            name="Dispatcher",
            daemon=True,
        )
        self._dispatcher.start()
        logger.info(
            f"Job queue started (concurrency={self.concurrency}, "
            f"poll_interval={self.poll_interval}s)"
        )

    def stop(self, timeout: float = 30.0) -> None:
        """
        Stop dispatching and wait for running jobs to finish.

        Args:
            timeout: Maximum seconds to wait overall
        """
        if not self.running:
            return

        logger.info("Stopping job queue...")
        deadline = time.monotonic() + timeout
        self.running = False
        self._shutdown_event.set()
        if self._dispatcher is not None:
            self._dispatcher.join(timeout=max(0.0, deadline - time.monotonic()))
            self._dispatcher = None

        with self._lock:
            workers = list(self._workers.values())
        for worker in workers:
            worker.join(timeout=max(0.0, deadline - time.monotonic()))
            if worker.is_alive():
                logger.warning(f"Worker {worker.name} did not stop gracefully")
        logger.info("Job queue stopped")

    def wait_until_idle(self, timeout: float = 30.0) -> bool:
        """
        Block until nothing is pending or running.

        Returns:
            True if the queue drained before the timeout
        """
        deadline = time.monotonic() + timeout
        while True:
            pending = self.store.list_ids(JobState.PROCESSING)
            with self._lock:
                if not pending and not self._claimed:
                    return True
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._idle.wait(min(remaining, self.poll_interval))
