"""
Unit tests for the job queue and dispatcher.
"""

import threading
import time
from datetime import timedelta

import pytest

from memorygrove.queue import create_job_queue
from memorygrove.queue.filesystem import FileJobStore
from memorygrove.queue.interface import JobProcessor, JobState, JobStoreError
from memorygrove.queue.supervisor import JobQueue


class CompletingProcessor(JobProcessor):
    """Reports a few progress steps, then completes."""

    def __init__(self, delay=0.0, steps=(10, 50)):
        self.delay = delay
        self.steps = steps
        self.running = 0
        self.max_running = 0
        self.processed = []
        self.progress_seen = {}
        self._lock = threading.Lock()

    def process(self, job, queue):
        with self._lock:
            self.running += 1
            self.max_running = max(self.max_running, self.running)
        try:
            seen = [job.progress]
            for step in self.steps:
                time.sleep(self.delay)
                seen.append(queue.report_progress(job.id, step, f"step {step}").progress)
            queue.complete_job(job.id)
            seen.append(queue.get_job(job.id).progress)
            with self._lock:
                self.progress_seen[job.id] = seen
                self.processed.append(job.id)
        finally:
            with self._lock:
                self.running -= 1


class RaisingProcessor(JobProcessor):
    def process(self, job, queue):
        queue.report_progress(job.id, 40, "Format normalized")
        raise RuntimeError("disk on fire")


class LazyProcessor(JobProcessor):
    def process(self, job, queue):
        pass


@pytest.fixture
def store(tmp_path):
    return FileJobStore(str(tmp_path / "queue"))


def make_queue(store, processor, **kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    return JobQueue(store, processor, **kwargs)


PAYLOAD = {
    "sourcePath": "/tmp/upload.jpg",
    "originalName": "upload.jpg",
    "ownerId": 7,
    "contextId": 3,
}


class TestSubmitAndQuery:

    def test_submit_creates_processing_record(self, store):
        queue = make_queue(store, LazyProcessor())

        job_id = queue.submit(PAYLOAD)

        status = queue.query_state(job_id)
        assert status.state == JobState.PROCESSING
        assert status.progress == 0
        assert status.status == "queued"

    def test_record_round_trip(self, store):
        queue = make_queue(store, LazyProcessor())
        payload = dict(PAYLOAD, groupId=12, extra="kept")

        job_id = queue.submit(payload)

        assert queue.get_job(job_id).data == dict(payload, id=job_id)

    def test_submit_does_not_mutate_payload(self, store):
        queue = make_queue(store, LazyProcessor())
        payload = dict(PAYLOAD)

        queue.submit(payload)

        assert "id" not in payload

    def test_timestamp_from_clock(self, store):
        queue = make_queue(store, LazyProcessor(), clock=lambda: 1_700_000_000.5)

        job_id = queue.submit(PAYLOAD)

        assert queue.get_job(job_id).timestamp == 1_700_000_000_500

    def test_unknown_job_is_notfound(self, store):
        queue = make_queue(store, LazyProcessor())

        status = queue.query_state("missing")

        assert status.state == JobState.NOTFOUND
        assert status.to_dict() == {"state": "notfound"}

    def test_query_is_idempotent(self, store):
        queue = make_queue(store, LazyProcessor())
        job_id = queue.submit(PAYLOAD)

        assert queue.query_state(job_id) == queue.query_state(job_id)

    def test_invalid_concurrency(self, store):
        with pytest.raises(ValueError):
            make_queue(store, LazyProcessor(), concurrency=0)


class TestProgressUpdates:

    def test_progress_never_decreases(self, store):
        queue = make_queue(store, LazyProcessor())
        job_id = queue.submit(PAYLOAD)

        queue.report_progress(job_id, 60, "Large thumbnail created")
        updated = queue.report_progress(job_id, 30, "late report")

        assert updated.progress == 60
        assert queue.get_job(job_id).progress == 60
        assert queue.get_job(job_id).status == "late report"

    def test_update_requires_in_flight_job(self, store):
        queue = make_queue(store, LazyProcessor())
        job_id = queue.submit(PAYLOAD)
        queue.complete_job(job_id)

        with pytest.raises(JobStoreError):
            queue.report_progress(job_id, 50, "too late")

    def test_complete_sets_100(self, store):
        queue = make_queue(store, LazyProcessor())
        job_id = queue.submit(PAYLOAD)

        queue.complete_job(job_id)

        status = queue.query_state(job_id)
        assert status.state == JobState.COMPLETED
        assert status.progress == 100
        assert status.status == "Completed"

    def test_fail_resets_progress_and_stores_error(self, store):
        queue = make_queue(store, LazyProcessor())
        job_id = queue.submit(PAYLOAD)
        queue.report_progress(job_id, 70, "Small thumbnail created")

        queue.fail_job(job_id, "Source file not found: /tmp/upload.jpg")

        status = queue.query_state(job_id)
        assert status.state == JobState.FAILED
        assert status.progress == 0
        assert status.status == "Source file not found: /tmp/upload.jpg"
        assert status.data["sourcePath"] == "/tmp/upload.jpg"


class TestDispatcher:

    def test_bounded_concurrency(self, store):
        processor = CompletingProcessor(delay=0.03)
        queue = make_queue(store, processor, concurrency=2)
        job_ids = [queue.submit(PAYLOAD) for _ in range(8)]

        queue.start()
        try:
            assert queue.wait_until_idle(timeout=20)
        finally:
            queue.stop()

        assert processor.max_running <= 2
        assert queue.peak_active_count <= 2
        assert sorted(processor.processed) == sorted(job_ids)
        for job_id in job_ids:
            assert queue.query_state(job_id).state == JobState.COMPLETED

    def test_progress_sequence_is_monotonic(self, store):
        processor = CompletingProcessor(steps=(10, 5, 50))
        queue = make_queue(store, processor)
        job_id = queue.submit(PAYLOAD)

        queue.tick()
        assert queue.wait_until_idle(timeout=10)

        seen = processor.progress_seen[job_id]
        assert seen == sorted(seen)
        assert seen[-1] == 100

    def test_tick_respects_capacity(self, store):
        release = threading.Event()

        class BlockingProcessor(JobProcessor):
            def process(self, job, queue):
                release.wait(5)
                queue.complete_job(job.id)

        queue = make_queue(store, BlockingProcessor(), concurrency=1)
        queue.submit(PAYLOAD)
        queue.submit(PAYLOAD)

        try:
            assert queue.tick() == 1
            assert queue.tick() == 0
            assert queue.active_count == 1
        finally:
            release.set()

        deadline = time.monotonic() + 10
        while queue.active_count and time.monotonic() < deadline:
            time.sleep(0.01)
        assert queue.active_count == 0
        assert len(store.list_ids(JobState.PROCESSING)) == 1

    def test_processor_exception_fails_job(self, store):
        queue = make_queue(store, RaisingProcessor())
        job_id = queue.submit(PAYLOAD)

        queue.tick()
        queue.wait_until_idle(timeout=10)

        status = queue.query_state(job_id)
        assert status.state == JobState.FAILED
        assert status.status == "disk on fire"
        assert status.progress == 0
        assert queue.active_count == 0

    def test_unfinished_job_is_failed(self, store):
        queue = make_queue(store, LazyProcessor())
        job_id = queue.submit(PAYLOAD)

        queue.tick()
        queue.wait_until_idle(timeout=10)

        status = queue.query_state(job_id)
        assert status.state == JobState.FAILED
        assert "without finishing" in status.status

    def test_jobs_left_in_processing_resume_on_restart(self, store):
        first = make_queue(store, LazyProcessor())
        job_id = first.submit(PAYLOAD)

        processor = CompletingProcessor()
        second = make_queue(store, processor)
        second.start()
        try:
            assert second.wait_until_idle(timeout=10)
        finally:
            second.stop()

        assert processor.processed == [job_id]
        assert second.query_state(job_id).state == JobState.COMPLETED

    def test_corrupt_record_moved_to_failed(self, store):
        queue = make_queue(store, CompletingProcessor())
        (store.root / "processing" / "broken.json").write_text("{oops")

        queue.tick()

        assert store.list_ids(JobState.PROCESSING) == []
        assert store.list_ids(JobState.FAILED) == ["broken"]
        assert queue.active_count == 0

    def test_stop_is_idempotent(self, store):
        queue = make_queue(store, LazyProcessor())
        queue.start()
        queue.stop()
        queue.stop()
        assert queue.running is False


class TestRetentionSweep:

    def test_sweeps_only_old_terminal_records(self, store):
        now = [1_700_000_000.0]
        queue = make_queue(
            store, LazyProcessor(),
            retention=timedelta(hours=24),
            clock=lambda: now[0],
        )
        done = queue.submit(PAYLOAD)
        failed = queue.submit(PAYLOAD)
        pending = queue.submit(PAYLOAD)
        queue.complete_job(done)
        queue.fail_job(failed, "boom")

        now[0] += 3600
        fresh = queue.submit(PAYLOAD)
        queue.complete_job(fresh)

        removed = queue.sweep_expired(now=1_700_000_000.0 + 24.5 * 3600)

        assert removed == 2
        assert queue.query_state(done).state == JobState.NOTFOUND
        assert queue.query_state(failed).state == JobState.NOTFOUND
        assert queue.query_state(pending).state == JobState.PROCESSING
        assert queue.query_state(fresh).state == JobState.COMPLETED

    def test_nothing_to_sweep(self, store):
        queue = make_queue(store, LazyProcessor())
        queue.complete_job(queue.submit(PAYLOAD))

        assert queue.sweep_expired() == 0


class TestFactory:

    def test_create_job_queue_from_settings(self, test_settings):
        queue = create_job_queue(LazyProcessor(), test_settings)

        assert queue.concurrency == 2
        assert queue.poll_interval == pytest.approx(0.02)
        assert queue.retention == timedelta(hours=24)
