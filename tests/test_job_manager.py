"""
Tests for the proof job queue and worker pool.
"""

import threading
import time
from datetime import datetime

import pytest

from proof_worker.job_manager import JobManager, RetryPolicy
from proof_worker.models import JobStatus, Proof, ProofStage

NO_BACKOFF = RetryPolicy(max_attempts=3, backoff_seconds=0)


def _proof(job) -> Proof:
    return Proof(
        id=f"proof-{job.order_id}-{job.version}",
        order_id=job.order_id,
        version=job.version,
        pdf_path=f"{job.order_id}/v{job.version}/proof.pdf",
        approval_token="token",
        created_at=datetime.utcnow(),
    )


@pytest.fixture
def manager_factory():
    managers = []

    def _make(handler, **kwargs):
        manager = JobManager(handler, **kwargs)
        managers.append(manager)
        return manager

    yield _make
    for manager in managers:
        manager.shutdown(wait=True)


class TestJobLifecycle:
    def test_successful_job_completes(self, manager_factory):
        def handler(job, on_stage):
            on_stage(ProofStage.RECEIVED)
            return _proof(job)

        manager = manager_factory(handler, retry_policy=NO_BACKOFF)
        summary = manager.enqueue("O1", 1, notes="hello")

        detail = manager.wait(summary.id, timeout=5)

        assert detail.status == JobStatus.COMPLETED
        assert detail.proof_id == "proof-O1-1"
        assert detail.attempts == 1
        assert detail.notes == "hello"
        assert any("received" in event.message for event in detail.events)

    def test_failed_job_retries_until_exhausted(self, manager_factory):
        calls = []

        def handler(job, on_stage):
            calls.append(job.order_id)
            raise RuntimeError("upstream down")

        failed = []
        manager = manager_factory(handler, retry_policy=NO_BACKOFF)
        manager.on_failed(failed.append)
        summary = manager.enqueue("O1", 1)

        detail = manager.wait(summary.id, timeout=5)

        assert detail.status == JobStatus.FAILED
        assert detail.attempts == 3
        assert len(calls) == 3
        assert "upstream down" in detail.error
        assert [job.id for job in failed] == [summary.id]

    def test_transient_failure_recovers(self, manager_factory):
        attempts = []

        def handler(job, on_stage):
            attempts.append(1)
            if len(attempts) < 2:
                raise RuntimeError("timeout")
            return _proof(job)

        completed = []
        manager = manager_factory(handler, retry_policy=NO_BACKOFF)
        manager.on_completed(completed.append)
        summary = manager.enqueue("O2", 1)

        detail = manager.wait(summary.id, timeout=5)

        assert detail.status == JobStatus.COMPLETED
        assert detail.attempts == 2
        assert len(completed) == 1

    def test_same_order_version_not_deduplicated(self, manager_factory):
        manager = manager_factory(lambda job, on_stage: _proof(job), retry_policy=NO_BACKOFF)

        first = manager.enqueue("O1", 1)
        second = manager.enqueue("O1", 1)

        assert first.id != second.id
        assert manager.wait(first.id, timeout=5).status == JobStatus.COMPLETED
        assert manager.wait(second.id, timeout=5).status == JobStatus.COMPLETED
        assert len(manager.list_jobs()) == 2

    def test_get_unknown_job(self, manager_factory):
        manager = manager_factory(lambda job, on_stage: _proof(job))

        assert manager.get_job("missing") is None


class TestConcurrency:
    def test_concurrency_is_bounded(self, manager_factory):
        lock = threading.Lock()
        running = []
        peak = []
        release = threading.Event()

        def handler(job, on_stage):
            with lock:
                running.append(job.order_id)
                peak.append(len(running))
            release.wait(5)
            with lock:
                running.remove(job.order_id)
            return _proof(job)

        manager = manager_factory(handler, concurrency=2, retry_policy=NO_BACKOFF)
        jobs = [manager.enqueue(f"O{i}", 1) for i in range(5)]
        release.set()

        for job in jobs:
            assert manager.wait(job.id, timeout=5).status == JobStatus.COMPLETED
        assert max(peak) <= 2

    def test_queued_job_can_be_cancelled(self, manager_factory):
        started = threading.Event()
        release = threading.Event()

        def handler(job, on_stage):
            started.set()
            release.wait(5)
            return _proof(job)

        manager = manager_factory(handler, concurrency=1, retry_policy=NO_BACKOFF)
        running = manager.enqueue("O1", 1)
        started.wait(5)
        queued = manager.enqueue("O2", 1)

        assert manager.cancel(queued.id) is True
        assert manager.cancel(running.id) is False
        release.set()

        assert manager.wait(running.id, timeout=5).status == JobStatus.COMPLETED
        assert manager.get_job(queued.id).status == JobStatus.CANCELLED

    def test_job_waiting_for_retry_can_be_cancelled(self, manager_factory):
        calls = []

        def handler(job, on_stage):
            calls.append(job.order_id)
            raise RuntimeError("upstream down")

        manager = manager_factory(handler, retry_policy=RetryPolicy(max_attempts=3, backoff_seconds=30))
        summary = manager.enqueue("O1", 1)

        deadline = time.monotonic() + 5
        while manager.get_job(summary.id).status != JobStatus.RETRYING and time.monotonic() < deadline:
            time.sleep(0.01)

        assert manager.cancel(summary.id) is True
        detail = manager.wait(summary.id, timeout=5)
        assert detail.status == JobStatus.CANCELLED
        assert calls == ["O1"]


class TestRetryPolicy:
    def test_exponential_delay(self):
        policy = RetryPolicy(max_attempts=4, backoff_seconds=5, backoff_factor=2)

        assert [policy.delay_for(n) for n in (1, 2, 3)] == [5, 10, 20]
