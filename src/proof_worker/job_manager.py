"""
Proof job queue and worker pool.

This module manages the lifecycle of proof-generation jobs:
- Job registration (enqueue)
- Execution on a bounded pool of worker threads
- Retry with exponential backoff under an explicit, bounded policy
- Status tracking, event logging and completion/failure listeners
- Cancellation of jobs that have not started yet

Jobs for the same (order_id, version) are neither deduplicated nor
serialized; two runs both render and both insert a Proof row.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from .models import JobDetail, JobEvent, JobStatus, JobSummary, Proof, ProofJob, ProofStage

logger = logging.getLogger(__name__)

ProofHandler = Callable[[ProofJob, Callable[[ProofStage], None]], Proof]
JobListener = Callable[[JobDetail], None]

TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry policy for failed jobs.

    Attributes:
        max_attempts: Total runs allowed, including the first
        backoff_seconds: Delay before the first retry
        backoff_factor: Multiplier applied to the delay on each further retry
    """

    max_attempts: int = 3
    backoff_seconds: float = 5.0
    backoff_factor: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay before running attempt ``attempt + 1`` after ``attempt`` failed."""
        return self.backoff_seconds * (self.backoff_factor ** (attempt - 1))


@dataclass
class JobRecord:
    """
    Internal representation of a proof job with full state.

    Attributes:
        id: Unique job identifier (hex UUID)
        job: The queued payload
        status: Current execution status
        attempts: Number of runs started so far
        created_at: Job creation timestamp (UTC)
        updated_at: Last modification timestamp (UTC)
        proof_id: Inserted Proof id once completed
        error: Last error message if a run failed
        events: Chronological list of job lifecycle events
    """

    id: str
    job: ProofJob
    status: JobStatus
    created_at: datetime
    updated_at: datetime
    attempts: int = 0
    proof_id: Optional[str] = None
    error: Optional[str] = None
    events: list[JobEvent] = field(default_factory=list)
    future: Optional[Future] = None
    timer: Optional[threading.Timer] = None
    finished: threading.Event = field(default_factory=threading.Event)

    def to_summary(self) -> JobSummary:
        return JobSummary(
            id=self.id,
            order_id=self.job.order_id,
            version=self.job.version,
            status=self.status,
            attempts=self.attempts,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def to_detail(self) -> JobDetail:
        summary = self.to_summary()
        return JobDetail(
            **summary.model_dump(),
            notes=self.job.notes,
            proof_id=self.proof_id,
            events=list(self.events),
            error=self.error,
        )


class JobManager:
    """
    Queue of proof jobs executed by a bounded worker pool.

    Thread Safety:
        All job state modifications are protected by a lock; handlers run
        outside it.

    Attributes:
        concurrency: Number of jobs that may run at once
        retry_policy: How failed jobs are retried
    """

    def __init__(
        self,
        handler: ProofHandler,
        concurrency: int = 2,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        """
        Initialize the job manager.

        Args:
            handler: Runs one job; raising marks the attempt failed
            concurrency: Number of concurrent pipeline executions (default: 2)
            retry_policy: Retry policy (default: 3 attempts, 5s doubling backoff)
        """
        self.handler = handler
        self.concurrency = concurrency
        self.retry_policy = retry_policy or RetryPolicy()
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="proof-worker")
        self._completed_listeners: List[JobListener] = []
        self._failed_listeners: List[JobListener] = []

    def on_completed(self, listener: JobListener) -> None:
        self._completed_listeners.append(listener)

    def on_failed(self, listener: JobListener) -> None:
        self._failed_listeners.append(listener)

    def list_jobs(self) -> list[JobSummary]:
        """Get all jobs sorted by creation time (newest first)."""
        with self._lock:
            records = sorted(self._jobs.values(), key=lambda r: r.created_at, reverse=True)
            return [record.to_summary() for record in records]

    def get_job(self, job_id: str) -> Optional[JobDetail]:
        with self._lock:
            record = self._jobs.get(job_id)
            return record.to_detail() if record else None

    def _update_job(self, job_id: str, **kwargs) -> None:
        """
        Update job attributes and refresh the updated_at timestamp.

        Thread Safety:
            Acquires lock before modifying job state
        """
        with self._lock:
            record = self._jobs[job_id]
            for key, value in kwargs.items():
                setattr(record, key, value)
            record.updated_at = datetime.utcnow()

    def _append_event(self, job_id: str, message: str) -> None:
        event = JobEvent(timestamp=datetime.utcnow(), message=message)
        with self._lock:
            record = self._jobs[job_id]
            record.events.append(event)
            record.updated_at = event.timestamp

    def enqueue(self, order_id: str, version: int = 1, notes: Optional[str] = None) -> JobSummary:
        """
        Queue a proof job.

        Args:
            order_id: Order to generate a proof for
            version: Proof version (>= 1)
            notes: Optional notes carried onto the Proof

        Returns:
            JobSummary of the queued job

        Note:
            The job starts as soon as a worker is free; until then it waits
            in the executor's queue and can still be cancelled.
        """
        job = ProofJob(order_id=order_id, version=version, notes=notes)
        now = datetime.utcnow()
        record = JobRecord(
            id=uuid4().hex,
            job=job,
            status=JobStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        record.events.append(JobEvent(timestamp=now, message="Job queued and awaiting a worker."))

        with self._lock:
            self._jobs[record.id] = record
            record.future = self._executor.submit(self._run_job, record.id)

        logger.info(f"Queued proof job {record.id} for order {order_id} v{version}")
        return record.to_summary()

    def _submit(self, job_id: str) -> None:
        with self._lock:
            record = self._jobs[job_id]
            if record.status in TERMINAL_STATUSES:
                return
            record.timer = None
            record.future = self._executor.submit(self._run_job, job_id)

    def _run_job(self, job_id: str) -> None:
        """
        Execute one attempt of a job (runs in a worker thread).

        Failures are recorded and either rescheduled under the retry policy
        or, once attempts are exhausted, reported as failed.
        """
        with self._lock:
            record = self._jobs[job_id]
            if record.status in TERMINAL_STATUSES:
                return
            record.attempts += 1
            record.status = JobStatus.RUNNING
            record.updated_at = datetime.utcnow()
            attempt = record.attempts
            job = record.job

        self._append_event(job_id, f"Attempt {attempt} started.")

        def on_stage(stage: ProofStage) -> None:
            self._append_event(job_id, f"Stage: {stage.value}")

        try:
            proof = self.handler(job, on_stage)
        except Exception as exc:
            logger.exception(f"Proof job {job_id} attempt {attempt} failed")
            self._handle_failure(job_id, attempt, exc)
            return

        self._update_job(job_id, status=JobStatus.COMPLETED, proof_id=proof.id, error=None)
        self._append_event(job_id, f"Proof {proof.id} ready.")
        logger.info(f"Proof job {job_id} completed: proof {proof.id}")
        self._finish(job_id, self._completed_listeners)

    def _handle_failure(self, job_id: str, attempt: int, exc: Exception) -> None:
        if attempt < self.retry_policy.max_attempts:
            delay = self.retry_policy.delay_for(attempt)
            event = JobEvent(
                timestamp=datetime.utcnow(),
                message=f"Attempt {attempt} failed: {exc}. Retrying in {delay:g}s.",
            )
            # cancel() must observe the status and the scheduled run together
            with self._lock:
                record = self._jobs[job_id]
                record.status = JobStatus.RETRYING
                record.error = str(exc)
                record.events.append(event)
                record.updated_at = event.timestamp
                if delay > 0:
                    record.timer = threading.Timer(delay, self._submit, args=(job_id,))
                    record.timer.daemon = True
                    record.timer.start()
                else:
                    record.future = self._executor.submit(self._run_job, job_id)
            return

        self._update_job(job_id, status=JobStatus.FAILED, error=str(exc))
        self._append_event(job_id, f"Job failed after {attempt} attempt(s): {exc}")
        self._finish(job_id, self._failed_listeners)

    def _finish(self, job_id: str, listeners: List[JobListener]) -> None:
        with self._lock:
            record = self._jobs[job_id]
            detail = record.to_detail()
            record.finished.set()
        for listener in listeners:
            try:
                listener(detail)
            except Exception:
                logger.exception(f"Job listener failed for {job_id}")

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a job that has not started running.

        Returns:
            True if the job was cancelled, False if it is running or finished

        Raises:
            KeyError: If job_id doesn't exist
        """
        with self._lock:
            record = self._jobs[job_id]
            if record.status not in (JobStatus.PENDING, JobStatus.RETRYING):
                return False
            if record.timer is not None:
                record.timer.cancel()
                record.timer = None
            elif record.future is not None and not record.future.cancel():
                return False
            record.status = JobStatus.CANCELLED
            record.updated_at = datetime.utcnow()
            record.finished.set()
        self._append_event(job_id, "Job cancelled before execution.")
        return True

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[JobDetail]:
        """Block until a job reaches a terminal status; returns None on timeout."""
        with self._lock:
            finished = self._jobs[job_id].finished
        if not finished.wait(timeout):
            return None
        return self.get_job(job_id)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            for record in self._jobs.values():
                if record.timer is not None:
                    record.timer.cancel()
        self._executor.shutdown(wait=wait)
