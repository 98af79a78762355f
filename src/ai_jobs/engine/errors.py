"""Error taxonomy of the job engine."""

from __future__ import annotations

from ai_jobs.engine.models import JobStatus


class JobEngineError(RuntimeError):
    """Base class for all job engine errors."""


class JobNotFound(JobEngineError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class InvalidTransition(JobEngineError):
    """Requested transition is not legal from the given state. Always a caller bug."""

    def __init__(self, job_id: str, current: JobStatus, requested: JobStatus) -> None:
        super().__init__(
            f"Invalid transition for job {job_id}: {current.value} -> {requested.value}",
        )
        self.job_id = job_id
        self.current = current
        self.requested = requested


class StaleState(JobEngineError):
    """The job no longer had the expected status when the update was applied.

    Expected under concurrent workers; the caller must re-read and decide.
    """

    def __init__(self, job_id: str, expected: JobStatus, actual: JobStatus | None) -> None:
        actual_label = actual.value if actual is not None else "missing"
        super().__init__(
            f"Job {job_id} changed concurrently: expected {expected.value}, found {actual_label}",
        )
        self.job_id = job_id
        self.expected = expected
        self.actual = actual


class NotRetryable(JobEngineError):
    def __init__(self, job_id: str, status: JobStatus, reason: str | None = None) -> None:
        super().__init__(
            reason or f"Only failed jobs may be retried (job {job_id} is {status.value}).",
        )
        self.job_id = job_id
        self.status = status


class NotCancellable(JobEngineError):
    def __init__(self, job_id: str, status: JobStatus) -> None:
        super().__init__(f"Job {job_id} cannot be cancelled from status={status.value}")
        self.job_id = job_id
        self.status = status


class StoreUnavailable(JobEngineError):
    """Transient job store failure; callers back off and retry."""
