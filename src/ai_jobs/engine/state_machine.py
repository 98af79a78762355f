"""Job state machine: the only code path that changes a job's status.

Transitions::

    pending --claim-->   running
    pending --cancel-->  cancelled
    running --succeed--> completed
    running --fail-->    failed
    running --cancel-->  cancelled

Every transition reads the row once and then applies one conditional update
keyed on ``(job_id, expected status)``. Losing the race surfaces as
``StaleState``; asking for a pair that is not in the table surfaces as
``InvalidTransition``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Any

from ai_jobs.engine.errors import InvalidTransition, JobNotFound, StaleState
from ai_jobs.engine.models import JobFailure, JobResult, JobStatus, JobView
from ai_jobs.engine.store import JobStore
from ai_jobs.storage.common import utc_now

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED}),
    JobStatus.RUNNING: frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def is_allowed(current: JobStatus, requested: JobStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


class JobStateMachine:
    """Validates transitions and applies them through the store."""

    def __init__(self, store: JobStore, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self._clock = clock

    def transition(
        self,
        job_id: str,
        *,
        expected: JobStatus,
        target: JobStatus,
        patch: dict[str, Any] | None = None,
    ) -> JobView:
        """Move ``job_id`` from ``expected`` to ``target`` or raise."""

        if not is_allowed(expected, target):
            raise InvalidTransition(job_id, expected, target)

        current = self.store.get_by_id(job_id)
        if current is None:
            raise JobNotFound(job_id)
        if current.status is not expected:
            raise StaleState(job_id, expected, current.status)

        now = self._clock()
        values: dict[str, Any] = dict(patch or {})
        values["status"] = target
        values["updated_at"] = now
        if target is JobStatus.RUNNING:
            values["started_at"] = now
        if target.is_terminal:
            values["completed_at"] = now

        if self.store.conditional_update(job_id, expected, values) != 1:
            latest = self.store.get_by_id(job_id)
            if latest is None:
                raise JobNotFound(job_id)
            raise StaleState(job_id, expected, latest.status)

        # Nothing is read after the commit, so a store error cannot hide a won lease.
        # Rows only change through guarded updates: pre-read plus patch is the stored row.
        return replace(current, **values)

    def claim(self, job_id: str, *, worker_id: str) -> JobView:
        return self.transition(
            job_id,
            expected=JobStatus.PENDING,
            target=JobStatus.RUNNING,
            patch={"worker_id": worker_id},
        )

    def succeed(self, job_id: str, result: JobResult) -> JobView:
        return self.transition(
            job_id,
            expected=JobStatus.RUNNING,
            target=JobStatus.COMPLETED,
            patch={
                "result_message_id": result.result_message_id,
                "response_text": result.response_text,
                "confidence_score": result.confidence_score,
                "fragments_used": list(result.fragments_used),
                "prompt_tokens": result.prompt_tokens,
                "completion_tokens": result.completion_tokens,
                "total_cost": result.total_cost,
            },
        )

    def fail(self, job_id: str, failure: JobFailure) -> JobView:
        return self.transition(
            job_id,
            expected=JobStatus.RUNNING,
            target=JobStatus.FAILED,
            patch={
                "error_code": failure.error_code,
                "error_message": failure.error_message,
            },
        )

    def cancel(
        self,
        job_id: str,
        *,
        expected: JobStatus,
        error_message: str,
        metadata: dict[str, Any],
    ) -> JobView:
        return self.transition(
            job_id,
            expected=expected,
            target=JobStatus.CANCELLED,
            patch={"error_message": error_message, "metadata": metadata},
        )
