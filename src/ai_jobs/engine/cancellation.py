"""Cancellation controller for queued and in-flight jobs."""

from __future__ import annotations

from ai_jobs.engine.audit import AuditEmitter
from ai_jobs.engine.errors import JobNotFound, NotCancellable, StaleState
from ai_jobs.engine.models import JobStatus, JobView
from ai_jobs.engine.state_machine import JobStateMachine


class CancellationController:
    """Marks jobs cancelled; running jobs are stopped cooperatively by their executor."""

    def __init__(self, *, state_machine: JobStateMachine, audit: AuditEmitter) -> None:
        self.state_machine = state_machine
        self.audit = audit

    def cancel(self, job_id: str, actor_id: str, *, reason: str | None = None) -> JobView:
        store = self.state_machine.store
        # Status only moves forward, so a lost race is re-read at most twice
        # (pending -> running -> terminal) before the outcome is final.
        while True:
            current = store.get_by_id(job_id)
            if current is None:
                raise JobNotFound(job_id)
            if current.status not in {JobStatus.PENDING, JobStatus.RUNNING}:
                raise NotCancellable(job_id, current.status)

            metadata = dict(current.metadata)
            metadata["cancelled_by"] = actor_id
            if reason:
                metadata["cancel_reason"] = reason
            try:
                cancelled = self.state_machine.cancel(
                    job_id,
                    expected=current.status,
                    error_message=f"Cancelled by {actor_id}",
                    metadata=metadata,
                )
            except StaleState:
                continue

            self.audit.emit(
                action="job_cancelled",
                job_id=job_id,
                actor_id=actor_id,
                status_from=current.status,
                status_to=JobStatus.CANCELLED,
                details={"reason": reason} if reason else None,
            )
            return cancelled
