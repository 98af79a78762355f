"""Retry engine: failed jobs are retried as new rows linked by ``retry_of``."""

from __future__ import annotations

from uuid import uuid4

from ai_jobs.engine.audit import AuditEmitter
from ai_jobs.engine.errors import JobNotFound, NotRetryable
from ai_jobs.engine.models import JobStatus, JobView
from ai_jobs.engine.store import JobStore
from ai_jobs.storage.common import utc_now


class RetryEngine:
    """Creates successor jobs without touching the failed predecessor."""

    def __init__(
        self,
        *,
        store: JobStore,
        audit: AuditEmitter,
        max_chain_length: int = 0,
    ) -> None:
        if max_chain_length < 0:
            raise ValueError("max_chain_length must be >= 0.")
        self.store = store
        self.audit = audit
        self.max_chain_length = max_chain_length

    def retry(self, job_id: str, actor_id: str) -> JobView:
        original = self.store.get_by_id(job_id)
        if original is None:
            raise JobNotFound(job_id)
        if original.status is not JobStatus.FAILED:
            raise NotRetryable(job_id, original.status)
        if self.max_chain_length:
            attempts = len(self.lineage(job_id))
            if attempts >= self.max_chain_length:
                raise NotRetryable(
                    job_id,
                    original.status,
                    reason=(
                        f"Retry chain limit reached for job {job_id}: "
                        f"{attempts} attempts (max {self.max_chain_length})."
                    ),
                )

        now = utc_now()
        metadata = dict(original.metadata)
        metadata.update({"retry_of": original.job_id, "retried_by": actor_id})
        successor = self.store.insert(
            JobView(
                job_id=str(uuid4()),
                organization_id=original.organization_id,
                conversation_id=original.conversation_id,
                trigger_message_id=original.trigger_message_id,
                job_type=original.job_type,
                status=JobStatus.PENDING,
                worker_id=None,
                result_message_id=None,
                response_text=None,
                confidence_score=None,
                fragments_used=[],
                prompt_tokens=None,
                completion_tokens=None,
                total_cost=None,
                error_code=None,
                error_message=None,
                metadata=metadata,
                created_at=now,
                started_at=None,
                completed_at=None,
                updated_at=now,
            ),
        )
        self.audit.emit(
            action="job_retried",
            job_id=successor.job_id,
            actor_id=actor_id,
            status_from=None,
            status_to=JobStatus.PENDING,
            details={
                "retry_of": original.job_id,
                "new_job_id": successor.job_id,
                "original_error_code": original.error_code,
            },
        )
        return successor

    def lineage(self, job_id: str) -> list[JobView]:
        """Return the retry chain ending at ``job_id``, root attempt first."""

        chain: list[JobView] = []
        seen: set[str] = set()
        current_id: str | None = job_id
        while current_id is not None and current_id not in seen:
            job = self.store.get_by_id(current_id)
            if job is None:
                if not chain:
                    raise JobNotFound(job_id)
                break
            chain.append(job)
            seen.add(current_id)
            current_id = job.retry_of
        chain.reverse()
        return chain
