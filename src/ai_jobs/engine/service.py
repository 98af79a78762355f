"""Job engine facade used by producers, executors and operators."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import timedelta
from uuid import uuid4

from ai_jobs.engine.audit import AuditEmitter
from ai_jobs.engine.cancellation import CancellationController
from ai_jobs.engine.dispatcher import LeaseDispatcher
from ai_jobs.engine.errors import JobNotFound
from ai_jobs.engine.models import (
    JobCreate,
    JobFailure,
    JobFilters,
    JobResult,
    JobStats,
    JobStatus,
    JobView,
)
from ai_jobs.engine.retry import RetryEngine
from ai_jobs.engine.state_machine import JobStateMachine
from ai_jobs.engine.stats import StatsAggregator
from ai_jobs.engine.store import JobStore
from ai_jobs.storage.common import utc_now

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class JobEngine:
    """Wires the state machine, dispatcher, retry, cancellation and stats components."""

    def __init__(
        self,
        *,
        store: JobStore,
        audit: AuditEmitter | None = None,
        claim_batch_size: int = 16,
        max_retry_chain: int = 0,
    ) -> None:
        self.store = store
        self.audit = audit or AuditEmitter()
        self.state_machine = JobStateMachine(store)
        self.dispatcher = LeaseDispatcher(
            state_machine=self.state_machine,
            audit=self.audit,
            batch_size=claim_batch_size,
        )
        self.retries = RetryEngine(store=store, audit=self.audit, max_chain_length=max_retry_chain)
        self.cancellation = CancellationController(
            state_machine=self.state_machine,
            audit=self.audit,
        )
        self.stats_aggregator = StatsAggregator(store)

    def enqueue(
        self,
        payload: JobCreate,
        *,
        actor_id: str = SYSTEM_ACTOR,
    ) -> JobView:
        """Create a pending job."""

        now = utc_now()
        job = self.store.insert(
            JobView(
                job_id=payload.job_id or str(uuid4()),
                organization_id=payload.organization_id,
                conversation_id=payload.conversation_id,
                trigger_message_id=payload.trigger_message_id,
                job_type=payload.job_type,
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
                metadata=dict(payload.metadata),
                created_at=now,
                started_at=None,
                completed_at=None,
                updated_at=now,
            ),
        )
        self.audit.emit(
            action="job_enqueued",
            job_id=job.job_id,
            actor_id=actor_id,
            status_from=None,
            status_to=JobStatus.PENDING,
            details={
                "job_type": job.job_type,
                "conversation_id": job.conversation_id,
                "trigger_message_id": job.trigger_message_id,
            },
        )
        return job

    def claim(self, worker_id: str, *, job_types: Sequence[str] = ()) -> JobView | None:
        return self.dispatcher.claim(worker_id, job_types=job_types)

    def report_success(
        self,
        job_id: str,
        result: JobResult,
        *,
        actor_id: str = SYSTEM_ACTOR,
    ) -> JobView:
        """Record a successful execution; raises StaleState if the job is no longer running."""

        job = self.state_machine.succeed(job_id, result)
        self.audit.emit(
            action="job_completed",
            job_id=job_id,
            actor_id=actor_id,
            status_from=JobStatus.RUNNING,
            status_to=JobStatus.COMPLETED,
            details={
                "result_message_id": result.result_message_id,
                "confidence_score": result.confidence_score,
                "prompt_tokens": result.prompt_tokens,
                "completion_tokens": result.completion_tokens,
                "total_cost": result.total_cost,
            },
        )
        return job

    def report_failure(
        self,
        job_id: str,
        failure: JobFailure,
        *,
        actor_id: str = SYSTEM_ACTOR,
    ) -> JobView:
        """Record a failed execution; raises StaleState if the job is no longer running."""

        job = self.state_machine.fail(job_id, failure)
        self.audit.emit(
            action="job_failed",
            job_id=job_id,
            actor_id=actor_id,
            status_from=JobStatus.RUNNING,
            status_to=JobStatus.FAILED,
            details={"error_code": failure.error_code, "error_message": failure.error_message},
        )
        return job

    def retry(self, job_id: str, actor_id: str) -> JobView:
        return self.retries.retry(job_id, actor_id)

    def cancel(self, job_id: str, actor_id: str, *, reason: str | None = None) -> JobView:
        return self.cancellation.cancel(job_id, actor_id, reason=reason)

    def stats(self, organization_id: int, filters: JobFilters | None = None) -> JobStats:
        return self.stats_aggregator.snapshot(organization_id, filters)

    def get_job(self, job_id: str) -> JobView:
        job = self.store.get_by_id(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def list_jobs(
        self,
        organization_id: int,
        filters: JobFilters | None = None,
        *,
        limit: int | None = 50,
    ) -> list[JobView]:
        return self.store.list_by_org(organization_id, filters, limit=limit)

    def get_active_job(self, organization_id: int, conversation_id: str) -> JobView | None:
        """Newest pending or running job for a conversation, if any."""

        return self.store.find_active(organization_id, conversation_id)

    def get_lineage(self, job_id: str) -> list[JobView]:
        return self.retries.lineage(job_id)

    def is_cancelled(self, job_id: str) -> bool:
        """Polling primitive for executors honouring cooperative cancellation."""

        job = self.store.get_by_id(job_id)
        return job is not None and job.status is JobStatus.CANCELLED

    def find_stale_running(self, older_than: timedelta) -> list[JobView]:
        """Running jobs whose lease started before ``now - older_than``.

        Read-only: deciding what to do with them is left to an external reaper.
        """

        if older_than <= timedelta(0):
            raise ValueError("older_than must be positive.")
        return self.store.list_running_started_before(utc_now() - older_than)
