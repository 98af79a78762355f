"""Controllers for job engine CLI commands."""

from __future__ import annotations

import json
import os
import socket
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

from ai_jobs.config import Settings
from ai_jobs.engine.audit import JOB_ENTITY, AuditEmitter, SqlAuditSink
from ai_jobs.engine.executor import EchoExecutor
from ai_jobs.engine.models import (
    JobCreate,
    JobFailure,
    JobFilters,
    JobResult,
    JobStatus,
    JobView,
)
from ai_jobs.engine.pricing import parse_pricing
from ai_jobs.engine.service import JobEngine
from ai_jobs.engine.store import SqlJobStore
from ai_jobs.engine.worker import JobWorker
from ai_jobs.storage.common import from_iso


@dataclass(slots=True)
class JobEnqueueCommand:
    """CLI input for job enqueue."""

    db_path: Path | None
    organization_id: int
    conversation_id: str
    job_type: str
    trigger_message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    actor_id: str | None = None


@dataclass(slots=True)
class JobClaimCommand:
    db_path: Path | None
    worker_id: str
    job_types: tuple[str, ...] = ()


@dataclass(slots=True)
class JobSucceedCommand:
    """CLI input for a manual success report."""

    db_path: Path | None
    job_id: str
    response_text: str
    result_message_id: str | None = None
    confidence_score: float | None = None
    fragments_used: tuple[str, ...] = ()
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_cost: float | None = None
    actor_id: str | None = None


@dataclass(slots=True)
class JobFailCommand:
    db_path: Path | None
    job_id: str
    error_code: str
    error_message: str = ""
    actor_id: str | None = None


@dataclass(slots=True)
class JobMutateCommand:
    """CLI input for retry/cancel operations."""

    db_path: Path | None
    job_id: str
    actor_id: str | None = None
    reason: str | None = None


@dataclass(slots=True)
class JobListCommand:
    """CLI input for job listing and stats."""

    db_path: Path | None
    organization_id: int
    status: str | None = None
    job_type: str | None = None
    date_from: str | None = None
    date_to: str | None = None
    limit: int = 50
    output_format: str = "table"


@dataclass(slots=True)
class JobInspectCommand:
    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobStaleCommand:
    db_path: Path | None
    older_than_seconds: int


@dataclass(slots=True)
class JobWorkerCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_jobs: int | None
    worker_id: str | None = None
    max_idle_polls: int = 1
    job_types: tuple[str, ...] = ()


class JobsCliController:
    """Coordinates producer, worker and operator CLI operations."""

    def enqueue(self, command: JobEnqueueCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _engine(settings) as engine:
            job = engine.enqueue(
                JobCreate(
                    organization_id=command.organization_id,
                    conversation_id=command.conversation_id,
                    job_type=command.job_type,
                    trigger_message_id=command.trigger_message_id,
                    metadata=dict(command.metadata),
                ),
                actor_id=command.actor_id or settings.default_actor_id,
            )
        return [f"Job enqueued: {_job_line(job)}"]

    def claim(self, command: JobClaimCommand) -> list[str]:
        with _engine(_settings(command.db_path)) as engine:
            job = engine.claim(command.worker_id, job_types=command.job_types)
        if job is None:
            return ["No pending jobs."]
        return [f"Job claimed: {_job_line(job)}"]

    def succeed(self, command: JobSucceedCommand) -> list[str]:
        settings = _settings(command.db_path)
        result = JobResult(
            response_text=command.response_text,
            result_message_id=command.result_message_id,
            confidence_score=command.confidence_score,
            fragments_used=list(command.fragments_used),
            prompt_tokens=command.prompt_tokens,
            completion_tokens=command.completion_tokens,
            total_cost=command.total_cost,
        )
        with _engine(settings) as engine:
            job = engine.report_success(
                command.job_id,
                result,
                actor_id=command.actor_id or settings.default_actor_id,
            )
        return [f"Job completed: {_job_line(job)}"]

    def fail(self, command: JobFailCommand) -> list[str]:
        settings = _settings(command.db_path)
        failure = JobFailure(error_code=command.error_code, error_message=command.error_message)
        with _engine(settings) as engine:
            job = engine.report_failure(
                command.job_id,
                failure,
                actor_id=command.actor_id or settings.default_actor_id,
            )
        return [f"Job failed: {_job_line(job)}"]

    def retry(self, command: JobMutateCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _engine(settings) as engine:
            job = engine.retry(command.job_id, command.actor_id or settings.default_actor_id)
        return [f"Retry enqueued: {_job_line(job)} retry_of={command.job_id}"]

    def cancel(self, command: JobMutateCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _engine(settings) as engine:
            job = engine.cancel(
                command.job_id,
                command.actor_id or settings.default_actor_id,
                reason=command.reason,
            )
        return [f"Job cancelled: {_job_line(job)}"]

    def list_jobs(self, command: JobListCommand) -> list[str]:
        filters = _filters(command)
        with _engine(_settings(command.db_path)) as engine:
            jobs = engine.list_jobs(command.organization_id, filters, limit=command.limit)
        if not jobs:
            return ["No jobs found."]
        return [_job_line(job) for job in jobs]

    def stats(self, command: JobListCommand) -> list[str]:
        filters = _filters(command)
        with _engine(_settings(command.db_path)) as engine:
            stats = engine.stats(command.organization_id, filters)
        if command.output_format == "json":
            return [json.dumps(stats.as_dict(), sort_keys=True)]
        return [f"{name}: {value}" for name, value in stats.as_dict().items()]

    def inspect(self, command: JobInspectCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _engine(settings) as engine:
            job = engine.get_job(command.job_id)
            lineage = engine.get_lineage(command.job_id)
            sink = engine.audit.sink
            entries = (
                sink.list_for_entity(JOB_ENTITY, command.job_id)
                if isinstance(sink, SqlAuditSink)
                else []
            )

        lines = [
            _job_line(job),
            f"created_at={job.created_at.isoformat()} "
            f"started_at={_iso(job.started_at)} completed_at={_iso(job.completed_at)}",
        ]
        if job.worker_id:
            lines.append(f"worker_id={job.worker_id}")
        if job.status is JobStatus.COMPLETED:
            lines.append(
                f"result: confidence={job.confidence_score} prompt_tokens={job.prompt_tokens} "
                f"completion_tokens={job.completion_tokens} total_cost={job.total_cost} "
                f"fragments={','.join(job.fragments_used) or '-'}",
            )
            lines.append(f"response: {job.response_text}")
        if job.error_code or job.error_message:
            lines.append(f"error: code={job.error_code or '-'} message={job.error_message}")
        if job.metadata:
            metadata = json.dumps(job.metadata, ensure_ascii=False, sort_keys=True)
            lines.append(f"metadata: {metadata}")
        chain = " -> ".join(f"{item.job_id}[{item.status.value}]" for item in lineage)
        lines.append(f"lineage: {chain}")
        lines.append("audit:")
        for entry in entries:
            lines.append(
                f"  {entry.created_at.isoformat()} {entry.action} actor={entry.actor_id} "
                f"{json.dumps(entry.details, ensure_ascii=False, sort_keys=True)}",
            )
        return lines

    def stale(self, command: JobStaleCommand) -> list[str]:
        with _engine(_settings(command.db_path)) as engine:
            jobs = engine.find_stale_running(timedelta(seconds=command.older_than_seconds))
        if not jobs:
            return ["No stale running jobs."]
        return [f"{_job_line(job)} started_at={_iso(job.started_at)}" for job in jobs]

    def run_worker(self, command: JobWorkerCommand) -> list[str]:
        settings = _settings(command.db_path)
        worker_id = command.worker_id or f"{socket.gethostname()}:{os.getpid()}"
        with _engine(settings) as engine:
            worker = JobWorker(
                engine=engine,
                executor=EchoExecutor(
                    model=settings.executor.model,
                    pricing=parse_pricing(settings.executor.pricing),
                ),
                worker_id=worker_id,
                poll_interval_seconds=settings.dispatcher.poll_interval_seconds,
                store_retry_attempts=settings.dispatcher.store_retry_attempts,
                store_retry_base_seconds=settings.dispatcher.store_retry_base_seconds,
                store_retry_max_seconds=settings.dispatcher.store_retry_max_seconds,
                job_types=command.job_types,
            )
            if command.once:
                summary = worker.run_once()
            else:
                summary = worker.run_loop(
                    max_jobs=command.max_jobs,
                    max_idle_polls=command.max_idle_polls,
                )
        return [
            f"Worker {worker_id} finished: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} cancelled={summary.cancelled} "
            f"idle_polls={summary.idle_polls}",
        ]


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _engine(settings: Settings) -> Iterator[JobEngine]:
    store = SqlJobStore(settings.db_path, busy_timeout_ms=settings.busy_timeout_ms)
    try:
        store.init_schema()
        yield JobEngine(
            store=store,
            audit=AuditEmitter(SqlAuditSink(store.engine)),
            claim_batch_size=settings.dispatcher.claim_batch_size,
            max_retry_chain=settings.retry.max_chain_length,
        )
    finally:
        store.close()


def _filters(command: JobListCommand) -> JobFilters:
    return JobFilters(
        status=JobStatus(command.status.lower()) if command.status else None,
        job_type=command.job_type,
        date_from=from_iso(command.date_from) if command.date_from else None,
        date_to=from_iso(command.date_to) if command.date_to else None,
    )


def _iso(value: Any) -> str:
    return value.isoformat() if value is not None else "-"


def _job_line(job: JobView) -> str:
    return (
        f"job_id={job.job_id} org={job.organization_id} conversation={job.conversation_id} "
        f"type={job.job_type} status={job.status.value}"
    )
