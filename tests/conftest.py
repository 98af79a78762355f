"""Shared test fixtures."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from ai_jobs.engine.audit import AuditEmitter
from ai_jobs.engine.models import JobCreate, JobStatus, JobType, JobView
from ai_jobs.engine.service import JobEngine
from ai_jobs.engine.store import SqlJobStore


class RecordingAuditSink:
    """In-memory audit sink that keeps every record for assertions."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str, str, str, dict[str, Any]]] = []
        self._lock = threading.Lock()

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        actor_id: str,
        details: dict[str, Any],
    ) -> None:
        with self._lock:
            self.records.append((action, entity_type, entity_id, actor_id, dict(details)))

    def actions(self) -> list[str]:
        return [record[0] for record in self.records]


@pytest.fixture()
def store(tmp_path: Path) -> Iterator[SqlJobStore]:
    job_store = SqlJobStore(tmp_path / "jobs.db")
    job_store.init_schema()
    yield job_store
    job_store.close()


@pytest.fixture()
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest.fixture()
def engine(store: SqlJobStore, audit_sink: RecordingAuditSink) -> JobEngine:
    return JobEngine(store=store, audit=AuditEmitter(audit_sink))


def enqueue_job(
    engine: JobEngine,
    *,
    organization_id: int = 1,
    conversation_id: str = "conv-1",
    job_type: str = JobType.GENERATE_RESPONSE.value,
    trigger_message_id: str | None = "msg-1",
    metadata: dict[str, Any] | None = None,
) -> JobView:
    return engine.enqueue(
        JobCreate(
            organization_id=organization_id,
            conversation_id=conversation_id,
            job_type=job_type,
            trigger_message_id=trigger_message_id,
            metadata=metadata or {},
        ),
    )


def assert_job_invariants(job: JobView) -> None:
    if job.status is JobStatus.PENDING:
        assert job.started_at is None
    if job.status in {JobStatus.RUNNING, JobStatus.COMPLETED, JobStatus.FAILED}:
        assert job.started_at is not None
    if job.status in {JobStatus.PENDING, JobStatus.RUNNING}:
        assert job.completed_at is None
    else:
        assert job.completed_at is not None
    if job.status is JobStatus.FAILED:
        assert job.error_code is not None
    else:
        assert job.error_code is None
    if job.status is JobStatus.COMPLETED:
        assert job.response_text is not None
    else:
        assert job.response_text is None
        assert job.fragments_used == []
        assert job.confidence_score is None
