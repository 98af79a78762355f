"""Job store: durable job rows with a single conditional-update primitive."""

from __future__ import annotations

import json
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy import update as sa_update
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlmodel import Session, col, select

from ai_jobs.engine.errors import StoreUnavailable
from ai_jobs.engine.models import JobFilters, JobStatus, JobView
from ai_jobs.storage.alembic_runner import upgrade_head
from ai_jobs.storage.common import build_sqlite_engine, to_db_datetime, to_utc_aware
from ai_jobs.storage.sqlmodel_models import AiJob

PATCHABLE_FIELDS = frozenset(
    {
        "status",
        "worker_id",
        "result_message_id",
        "response_text",
        "confidence_score",
        "fragments_used",
        "prompt_tokens",
        "completion_tokens",
        "total_cost",
        "error_code",
        "error_message",
        "metadata",
        "started_at",
        "completed_at",
        "updated_at",
    },
)


class JobStore(Protocol):
    """Persistence contract consumed by the engine components."""

    def insert(self, job: JobView) -> JobView: ...

    def get_by_id(self, job_id: str) -> JobView | None: ...

    def conditional_update(
        self,
        job_id: str,
        expected_status: JobStatus,
        patch: dict[str, Any],
    ) -> int: ...

    def list_by_org(
        self,
        organization_id: int,
        filters: JobFilters | None = None,
        *,
        limit: int | None = None,
    ) -> list[JobView]: ...

    def list_pending(
        self,
        *,
        limit: int,
        job_types: Sequence[str] = (),
    ) -> list[JobView]: ...

    def find_active(self, organization_id: int, conversation_id: str) -> JobView | None: ...

    def list_running_started_before(self, cutoff: datetime) -> list[JobView]: ...


class SqlJobStore:
    """Job store backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        with _translate_store_errors():
            upgrade_head(self.db_path)

    def insert(self, job: JobView) -> JobView:
        with _translate_store_errors(), Session(self.engine) as session:
            row = AiJob(
                job_id=job.job_id,
                organization_id=job.organization_id,
                conversation_id=job.conversation_id,
                trigger_message_id=job.trigger_message_id,
                job_type=job.job_type,
                status=job.status.value,
                created_at=to_db_datetime(job.created_at),
                updated_at=to_db_datetime(job.updated_at),
                **_encode_patch(
                    {
                        "worker_id": job.worker_id,
                        "result_message_id": job.result_message_id,
                        "response_text": job.response_text,
                        "confidence_score": job.confidence_score,
                        "fragments_used": job.fragments_used,
                        "prompt_tokens": job.prompt_tokens,
                        "completion_tokens": job.completion_tokens,
                        "total_cost": job.total_cost,
                        "error_code": job.error_code,
                        "error_message": job.error_message,
                        "metadata": job.metadata,
                        "started_at": job.started_at,
                        "completed_at": job.completed_at,
                    },
                ),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def get_by_id(self, job_id: str) -> JobView | None:
        with _translate_store_errors(), Session(self.engine) as session:
            row = session.exec(select(AiJob).where(AiJob.job_id == job_id)).one_or_none()
            return _to_job_view(row) if row is not None else None

    def conditional_update(
        self,
        job_id: str,
        expected_status: JobStatus,
        patch: dict[str, Any],
    ) -> int:
        """Apply ``patch`` only if the row still has ``expected_status``.

        Returns the number of affected rows: 1 on success, 0 when another
        writer moved the job first (or it does not exist).
        """

        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported job patch fields: {sorted(unknown)}")
        with _translate_store_errors(), Session(self.engine) as session:
            result = session.exec(
                sa_update(AiJob)
                .where(
                    col(AiJob.job_id) == job_id,
                    col(AiJob.status) == expected_status.value,
                )
                .values(**_encode_patch(patch)),
            )
            if result.rowcount != 1:
                session.rollback()
                return 0
            session.commit()
            return 1

    def list_by_org(
        self,
        organization_id: int,
        filters: JobFilters | None = None,
        *,
        limit: int | None = None,
    ) -> list[JobView]:
        """List an organization's jobs newest first."""

        filters = filters or JobFilters()
        statement = select(AiJob).where(AiJob.organization_id == organization_id)
        if filters.status is not None:
            statement = statement.where(AiJob.status == filters.status.value)
        if filters.job_type is not None:
            statement = statement.where(AiJob.job_type == filters.job_type)
        if filters.date_from is not None:
            statement = statement.where(
                col(AiJob.created_at) >= to_db_datetime(filters.date_from),
            )
        if filters.date_to is not None:
            statement = statement.where(col(AiJob.created_at) <= to_db_datetime(filters.date_to))
        statement = statement.order_by(col(AiJob.created_at).desc(), col(AiJob.job_id).desc())
        if limit is not None:
            statement = statement.limit(limit)
        with _translate_store_errors(), Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def list_pending(
        self,
        *,
        limit: int,
        job_types: Sequence[str] = (),
    ) -> list[JobView]:
        """Claim candidates, oldest first with job id as tie-breaker."""

        statement = select(AiJob).where(AiJob.status == JobStatus.PENDING.value)
        if job_types:
            statement = statement.where(col(AiJob.job_type).in_(list(job_types)))
        statement = statement.order_by(
            col(AiJob.created_at).asc(),
            col(AiJob.job_id).asc(),
        ).limit(limit)
        with _translate_store_errors(), Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def find_active(self, organization_id: int, conversation_id: str) -> JobView | None:
        """Newest pending or running job of a conversation."""

        with _translate_store_errors(), Session(self.engine) as session:
            row = session.exec(
                select(AiJob)
                .where(
                    AiJob.organization_id == organization_id,
                    AiJob.conversation_id == conversation_id,
                    col(AiJob.status).in_(
                        [JobStatus.PENDING.value, JobStatus.RUNNING.value],
                    ),
                )
                .order_by(col(AiJob.created_at).desc(), col(AiJob.job_id).desc())
                .limit(1),
            ).one_or_none()
            return _to_job_view(row) if row is not None else None

    def list_running_started_before(self, cutoff: datetime) -> list[JobView]:
        with _translate_store_errors(), Session(self.engine) as session:
            rows = session.exec(
                select(AiJob)
                .where(
                    AiJob.status == JobStatus.RUNNING.value,
                    col(AiJob.started_at) < to_db_datetime(cutoff),
                )
                .order_by(col(AiJob.started_at).asc()),
            ).all()
        return [_to_job_view(row) for row in rows]


@contextmanager
def _translate_store_errors() -> Iterator[None]:
    try:
        yield
    except OperationalError as error:
        raise StoreUnavailable(f"Job store unavailable: {error.orig}") from error
    except DBAPIError as error:
        if error.connection_invalidated:
            raise StoreUnavailable(f"Job store connection lost: {error.orig}") from error
        raise


def _encode_patch(patch: dict[str, Any]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key, value in patch.items():
        if key == "status":
            values["status"] = JobStatus(value).value
        elif key == "metadata":
            values["metadata_json"] = _dump_json(value)
        elif key == "fragments_used":
            values["fragments_used_json"] = _dump_json(list(value) if value else None)
        elif isinstance(value, datetime):
            values[key] = to_db_datetime(value)
        else:
            values[key] = value
    return values


def _dump_json(value: Any) -> str | None:
    if not value:
        return None
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    parsed = json.loads(raw)
    if not isinstance(parsed, type(default)):
        return default
    return parsed


def _optional_utc(value: datetime | None) -> datetime | None:
    return to_utc_aware(value) if value is not None else None


def _to_job_view(row: AiJob) -> JobView:
    return JobView(
        job_id=row.job_id,
        organization_id=row.organization_id,
        conversation_id=row.conversation_id,
        trigger_message_id=row.trigger_message_id,
        job_type=row.job_type,
        status=JobStatus(row.status),
        worker_id=row.worker_id,
        result_message_id=row.result_message_id,
        response_text=row.response_text,
        confidence_score=row.confidence_score,
        fragments_used=[str(item) for item in _load_json(row.fragments_used_json, [])],
        prompt_tokens=row.prompt_tokens,
        completion_tokens=row.completion_tokens,
        total_cost=row.total_cost,
        error_code=row.error_code,
        error_message=row.error_message,
        metadata=_load_json(row.metadata_json, {}),
        created_at=to_utc_aware(row.created_at),
        started_at=_optional_utc(row.started_at),
        completed_at=_optional_utc(row.completed_at),
        updated_at=to_utc_aware(row.updated_at),
    )
