"""Best-effort audit trail for state-changing job operations."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from ai_jobs.engine.models import AuditEntryView, JobStatus
from ai_jobs.storage.common import to_utc_aware, utc_now
from ai_jobs.storage.sqlmodel_models import AuditLog

logger = logging.getLogger(__name__)

JOB_ENTITY = "ai_job"


class AuditSink(Protocol):
    """External audit storage."""

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        actor_id: str,
        details: dict[str, Any],
    ) -> None: ...


class LoggingAuditSink:
    """Writes audit records to the application log only."""

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        actor_id: str,
        details: dict[str, Any],
    ) -> None:
        logger.info(
            "audit action=%s entity=%s:%s actor=%s details=%s",
            action,
            entity_type,
            entity_id,
            actor_id,
            json.dumps(details, ensure_ascii=False, sort_keys=True, default=str),
        )


class SqlAuditSink:
    """Audit sink that appends rows to the ``audit_logs`` table."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        actor_id: str,
        details: dict[str, Any],
    ) -> None:
        details_json = None
        if details:
            details_json = json.dumps(details, ensure_ascii=False, sort_keys=True, default=str)
        with Session(self.engine) as session:
            session.add(
                AuditLog(
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    actor_id=actor_id,
                    details_json=details_json,
                    created_at=utc_now(),
                ),
            )
            session.commit()

    def list_for_entity(self, entity_type: str, entity_id: str) -> list[AuditEntryView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AuditLog)
                .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
                .order_by(col(AuditLog.created_at).asc(), col(AuditLog.id).asc()),
            ).all()
        entries: list[AuditEntryView] = []
        for row in rows:
            details: dict[str, Any] = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            entries.append(
                AuditEntryView(
                    entry_id=row.id or 0,
                    action=row.action,
                    entity_type=row.entity_type,
                    entity_id=row.entity_id,
                    actor_id=row.actor_id,
                    created_at=to_utc_aware(row.created_at),
                    details=details,
                ),
            )
        return entries


class AuditEmitter:
    """Fire-and-forget bridge from engine operations to an audit sink.

    Sink failures are logged and swallowed: the state transition has already
    been committed and must not be affected.
    """

    def __init__(self, sink: AuditSink | None = None) -> None:
        self.sink: AuditSink = sink or LoggingAuditSink()

    def emit(  # noqa: PLR0913
        self,
        *,
        action: str,
        job_id: str,
        actor_id: str,
        status_from: JobStatus | None,
        status_to: JobStatus | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "status_from": status_from.value if status_from is not None else None,
            "status_to": status_to.value if status_to is not None else None,
        }
        payload.update(details or {})
        try:
            self.sink.record(action, JOB_ENTITY, job_id, actor_id, payload)
        except Exception:  # noqa: BLE001
            logger.warning(
                "Audit record dropped: action=%s job_id=%s actor=%s",
                action,
                job_id,
                actor_id,
                exc_info=True,
            )
