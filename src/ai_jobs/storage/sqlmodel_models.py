"""SQLModel ORM tables for the job store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class AiJob(SQLModel, table=True):
    __tablename__ = "ai_jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_ai_jobs_claim", "status", "created_at", "job_id"),
        Index("idx_ai_jobs_org_time", "organization_id", "created_at"),
        Index("idx_ai_jobs_conversation", "conversation_id", "status"),
    )

    job_id: str = Field(primary_key=True)
    organization_id: int = Field(index=True)
    conversation_id: str
    trigger_message_id: str | None = None
    job_type: str = Field(index=True)
    status: str = Field(index=True)
    worker_id: str | None = Field(default=None, index=True)
    result_message_id: str | None = None
    response_text: str | None = Field(default=None, sa_column=Column(Text))
    confidence_score: float | None = None
    fragments_used_json: str | None = Field(default=None, sa_column=Column(Text))
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_cost: float | None = None
    error_code: str | None = Field(default=None, index=True)
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    metadata_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_audit_logs_entity_time", "entity_type", "entity_id", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    action: str = Field(index=True)
    entity_type: str
    entity_id: str
    actor_id: str
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
