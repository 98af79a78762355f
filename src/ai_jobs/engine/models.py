"""Domain models for the AI job queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

# Metadata keys written by the engine itself (retry lineage, cancellation).
RESERVED_METADATA_KEYS = frozenset({"retry_of", "retried_by", "cancelled_by", "cancel_reason"})


class JobType(str, Enum):
    """Job types produced by the chat and knowledge subsystems.

    The set is open: the store accepts any non-empty job type string and these
    values are the ones the hosting application enqueues today.
    """

    GENERATE_RESPONSE = "generate_response"
    GENERATE_EMBEDDINGS = "generate_embeddings"
    REINDEX_KNOWLEDGE = "reindex_knowledge"
    SUMMARIZE = "summarize"
    CLASSIFY = "classify"


@dataclass(slots=True)
class JobCreate:
    """Input payload for enqueuing a job."""

    organization_id: int
    conversation_id: str
    job_type: str
    trigger_message_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    job_id: str | None = None

    def __post_init__(self) -> None:
        if not self.conversation_id.strip():
            raise ValueError("conversation_id must not be empty.")
        if not self.job_type.strip():
            raise ValueError("job_type must not be empty.")
        reserved = RESERVED_METADATA_KEYS.intersection(self.metadata)
        if reserved:
            raise ValueError(f"Metadata keys reserved for the job engine: {sorted(reserved)}.")


@dataclass(slots=True)
class JobResult:
    """Outcome reported by the executor for a successful run."""

    response_text: str
    result_message_id: str | None = None
    confidence_score: float | None = None
    fragments_used: list[str] = field(default_factory=list)
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_cost: float | None = None

    def __post_init__(self) -> None:
        if self.confidence_score is not None and not 0.0 <= self.confidence_score <= 1.0:
            raise ValueError(
                f"confidence_score must be within 0.0-1.0, got {self.confidence_score!r}.",
            )
        for name in ("prompt_tokens", "completion_tokens"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be >= 0, got {value!r}.")
        if self.total_cost is not None and self.total_cost < 0:
            raise ValueError(f"total_cost must be >= 0, got {self.total_cost!r}.")


@dataclass(slots=True)
class JobFailure:
    """Machine-readable and human-readable failure reported by the executor."""

    error_code: str
    error_message: str = ""

    def __post_init__(self) -> None:
        if not self.error_code.strip():
            raise ValueError("error_code must not be empty.")


@dataclass(slots=True)
class JobView:
    """Readable job view returned by every engine operation."""

    job_id: str
    organization_id: int
    conversation_id: str
    trigger_message_id: str | None
    job_type: str
    status: JobStatus
    worker_id: str | None
    result_message_id: str | None
    response_text: str | None
    confidence_score: float | None
    fragments_used: list[str]
    prompt_tokens: int | None
    completion_tokens: int | None
    total_cost: float | None
    error_code: str | None
    error_message: str | None
    metadata: dict[str, Any]
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime

    @property
    def retry_of(self) -> str | None:
        value = self.metadata.get("retry_of")
        return str(value) if value is not None else None


@dataclass(slots=True)
class JobFilters:
    """Filters accepted by listing and stats calls.

    ``date_from`` and ``date_to`` are inclusive bounds on ``created_at``.
    """

    status: JobStatus | None = None
    job_type: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None


@dataclass(slots=True)
class JobStats:
    """Point-in-time status distribution for one organization."""

    total: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "pending": self.pending,
            "running": self.running,
            "completed": self.completed,
            "failed": self.failed,
            "cancelled": self.cancelled,
        }


@dataclass(slots=True)
class AuditEntryView:
    """Stored audit record for inspection."""

    entry_id: int
    action: str
    entity_type: str
    entity_id: str
    actor_id: str
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)
