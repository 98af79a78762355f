"""Asynchronous job engine for AI responses in chat conversations.

A job moves ``pending -> running -> completed | failed`` with ``cancelled``
reachable from both non-terminal states. Workers coordinate only through the
store's conditional update: a worker owns a job (holds its lease) because its
``pending -> running`` update was the one that matched. Retries never rewrite
a failed row; they append a successor pointing back via ``metadata.retry_of``.
"""

from ai_jobs.engine.errors import (
    InvalidTransition,
    JobEngineError,
    JobNotFound,
    NotCancellable,
    NotRetryable,
    StaleState,
    StoreUnavailable,
)
from ai_jobs.engine.models import (
    JobCreate,
    JobFailure,
    JobFilters,
    JobResult,
    JobStats,
    JobStatus,
    JobType,
    JobView,
)
from ai_jobs.engine.service import JobEngine

__all__ = [
    "InvalidTransition",
    "JobCreate",
    "JobEngine",
    "JobEngineError",
    "JobFailure",
    "JobFilters",
    "JobNotFound",
    "JobResult",
    "JobStats",
    "JobStatus",
    "JobType",
    "JobView",
    "NotCancellable",
    "NotRetryable",
    "StaleState",
    "StoreUnavailable",
]
