"""Runtime configuration for the job engine and its worker."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass(slots=True)
class DispatcherSettings:
    """Claiming and polling settings."""

    claim_batch_size: int = 16
    poll_interval_seconds: float = 2.0
    store_retry_attempts: int = 5
    store_retry_base_seconds: float = 0.5
    store_retry_max_seconds: float = 30.0


@dataclass(slots=True)
class RetrySettings:
    """Retry lineage policy."""

    # 0 means the chain may grow without limit.
    max_chain_length: int = 0


@dataclass(slots=True)
class ExecutorSettings:
    """Settings for the bundled echo executor."""

    model: str = "echo"
    pricing: str = ""


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".ai_jobs.db")
    busy_timeout_ms: int = 5000
    log_level: str = "WARNING"
    default_actor_id: str = "system"
    dispatcher: DispatcherSettings = field(default_factory=DispatcherSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("AI_JOBS_DB_PATH", ".ai_jobs.db")),
            busy_timeout_ms=_env_int("AI_JOBS_BUSY_TIMEOUT_MS", 5000),
            log_level=os.getenv("AI_JOBS_LOG_LEVEL", "WARNING").strip().upper(),
            default_actor_id=os.getenv("AI_JOBS_ACTOR_ID", "system"),
            dispatcher=DispatcherSettings(
                claim_batch_size=_env_int("AI_JOBS_CLAIM_BATCH_SIZE", 16),
                poll_interval_seconds=_env_float("AI_JOBS_POLL_INTERVAL_SECONDS", 2.0),
                store_retry_attempts=_env_int("AI_JOBS_STORE_RETRY_ATTEMPTS", 5),
                store_retry_base_seconds=_env_float("AI_JOBS_STORE_RETRY_BASE_SECONDS", 0.5),
                store_retry_max_seconds=_env_float("AI_JOBS_STORE_RETRY_MAX_SECONDS", 30.0),
            ),
            retry=RetrySettings(
                max_chain_length=_env_int("AI_JOBS_MAX_RETRY_CHAIN", 0),
            ),
            executor=ExecutorSettings(
                model=os.getenv("AI_JOBS_EXECUTOR_MODEL", "echo"),
                pricing=os.getenv("AI_JOBS_PRICING", ""),
            ),
        )

    def validate(self) -> None:
        """Raise ValueError naming the offending variable."""

        if self.busy_timeout_ms <= 0:
            raise ValueError("AI_JOBS_BUSY_TIMEOUT_MS must be > 0.")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(
                f"AI_JOBS_LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}, got {self.log_level!r}.",
            )
        if not self.default_actor_id.strip():
            raise ValueError("AI_JOBS_ACTOR_ID must not be empty.")
        if self.dispatcher.claim_batch_size <= 0:
            raise ValueError("AI_JOBS_CLAIM_BATCH_SIZE must be > 0.")
        if self.dispatcher.poll_interval_seconds < 0:
            raise ValueError("AI_JOBS_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.dispatcher.store_retry_attempts <= 0:
            raise ValueError("AI_JOBS_STORE_RETRY_ATTEMPTS must be > 0.")
        if self.dispatcher.store_retry_base_seconds < 0:
            raise ValueError("AI_JOBS_STORE_RETRY_BASE_SECONDS must be >= 0.")
        if self.dispatcher.store_retry_max_seconds < self.dispatcher.store_retry_base_seconds:
            raise ValueError(
                "AI_JOBS_STORE_RETRY_MAX_SECONDS must be >= AI_JOBS_STORE_RETRY_BASE_SECONDS.",
            )
        if self.retry.max_chain_length < 0:
            raise ValueError("AI_JOBS_MAX_RETRY_CHAIN must be >= 0.")

    def configure_logging(self) -> None:
        logging.basicConfig(
            level=self.log_level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid float value for {name}: {value!r}") from error
