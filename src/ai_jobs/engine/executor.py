"""Executor contract: the external side that performs the AI call."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from ai_jobs.engine.models import JobResult, JobView
from ai_jobs.engine.pricing import ModelPricing, estimate_cost


class ExecutionFailed(Exception):
    """Raised by executors to report a failed run."""

    def __init__(self, error_code: str, error_message: str = "") -> None:
        super().__init__(f"{error_code}: {error_message}" if error_message else error_code)
        self.error_code = error_code
        self.error_message = error_message


class ExecutionCancelled(Exception):
    """Raised by executors that noticed the job was cancelled and stopped early."""


class Executor(Protocol):
    """Runs one claimed job.

    Long-running executors must call ``is_cancelled()`` periodically and stop
    (raising ``ExecutionCancelled``) once it returns True.
    """

    def execute(self, job: JobView, *, is_cancelled: Callable[[], bool]) -> JobResult: ...


class EchoExecutor:
    """Deterministic local executor for smoke runs and tests.

    Replies with the job's prompt from metadata (or a fixed text) and reports
    a whitespace token count as usage.
    """

    def __init__(
        self,
        *,
        model: str = "echo",
        pricing: dict[str, ModelPricing] | None = None,
    ) -> None:
        self.model = model
        self.pricing = pricing or {}

    def execute(self, job: JobView, *, is_cancelled: Callable[[], bool]) -> JobResult:
        if is_cancelled():
            raise ExecutionCancelled(job.job_id)
        if job.metadata.get("force_error"):
            raise ExecutionFailed(
                str(job.metadata["force_error"]),
                "Forced failure requested in job metadata.",
            )

        prompt = str(job.metadata.get("prompt") or f"{job.job_type} for {job.conversation_id}")
        response_text = f"echo: {prompt}"
        prompt_tokens = len(prompt.split())
        completion_tokens = len(response_text.split())
        fragments = job.metadata.get("fragment_ids") or []
        return JobResult(
            response_text=response_text,
            confidence_score=1.0,
            fragments_used=[str(item) for item in fragments],
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_cost=estimate_cost(
                model=self.model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                pricing=self.pricing,
            ),
        )
