"""Queue worker: claim, execute, report."""

from __future__ import annotations

import logging
import random
import signal
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass

from ai_jobs.engine.errors import StaleState, StoreUnavailable
from ai_jobs.engine.executor import ExecutionCancelled, ExecutionFailed, Executor
from ai_jobs.engine.models import JobFailure, JobResult, JobView
from ai_jobs.engine.service import JobEngine

logger = logging.getLogger(__name__)

EXECUTOR_ERROR_CODE = "EXECUTOR_ERROR"


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.cancelled += other.cancelled
        self.idle_polls += other.idle_polls


class JobWorker:
    """Polls the dispatcher and runs claimed jobs one at a time.

    Several workers (threads or processes) can share one store; the lease
    dispatcher guarantees that no job is executed twice.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        engine: JobEngine,
        executor: Executor,
        worker_id: str,
        poll_interval_seconds: float = 2.0,
        store_retry_attempts: int = 5,
        store_retry_base_seconds: float = 0.5,
        store_retry_max_seconds: float = 30.0,
        job_types: Sequence[str] = (),
    ) -> None:
        if store_retry_attempts <= 0:
            raise ValueError("store_retry_attempts must be > 0.")
        self.engine = engine
        self.executor = executor
        self.worker_id = worker_id
        self.poll_interval_seconds = poll_interval_seconds
        self.store_retry_attempts = store_retry_attempts
        self.store_retry_base_seconds = store_retry_base_seconds
        self.store_retry_max_seconds = store_retry_max_seconds
        self.job_types = tuple(job_types)
        self._random = random.Random()  # noqa: S311
        self._stop_requested = False

    def run_once(self) -> WorkerRunSummary:
        """Process at most one job from the queue."""

        summary = WorkerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        job = self._claim_with_backoff()
        if job is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        try:
            result = self.executor.execute(
                job,
                is_cancelled=lambda: self.engine.is_cancelled(job.job_id),
            )
        except ExecutionCancelled:
            if self.engine.is_cancelled(job.job_id):
                logger.info("Job %s stopped by executor after cancellation", job.job_id)
                summary.cancelled = 1
            else:
                logger.warning(
                    "Executor stopped job %s as cancelled but nobody cancelled it",
                    job.job_id,
                )
                self._report_failure(
                    job,
                    JobFailure(
                        error_code=EXECUTOR_ERROR_CODE,
                        error_message="Executor stopped without a cancellation request.",
                    ),
                    summary,
                )
        except ExecutionFailed as error:
            self._report_failure(
                job,
                JobFailure(error_code=error.error_code, error_message=error.error_message),
                summary,
            )
        except Exception as error:  # noqa: BLE001
            logger.exception("Executor crashed on job %s", job.job_id)
            self._report_failure(
                job,
                JobFailure(error_code=EXECUTOR_ERROR_CODE, error_message=str(error)),
                summary,
            )
        else:
            self._report_success(job, result, summary)
        return summary

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int = 1,
    ) -> WorkerRunSummary:
        """Run until the queue is idle for ``max_idle_polls`` polls or ``max_jobs`` are done."""

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    return aggregate
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    return aggregate

                summary = self.run_once()
                aggregate.add(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0

    def request_stop(self) -> None:
        self._stop_requested = True

    def _claim_with_backoff(self) -> JobView | None:
        attempt = 0
        while True:
            try:
                return self.engine.claim(self.worker_id, job_types=self.job_types)
            except StoreUnavailable as error:
                attempt += 1
                if attempt >= self.store_retry_attempts:
                    logger.error(
                        "Job store still unavailable after %d attempts, giving up",
                        attempt,
                    )
                    raise
                delay = self._backoff_seconds(attempt)
                logger.warning(
                    "Job store unavailable (attempt %d/%d), retrying in %.2fs: %s",
                    attempt,
                    self.store_retry_attempts,
                    delay,
                    error,
                )
                self._sleep_with_stop(delay)
                if self._stop_requested:
                    return None

    def _backoff_seconds(self, attempt: int) -> float:
        ceiling = min(
            self.store_retry_max_seconds,
            self.store_retry_base_seconds * (2 ** (attempt - 1)),
        )
        return ceiling * self._random.uniform(0.5, 1.0)

    def _report_success(self, job: JobView, result: JobResult, summary: WorkerRunSummary) -> None:
        try:
            self.engine.report_success(job.job_id, result, actor_id=self.worker_id)
        except StaleState as error:
            logger.info("Discarded result for job %s: %s", job.job_id, error)
            summary.cancelled = 1
            return
        summary.succeeded = 1

    def _report_failure(
        self,
        job: JobView,
        failure: JobFailure,
        summary: WorkerRunSummary,
    ) -> None:
        try:
            self.engine.report_failure(job.job_id, failure, actor_id=self.worker_id)
        except StaleState as error:
            logger.info("Discarded failure for job %s: %s", job.job_id, error)
            summary.cancelled = 1
            return
        summary.failed = 1

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            logger.info("Received signal %s, stopping after current job", signum)
            self.request_stop()

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
            return
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
