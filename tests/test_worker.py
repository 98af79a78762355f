from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import allure
import pytest
from conftest import enqueue_job

from ai_jobs.engine.errors import StoreUnavailable
from ai_jobs.engine.executor import EchoExecutor, ExecutionCancelled
from ai_jobs.engine.models import JobResult, JobStatus, JobView
from ai_jobs.engine.service import JobEngine
from ai_jobs.engine.store import SqlJobStore
from ai_jobs.engine.worker import EXECUTOR_ERROR_CODE, JobWorker

pytestmark = [
    allure.epic("Job Engine"),
    allure.feature("Worker"),
]


def _worker(engine: JobEngine, executor=None, **kwargs) -> JobWorker:
    kwargs.setdefault("poll_interval_seconds", 0.0)
    kwargs.setdefault("store_retry_base_seconds", 0.0)
    kwargs.setdefault("store_retry_max_seconds", 0.0)
    return JobWorker(
        engine=engine,
        executor=executor or EchoExecutor(),
        worker_id="worker-test",
        **kwargs,
    )


class CrashingExecutor:
    def execute(self, job: JobView, *, is_cancelled: Callable[[], bool]) -> JobResult:
        raise RuntimeError("model client exploded")


class CancelDuringRunExecutor:
    """Simulates an operator cancelling while the AI call is in flight."""

    def __init__(self, engine: JobEngine, *, honour_cancellation: bool) -> None:
        self.engine = engine
        self.honour_cancellation = honour_cancellation

    def execute(self, job: JobView, *, is_cancelled: Callable[[], bool]) -> JobResult:
        self.engine.cancel(job.job_id, "agent-1")
        if self.honour_cancellation and is_cancelled():
            raise ExecutionCancelled(job.job_id)
        return JobResult(response_text="finished anyway")


class FlakyClaimEngine:
    """Delegates to a real engine but fails the first ``failures`` claims."""

    def __init__(self, engine: JobEngine, failures: int) -> None:
        self._engine = engine
        self.failures = failures
        self.claim_calls = 0

    def claim(self, worker_id: str, *, job_types=()) -> JobView | None:
        self.claim_calls += 1
        if self.claim_calls <= self.failures:
            raise StoreUnavailable("database is locked")
        return self._engine.claim(worker_id, job_types=job_types)

    def __getattr__(self, name: str):
        return getattr(self._engine, name)


def test_worker_completes_job_with_echo_executor(engine: JobEngine) -> None:
    job = enqueue_job(engine, metadata={"prompt": "hello there", "fragment_ids": ["frag-1"]})

    summary = _worker(engine).run_once()

    assert summary.processed == 1
    assert summary.succeeded == 1
    stored = engine.get_job(job.job_id)
    assert stored.status is JobStatus.COMPLETED
    assert stored.worker_id == "worker-test"
    assert stored.response_text == "echo: hello there"
    assert stored.fragments_used == ["frag-1"]
    assert stored.prompt_tokens == 2
    assert stored.completion_tokens == 3


def test_worker_reports_executor_failure(engine: JobEngine) -> None:
    job = enqueue_job(engine, metadata={"force_error": "RATE_LIMITED"})

    summary = _worker(engine).run_once()

    assert summary.failed == 1
    stored = engine.get_job(job.job_id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_code == "RATE_LIMITED"


def test_worker_maps_executor_crash_to_failure(engine: JobEngine) -> None:
    job = enqueue_job(engine)

    summary = _worker(engine, CrashingExecutor()).run_once()

    assert summary.failed == 1
    stored = engine.get_job(job.job_id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_code == EXECUTOR_ERROR_CODE
    assert stored.error_message == "model client exploded"


@pytest.mark.parametrize("honour_cancellation", [True, False])
def test_worker_discards_result_of_cancelled_job(
    engine: JobEngine,
    honour_cancellation: bool,
) -> None:
    job = enqueue_job(engine)
    executor = CancelDuringRunExecutor(engine, honour_cancellation=honour_cancellation)

    summary = _worker(engine, executor).run_once()

    assert summary.processed == 1
    assert summary.cancelled == 1
    assert summary.succeeded == 0
    stored = engine.get_job(job.job_id)
    assert stored.status is JobStatus.CANCELLED
    assert stored.response_text is None


def test_worker_idle_poll_on_empty_queue(engine: JobEngine) -> None:
    summary = _worker(engine).run_once()

    assert summary.processed == 0
    assert summary.idle_polls == 1


def test_worker_backs_off_while_store_is_unavailable(engine: JobEngine) -> None:
    job = enqueue_job(engine)
    flaky = FlakyClaimEngine(engine, failures=2)

    summary = _worker(flaky, store_retry_attempts=3).run_once()

    assert flaky.claim_calls == 3
    assert summary.succeeded == 1
    assert engine.get_job(job.job_id).status is JobStatus.COMPLETED


def test_worker_gives_up_after_configured_attempts(engine: JobEngine) -> None:
    enqueue_job(engine)
    flaky = FlakyClaimEngine(engine, failures=10)

    with pytest.raises(StoreUnavailable):
        _worker(flaky, store_retry_attempts=3).run_once()

    assert flaky.claim_calls == 3


def test_worker_loop_respects_max_jobs_and_idle_polls(engine: JobEngine) -> None:
    for index in range(3):
        enqueue_job(engine, conversation_id=f"conv-{index}")

    first = _worker(engine).run_loop(max_jobs=2)
    assert first.processed == 2
    assert first.succeeded == 2

    rest = _worker(engine).run_loop(max_idle_polls=2)
    assert rest.processed == 1
    assert rest.idle_polls == 2
    assert engine.stats(1).completed == 3


def test_worker_stops_when_requested(engine: JobEngine) -> None:
    enqueue_job(engine)
    worker = _worker(engine)
    worker.request_stop()

    summary = worker.run_loop()

    assert summary.processed == 0
    assert engine.stats(1).pending == 1


def test_worker_rejects_invalid_retry_attempts(engine: JobEngine) -> None:
    with pytest.raises(ValueError, match="store_retry_attempts"):
        _worker(engine, store_retry_attempts=0)


class SpuriousCancelExecutor:
    def execute(self, job: JobView, *, is_cancelled: Callable[[], bool]) -> JobResult:
        raise ExecutionCancelled(job.job_id)


def test_worker_fails_job_stopped_without_cancellation(engine: JobEngine) -> None:
    job = enqueue_job(engine)

    summary = _worker(engine, SpuriousCancelExecutor()).run_once()

    assert summary.cancelled == 0
    assert summary.failed == 1
    stored = engine.get_job(job.job_id)
    assert stored.status is JobStatus.FAILED
    assert stored.error_code == EXECUTOR_ERROR_CODE


class ReadFailsAfterCommitStore(SqlJobStore):
    """Raises StoreUnavailable on the first read that follows a committed update."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.armed = False
        self.failed_reads = 0

    def conditional_update(self, job_id, expected_status, patch) -> int:
        affected = super().conditional_update(job_id, expected_status, patch)
        if affected == 1 and self.failed_reads == 0:
            self.armed = True
        return affected

    def get_by_id(self, job_id: str) -> JobView | None:
        if self.armed:
            self.armed = False
            self.failed_reads += 1
            raise StoreUnavailable("connection dropped")
        return super().get_by_id(job_id)


def test_claim_survives_read_failure_after_lease_commit(tmp_path: Path) -> None:
    store = ReadFailsAfterCommitStore(tmp_path / "jobs.db")
    store.init_schema()
    try:
        engine = JobEngine(store=store)
        first = enqueue_job(engine, conversation_id="conv-1")
        second = enqueue_job(engine, conversation_id="conv-2")

        claimed = engine.claim("worker-test")

        assert claimed is not None
        assert claimed.job_id == first.job_id
        assert claimed.status is JobStatus.RUNNING
        assert claimed.worker_id == "worker-test"
        assert claimed.started_at is not None

        # The dropped read hits the next caller, not the claim that won the lease.
        with pytest.raises(StoreUnavailable):
            store.get_by_id(first.job_id)
        stored = store.get_by_id(first.job_id)
        assert stored == claimed
        assert store.get_by_id(second.job_id).status is JobStatus.PENDING
    finally:
        store.close()
