from __future__ import annotations

import random

import allure
import pytest
from conftest import assert_job_invariants, enqueue_job

from ai_jobs.engine.errors import (
    InvalidTransition,
    JobEngineError,
    JobNotFound,
    StaleState,
)
from ai_jobs.engine.models import JobFailure, JobResult, JobStatus, TERMINAL_STATUSES
from ai_jobs.engine.service import JobEngine
from ai_jobs.engine.state_machine import ALLOWED_TRANSITIONS, JobStateMachine, is_allowed

pytestmark = [
    allure.epic("Job Engine"),
    allure.feature("State Machine"),
]


def test_transition_table_matches_lifecycle() -> None:
    assert ALLOWED_TRANSITIONS[JobStatus.PENDING] == {JobStatus.RUNNING, JobStatus.CANCELLED}
    assert ALLOWED_TRANSITIONS[JobStatus.RUNNING] == {
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }
    for terminal in TERMINAL_STATUSES:
        assert ALLOWED_TRANSITIONS[terminal] == frozenset()
    assert not is_allowed(JobStatus.PENDING, JobStatus.COMPLETED)
    assert not is_allowed(JobStatus.PENDING, JobStatus.FAILED)


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda status: status.value))
@pytest.mark.parametrize("requested", list(JobStatus))
def test_no_transition_leaves_terminal_state(
    store,
    terminal: JobStatus,
    requested: JobStatus,
) -> None:
    state_machine = JobStateMachine(store)

    with pytest.raises(InvalidTransition) as error:
        state_machine.transition("any-job", expected=terminal, target=requested)

    assert error.value.current is terminal
    assert error.value.requested is requested


def test_claim_sets_started_at_and_worker(engine: JobEngine) -> None:
    job = enqueue_job(engine)

    claimed = engine.state_machine.claim(job.job_id, worker_id="worker-a")

    assert claimed.status is JobStatus.RUNNING
    assert claimed.worker_id == "worker-a"
    assert claimed.started_at is not None
    assert claimed.completed_at is None
    assert_job_invariants(claimed)


def test_stale_state_reports_actual_status(engine: JobEngine) -> None:
    job = enqueue_job(engine)
    engine.state_machine.claim(job.job_id, worker_id="worker-a")

    with pytest.raises(StaleState) as error:
        engine.state_machine.claim(job.job_id, worker_id="worker-b")

    assert error.value.expected is JobStatus.PENDING
    assert error.value.actual is JobStatus.RUNNING
    assert engine.get_job(job.job_id).worker_id == "worker-a"


def test_transition_on_unknown_job_raises_not_found(engine: JobEngine) -> None:
    with pytest.raises(JobNotFound):
        engine.state_machine.claim("missing", worker_id="worker-a")


def test_succeed_requires_running_job(engine: JobEngine) -> None:
    job = enqueue_job(engine)

    with pytest.raises(StaleState):
        engine.report_success(job.job_id, JobResult(response_text="too early"))

    assert engine.get_job(job.job_id).status is JobStatus.PENDING


def test_success_result_fields_are_persisted(engine: JobEngine) -> None:
    job = enqueue_job(engine)
    engine.claim("worker-a")

    completed = engine.report_success(
        job.job_id,
        JobResult(
            response_text="Hello!",
            result_message_id="msg-out",
            confidence_score=0.82,
            fragments_used=["frag-2", "frag-1"],
            prompt_tokens=120,
            completion_tokens=30,
            total_cost=0.0021,
        ),
    )

    assert completed.status is JobStatus.COMPLETED
    assert completed.response_text == "Hello!"
    assert completed.result_message_id == "msg-out"
    assert completed.confidence_score == pytest.approx(0.82)
    assert completed.fragments_used == ["frag-2", "frag-1"]
    assert completed.prompt_tokens == 120
    assert completed.completion_tokens == 30
    assert completed.total_cost == pytest.approx(0.0021)
    assert completed.error_code is None
    assert_job_invariants(completed)


def test_failure_fields_are_persisted(engine: JobEngine) -> None:
    job = enqueue_job(engine)
    engine.claim("worker-a")

    failed = engine.report_failure(
        job.job_id,
        JobFailure(error_code="TIMEOUT", error_message="Model did not answer in time."),
    )

    assert failed.status is JobStatus.FAILED
    assert failed.error_code == "TIMEOUT"
    assert failed.error_message == "Model did not answer in time."
    assert failed.response_text is None
    assert_job_invariants(failed)


def test_second_success_report_is_stale_and_keeps_first_result(engine: JobEngine) -> None:
    job = enqueue_job(engine)
    engine.claim("worker-a")
    engine.report_success(job.job_id, JobResult(response_text="first", confidence_score=0.9))

    with pytest.raises(StaleState):
        engine.report_success(job.job_id, JobResult(response_text="second", confidence_score=0.1))

    stored = engine.get_job(job.job_id)
    assert stored.response_text == "first"
    assert stored.confidence_score == pytest.approx(0.9)


@pytest.mark.parametrize("bad_confidence", [-0.1, 1.5])
def test_result_rejects_confidence_outside_unit_interval(bad_confidence: float) -> None:
    with pytest.raises(ValueError, match="confidence_score"):
        JobResult(response_text="x", confidence_score=bad_confidence)


def test_failure_requires_error_code() -> None:
    with pytest.raises(ValueError, match="error_code"):
        JobFailure(error_code="  ")


@pytest.mark.parametrize("seed", [1, 7, 42, 2026])
def test_invariants_hold_over_random_operation_sequences(engine: JobEngine, seed: int) -> None:
    rng = random.Random(seed)
    job_ids = [enqueue_job(engine, conversation_id=f"conv-{index}").job_id for index in range(4)]
    terminal_seen: dict[str, JobStatus] = {}

    for step in range(60):
        operation = rng.choice(["enqueue", "claim", "succeed", "fail", "cancel", "retry"])
        target = rng.choice(job_ids)
        try:
            if operation == "enqueue":
                job_ids.append(enqueue_job(engine, conversation_id=f"conv-extra-{step}").job_id)
            elif operation == "claim":
                engine.claim(f"worker-{rng.randint(1, 3)}")
            elif operation == "succeed":
                engine.report_success(target, JobResult(response_text=f"answer {step}"))
            elif operation == "fail":
                engine.report_failure(target, JobFailure(error_code="TIMEOUT"))
            elif operation == "cancel":
                engine.cancel(target, "operator")
            else:
                job_ids.append(engine.retry(target, "operator").job_id)
        except JobEngineError:
            pass

        for job_id in job_ids:
            job = engine.get_job(job_id)
            assert_job_invariants(job)
            if job_id in terminal_seen:
                assert job.status is terminal_seen[job_id]
            elif job.status.is_terminal:
                terminal_seen[job_id] = job.status
