from __future__ import annotations

from datetime import timedelta

import allure
from conftest import enqueue_job

from ai_jobs.engine.models import (
    JobCreate,
    JobFailure,
    JobFilters,
    JobResult,
    JobStats,
    JobStatus,
)
from ai_jobs.engine.service import JobEngine

pytestmark = [
    allure.epic("Job Engine"),
    allure.feature("Stats & Listing"),
]


def _seed_mixed_jobs(engine: JobEngine) -> None:
    for index in range(6):
        enqueue_job(engine, conversation_id=f"conv-{index}")
    enqueue_job(engine, organization_id=2, conversation_id="other-org")

    completed = engine.claim("worker-a")
    engine.report_success(completed.job_id, JobResult(response_text="ok"))
    failed = engine.claim("worker-a")
    engine.report_failure(failed.job_id, JobFailure(error_code="TIMEOUT"))
    engine.claim("worker-a")
    pending = engine.list_jobs(1, JobFilters(status=JobStatus.PENDING))
    engine.cancel(pending[0].job_id, "agent-1")


def _assert_sum(stats: JobStats) -> None:
    assert stats.total == (
        stats.pending + stats.running + stats.completed + stats.failed + stats.cancelled
    )


def test_stats_counts_each_status(engine: JobEngine) -> None:
    _seed_mixed_jobs(engine)

    stats = engine.stats(1)

    assert stats.as_dict() == {
        "total": 6,
        "pending": 2,
        "running": 1,
        "completed": 1,
        "failed": 1,
        "cancelled": 1,
    }
    _assert_sum(stats)
    other = engine.stats(2)
    assert other.total == 1
    assert other.pending == 1
    assert engine.stats(99) == JobStats()


def test_stats_sum_property_holds_after_every_operation(engine: JobEngine) -> None:
    jobs = [enqueue_job(engine, conversation_id=f"conv-{index}") for index in range(3)]
    _assert_sum(engine.stats(1))
    claimed = engine.claim("worker-a")
    _assert_sum(engine.stats(1))
    engine.report_failure(claimed.job_id, JobFailure(error_code="TIMEOUT"))
    _assert_sum(engine.stats(1))
    engine.retry(claimed.job_id, "agent-1")
    _assert_sum(engine.stats(1))
    engine.cancel(jobs[2].job_id, "agent-1")
    stats = engine.stats(1)
    _assert_sum(stats)
    assert stats.total == 4


def test_stats_and_listing_apply_filters(engine: JobEngine) -> None:
    response = enqueue_job(engine, job_type="generate_response")
    enqueue_job(engine, job_type="summarize", conversation_id="conv-2")

    by_type = engine.stats(1, JobFilters(job_type="summarize"))
    assert by_type.total == 1

    window = JobFilters(date_from=response.created_at, date_to=response.created_at)
    listed = engine.list_jobs(1, window)
    assert response.job_id in {job.job_id for job in listed}
    assert all(job.created_at == response.created_at for job in listed)

    future = JobFilters(date_from=response.created_at + timedelta(days=1))
    assert engine.stats(1, future).total == 0


def test_list_jobs_is_newest_first_and_limited(engine: JobEngine) -> None:
    for index in range(4):
        engine.enqueue(
            JobCreate(
                organization_id=1,
                conversation_id=f"conv-{index}",
                job_type="generate_response",
                job_id=f"job-{index}",
            ),
        )

    listed = engine.list_jobs(1, limit=2)

    assert [job.job_id for job in listed] == ["job-3", "job-2"]


def test_active_job_for_conversation(engine: JobEngine) -> None:
    assert engine.get_active_job(1, "conv-1") is None
    older = engine.enqueue(
        JobCreate(
            organization_id=1,
            conversation_id="conv-1",
            job_type="generate_response",
            job_id="job-a",
        ),
    )
    newer = engine.enqueue(
        JobCreate(
            organization_id=1,
            conversation_id="conv-1",
            job_type="generate_response",
            job_id="job-b",
        ),
    )

    assert engine.get_active_job(1, "conv-1").job_id == newer.job_id
    engine.cancel(newer.job_id, "agent-1")
    assert engine.get_active_job(1, "conv-1").job_id == older.job_id
    assert engine.get_active_job(2, "conv-1") is None
