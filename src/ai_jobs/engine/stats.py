"""Status distribution snapshots for observability."""

from __future__ import annotations

from collections import Counter

from ai_jobs.engine.models import JobFilters, JobStats, JobStatus
from ai_jobs.engine.store import JobStore


class StatsAggregator:
    def __init__(self, store: JobStore) -> None:
        self.store = store

    def snapshot(self, organization_id: int, filters: JobFilters | None = None) -> JobStats:
        """Count an organization's jobs per status in a single read."""

        jobs = self.store.list_by_org(organization_id, filters)
        counts = Counter(job.status for job in jobs)
        return JobStats(
            total=len(jobs),
            pending=counts[JobStatus.PENDING],
            running=counts[JobStatus.RUNNING],
            completed=counts[JobStatus.COMPLETED],
            failed=counts[JobStatus.FAILED],
            cancelled=counts[JobStatus.CANCELLED],
        )
