"""Lease dispatcher: hands each pending job to exactly one worker."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from ai_jobs.engine.audit import AuditEmitter
from ai_jobs.engine.errors import StaleState
from ai_jobs.engine.models import JobStatus, JobView
from ai_jobs.engine.state_machine import JobStateMachine

logger = logging.getLogger(__name__)


class LeaseDispatcher:
    """Claims the oldest pending job through the state machine's conditional update.

    No lock is taken: when another worker wins the race for a candidate the
    dispatcher moves on to the next one, and re-reads the queue once a whole
    batch has been lost.
    """

    def __init__(
        self,
        *,
        state_machine: JobStateMachine,
        audit: AuditEmitter,
        batch_size: int = 16,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0.")
        self.state_machine = state_machine
        self.audit = audit
        self.batch_size = batch_size

    def claim(self, worker_id: str, *, job_types: Sequence[str] = ()) -> JobView | None:
        """Claim one pending job for ``worker_id`` or return None when the queue is empty."""

        store = self.state_machine.store
        while True:
            candidates = store.list_pending(limit=self.batch_size, job_types=job_types)
            if not candidates:
                return None
            for candidate in candidates:
                try:
                    claimed = self.state_machine.claim(candidate.job_id, worker_id=worker_id)
                except StaleState:
                    logger.debug(
                        "Lost claim race for job %s (worker %s)",
                        candidate.job_id,
                        worker_id,
                    )
                    continue
                self.audit.emit(
                    action="job_claimed",
                    job_id=claimed.job_id,
                    actor_id=worker_id,
                    status_from=JobStatus.PENDING,
                    status_to=JobStatus.RUNNING,
                    details={"worker_id": worker_id, "job_type": claimed.job_type},
                )
                return claimed
