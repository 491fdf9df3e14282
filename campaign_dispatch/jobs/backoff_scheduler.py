"""Retry scheduling for incomplete dispatch passes."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, TYPE_CHECKING

from campaign_dispatch.config import DISPATCH_SETTINGS
from campaign_dispatch.jobs.campaign_job import ClaimedJob, JobView
from campaign_dispatch.jobs.job_store import JobStore
from campaign_dispatch.models.db import JobStatus
from campaign_dispatch.utils import get_logger, log_business_event
from campaign_dispatch.utils.backoff import compute_backoff_minutes
from campaign_dispatch.utils.time import Clock, utc_now

if TYPE_CHECKING:  # pragma: no cover
    from campaign_dispatch.services.alerting import AdminNotifier

logger = get_logger(__name__)


@dataclass(slots=True)
class RetryDecision:
    status: JobStatus
    attempts: int
    retry: bool
    next_attempt_at: Optional[datetime] = None


class BackoffScheduler:
    def __init__(
        self,
        store: JobStore,
        *,
        notifier: Optional["AdminNotifier"] = None,
        max_attempts: Optional[int] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.notifier = notifier
        self.max_attempts = int(max_attempts if max_attempts is not None else DISPATCH_SETTINGS["max_attempts"])
        self.clock = clock

    async def apply(self, claim: ClaimedJob, job: JobView, error: str) -> RetryDecision:
        """Count a failed pass, then reschedule or dead-letter the job."""
        attempts = job.attempts + 1
        if attempts >= self.max_attempts:
            self.store.mark_failed(claim, attempts=attempts, last_error=error)
            logger.error("Job dead-lettered", job_id=job.id, attempts=attempts, error=error)
            log_business_event("job_dead_lettered", {"attempts": attempts, "error": error}, job_id=job.id)
            await self._notify(error, job.id, attempts, retry=False)
            return RetryDecision(status=JobStatus.FAILED, attempts=attempts, retry=False)

        delay_minutes = compute_backoff_minutes(attempts)
        next_attempt_at = self.clock() + timedelta(minutes=delay_minutes)
        self.store.reschedule(claim, attempts=attempts, next_attempt_at=next_attempt_at, last_error=error)
        logger.warning(
            "Job rescheduled with backoff",
            job_id=job.id,
            attempts=attempts,
            delay_minutes=round(delay_minutes, 3),
            error=error,
        )
        await self._notify(error, job.id, attempts, retry=True)
        return RetryDecision(status=JobStatus.PENDING, attempts=attempts, retry=True, next_attempt_at=next_attempt_at)

    def yield_budget(self, claim: ClaimedJob, job: JobView) -> RetryDecision:
        """Hand an unfinished, healthy job back to the queue without a penalty."""
        now = self.clock()
        self.store.reschedule(claim, attempts=job.attempts, next_attempt_at=now, last_error=None)
        logger.info("Chunk budget exhausted, job returned to queue", job_id=job.id, attempts=job.attempts)
        return RetryDecision(status=JobStatus.PENDING, attempts=job.attempts, retry=True, next_attempt_at=now)

    async def _notify(self, error: str, job_id: str, attempts: int, *, retry: bool) -> None:
        if self.notifier is None:
            return
        await self.notifier.notify("cron_send_fail", error, {"jobId": job_id, "attempts": attempts, "retry": retry})


__all__ = ["BackoffScheduler", "RetryDecision"]
