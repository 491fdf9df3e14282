"""One dispatch invocation: authenticate, claim, deliver, settle.

Claimed jobs are processed sequentially; parallelism only exists inside the
chunker's send pool. A failure in one job never aborts the tick.
"""
from __future__ import annotations

import time
from typing import Optional

from campaign_dispatch.config import DISPATCH_SETTINGS
from campaign_dispatch.exceptions import LeaseLost
from campaign_dispatch.jobs.backoff_scheduler import BackoffScheduler, RetryDecision
from campaign_dispatch.jobs.campaign_job import ClaimedJob, JobView
from campaign_dispatch.jobs.claimer import JobClaimer
from campaign_dispatch.jobs.job_store import JobStore
from campaign_dispatch.models.db import JobStatus
from campaign_dispatch.models.schemas import JobResult, TickSummary
from campaign_dispatch.services.consent_resolver import ConsentResolver
from campaign_dispatch.services.dispatch_chunker import ChunkOutcome, DispatchChunker
from campaign_dispatch.services.trigger_auth import SignedRequest, TriggerAuthenticator
from campaign_dispatch.utils import get_logger, log_business_event, log_performance
from campaign_dispatch.utils.time import Clock, isoformat, utc_now

logger = get_logger(__name__)

INVALID_JOB = "INVALID_JOB"


class TickCoordinator:
    def __init__(
        self,
        *,
        store: JobStore,
        resolver: ConsentResolver,
        chunker: DispatchChunker,
        scheduler: BackoffScheduler,
        authenticator: Optional[TriggerAuthenticator] = None,
        max_jobs: Optional[int] = None,
        max_chunks: Optional[int] = None,
        lease_minutes: Optional[float] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.resolver = resolver
        self.chunker = chunker
        self.scheduler = scheduler
        self.authenticator = authenticator
        self.max_jobs = int(max_jobs if max_jobs is not None else DISPATCH_SETTINGS["max_jobs_per_run"])
        self.max_chunks = int(max_chunks if max_chunks is not None else DISPATCH_SETTINGS["max_chunks_per_run"])
        self.lease_minutes = lease_minutes
        self.clock = clock

    async def run(self, trigger: Optional[SignedRequest] = None, *, worker_id: Optional[str] = None) -> TickSummary:
        if self.authenticator is not None and trigger is not None:
            self.authenticator.verify(trigger)

        started_at = self.clock()
        t0 = time.perf_counter()
        claimer = JobClaimer(self.store, worker_id=worker_id, lease_minutes=self.lease_minutes, clock=self.clock)
        claimed = claimer.claim(self.max_jobs)
        if not claimed:
            return TickSummary(started_at=isoformat(started_at), processed=0, results=[], message="No pending jobs")

        results: list[JobResult] = []
        for claim in claimed:
            results.append(await self.process(claim))

        log_performance(
            "dispatch_tick",
            round((time.perf_counter() - t0) * 1000, 2),
            {"worker_id": claimer.worker_id, "processed": len(results)},
        )
        return TickSummary(started_at=isoformat(started_at), processed=len(results), results=results)

    async def process(self, claim: ClaimedJob) -> JobResult:
        job = self.store.get(claim.job_id)
        if job is None:
            return JobResult(id=claim.job_id, status="missing", error="JOB_NOT_FOUND")

        if not job.subject.strip() or not job.html_body.strip():
            try:
                self.store.mark_failed(claim, attempts=job.attempts, last_error=INVALID_JOB)
            except LeaseLost:
                return self._lease_lost(job)
            logger.error("Invalid job dead-lettered", job_id=job.id)
            return JobResult(id=job.id, status=JobStatus.FAILED.value, attempts=job.attempts, retry=False, error=INVALID_JOB)

        try:
            job = self._ensure_snapshot(claim, job)
            outcome = await self.chunker.run(job, claim, job.recipients_snapshot or [], max_chunks=self.max_chunks)
            if outcome.complete:
                self.store.mark_done(claim, job, outcome.progress)
                log_business_event("job_done", outcome.progress.as_dict(), job_id=job.id)
                return self._result(job, outcome, JobStatus.DONE, job.attempts)
            if outcome.tripped:
                decision = await self.scheduler.apply(claim, job, outcome.error or "chunk_aborted")
            else:
                decision = self.scheduler.yield_budget(claim, job)
            return self._result(job, outcome, decision.status, decision.attempts, decision, outcome.error)
        except LeaseLost:
            return self._lease_lost(job)
        except Exception as e:
            logger.error("Job pass failed", job_id=job.id, error=str(e), exc_info=True)
            try:
                decision = await self.scheduler.apply(claim, job, str(e) or type(e).__name__)
            except LeaseLost:
                return self._lease_lost(job)
            return JobResult(
                id=job.id,
                status=decision.status.value,
                attempts=decision.attempts,
                retry=decision.retry,
                next_attempt_at=isoformat(decision.next_attempt_at),
                error=str(e) or type(e).__name__,
            )

    def _ensure_snapshot(self, claim: ClaimedJob, job: JobView) -> JobView:
        """Resolve and freeze the audience on the first pass only."""
        if job.has_snapshot:
            return job
        recipients = self.resolver.resolve(job.topic_filter, only_commercial=job.only_commercial, test_only=job.test_only)
        self.store.save_snapshot(claim, recipients)
        refreshed = self.store.get(claim.job_id)
        if refreshed is None:
            raise LeaseLost(claim.job_id)
        log_business_event("snapshot_frozen", {"recipients": len(refreshed.recipients_snapshot or [])}, job_id=job.id)
        return refreshed

    @staticmethod
    def _result(
        job: JobView,
        outcome: ChunkOutcome,
        status: JobStatus,
        attempts: int,
        decision: Optional[RetryDecision] = None,
        error: Optional[str] = None,
    ) -> JobResult:
        return JobResult(
            id=job.id,
            status=status.value,
            sent=outcome.counts.sent,
            skipped=outcome.counts.skipped,
            failed=outcome.counts.failed,
            attempts=attempts,
            retry=decision.retry if decision is not None else None,
            next_attempt_at=isoformat(decision.next_attempt_at) if decision is not None else None,
            error=error,
        )

    @staticmethod
    def _lease_lost(job: JobView) -> JobResult:
        logger.warning("Lease lost mid-pass, leaving job to its new owner", job_id=job.id)
        return JobResult(id=job.id, status="lease_lost", attempts=job.attempts, error="LEASE_LOST")


__all__ = ["TickCoordinator", "INVALID_JOB"]
