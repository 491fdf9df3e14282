"""Durable campaign job queue backed by the ``campaign_jobs`` table.

Ownership model:
- A claim is a compare-and-swap on ``version``; exactly one concurrent caller
  sees ``rowcount == 1``.
- Every later mutation (heartbeat, snapshot, checkpoint, finalize, reschedule)
  is conditioned on ``status=processing AND worker_id=<mine>``. A zero rowcount
  means another worker rescued the job and raises ``LeaseLost``.

All writes go through short ``session_scope`` transactions; nothing holds a
session across an ``await`` in the engine.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.exc import IntegrityError

from campaign_dispatch.database import SessionFactory, SessionLocal, session_scope
from campaign_dispatch.exceptions import LeaseLost
from campaign_dispatch.jobs.campaign_job import ClaimedJob, JobProgress, JobView
from campaign_dispatch.models.db import CampaignJob, JobStatus, SendLogEntry
from campaign_dispatch.utils import get_logger
from campaign_dispatch.utils.hashing import sha256_hex
from campaign_dispatch.utils.time import Clock, utc_now

logger = get_logger(__name__)


class JobStore:
    def __init__(self, session_factory: SessionFactory = SessionLocal, *, clock: Clock = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    # ------------------------------------------------------------------ #
    # Producer side
    # ------------------------------------------------------------------ #
    def create_job(
        self,
        job_id: str,
        *,
        subject: str,
        html_body: str,
        topic_filter: dict[str, bool],
        scheduled_at: datetime,
        test_only: bool = False,
        only_commercial: bool = False,
    ) -> tuple[str, bool]:
        """Create-if-absent. Returns ``(job_id, duplicate)``."""
        try:
            with session_scope(self.session_factory) as session:
                session.add(
                    CampaignJob(
                        id=job_id,
                        subject=subject,
                        html_body=html_body,
                        topic_filter=dict(topic_filter),
                        test_only=test_only,
                        only_commercial=only_commercial,
                        status=JobStatus.PENDING,
                        scheduled_at=scheduled_at,
                        attempts=0,
                        version=0,
                    )
                )
        except IntegrityError:
            logger.info("Campaign job already queued", job_id=job_id)
            return job_id, True
        return job_id, False

    def get(self, job_id: str) -> Optional[JobView]:
        with session_scope(self.session_factory) as session:
            row = session.get(CampaignJob, job_id)
            return JobView.from_row(row) if row is not None else None

    def counts_by_status(self) -> dict[str, int]:
        with session_scope(self.session_factory) as session:
            rows = session.execute(
                select(CampaignJob.status, func.count(CampaignJob.id)).group_by(CampaignJob.status)
            ).all()
        counts = {status.value: 0 for status in JobStatus}
        for status, count in rows:
            counts[JobStatus(status).value] = int(count)
        return counts

    # ------------------------------------------------------------------ #
    # Claim
    # ------------------------------------------------------------------ #
    @staticmethod
    def _eligible(now: datetime):
        due_pending = and_(
            CampaignJob.status == JobStatus.PENDING,
            CampaignJob.scheduled_at <= now,
            or_(CampaignJob.next_attempt_at.is_(None), CampaignJob.next_attempt_at <= now),
        )
        orphaned = and_(
            CampaignJob.status == JobStatus.PROCESSING,
            CampaignJob.lease_until.is_not(None),
            CampaignJob.lease_until <= now,
        )
        return or_(due_pending, orphaned)

    def find_claim_candidates(self, now: datetime, limit: int) -> list[tuple[str, int, JobStatus]]:
        """Eligible jobs ordered by schedule: ``(id, version, status)`` tuples."""
        with session_scope(self.session_factory) as session:
            rows = session.execute(
                select(CampaignJob.id, CampaignJob.version, CampaignJob.status)
                .where(self._eligible(now))
                .order_by(CampaignJob.scheduled_at.asc(), CampaignJob.id.asc())
                .limit(limit)
            ).all()
        return [(row[0], int(row[1]), JobStatus(row[2])) for row in rows]

    def try_claim(
        self,
        job_id: str,
        expected_version: int,
        *,
        now: datetime,
        lease_until: datetime,
        worker_id: str,
    ) -> bool:
        """Compare-and-swap claim. Eligibility is re-checked inside the UPDATE."""
        stmt = (
            update(CampaignJob)
            .where(
                CampaignJob.id == job_id,
                CampaignJob.version == expected_version,
                self._eligible(now),
            )
            .values(
                status=JobStatus.PROCESSING,
                lease_until=lease_until,
                worker_id=worker_id,
                started_at=now,
                version=CampaignJob.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        with session_scope(self.session_factory) as session:
            result = session.execute(stmt)
            return result.rowcount == 1

    # ------------------------------------------------------------------ #
    # Owner-only mutations
    # ------------------------------------------------------------------ #
    def _owned_update(self, claim: ClaimedJob, values: dict[str, Any], *extra_conditions) -> None:
        stmt = (
            update(CampaignJob)
            .where(
                CampaignJob.id == claim.job_id,
                CampaignJob.status == JobStatus.PROCESSING,
                CampaignJob.worker_id == claim.worker_id,
                *extra_conditions,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with session_scope(self.session_factory) as session:
            result = session.execute(stmt)
            if result.rowcount != 1:
                raise LeaseLost(claim.job_id)

    def heartbeat(self, claim: ClaimedJob, lease_until: datetime) -> None:
        self._owned_update(claim, {"lease_until": lease_until})
        claim.lease_until = lease_until

    def save_snapshot(self, claim: ClaimedJob, recipients: list[str]) -> list[str]:
        """Freeze the audience once. Returns the snapshot actually stored.

        If a snapshot already exists (a rescued job), it wins and is returned
        unchanged.
        """
        stmt = (
            update(CampaignJob)
            .where(
                CampaignJob.id == claim.job_id,
                CampaignJob.status == JobStatus.PROCESSING,
                CampaignJob.worker_id == claim.worker_id,
                CampaignJob.recipients_snapshot.is_(None),
            )
            .values(
                recipients_snapshot=list(recipients),
                progress_total=len(recipients),
                progress_last_index=0,
            )
            .execution_options(synchronize_session=False)
        )
        with session_scope(self.session_factory) as session:
            result = session.execute(stmt)
            if result.rowcount == 1:
                return list(recipients)
            row = session.get(CampaignJob, claim.job_id)
            if row is None or row.status != JobStatus.PROCESSING or row.worker_id != claim.worker_id:
                raise LeaseLost(claim.job_id)
            return list(row.recipients_snapshot or [])

    def checkpoint(self, claim: ClaimedJob, progress: JobProgress) -> None:
        """Persist counters; ``lastIndex`` only ever moves forward."""
        new_index = int(progress.last_index)
        self._owned_update(
            claim,
            {
                "progress_last_index": case(
                    (CampaignJob.progress_last_index < new_index, new_index),
                    else_=CampaignJob.progress_last_index,
                ),
                "progress_sent": progress.sent,
                "progress_skipped": progress.skipped,
                "progress_failed": progress.failed,
            },
        )

    def mark_done(self, claim: ClaimedJob, job: JobView, progress: JobProgress) -> None:
        """Finalize the job and write its audit entry in one transaction."""
        now = self.clock()
        stmt = (
            update(CampaignJob)
            .where(
                CampaignJob.id == claim.job_id,
                CampaignJob.status == JobStatus.PROCESSING,
                CampaignJob.worker_id == claim.worker_id,
            )
            .values(
                status=JobStatus.DONE,
                lease_until=None,
                next_attempt_at=None,
                finished_at=now,
                last_error=None,
                progress_last_index=progress.total,
                progress_sent=progress.sent,
                progress_skipped=progress.skipped,
                progress_failed=progress.failed,
                version=CampaignJob.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        with session_scope(self.session_factory) as session:
            result = session.execute(stmt)
            if result.rowcount != 1:
                raise LeaseLost(claim.job_id)
            session.add(
                SendLogEntry(
                    job_id=job.id,
                    subject_hash=sha256_hex(job.subject),
                    topics={k: v for k, v in job.topic_filter.items() if v},
                    test_only=job.test_only,
                    recipients_count=progress.total,
                    sent=progress.sent,
                    skipped=progress.skipped,
                    failed=progress.failed,
                    started_at=job.started_at,
                    finished_at=now,
                )
            )

    def reschedule(
        self,
        claim: ClaimedJob,
        *,
        attempts: int,
        next_attempt_at: datetime,
        last_error: Optional[str] = None,
    ) -> None:
        """Return the job to ``pending``. Progress columns are left untouched."""
        self._owned_update(
            claim,
            {
                "status": JobStatus.PENDING,
                "attempts": attempts,
                "next_attempt_at": next_attempt_at,
                "lease_until": None,
                "worker_id": None,
                "last_error": last_error,
                "version": CampaignJob.version + 1,
            },
        )

    def mark_failed(self, claim: ClaimedJob, *, attempts: int, last_error: str) -> None:
        self._owned_update(
            claim,
            {
                "status": JobStatus.FAILED,
                "attempts": attempts,
                "lease_until": None,
                "next_attempt_at": None,
                "finished_at": self.clock(),
                "last_error": last_error,
                "version": CampaignJob.version + 1,
            },
        )


__all__ = ["JobStore"]
