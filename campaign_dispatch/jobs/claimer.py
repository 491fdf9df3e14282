"""Lease-based job claiming.

Candidates are read without locks, then each one is claimed with a
compare-and-swap on its version. Losing a race is not an error: the loser
moves on to the next candidate.
"""
from __future__ import annotations

import secrets
from datetime import timedelta
from typing import Optional

from campaign_dispatch.config import DISPATCH_SETTINGS
from campaign_dispatch.jobs.campaign_job import ClaimedJob
from campaign_dispatch.jobs.job_store import JobStore
from campaign_dispatch.models.db import JobStatus
from campaign_dispatch.utils import get_logger, log_business_event
from campaign_dispatch.utils.time import Clock, utc_now

logger = get_logger(__name__)


def new_worker_id() -> str:
    """Opaque 12-hex identifier for one invocation."""
    return secrets.token_hex(6)


class JobClaimer:
    def __init__(
        self,
        store: JobStore,
        *,
        worker_id: Optional[str] = None,
        lease_minutes: Optional[float] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.worker_id = worker_id or new_worker_id()
        self.log = logger.bind(worker_id=self.worker_id)
        self.lease_minutes = float(lease_minutes if lease_minutes is not None else DISPATCH_SETTINGS["lease_minutes"])
        self.clock = clock

    def lease_deadline(self):
        return self.clock() + timedelta(minutes=self.lease_minutes)

    def claim(self, limit: int) -> list[ClaimedJob]:
        if limit <= 0:
            return []
        now = self.clock()
        overfetch = int(DISPATCH_SETTINGS.get("claim_overfetch_factor", 3))
        candidates = self.store.find_claim_candidates(now, limit * max(overfetch, 1))

        claimed: list[ClaimedJob] = []
        for job_id, version, status in candidates:
            if len(claimed) >= limit:
                break
            lease_until = self.lease_deadline()
            won = self.store.try_claim(
                job_id,
                version,
                now=now,
                lease_until=lease_until,
                worker_id=self.worker_id,
            )
            if not won:
                self.log.debug("Claim lost to another worker", job_id=job_id)
                continue
            rescued = status == JobStatus.PROCESSING
            claimed.append(ClaimedJob(job_id=job_id, worker_id=self.worker_id, lease_until=lease_until, rescued=rescued))
            log_business_event(
                "job_claimed",
                {"worker_id": self.worker_id, "rescued": rescued, "lease_until": lease_until.isoformat()},
                job_id=job_id,
            )

        if candidates:
            self.log.info("Claim pass finished", candidates=len(candidates), claimed=len(claimed))
        return claimed


__all__ = ["JobClaimer", "new_worker_id"]
