"""Campaign job payload structures passed between claimer, chunker and scheduler."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from campaign_dispatch.models.db import CampaignJob, JobStatus
from campaign_dispatch.utils.time import ensure_aware, isoformat


@dataclass(slots=True)
class JobProgress:
    last_index: int = 0
    total: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def complete(self) -> bool:
        return self.last_index >= self.total

    def advanced(self, **changes: int) -> "JobProgress":
        return replace(self, **changes)

    def as_dict(self) -> dict[str, int]:
        return {
            "lastIndex": self.last_index,
            "total": self.total,
            "sent": self.sent,
            "skipped": self.skipped,
            "failed": self.failed,
        }


@dataclass(slots=True)
class ClaimedJob:
    """Reference to a job this worker currently owns under a lease."""
    job_id: str
    worker_id: str
    lease_until: datetime
    rescued: bool = False


@dataclass(slots=True)
class JobView:
    """Detached, read-only copy of a CampaignJob row."""
    id: str
    subject: str
    html_body: str
    topic_filter: dict[str, bool]
    test_only: bool
    only_commercial: bool
    status: JobStatus
    attempts: int
    worker_id: Optional[str]
    scheduled_at: Optional[datetime]
    lease_until: Optional[datetime]
    next_attempt_at: Optional[datetime]
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    recipients_snapshot: Optional[list[str]]
    progress: JobProgress = field(default_factory=JobProgress)
    last_error: Optional[str] = None
    version: int = 0

    @property
    def has_snapshot(self) -> bool:
        return self.recipients_snapshot is not None

    @classmethod
    def from_row(cls, row: CampaignJob) -> "JobView":
        return cls(
            id=row.id,
            subject=row.subject or "",
            html_body=row.html_body or "",
            topic_filter=dict(row.topic_filter or {}),
            test_only=bool(row.test_only),
            only_commercial=bool(row.only_commercial),
            status=row.status,
            attempts=int(row.attempts or 0),
            worker_id=row.worker_id,
            scheduled_at=ensure_aware(row.scheduled_at),
            lease_until=ensure_aware(row.lease_until),
            next_attempt_at=ensure_aware(row.next_attempt_at),
            started_at=ensure_aware(row.started_at),
            finished_at=ensure_aware(row.finished_at),
            recipients_snapshot=list(row.recipients_snapshot) if row.recipients_snapshot is not None else None,
            progress=JobProgress(
                last_index=int(row.progress_last_index or 0),
                total=int(row.progress_total or 0),
                sent=int(row.progress_sent or 0),
                skipped=int(row.progress_skipped or 0),
                failed=int(row.progress_failed or 0),
            ),
            last_error=row.last_error,
            version=int(row.version or 0),
        )

    def public_dict(self) -> dict[str, Any]:
        """Status payload without the recipient list."""
        return {
            "id": self.id,
            "status": self.status.value,
            "attempts": self.attempts,
            "testOnly": self.test_only,
            "onlyCommercial": self.only_commercial,
            "topics": sorted(k for k, v in self.topic_filter.items() if v),
            "scheduledAt": isoformat(self.scheduled_at),
            "leaseUntil": isoformat(self.lease_until),
            "nextAttemptAt": isoformat(self.next_attempt_at),
            "startedAt": isoformat(self.started_at),
            "finishedAt": isoformat(self.finished_at),
            "recipients": len(self.recipients_snapshot) if self.recipients_snapshot is not None else None,
            "progress": self.progress.as_dict(),
            "lastError": self.last_error,
        }


__all__ = ["JobProgress", "ClaimedJob", "JobView"]
