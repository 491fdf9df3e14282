"""Validation and queueing of new campaigns."""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from campaign_dispatch.exceptions import InvalidCampaign
from campaign_dispatch.jobs.job_store import JobStore
from campaign_dispatch.models.schemas import CampaignCreate
from campaign_dispatch.services.consent_resolver import active_topics
from campaign_dispatch.utils import get_logger, log_business_event
from campaign_dispatch.utils.hashing import sha256_hex
from campaign_dispatch.utils.time import Clock, ensure_aware, utc_now

logger = get_logger(__name__)


@dataclass(slots=True)
class QueuedCampaign:
    job_id: str
    scheduled: bool
    duplicate: bool


def parse_scheduled_at(raw: Optional[str]) -> Optional[datetime]:
    if raw is None or not str(raw).strip():
        return None
    value = str(raw).strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return ensure_aware(datetime.fromisoformat(value))
    except ValueError as e:
        raise InvalidCampaign("BAD_SCHEDULED_AT") from e


def validate_campaign(payload: CampaignCreate) -> None:
    if not payload.subject.strip():
        raise InvalidCampaign("SUBJECT_REQUIRED")
    if not payload.html.strip():
        raise InvalidCampaign("HTML_REQUIRED")
    if not payload.test_only and not active_topics(_topic_filter(payload)):
        raise InvalidCampaign("MATERIAS_REQUIRED")


def _topic_filter(payload: CampaignCreate) -> dict[str, bool]:
    return {str(k): v is True for k, v in (payload.materias or {}).items()}


def campaign_id(payload: CampaignCreate, scheduled_at: Optional[datetime]) -> str:
    """Content-derived id: identical resubmissions collapse onto one job."""
    canonical = json.dumps(
        {
            "subject": payload.subject.strip(),
            "html": payload.html,
            "topics": active_topics(_topic_filter(payload)),
            "scheduledAt": scheduled_at.isoformat() if scheduled_at else None,
            "testOnly": payload.test_only,
            "onlyCommercial": payload.only_commercial,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return sha256_hex(canonical)[:24]


def enqueue_campaign(store: JobStore, payload: CampaignCreate, *, clock: Clock = utc_now) -> QueuedCampaign:
    validate_campaign(payload)
    requested_at = parse_scheduled_at(payload.scheduled_at)
    now = clock()
    scheduled = requested_at is not None and requested_at > now
    job_id = (payload.id or "").strip() or campaign_id(payload, requested_at)

    _, duplicate = store.create_job(
        job_id,
        subject=payload.subject.strip(),
        html_body=payload.html,
        topic_filter=_topic_filter(payload),
        scheduled_at=requested_at or now,
        test_only=payload.test_only,
        only_commercial=payload.only_commercial,
    )
    if not duplicate:
        log_business_event(
            "campaign_queued",
            {"scheduled": scheduled, "test_only": payload.test_only, "topics": active_topics(_topic_filter(payload))},
            job_id=job_id,
        )
    return QueuedCampaign(job_id=job_id, scheduled=scheduled, duplicate=duplicate)


__all__ = ["QueuedCampaign", "enqueue_campaign", "validate_campaign", "campaign_id", "parse_scheduled_at"]
