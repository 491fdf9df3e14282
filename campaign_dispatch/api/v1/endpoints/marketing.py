"""
Marketing dispatch endpoints: scheduler tick, campaign creation, job status.
"""
import time

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from campaign_dispatch.api.deps import get_runtime, get_signed_request, require_cron_key
from campaign_dispatch.models.schemas import CampaignCreate, CampaignQueued, JobStatusRead, TickSummary
from campaign_dispatch.services.campaign_intake import enqueue_campaign
from campaign_dispatch.services.runtime import DispatchRuntime
from campaign_dispatch.services.trigger_auth import SignedRequest
from campaign_dispatch.utils import get_logger, log_business_event, log_performance

router = APIRouter()
logger = get_logger(__name__)


@router.post(
    "/cron-send",
    response_model=TickSummary,
    response_model_exclude_none=True,
    summary="Run one dispatch tick",
)
@router.post("/cron-send/", response_model=TickSummary, response_model_exclude_none=True, include_in_schema=False)
async def cron_send(
    request: Request,
    trigger: SignedRequest = Depends(get_signed_request),
    runtime: DispatchRuntime = Depends(get_runtime),
) -> TickSummary:
    """Claim due jobs and deliver them.

    Authenticated by the static ``x-cron-key`` plus an HMAC header pair over the
    raw body. Jobs are processed one after another; the response lists the
    outcome of each claimed job.
    """
    start_time = time.time()
    request_id = getattr(request.state, "request_id", None)

    summary = await runtime.coordinator.run(trigger)

    log_business_event(
        "dispatch_tick",
        {"processed": summary.processed, "statuses": [r.status for r in summary.results]},
        request_id=request_id,
    )
    log_performance("cron_send", round((time.time() - start_time) * 1000, 2), {"processed": summary.processed})
    return summary


@router.post(
    "/send",
    response_model=CampaignQueued,
    response_model_exclude_none=True,
    summary="Queue a campaign",
)
async def create_campaign(
    request: Request,
    trigger: SignedRequest = Depends(get_signed_request),
    runtime: DispatchRuntime = Depends(get_runtime),
) -> CampaignQueued:
    """Validate and queue a campaign for the next tick (or its ``scheduledAt``).

    The body is parsed only after the signature over the raw bytes checks out.
    Identical resubmissions return the existing job with ``duplicate: true``.
    """
    runtime.send_auth.verify(trigger)
    try:
        payload = CampaignCreate.model_validate_json(trigger.body or b"{}")
    except ValidationError as e:
        logger.warning("Campaign payload rejected", errors=e.errors(include_url=False))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="BAD_REQUEST") from e

    queued = enqueue_campaign(runtime.store, payload, clock=runtime.clock)
    logger.info(
        "Campaign accepted",
        job_id=queued.job_id,
        scheduled=queued.scheduled,
        duplicate=queued.duplicate,
        request_id=getattr(request.state, "request_id", None),
    )
    return CampaignQueued(scheduled=queued.scheduled, queue_id=queued.job_id, duplicate=queued.duplicate)


@router.get(
    "/jobs/{job_id}",
    response_model=JobStatusRead,
    response_model_exclude_none=True,
    summary="Inspect a campaign job",
    dependencies=[Depends(require_cron_key)],
)
async def get_job(job_id: str, runtime: DispatchRuntime = Depends(get_runtime)) -> JobStatusRead:
    """Status, attempts, progress and lease of one job. Recipients are reported as a count."""
    job = runtime.store.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="JOB_NOT_FOUND")
    return JobStatusRead.model_validate(job.public_dict())
