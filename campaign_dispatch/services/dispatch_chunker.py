"""Chunked, checkpointed delivery over a job's frozen recipient snapshot.

The snapshot is the arena and ``progress.last_index`` is the cursor into it.
Chunks run in ascending order; inside a chunk a fixed-width pool sends in
parallel. The cursor only ever covers a contiguous prefix of settled
addresses:

- periodic checkpoints (every ``checkpoint_every`` completions) store the
  prefix of sent or skipped addresses;
- a clean chunk moves the cursor to the chunk end, isolated failures included;
- a tripped chunk moves it to the first failed or unattempted address, so the
  next pass retries from there and the dedup guard skips what already went out.

Persisted counters only describe addresses below the cursor.
"""
from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional, Sequence

from campaign_dispatch.config import DISPATCH_SETTINGS
from campaign_dispatch.exceptions import LeaseLost
from campaign_dispatch.jobs.campaign_job import ClaimedJob, JobProgress, JobView
from campaign_dispatch.jobs.job_store import JobStore
from campaign_dispatch.services.dedup_guard import DedupGuard, ReserveOutcome
from campaign_dispatch.services.mail_sender import MailSender, SendResult
from campaign_dispatch.services.suppression_cache import SuppressionCache
from campaign_dispatch.services.unsubscribe import (
    build_unsubscribe_url,
    ensure_unsubscribe_block,
    list_unsubscribe_headers,
)
from campaign_dispatch.utils import get_logger
from campaign_dispatch.utils.circuit_breaker import ChunkBreaker
from campaign_dispatch.utils.time import Clock, utc_now

logger = get_logger(__name__)


class AddressOutcome(str, enum.Enum):
    SENT = "sent"
    ALREADY_SENT = "already_sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class PassCounts:
    sent: int = 0
    skipped: int = 0
    failed: int = 0

    def record(self, outcome: AddressOutcome) -> None:
        if outcome is AddressOutcome.SENT:
            self.sent += 1
        elif outcome is AddressOutcome.FAILED:
            self.failed += 1
        else:
            self.skipped += 1


@dataclass(slots=True)
class ChunkOutcome:
    progress: JobProgress
    counts: PassCounts = field(default_factory=PassCounts)
    chunks: int = 0
    tripped: bool = False
    error: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.progress.complete


def _progress_through(base: JobProgress, outcomes: Sequence[Optional[AddressOutcome]], start: int, upto: int) -> JobProgress:
    """Counters of ``base`` plus the first ``upto`` outcomes of a chunk."""
    sent = skipped = failed = 0
    for outcome in outcomes[:upto]:
        if outcome in (AddressOutcome.SENT, AddressOutcome.ALREADY_SENT):
            sent += 1
        elif outcome is AddressOutcome.SKIPPED:
            skipped += 1
        elif outcome is AddressOutcome.FAILED:
            failed += 1
    return base.advanced(
        last_index=start + upto,
        sent=base.sent + sent,
        skipped=base.skipped + skipped,
        failed=base.failed + failed,
    )


def _clean_prefix(outcomes: Sequence[Optional[AddressOutcome]]) -> int:
    n = 0
    for outcome in outcomes:
        if outcome is None or outcome is AddressOutcome.FAILED:
            break
        n += 1
    return n


class DispatchChunker:
    def __init__(
        self,
        store: JobStore,
        dedup: DedupGuard,
        sender: MailSender,
        suppression: SuppressionCache,
        *,
        chunk_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        checkpoint_every: Optional[int] = None,
        failure_ratio: Optional[float] = None,
        rate_delay_ms: Optional[int] = None,
        lease_minutes: Optional[float] = None,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.dedup = dedup
        self.sender = sender
        self.suppression = suppression
        self.chunk_size = max(int(chunk_size or DISPATCH_SETTINGS["chunk_size"]), 1)
        self.concurrency = max(int(concurrency or DISPATCH_SETTINGS["send_concurrency"]), 1)
        self.checkpoint_every = max(int(checkpoint_every or DISPATCH_SETTINGS["checkpoint_every"]), 1)
        self.failure_ratio = float(failure_ratio if failure_ratio is not None else DISPATCH_SETTINGS["failure_abort_ratio"])
        self.rate_delay_ms = int(rate_delay_ms if rate_delay_ms is not None else DISPATCH_SETTINGS["rate_delay_ms"])
        self.lease_minutes = float(lease_minutes if lease_minutes is not None else DISPATCH_SETTINGS["lease_minutes"])
        self.clock = clock

    async def run(self, job: JobView, claim: ClaimedJob, recipients: Sequence[str], *, max_chunks: int) -> ChunkOutcome:
        """Process up to ``max_chunks`` chunks starting at the stored cursor."""
        total = len(recipients)
        outcome = ChunkOutcome(progress=job.progress.advanced(total=total))

        while outcome.progress.last_index < total and outcome.chunks < max_chunks:
            self.store.heartbeat(claim, self.clock() + timedelta(minutes=self.lease_minutes))
            start = outcome.progress.last_index
            end = min(start + self.chunk_size, total)
            progress, breaker = await self._run_chunk(job, claim, recipients, start, end, outcome.progress, outcome.counts)
            outcome.progress = progress
            outcome.chunks += 1
            if breaker.tripped:
                outcome.tripped = True
                outcome.error = f"chunk failure rate {breaker.failures}/{breaker.chunk_size} at index {start}"
                logger.warning("Chunk breaker tripped", job_id=job.id, cursor=progress.last_index, **breaker.snapshot())
                break

        return outcome

    async def _run_chunk(
        self,
        job: JobView,
        claim: ClaimedJob,
        recipients: Sequence[str],
        start: int,
        end: int,
        base: JobProgress,
        counts: PassCounts,
    ) -> tuple[JobProgress, ChunkBreaker]:
        size = end - start
        outcomes: list[Optional[AddressOutcome]] = [None] * size
        breaker = ChunkBreaker(chunk_size=size, ratio=self.failure_ratio)
        semaphore = asyncio.Semaphore(self.concurrency)
        completed = 0
        stop = False

        async def worker(offset: int) -> None:
            nonlocal completed, stop
            async with semaphore:
                if stop or breaker.tripped:
                    return
                try:
                    result = await self._deliver(job, recipients[start + offset])
                    outcomes[offset] = result
                    counts.record(result)
                    if result is AddressOutcome.FAILED:
                        breaker.record_failure()
                    else:
                        breaker.record_success()
                    completed += 1
                    if completed % self.checkpoint_every == 0:
                        self.store.checkpoint(claim, _progress_through(base, outcomes, start, _clean_prefix(outcomes)))
                except Exception:
                    stop = True
                    raise

        results = await asyncio.gather(*(worker(i) for i in range(size)), return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise next((e for e in errors if isinstance(e, LeaseLost)), errors[0])

        if breaker.tripped:
            cursor = next(
                (i for i, o in enumerate(outcomes) if o is None or o is AddressOutcome.FAILED),
                size,
            )
        else:
            cursor = size
        progress = _progress_through(base, outcomes, start, cursor)
        self.store.checkpoint(claim, progress)
        logger.info(
            "Chunk processed",
            job_id=job.id,
            start=start,
            end=end,
            cursor=progress.last_index,
            failures=breaker.failures,
            tripped=breaker.tripped,
        )
        return progress, breaker

    async def _deliver(self, job: JobView, email: str) -> AddressOutcome:
        # Unsubscribes after the snapshot was frozen still win
        if self.suppression.contains(email):
            return AddressOutcome.SKIPPED

        reservation = self.dedup.reserve(job.id, email)
        if reservation is ReserveOutcome.ALREADY_SENT:
            return AddressOutcome.ALREADY_SENT
        if reservation is ReserveOutcome.IN_FLIGHT:
            return AddressOutcome.SKIPPED

        url = build_unsubscribe_url(email)
        html = ensure_unsubscribe_block(job.html_body, url)
        try:
            result = await self.sender.send(email, job.subject, html, list_unsubscribe_headers(url))
        except Exception as e:
            logger.error("Mail sender raised", job_id=job.id, error=str(e), exc_info=True)
            result = SendResult(ok=False, error=str(e))

        if self.rate_delay_ms > 0:
            await asyncio.sleep(self.rate_delay_ms / 1000)

        if result.ok:
            self.dedup.mark_sent(job.id, email)
            return AddressOutcome.SENT
        self.dedup.release(job.id, email)
        logger.debug("Send failed", job_id=job.id, error=result.error)
        return AddressOutcome.FAILED


__all__ = ["DispatchChunker", "ChunkOutcome", "PassCounts", "AddressOutcome"]
