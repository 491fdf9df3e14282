"""Wiring of the dispatch engine's long-lived instances.

The application builds one ``DispatchRuntime`` at startup and keeps it on
``app.state.dispatch``. Caches, the replay guard and the alert dedupe map live
on these instances, never as module globals.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from campaign_dispatch.config import SEND_AUTH, TRIGGER_AUTH
from campaign_dispatch.database import SessionFactory, SessionLocal
from campaign_dispatch.jobs.backoff_scheduler import BackoffScheduler
from campaign_dispatch.jobs.job_store import JobStore
from campaign_dispatch.services.alerting import AdminNotifier
from campaign_dispatch.services.consent_resolver import ConsentResolver
from campaign_dispatch.services.dedup_guard import DedupGuard, create_dedup_guard
from campaign_dispatch.services.dispatch_chunker import DispatchChunker
from campaign_dispatch.services.mail_sender import MailSender, Smtp2GoMailSender
from campaign_dispatch.services.suppression_cache import SuppressionCache
from campaign_dispatch.services.tick_coordinator import TickCoordinator
from campaign_dispatch.services.trigger_auth import ReplayGuard, TriggerAuthenticator
from campaign_dispatch.utils import get_logger
from campaign_dispatch.utils.time import Clock, utc_now

logger = get_logger(__name__)


@dataclass
class DispatchRuntime:
    store: JobStore
    sender: MailSender
    suppression: SuppressionCache
    dedup: DedupGuard
    notifier: AdminNotifier
    coordinator: TickCoordinator
    trigger_auth: TriggerAuthenticator
    send_auth: TriggerAuthenticator
    clock: Clock = utc_now

    async def close(self) -> None:
        close = getattr(self.sender, "close", None)
        if close is not None:
            await close()


def build_runtime(
    session_factory: SessionFactory = SessionLocal,
    *,
    sender: Optional[MailSender] = None,
    dedup: Optional[DedupGuard] = None,
    clock: Clock = utc_now,
) -> DispatchRuntime:
    sender = sender if sender is not None else Smtp2GoMailSender()
    dedup = dedup if dedup is not None else create_dedup_guard(session_factory)
    store = JobStore(session_factory, clock=clock)
    suppression = SuppressionCache(session_factory, clock=clock)
    notifier = AdminNotifier(sender, clock=clock)
    scheduler = BackoffScheduler(store, notifier=notifier, clock=clock)
    chunker = DispatchChunker(store, dedup, sender, suppression, clock=clock)
    resolver = ConsentResolver(suppression, session_factory)

    trigger_auth = TriggerAuthenticator(
        secret=str(TRIGGER_AUTH["hmac_secret"]),
        cron_key=str(TRIGGER_AUTH["cron_key"]),
        allow_key_only=bool(TRIGGER_AUTH.get("allow_key_only", False)),
        skew_seconds=float(TRIGGER_AUTH["skew_seconds"]),  # type: ignore[arg-type]
        paths=list(TRIGGER_AUTH["paths"]),  # type: ignore[call-overload]
        allowed_ips=list(TRIGGER_AUTH["allowed_ips"]),  # type: ignore[call-overload]
        replay_guard=ReplayGuard(
            ttl_seconds=float(TRIGGER_AUTH["replay_ttl_seconds"]),  # type: ignore[arg-type]
            max_keys=int(TRIGGER_AUTH["replay_max_keys"]),  # type: ignore[call-overload]
            clock=clock,
        ),
        clock=clock,
    )
    send_auth = TriggerAuthenticator(
        secret=str(SEND_AUTH["hmac_secret"]),
        skew_seconds=float(SEND_AUTH["skew_seconds"]),  # type: ignore[arg-type]
        paths=list(SEND_AUTH["paths"]),  # type: ignore[call-overload]
        replay_guard=ReplayGuard(clock=clock),
        clock=clock,
    )
    if not trigger_auth.secret:
        if trigger_auth.allow_key_only and trigger_auth.cron_key:
            logger.warning("Cron HMAC secret not configured; key-only mode enabled, trigger relies on the static key")
        else:
            logger.warning("Cron HMAC secret not configured; every trigger will be rejected")

    coordinator = TickCoordinator(
        store=store,
        resolver=resolver,
        chunker=chunker,
        scheduler=scheduler,
        authenticator=trigger_auth,
        clock=clock,
    )
    return DispatchRuntime(
        store=store,
        sender=sender,
        suppression=suppression,
        dedup=dedup,
        notifier=notifier,
        coordinator=coordinator,
        trigger_auth=trigger_auth,
        send_auth=send_auth,
        clock=clock,
    )


__all__ = ["DispatchRuntime", "build_runtime"]
