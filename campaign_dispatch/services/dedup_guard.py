"""Per-(job, recipient) send reservations.

A reservation is an idempotent insert: the first ``reserve`` wins, any later
one reports a conflict (already sent, or still in flight) and the recipient is
not sent again. A failed send releases the reservation so a retry may take it
again; a sent reservation is permanent.

Two backings:
- ``SqlDedupGuard``: unique ``(job_id, email_hash)`` constraint; an
  ``IntegrityError`` on insert is the conflict signal.
- ``RedisDedupGuard``: ``SET key pending NX``; ``mark_sent`` overwrites the
  value, ``release`` deletes the key.
"""
from __future__ import annotations

import enum
from typing import Optional, Protocol

import redis
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from campaign_dispatch.config import DEDUP_SETTINGS
from campaign_dispatch.database import SessionFactory, SessionLocal, session_scope
from campaign_dispatch.models.db import DedupReservation, ReservationStatus
from campaign_dispatch.utils import get_logger
from campaign_dispatch.utils.hashing import email_hash
from campaign_dispatch.utils.time import Clock, utc_now

logger = get_logger(__name__)


class ReserveOutcome(str, enum.Enum):
    RESERVED = "reserved"
    ALREADY_SENT = "already_sent"  # delivered by an earlier pass
    IN_FLIGHT = "in_flight"        # reserved but not confirmed; never resend


class DedupGuard(Protocol):
    def reserve(self, job_id: str, email: str) -> ReserveOutcome: ...
    def mark_sent(self, job_id: str, email: str) -> None: ...
    def release(self, job_id: str, email: str) -> None: ...


class SqlDedupGuard:
    def __init__(self, session_factory: SessionFactory = SessionLocal, *, clock: Clock = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    def reserve(self, job_id: str, email: str) -> ReserveOutcome:
        try:
            with session_scope(self.session_factory) as session:
                session.add(
                    DedupReservation(
                        job_id=job_id,
                        email_hash=email_hash(email),
                        status=ReservationStatus.PENDING,
                        created_at=self.clock(),
                    )
                )
        except IntegrityError:
            return self._existing(job_id, email)
        return ReserveOutcome.RESERVED

    def _existing(self, job_id: str, email: str) -> ReserveOutcome:
        with session_scope(self.session_factory) as session:
            status = session.execute(
                select(DedupReservation.status).where(
                    DedupReservation.job_id == job_id,
                    DedupReservation.email_hash == email_hash(email),
                )
            ).scalar_one_or_none()
        return ReserveOutcome.ALREADY_SENT if status == ReservationStatus.SENT else ReserveOutcome.IN_FLIGHT

    def mark_sent(self, job_id: str, email: str) -> None:
        with session_scope(self.session_factory) as session:
            session.execute(
                update(DedupReservation)
                .where(
                    DedupReservation.job_id == job_id,
                    DedupReservation.email_hash == email_hash(email),
                    DedupReservation.status == ReservationStatus.PENDING,
                )
                .values(status=ReservationStatus.SENT, sent_at=self.clock())
                .execution_options(synchronize_session=False)
            )

    def release(self, job_id: str, email: str) -> None:
        # Sent reservations are never released
        with session_scope(self.session_factory) as session:
            session.execute(
                delete(DedupReservation)
                .where(
                    DedupReservation.job_id == job_id,
                    DedupReservation.email_hash == email_hash(email),
                    DedupReservation.status == ReservationStatus.PENDING,
                )
                .execution_options(synchronize_session=False)
            )


class RedisDedupGuard:
    def __init__(self, client: Optional[redis.Redis] = None, *, key_prefix: Optional[str] = None):
        self._redis_url = str(DEDUP_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
        self._key_prefix = str(key_prefix or DEDUP_SETTINGS.get("redis_key_prefix", "dispatch:dedup"))
        timeout = float(DEDUP_SETTINGS.get("redis_health_check_timeout", 2.0))
        self._client = client if client is not None else redis.from_url(self._redis_url, socket_connect_timeout=timeout)

    def _key(self, job_id: str, email: str) -> str:
        return f"{self._key_prefix}:{job_id}:{email_hash(email)}"

    def health_check(self) -> bool:
        try:
            return bool(self._client.ping())
        except (redis.RedisError, ConnectionError) as e:
            logger.warning("Redis dedup backend unreachable", error=str(e))
            return False

    def reserve(self, job_id: str, email: str) -> ReserveOutcome:
        key = self._key(job_id, email)
        if self._client.set(key, ReservationStatus.PENDING.value, nx=True):
            return ReserveOutcome.RESERVED
        value = self._client.get(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return ReserveOutcome.ALREADY_SENT if value == ReservationStatus.SENT.value else ReserveOutcome.IN_FLIGHT

    def mark_sent(self, job_id: str, email: str) -> None:
        self._client.set(self._key(job_id, email), ReservationStatus.SENT.value)

    def release(self, job_id: str, email: str) -> None:
        key = self._key(job_id, email)
        value = self._client.get(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        if value == ReservationStatus.SENT.value:
            return
        self._client.delete(key)


def create_dedup_guard(session_factory: SessionFactory = SessionLocal) -> DedupGuard:
    """Build the configured guard; Redis falls back to SQL when unreachable."""
    backend = str(DEDUP_SETTINGS.get("backend", "sql")).lower()
    if backend == "redis":
        try:
            guard = RedisDedupGuard()
            if guard.health_check():
                logger.info("Using Redis dedup backend")
                return guard
        except (redis.RedisError, ValueError) as e:
            logger.warning("Error initializing Redis dedup backend", error=str(e))
        logger.warning("Falling back to SQL dedup backend")
    return SqlDedupGuard(session_factory)


__all__ = ["ReserveOutcome", "DedupGuard", "SqlDedupGuard", "RedisDedupGuard", "create_dedup_guard"]
