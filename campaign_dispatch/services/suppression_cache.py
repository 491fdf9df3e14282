"""TTL-bounded read-through cache over the suppression list."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select

from campaign_dispatch.config import SUPPRESSION_CACHE
from campaign_dispatch.database import SessionFactory, SessionLocal, session_scope
from campaign_dispatch.models.db import SuppressionEntry
from campaign_dispatch.utils import get_logger
from campaign_dispatch.utils.hashing import normalize_email
from campaign_dispatch.utils.time import Clock, utc_now

logger = get_logger(__name__)


class SuppressionCache:
    """Holds the whole opt-out set; reloads it once ``ttl_seconds`` have passed.

    One instance is owned by the application and handed to the resolver and
    the chunker. ``evict()`` forces the next read to hit the database.
    """

    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        *,
        ttl_seconds: Optional[float] = None,
        clock: Clock = utc_now,
    ):
        self.session_factory = session_factory
        self.ttl_seconds = float(ttl_seconds if ttl_seconds is not None else SUPPRESSION_CACHE["ttl_seconds"])
        self.clock = clock
        self._entries: frozenset[str] = frozenset()
        self._loaded_at: Optional[datetime] = None

    @property
    def expired(self) -> bool:
        if self._loaded_at is None:
            return True
        return self.clock() - self._loaded_at >= timedelta(seconds=self.ttl_seconds)

    def _load(self) -> frozenset[str]:
        with session_scope(self.session_factory) as session:
            emails = session.execute(select(SuppressionEntry.email)).scalars().all()
        return frozenset(normalize_email(e) for e in emails if e)

    def get(self) -> frozenset[str]:
        if self.expired:
            self._entries = self._load()
            self._loaded_at = self.clock()
            logger.debug("Suppression cache refreshed", size=len(self._entries))
        return self._entries

    def contains(self, email: str) -> bool:
        return normalize_email(email) in self.get()

    def evict(self) -> None:
        self._entries = frozenset()
        self._loaded_at = None


__all__ = ["SuppressionCache"]
