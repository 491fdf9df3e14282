"""Recipient resolution from consent records.

An address qualifies when:
1. ``consent_marketing`` is true.
2. If the topic filter names at least one true topic, the record has at least
   one of those topics set to true.
3. If ``only_commercial``, ``consent_comercial`` is also true.
4. It is not in the suppression cache.

The result is case-folded, deduplicated and sorted so the snapshot order is
stable across processes.
"""
from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import select

from campaign_dispatch.config import TEST_RECIPIENTS
from campaign_dispatch.database import SessionFactory, SessionLocal, session_scope
from campaign_dispatch.models.db import ConsentRecord
from campaign_dispatch.services.suppression_cache import SuppressionCache
from campaign_dispatch.utils import get_logger
from campaign_dispatch.utils.hashing import normalize_email

logger = get_logger(__name__)


def active_topics(topic_filter: Optional[dict]) -> list[str]:
    return sorted(str(k) for k, v in (topic_filter or {}).items() if v)


class ConsentResolver:
    def __init__(
        self,
        suppression: SuppressionCache,
        session_factory: SessionFactory = SessionLocal,
        *,
        test_recipients: Optional[Iterable[str]] = None,
    ):
        self.suppression = suppression
        self.session_factory = session_factory
        self.test_recipients = list(test_recipients) if test_recipients is not None else list(TEST_RECIPIENTS)

    def resolve(self, topic_filter: Optional[dict], *, only_commercial: bool = False, test_only: bool = False) -> list[str]:
        suppressed = self.suppression.get()
        if test_only:
            candidates = {normalize_email(e) for e in self.test_recipients}
        else:
            candidates = self._consenting(active_topics(topic_filter), only_commercial)

        recipients = sorted(e for e in candidates if e and "@" in e and e not in suppressed)
        logger.info(
            "Recipients resolved",
            candidates=len(candidates),
            recipients=len(recipients),
            test_only=test_only,
            only_commercial=only_commercial,
        )
        return recipients

    def _consenting(self, topics: list[str], only_commercial: bool) -> set[str]:
        stmt = select(ConsentRecord).where(ConsentRecord.consent_marketing.is_(True))
        if only_commercial:
            stmt = stmt.where(ConsentRecord.consent_comercial.is_(True))
        result: set[str] = set()
        with session_scope(self.session_factory) as session:
            for record in session.execute(stmt).scalars():
                if topics:
                    record_topics = record.topics or {}
                    if not any(record_topics.get(t) is True for t in topics):
                        continue
                result.add(normalize_email(record.email))
        return result


__all__ = ["ConsentResolver", "active_topics"]
