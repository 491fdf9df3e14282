"""Admin alert notifications.

Rules:
1. Identical ``(area, error)`` alerts inside ``dedupe_ttl_seconds`` are sent once.
2. Delivery is retried up to ``max_attempts`` with short exponential backoff.
3. Failures are logged and never raised; alerting cannot abort a dispatch.
"""
from __future__ import annotations

import asyncio
import html
import json
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from campaign_dispatch.config import ALERTING_SETTINGS
from campaign_dispatch.services.mail_sender import MailSender
from campaign_dispatch.utils import get_logger
from campaign_dispatch.utils.backoff import compute_backoff_seconds
from campaign_dispatch.utils.hashing import sha256_hex
from campaign_dispatch.utils.time import Clock, utc_now

logger = get_logger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class AdminNotifier:
    def __init__(
        self,
        sender: Optional[MailSender],
        *,
        admin_email: Optional[str] = None,
        max_attempts: Optional[int] = None,
        retry_base_seconds: Optional[float] = None,
        dedupe_ttl_seconds: Optional[float] = None,
        clock: Clock = utc_now,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.sender = sender
        self.admin_email = str(admin_email if admin_email is not None else ALERTING_SETTINGS["admin_email"])
        self.max_attempts = max(int(max_attempts or ALERTING_SETTINGS["max_attempts"]), 1)
        self.retry_base_seconds = float(retry_base_seconds if retry_base_seconds is not None else ALERTING_SETTINGS["retry_base_seconds"])
        self.dedupe_ttl = timedelta(seconds=float(dedupe_ttl_seconds if dedupe_ttl_seconds is not None else ALERTING_SETTINGS["dedupe_ttl_seconds"]))
        self.clock = clock
        self.sleep = sleep
        self._recent: dict[str, datetime] = {}

    def _dedupe_key(self, area: str, error: str) -> str:
        return f"alert:{area.lower()}:{sha256_hex(error)[:12]}"

    def _seen_recently(self, key: str) -> bool:
        now = self.clock()
        if len(self._recent) > 500:
            self._recent = {k: exp for k, exp in self._recent.items() if exp > now}
        exp = self._recent.get(key)
        if exp is not None and exp > now:
            return True
        self._recent[key] = now + self.dedupe_ttl
        return False

    async def notify(self, area: str, error: Any, meta: Optional[dict[str, Any]] = None) -> bool:
        """Send one alert; True when it was delivered."""
        error_text = str(error) if error is not None else "-"
        meta = meta or {}
        if self._seen_recently(self._dedupe_key(area, error_text)):
            logger.debug("Duplicate alert suppressed", area=area)
            return False

        logger.warning("Admin alert", area=area, error=error_text, meta=meta)
        if self.sender is None or not self.admin_email:
            return False

        subject = f"ALERT {area.upper()}"
        body = (
            f"<h3>Failure in {html.escape(area)}</h3>"
            f"<p><strong>Error:</strong> {html.escape(error_text)}</p>"
            f'<pre style="white-space:pre-wrap">{html.escape(json.dumps(meta, indent=2, default=str))}</pre>'
        )
        for attempt in range(1, self.max_attempts + 1):
            try:
                result = await self.sender.send(self.admin_email, subject, body, {})
            except Exception as e:
                logger.error("Alert delivery raised", area=area, attempt=attempt, error=str(e))
            else:
                if result.ok:
                    return True
                logger.warning("Alert delivery failed", area=area, attempt=attempt, error=result.error)
            if attempt < self.max_attempts:
                await self.sleep(compute_backoff_seconds(attempt, base=self.retry_base_seconds))
        logger.error("Alert delivery gave up", area=area, attempts=self.max_attempts)
        return False


__all__ = ["AdminNotifier"]
