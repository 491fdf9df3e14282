"""Mail transport port and the SMTP2GO adapter."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

import aiohttp

from campaign_dispatch.config import MAIL_TRANSPORT
from campaign_dispatch.exceptions import TransportError
from campaign_dispatch.utils import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class SendResult:
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class MailSender(Protocol):
    async def send(self, to: str, subject: str, html: str, headers: Optional[Mapping[str, str]] = None) -> SendResult: ...


def _accepted(status: int, payload: Any) -> Optional[str]:
    """Return the provider message id (or "ok") when SMTP2GO accepted the mail."""
    if not 200 <= status < 300 or not isinstance(payload, dict):
        return None
    data = payload.get("data") or {}
    failures = data.get("failures")
    if isinstance(failures, list) and failures:
        return None
    succeeded = data.get("succeeded")
    has_succeeded = (
        (isinstance(succeeded, (int, float)) and not isinstance(succeeded, bool) and succeeded > 0)
        or (isinstance(succeeded, list) and len(succeeded) > 0)
    )
    email_id = data.get("email_id")
    if has_succeeded or email_id:
        return str(email_id) if email_id else "ok"
    return None


class Smtp2GoMailSender:
    """Sends one message per call through the SMTP2GO HTTP API.

    Transport problems never raise out of ``send``; they come back as a failed
    ``SendResult`` so the chunker can count and release the recipient.
    """

    def __init__(
        self,
        *,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.api_url = str(api_url or MAIL_TRANSPORT["api_url"])
        self.api_key = str(api_key if api_key is not None else MAIL_TRANSPORT["api_key"])
        self.from_email = str(from_email or MAIL_TRANSPORT["from_email"])
        self.from_name = str(from_name or MAIL_TRANSPORT["from_name"])
        self.timeout = aiohttp.ClientTimeout(total=float(timeout_seconds or MAIL_TRANSPORT["timeout_seconds"]))
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def send(self, to: str, subject: str, html: str, headers: Optional[Mapping[str, str]] = None) -> SendResult:
        try:
            message_id = await self._post(to, subject, html, headers or {})
        except TransportError as e:
            return SendResult(ok=False, error=str(e))
        except asyncio.TimeoutError:
            logger.warning("SMTP2GO request timed out", to_domain=to.rpartition("@")[2])
            return SendResult(ok=False, error="timeout")
        except aiohttp.ClientError as e:
            logger.warning("SMTP2GO client error", error=str(e))
            return SendResult(ok=False, error=f"client_error: {e}")
        return SendResult(ok=True, message_id=message_id)

    async def _post(self, to: str, subject: str, html: str, headers: Mapping[str, str]) -> str:
        if not self.api_key:
            raise TransportError("SMTP2GO_API_KEY missing")
        payload = {
            "api_key": self.api_key,
            "to": [to],
            "sender": f"{self.from_name} <{self.from_email}>",
            "subject": subject,
            "html_body": html,
            "custom_headers": dict(headers),
        }
        session = self._get_session()
        async with session.post(self.api_url, json=payload) as response:
            try:
                body = await response.json(content_type=None)
            except (json.JSONDecodeError, aiohttp.ContentTypeError):
                body = None
            message_id = _accepted(response.status, body)
            if message_id is None:
                raise TransportError(f"SMTP2GO failed ({response.status}): {json.dumps(body, default=str)[:400]}")
            return message_id


__all__ = ["MailSender", "SendResult", "Smtp2GoMailSender"]
