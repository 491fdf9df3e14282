"""Per-recipient unsubscribe tokens, links and headers.

Token layout: ``b64url(header).b64url(body).b64url(hmac_sha256)`` where the
header is ``{"alg": "HS256", "typ": "LSIG"}`` and the body carries
``email, scope, act, iat, exp``.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
from datetime import datetime
from typing import Any, Optional
from urllib.parse import quote

from campaign_dispatch.config import UNSUBSCRIBE
from campaign_dispatch.utils.hashing import normalize_email
from campaign_dispatch.utils.time import utc_now

_UNSUB_MARKER = re.compile(r"data-lb-unsub")
_UNSUB_WORDING = re.compile(r"unsubscribe|darse de baja|baja de la newsletter", re.IGNORECASE)


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(part: str) -> bytes:
    return base64.urlsafe_b64decode(part + "=" * (-len(part) % 4))


def _sign(signing_input: str, secret: str) -> str:
    return _b64url(hmac.new(secret.encode("utf-8"), signing_input.encode("utf-8"), hashlib.sha256).digest())


def make_unsubscribe_token(
    email: str,
    *,
    secret: Optional[str] = None,
    ttl_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> str:
    secret = secret if secret is not None else str(UNSUBSCRIBE["secret"])
    ttl_days = int(ttl_days if ttl_days is not None else UNSUBSCRIBE["ttl_days"])
    issued = int((now or utc_now()).timestamp())
    head = _b64url(json.dumps({"alg": "HS256", "typ": "LSIG"}, separators=(",", ":")).encode("utf-8"))
    body = _b64url(
        json.dumps(
            {
                "email": normalize_email(email),
                "scope": "newsletter",
                "act": "unsubscribe",
                "iat": issued,
                "exp": issued + ttl_days * 24 * 60 * 60,
            },
            separators=(",", ":"),
        ).encode("utf-8")
    )
    return f"{head}.{body}.{_sign(f'{head}.{body}', secret)}"


def verify_unsubscribe_token(token: str, *, secret: Optional[str] = None, now: Optional[datetime] = None) -> Optional[dict[str, Any]]:
    """Return the token body when signature, scope and expiry check out."""
    secret = secret if secret is not None else str(UNSUBSCRIBE["secret"])
    parts = str(token or "").split(".")
    if len(parts) != 3:
        return None
    head, body, sig = parts
    if not hmac.compare_digest(_sign(f"{head}.{body}", secret), sig):
        return None
    try:
        header = json.loads(_b64url_decode(head))
        claims = json.loads(_b64url_decode(body))
    except (ValueError, UnicodeDecodeError):
        return None
    if header.get("typ") != "LSIG" or claims.get("act") != "unsubscribe":
        return None
    current = int((now or utc_now()).timestamp())
    if int(claims.get("exp", 0)) < current:
        return None
    return claims


def build_unsubscribe_url(email: str, *, page: Optional[str] = None, **token_kwargs: Any) -> str:
    page = page or str(UNSUBSCRIBE["page"])
    token = make_unsubscribe_token(email, **token_kwargs)
    separator = "&" if "?" in page else "?"
    return f"{page}{separator}token={quote(token, safe='')}"


def list_unsubscribe_headers(url: str) -> dict[str, str]:
    return {
        "List-Unsubscribe": f"<{url}>",
        "List-Unsubscribe-Post": "List-Unsubscribe=One-Click",
    }


def ensure_unsubscribe_block(html: str, url: str) -> str:
    """Append a minimal unsubscribe paragraph unless the body already has one."""
    body = str(html or "")
    if _UNSUB_MARKER.search(body) or _UNSUB_WORDING.search(body):
        return body
    return body + (
        '\n<p data-lb-unsub style="font-size:12px;color:#666;margin-top:18px">'
        "If you no longer wish to receive this newsletter, you can "
        f'<a href="{url}" target="_blank" rel="noopener">unsubscribe here</a>.'
        "</p>\n"
    )


__all__ = [
    "make_unsubscribe_token",
    "verify_unsubscribe_token",
    "build_unsubscribe_url",
    "list_unsubscribe_headers",
    "ensure_unsubscribe_block",
]
