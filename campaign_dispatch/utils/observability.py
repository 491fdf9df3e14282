"""Request correlation helpers shared by the middleware and exception handlers."""
from __future__ import annotations
import re
import uuid
from typing import Any, Mapping

REQUEST_ID_HEADER = "X-Request-ID"

# Caller-supplied ids are echoed back and double as replay keys
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def ensure_request_id(headers: Mapping[str, str]) -> str:
    supplied = (headers.get(REQUEST_ID_HEADER) or "").strip()
    if supplied and _REQUEST_ID_RE.match(supplied):
        return supplied
    return str(uuid.uuid4())


def request_id_of(request: Any) -> str:
    return getattr(request.state, "request_id", None) or "unknown"


def client_address(request: Any) -> str:
    return request.client.host if request.client else "unknown"


__all__ = ["ensure_request_id", "request_id_of", "client_address", "REQUEST_ID_HEADER"]
