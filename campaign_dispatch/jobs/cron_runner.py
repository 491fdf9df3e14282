"""Scheduler-side client that fires one signed dispatch tick.

Environment:
  CRON_TARGET_URL        e.g. https://backend.example.com/marketing/cron-send
  MKT_CRON_KEY           sent as x-cron-key
  MKT_CRON_HMAC_SECRET   HMAC secret for x-cron-sig
  CRON_BODY              optional JSON body (default "{}")

Exit codes: 0 ok, 1 non-2xx response, 2 missing env, 3 fatal error.
"""
from __future__ import annotations

import asyncio
import json
import os
import re
import sys
import time
from typing import Mapping, Optional
from urllib.parse import urlsplit

import aiohttp

from campaign_dispatch.services.trigger_auth import sign_request
from campaign_dispatch.utils import get_logger, setup_logging

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_HTTP_ERROR = 1
EXIT_MISSING_ENV = 2
EXIT_FATAL = 3


def signing_path(url: str) -> str:
    """URL path with duplicate slashes collapsed and no trailing slash (except root)."""
    path = re.sub(r"/{2,}", "/", urlsplit(url).path or "/")
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]
    return path


def canonical_body(raw: Optional[str]) -> bytes:
    raw = raw if raw and raw.strip() else "{}"
    try:
        return json.dumps(json.loads(raw), separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except ValueError:
        return raw.encode("utf-8")


def build_headers(key: str, secret: str, url: str, body: bytes, *, ts_ms: Optional[int] = None) -> dict[str, str]:
    ts_ms = int(ts_ms if ts_ms is not None else time.time() * 1000)
    sig = sign_request(secret, method="POST", path=signing_path(url), body=body, ts_ms=ts_ms, strategy="v2-ms")
    return {
        "content-type": "application/json",
        "x-cron-key": key,
        "x-cron-ts": str(ts_ms),
        "x-cron-sig": sig,
    }


async def fire(url: str, headers: Mapping[str, str], body: bytes, *, timeout_seconds: float = 120) -> tuple[int, str]:
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        async with session.post(url, data=body, headers=dict(headers)) as response:
            return response.status, await response.text()


async def run(env: Mapping[str, str]) -> int:
    url = env.get("CRON_TARGET_URL", "").strip()
    key = env.get("MKT_CRON_KEY", "").strip()
    secret = env.get("MKT_CRON_HMAC_SECRET", "").strip()
    if not url or not key or not secret:
        logger.error("Missing env: CRON_TARGET_URL / MKT_CRON_KEY / MKT_CRON_HMAC_SECRET")
        return EXIT_MISSING_ENV

    body = canonical_body(env.get("CRON_BODY"))
    status, text = await fire(url, build_headers(key, secret, url, body), body)
    logger.info("Cron tick response", status_code=status, body=text[:500])
    return EXIT_OK if 200 <= status < 300 else EXIT_HTTP_ERROR


def main() -> int:
    setup_logging(log_level=os.getenv("LOG_LEVEL", "INFO"), enable_console=True)
    try:
        return asyncio.run(run(os.environ))
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        logger.error("Cron runner fatal error", error=str(e) or type(e).__name__)
        return EXIT_FATAL


if __name__ == "__main__":
    sys.exit(main())
