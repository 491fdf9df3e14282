"""Authentication for signed trigger requests.

Gates, in order (first failure wins):
1. IP allow-list (403 ``ip_not_allowed``), when configured.
2. Static ``x-cron-key`` header, when configured.
3. HMAC: a ``(ts, sig)`` header pair, numeric timestamp (seconds or ms), skew
   window, 64-hex signature, then the ordered signing strategies below.
4. Replay guard, when one is attached, keyed on the signed ``(ts, sig)`` pair.

Without an HMAC secret every request is rejected (``not_configured``) unless
``allow_key_only`` is set, in which case the static key alone authorizes.

Signing strategies form a versioned, ordered contract. Retiring a convention
means deleting its entry from ``SIGNING_STRATEGIES``.
"""
from __future__ import annotations

import hashlib
import hmac
import re
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable, Iterable, Mapping, Optional, Sequence

from campaign_dispatch.exceptions import TriggerRejected
from campaign_dispatch.utils import get_logger
from campaign_dispatch.utils.hashing import sha256_hex
from campaign_dispatch.utils.time import Clock, utc_now

logger = get_logger(__name__)

HEADER_PAIRS: tuple[tuple[str, str], ...] = (
    ("x-cron-ts", "x-cron-sig"),
    ("x-lb-ts", "x-lb-sig"),
    ("x-lab-ts", "x-lab-sig"),
)
KEY_HEADER = "x-cron-key"

_SIG_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_MS_THRESHOLD = 1e11


@dataclass(frozen=True)
class SignedRequest:
    method: str
    path: str
    body: bytes
    headers: Mapping[str, str]
    client_ip: Optional[str] = None

    def header(self, name: str) -> str:
        value = self.headers.get(name)
        if value is None:
            value = self.headers.get(name.lower(), "")
        return str(value or "").strip()


@dataclass(frozen=True)
class SigningInput:
    ts_raw: str
    ts_s: int
    ts_ms: int
    method: str
    path: str
    body: bytes
    body_hash: str


@dataclass(frozen=True)
class SigningStrategy:
    name: str
    build: Callable[[SigningInput], bytes]
    uses_path: bool = False


SIGNING_STRATEGIES: tuple[SigningStrategy, ...] = (
    SigningStrategy("v2-s", lambda s: f"{s.ts_s}.{s.method}.{s.path}.{s.body_hash}".encode("utf-8"), uses_path=True),
    SigningStrategy("v2-ms", lambda s: f"{s.ts_ms}.{s.method}.{s.path}.{s.body_hash}".encode("utf-8"), uses_path=True),
    SigningStrategy("v1-sha", lambda s: f"{s.ts_raw}.{s.body_hash}".encode("utf-8")),
    # Body bytes exactly as transmitted, never re-decoded
    SigningStrategy("v1-raw", lambda s: s.ts_raw.encode("utf-8") + b"." + s.body),
)


def normalize_path(path: str) -> str:
    """Strip query/fragment, ensure a leading slash, collapse duplicate slashes."""
    p = str(path or "").split("#", 1)[0].split("?", 1)[0]
    if not p.startswith("/"):
        p = "/" + p
    return re.sub(r"/{2,}", "/", p)


def path_variants(paths: Iterable[str]) -> list[str]:
    """Accepted paths with and without a trailing slash, order preserved."""
    variants: list[str] = []
    for raw in paths:
        p = normalize_path(raw)
        bare = p.rstrip("/") or "/"
        for candidate in (p, bare, bare if bare == "/" else bare + "/"):
            if candidate not in variants:
                variants.append(candidate)
    return variants


def parse_timestamp(raw: str) -> Optional[float]:
    """Epoch milliseconds for a header value in seconds or milliseconds."""
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return value if value > _MS_THRESHOLD else value * 1000


def sign(secret: str, base: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), base, hashlib.sha256).hexdigest()


def sign_request(secret: str, *, method: str, path: str, body: bytes, ts_ms: int, strategy: str = "v2-ms") -> str:
    """Produce the signature a caller sends for ``strategy``."""
    chosen = next(s for s in SIGNING_STRATEGIES if s.name == strategy)
    signing_input = SigningInput(
        ts_raw=str(ts_ms),
        ts_s=ts_ms // 1000,
        ts_ms=ts_ms,
        method=method.upper(),
        path=normalize_path(path),
        body=body,
        body_hash=sha256_hex(body),
    )
    return sign(secret, chosen.build(signing_input))


class ReplayGuard:
    """Remembers accepted request keys for ``ttl_seconds``.

    Bounded by ``max_keys``: expired keys are dropped first, then the oldest.
    """

    def __init__(self, *, ttl_seconds: float = 600, max_keys: int = 10000, clock: Clock = utc_now):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_keys = max(int(max_keys), 1)
        self.clock = clock
        self._seen: OrderedDict[str, datetime] = OrderedDict()

    def __len__(self) -> int:
        return len(self._seen)

    def evict_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        expired = [k for k, exp in self._seen.items() if exp <= now]
        for k in expired:
            del self._seen[k]
        return len(expired)

    def seen(self, key: str) -> bool:
        exp = self._seen.get(key)
        return exp is not None and exp > self.clock()

    def remember(self, key: str) -> None:
        now = self.clock()
        self._seen[key] = now + self.ttl
        self._seen.move_to_end(key)
        if len(self._seen) > self.max_keys:
            self.evict_expired(now)
            while len(self._seen) > self.max_keys:
                self._seen.popitem(last=False)

    def check_and_remember(self, key: str) -> bool:
        """False when ``key`` was already used inside the TTL."""
        if self.seen(key):
            return False
        self.remember(key)
        return True


@dataclass
class TriggerAuthenticator:
    secret: str
    cron_key: str = ""
    allow_key_only: bool = False
    skew_seconds: float = 300
    paths: Sequence[str] = field(default_factory=list)
    allowed_ips: Sequence[str] = field(default_factory=list)
    replay_guard: Optional[ReplayGuard] = None
    clock: Clock = utc_now
    strategies: Sequence[SigningStrategy] = SIGNING_STRATEGIES

    def verify(self, request: SignedRequest) -> str:
        """Return the name of the matching strategy or raise ``TriggerRejected``."""
        if self.allowed_ips and (request.client_ip or "") not in self.allowed_ips:
            raise TriggerRejected("ip_not_allowed", status_code=403)

        if self.cron_key:
            supplied = request.header(KEY_HEADER)
            if not supplied or not hmac.compare_digest(supplied.encode("utf-8"), self.cron_key.encode("utf-8")):
                raise TriggerRejected("bad_key")
            if not self.secret and self.allow_key_only:
                return "key-only"
        if not self.secret:
            raise TriggerRejected("not_configured")

        ts_header, sig_header = self._header_pair(request)
        if not ts_header or not sig_header:
            raise TriggerRejected("missing_headers")

        ts_ms = parse_timestamp(ts_header)
        if ts_ms is None:
            raise TriggerRejected("bad_ts")

        now_ms = self.clock().timestamp() * 1000
        if abs(now_ms - ts_ms) > self.skew_seconds * 1000:
            raise TriggerRejected("skew")

        if not _SIG_RE.match(sig_header):
            raise TriggerRejected("bad_sig_format")

        matched = self._match(request, ts_header, ts_ms, sig_header.lower())
        if matched is None:
            raise TriggerRejected("bad_sig")

        if self.replay_guard is not None:
            # Signed material only; x-request-id is not covered by the signature
            replay_key = f"{ts_header}:{sig_header.lower()}"
            if not self.replay_guard.check_and_remember(replay_key):
                raise TriggerRejected("replay")

        logger.debug("Trigger authenticated", strategy=matched, path=request.path)
        return matched

    @staticmethod
    def _header_pair(request: SignedRequest) -> tuple[str, str]:
        for ts_name, sig_name in HEADER_PAIRS:
            ts_value, sig_value = request.header(ts_name), request.header(sig_name)
            if ts_value and sig_value:
                return ts_value, sig_value
        return "", ""

    def _match(self, request: SignedRequest, ts_raw: str, ts_ms: float, signature: str) -> Optional[str]:
        signing_paths = path_variants([request.path, *self.paths])
        base_input = SigningInput(
            ts_raw=ts_raw,
            ts_s=int(ts_ms // 1000),
            ts_ms=int(ts_ms),
            method=(request.method or "POST").upper(),
            path="",
            body=request.body,
            body_hash=sha256_hex(request.body),
        )
        for strategy in self.strategies:
            candidates = signing_paths if strategy.uses_path else [""]
            for path in candidates:
                signing_input = replace(base_input, path=path) if strategy.uses_path else base_input
                expected = sign(self.secret, strategy.build(signing_input))
                if hmac.compare_digest(expected, signature):
                    return strategy.name
        return None


__all__ = [
    "SignedRequest",
    "SigningStrategy",
    "SIGNING_STRATEGIES",
    "HEADER_PAIRS",
    "ReplayGuard",
    "TriggerAuthenticator",
    "normalize_path",
    "path_variants",
    "parse_timestamp",
    "sign",
    "sign_request",
]
