"""Core configuration & tunable dispatch rules.

Every knob that governs the dispatch engine (job budget per tick, lease length,
chunking, retry/backoff, trigger authentication, caching, transport) is kept
here so it can be tuned without touching service code. Values come from the
environment with sane defaults; tests monkeypatch the dict entries directly.
"""
from __future__ import annotations

import os


def _env_list(name: str, default: str = "") -> list[str]:
	raw = os.getenv(name, default)
	return [item.strip() for item in raw.split(",") if item.strip()]


# ------------------------------- Dispatch --------------------------------- #
DISPATCH_SETTINGS: dict[str, int | float] = {
	"max_jobs_per_run": int(os.getenv("CRON_MAX_JOBS", "8")),
	"max_attempts": int(os.getenv("CRON_MAX_ATTEMPTS", "3")),      # Dead-letter after this many failed passes
	"lease_minutes": float(os.getenv("CRON_LEASE_MIN", "5")),
	"chunk_size": int(os.getenv("CRON_CHUNK_SIZE", "200")),
	"send_concurrency": int(os.getenv("CRON_SEND_CONCURRENCY", "8")),  # Worker pool width per chunk
	"checkpoint_every": int(os.getenv("CRON_CHECKPOINT_EVERY", "25")),
	"failure_abort_ratio": 0.25,   # Chunk failures >= 25% of chunk size abort the pass
	"max_chunks_per_run": int(os.getenv("CRON_MAX_CHUNKS", "10")),
	"rate_delay_ms": int(os.getenv("CRON_RATE_DELAY_MS", "0")),
	"claim_overfetch_factor": 3,   # Candidates fetched per requested claim
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float] = {
	"base_minutes": 1,
	"factor": 2,          # Exponential factor
	"max_minutes": 15,
	"jitter_pct": 0.20,   # +/-20% jitter
}

# ----------------------------- Trigger Auth -------------------------------- #
TRIGGER_AUTH: dict[str, object] = {
	"cron_key": os.getenv("MKT_CRON_KEY", "").strip(),
	"hmac_secret": os.getenv("MKT_CRON_HMAC_SECRET", "").strip(),
	# Static key alone authorizes ticks only when explicitly enabled and no secret is set
	"allow_key_only": os.getenv("MKT_CRON_ALLOW_KEY_ONLY", "").strip().lower() in ("1", "true", "yes"),
	"skew_seconds": int(os.getenv("MKT_CRON_SKEW_SECONDS", "300")),
	"replay_ttl_seconds": 600,
	"replay_max_keys": 10000,
	"allowed_ips": _env_list("MKT_CRON_ALLOWED_IPS"),
	# Logical paths a caller may have signed (route aliases included)
	"paths": ["/marketing/cron-send", "/cron-send", "/api/v1/marketing/cron-send"],
}

# Campaign creation endpoint uses its own secret and no static key
SEND_AUTH: dict[str, object] = {
	"hmac_secret": os.getenv("MKT_SEND_SECRET", "").strip(),
	"skew_seconds": int(os.getenv("MKT_SEND_SKEW_SECONDS", "300")),
	"paths": ["/marketing/send", "/api/v1/marketing/send"],
}

# --------------------------- Suppression Cache ---------------------------- #
SUPPRESSION_CACHE: dict[str, int] = {
	"ttl_seconds": int(os.getenv("MKT_SUPPRESSION_TTL", "60")),
}

# ------------------------------ Mail Transport ---------------------------- #
MAIL_TRANSPORT: dict[str, str | float] = {
	"api_url": os.getenv("SMTP2GO_API_URL", "https://api.smtp2go.com/v3/email/send"),
	"api_key": os.getenv("SMTP2GO_API_KEY", "").strip(),
	"from_email": (os.getenv("EMAIL_FROM") or os.getenv("SMTP2GO_FROM_EMAIL") or "newsletter@example.com").strip(),
	"from_name": (os.getenv("EMAIL_FROM_NAME") or os.getenv("SMTP2GO_FROM_NAME") or "Newsletter").strip(),
	"timeout_seconds": float(os.getenv("SMTP2GO_TIMEOUT", "20")),
}

# ------------------------------- Unsubscribe ------------------------------ #
UNSUBSCRIBE: dict[str, str | int] = {
	"secret": os.getenv("MKT_UNSUB_SECRET", "change_me_secret").strip(),
	"page": os.getenv("MKT_UNSUB_PAGE", "https://www.example.com/unsubscribe/").strip(),
	"ttl_days": 365,
}

# -------------------------------- Alerting -------------------------------- #
ALERTING_SETTINGS: dict[str, str | int | float] = {
	"admin_email": os.getenv("ADMIN_ALERTS_TO", "").strip(),
	"max_attempts": 3,
	"retry_base_seconds": 1,
	"dedupe_ttl_seconds": int(os.getenv("ADMIN_ALERT_DEDUPE_TTL", "600")),
}

# ------------------------------ Dedup Guard -------------------------------- #
DEDUP_SETTINGS: dict[str, str | float] = {
	"backend": os.getenv("DEDUP_BACKEND", "sql"),  # "sql" or "redis"
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"redis_key_prefix": "dispatch:dedup",
	"redis_health_check_timeout": 2.0,
}

# Fixed audience for testOnly campaigns
TEST_RECIPIENTS: list[str] = _env_list("MKT_TEST_RECIPIENTS", "qa@example.com")

__all__ = [
	"DISPATCH_SETTINGS",
	"BACKOFF_POLICY",
	"TRIGGER_AUTH",
	"SEND_AUTH",
	"SUPPRESSION_CACHE",
	"MAIL_TRANSPORT",
	"UNSUBSCRIBE",
	"ALERTING_SETTINGS",
	"DEDUP_SETTINGS",
	"TEST_RECIPIENTS",
]
