"""Exponential backoff helpers with jitter."""
from __future__ import annotations

import random
from typing import Optional

from campaign_dispatch.config import BACKOFF_POLICY


def base_delay(attempt: int, *, base: float, factor: float, max_value: float) -> float:
    """Un-jittered delay: base * factor^(attempt-1), capped."""
    if attempt < 1:
        attempt = 1
    return min(base * (factor ** (attempt - 1)), max_value)


def jitter(delay: float, jitter_pct: float) -> float:
    if jitter_pct <= 0:
        return delay
    jitter_amount = delay * jitter_pct
    return max(random.uniform(delay - jitter_amount, delay + jitter_amount), 0.0)


def compute_backoff_minutes(attempt: int, *, base: Optional[float] = None, factor: Optional[float] = None, max_minutes: Optional[float] = None, jitter_pct: Optional[float] = None) -> float:
    """Retry delay in minutes for a job's n-th failed pass.

    With the default policy this is ``min(2^(n-1), 15)`` minutes, jittered +/-20%.
    """
    base = float(base if base is not None else BACKOFF_POLICY["base_minutes"])
    factor = float(factor if factor is not None else BACKOFF_POLICY["factor"])
    max_minutes = float(max_minutes if max_minutes is not None else BACKOFF_POLICY["max_minutes"])
    jitter_pct = float(jitter_pct if jitter_pct is not None else BACKOFF_POLICY["jitter_pct"])
    return jitter(base_delay(attempt, base=base, factor=factor, max_value=max_minutes), jitter_pct)


def compute_backoff_seconds(attempt: int, *, base: float = 1, factor: float = 2, max_seconds: float = 30, jitter_pct: float = 0.10) -> float:
    """Short in-process retry delay (alert delivery)."""
    return jitter(base_delay(attempt, base=base, factor=factor, max_value=max_seconds), jitter_pct)


__all__ = ["base_delay", "compute_backoff_minutes", "compute_backoff_seconds"]
