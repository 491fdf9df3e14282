"""Central Enum definitions for dispatch domain states.

These replace scattered string literals so DB models, schemas and engine
logic agree on the exact values.
"""
from __future__ import annotations
import enum


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"


class SuppressionReason(str, enum.Enum):
    UNSUBSCRIBED = "unsubscribed"
    BOUNCED = "bounced"
    COMPLAINT = "complaint"
    MANUAL = "manual"


__all__ = [
    "JobStatus",
    "ReservationStatus",
    "SuppressionReason",
]
