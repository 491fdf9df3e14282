"""Domain exceptions raised by the dispatch engine and mapped by the API layer."""
from __future__ import annotations


class DispatchError(Exception):
    """Base class for dispatch engine errors."""


class TriggerRejected(DispatchError):
    """Inbound trigger failed one of the authentication gates."""

    def __init__(self, reason: str, status_code: int = 401):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class InvalidCampaign(DispatchError):
    """Campaign creation payload rejected before it reaches the queue."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


class LeaseLost(DispatchError):
    """The job is no longer owned by this worker (lease expired and was rescued)."""

    def __init__(self, job_id: str):
        super().__init__(f"lease lost for job {job_id}")
        self.job_id = job_id


class TransportError(DispatchError):
    """Mail provider rejected or failed to accept a message."""


__all__ = ["DispatchError", "TriggerRejected", "InvalidCampaign", "LeaseLost", "TransportError"]
