"""
Pydantic schemas for dispatch tick results.
"""
from typing import List, Optional
from pydantic import Field
from .base import CamelModel, ResponseBase


class JobResult(CamelModel):
    id: str
    status: str
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    attempts: int = 0
    retry: Optional[bool] = None
    next_attempt_at: Optional[str] = None
    error: Optional[str] = None


class TickSummary(ResponseBase):
    started_at: str
    processed: int = 0
    results: List[JobResult] = Field(default_factory=list)
    message: Optional[str] = None
