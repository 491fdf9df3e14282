"""
Pydantic schemas for campaign creation and job status.
"""
from typing import Any, Dict, List, Optional
from pydantic import Field, ConfigDict
from pydantic.alias_generators import to_camel
from .base import CamelModel, ResponseBase


class CampaignCreate(CamelModel):
    # Blank subject/html are rejected with explicit codes, not by pydantic
    id: Optional[str] = Field(None, max_length=64)
    subject: str = ""
    html: str = ""
    materias: Dict[str, Any] = Field(default_factory=dict, description="Topic name -> enabled")
    scheduled_at: Optional[str] = Field(None, description="ISO-8601; omitted means now")
    test_only: bool = False
    only_commercial: bool = False

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, json_schema_extra={
        "example": {
            "subject": "October newsletter",
            "html": "<h1>News</h1><p>...</p>",
            "materias": {"laboral": True, "fiscal": False},
            "scheduledAt": "2026-10-20T08:00:00Z",
            "testOnly": False,
            "onlyCommercial": False,
        }
    })


class CampaignQueued(ResponseBase):
    scheduled: bool
    queue_id: str
    duplicate: bool = False


class JobProgressRead(CamelModel):
    last_index: int
    total: int
    sent: int
    skipped: int
    failed: int


class JobStatusRead(ResponseBase):
    id: str
    status: str
    attempts: int
    test_only: bool
    only_commercial: bool
    topics: List[str] = Field(default_factory=list)
    scheduled_at: Optional[str] = None
    lease_until: Optional[str] = None
    next_attempt_at: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    recipients: Optional[int] = None
    progress: JobProgressRead
    last_error: Optional[str] = None
