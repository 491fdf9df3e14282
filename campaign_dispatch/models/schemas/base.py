"""
Base schemas used across the application.
"""
from typing import Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys (``scheduledAt``), snake_case in code."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResponseBase(CamelModel):
    """Envelope shared by every JSON response: ``{"ok": ..., "error": ...}``."""
    ok: bool = True
    error: Optional[str] = None
