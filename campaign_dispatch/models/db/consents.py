from __future__ import annotations
"""SQLAlchemy model for marketing consent records (written by the consent-capture flow)."""
from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from campaign_dispatch.database import Base


class ConsentRecord(Base):
    __tablename__ = "marketing_consents"
    # Case-folded address
    email: Mapped[str] = mapped_column(String(320), primary_key=True)
    consent_marketing: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    consent_comercial: Mapped[bool] = mapped_column(Boolean, default=False)
    topics: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
