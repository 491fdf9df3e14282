from __future__ import annotations
"""SQLAlchemy model for the opt-out / do-not-contact list."""
from datetime import datetime
from sqlalchemy import String, DateTime, Enum
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from campaign_dispatch.database import Base
from .enums import SuppressionReason


class SuppressionEntry(Base):
    __tablename__ = "suppression_list"
    email: Mapped[str] = mapped_column(String(320), primary_key=True)
    reason: Mapped[SuppressionReason] = mapped_column(Enum(SuppressionReason), default=SuppressionReason.UNSUBSCRIBED)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
