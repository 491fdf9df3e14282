from __future__ import annotations
"""SQLAlchemy model for the write-once campaign send audit log."""
from datetime import datetime
from sqlalchemy import Integer, String, Boolean, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from campaign_dispatch.database import Base


class SendLogEntry(Base):
    __tablename__ = "email_sends"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    subject_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    topics: Mapped[dict] = mapped_column(JSON, default=dict)
    test_only: Mapped[bool] = mapped_column(Boolean, default=False)
    recipients_count: Mapped[int] = mapped_column(Integer, default=0)
    sent: Mapped[int] = mapped_column(Integer, default=0)
    skipped: Mapped[int] = mapped_column(Integer, default=0)
    failed: Mapped[int] = mapped_column(Integer, default=0)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
