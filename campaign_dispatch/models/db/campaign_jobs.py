from __future__ import annotations
"""SQLAlchemy model for queued campaign dispatch jobs."""
from datetime import datetime
from sqlalchemy import Integer, String, Text, DateTime, Boolean, Enum, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from campaign_dispatch.database import Base
from .enums import JobStatus


class CampaignJob(Base):
    __tablename__ = "campaign_jobs"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    subject: Mapped[str] = mapped_column(Text, nullable=False)
    html_body: Mapped[str] = mapped_column(Text, nullable=False)
    # {topic_name: bool}; empty means no topic restriction
    topic_filter: Mapped[dict] = mapped_column(JSON, default=dict)
    test_only: Mapped[bool] = mapped_column(Boolean, default=False)
    only_commercial: Mapped[bool] = mapped_column(Boolean, default=False)

    status: Mapped[JobStatus] = mapped_column(Enum(JobStatus), default=JobStatus.PENDING, nullable=False, index=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    lease_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    worker_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Optimistic concurrency token; every ownership change bumps it
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Frozen, ordered audience. Written once, never re-derived.
    recipients_snapshot: Mapped[list | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    progress_last_index: Mapped[int] = mapped_column(Integer, default=0)
    progress_total: Mapped[int] = mapped_column(Integer, default=0)
    progress_sent: Mapped[int] = mapped_column(Integer, default=0)
    progress_skipped: Mapped[int] = mapped_column(Integer, default=0)
    progress_failed: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
