from __future__ import annotations
"""SQLAlchemy model for per-(job, recipient) send reservations."""
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, Enum, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from campaign_dispatch.database import Base
from .enums import ReservationStatus


class DedupReservation(Base):
    __tablename__ = "dedup_reservations"
    # The unique pair is the whole mutex: inserting a duplicate fails
    __table_args__ = (UniqueConstraint("job_id", "email_hash", name="uq_dedup_job_recipient"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    email_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(Enum(ReservationStatus), default=ReservationStatus.PENDING, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
