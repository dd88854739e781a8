"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_record_id() -> str:
    return uuid.uuid4().hex


class ProgressRecord(Base):
    """Playback position of one viewer on one media item."""

    __tablename__ = "progress_records"
    __table_args__ = (
        # Anonymous rows are unique per session; claimed rows per user.
        Index(
            "uq_progress_session_media",
            "owner_session_id",
            "media_id",
            unique=True,
            sqlite_where=text("owner_user_id IS NULL"),
            postgresql_where=text("owner_user_id IS NULL"),
        ),
        Index(
            "uq_progress_user_media",
            "owner_user_id",
            "media_id",
            unique=True,
            sqlite_where=text("owner_user_id IS NOT NULL"),
            postgresql_where=text("owner_user_id IS NOT NULL"),
        ),
        Index("ix_progress_last_watched", "last_watched_at"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_record_id)
    owner_session_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True
    )
    owner_user_id: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True
    )
    media_id: Mapped[str] = mapped_column(String(64))
    title: Mapped[str] = mapped_column(Text)
    poster_image: Mapped[str] = mapped_column(Text, default="")
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0)
    watched_seconds: Mapped[int] = mapped_column(Integer, default=0)
    progress_ratio: Mapped[float] = mapped_column(Float, default=0.0)
    category: Mapped[str | None] = mapped_column(String(120), nullable=True)
    last_watched_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
