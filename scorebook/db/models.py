"""
SQLAlchemy ORM models for Scorebook.

Tables:
- scores: One row per scored document; page list lives in config_json
- snapshots: Most recent normalized client snapshot per user (metadata only)
"""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from scorebook.db.database import Base


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class Score(Base):
    """
    A scored document owned by one user.

    ``config_json`` is the serialized score config with a ``pages`` list; each
    page carries the blob-store ``filename`` of its image.  ``image_filename``
    is the cover pointer and must always name one of those pages.
    """
    __tablename__ = "scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    composer: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    config_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    image_filename: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Score {self.id} user={self.user_id} title={self.title!r}>"


class Snapshot(Base):
    """
    Last synced snapshot document for a user.

    Single row per user, overwritten on every sync.  The authoritative
    per-score state lives in ``scores``; this is a convenience cache of
    what the client last sent.
    """
    __tablename__ = "snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
    snapshot: Mapped[str] = mapped_column(Text, nullable=False)
    exported_at: Mapped[str] = mapped_column(String(64), nullable=False)
    saved_at: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Snapshot user={self.user_id} saved_at={self.saved_at}>"
