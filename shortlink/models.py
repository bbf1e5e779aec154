"""SQLAlchemy ORM models for the shortlink core.

This module defines the database schema using SQLAlchemy declarative models
with proper indexing and timestamp management for URL mappings.

Data Model Layout
=================
::
    urls table
    ├─ id (INTEGER PRIMARY KEY)
    ├─ short_code (VARCHAR(32) UNIQUE, INDEXED)
    ├─ original_url (TEXT NOT NULL, INDEXED)
    ├─ user_id (VARCHAR(255) NULL, INDEXED)   NULL = anonymous
    ├─ clicks (INTEGER DEFAULT 0)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW(), INDEXED)
    ├─ updated_at (TIMESTAMPTZ, DEFAULT NOW(), ON UPDATE)
    ├─ expires_at (TIMESTAMPTZ NULL)          NULL = never expires
    └─ last_accessed_at (TIMESTAMPTZ NULL)

Key Behaviours
===============
- short_code carries the only uniqueness constraint; original_url repeats
  across expiration classes, owners, and expired generations.
- clicks is only changed with ``clicks = clicks + 1`` at the database.
- Expiry is checked on every read; rows are swept eventually, not eagerly.
- SQLite hands back naive datetimes, so comparisons go through ``as_utc``.

Classes:
    ShortURL:  A short code to original URL mapping.
"""

import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from shortlink.database import Base

__all__ = ["ShortURL", "as_utc"]


def as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    """Attach UTC to naive datetimes read back from the store."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=datetime.UTC)


class ShortURL(Base):
    __tablename__ = "urls"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    short_code: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, index=True, nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    clicks: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True, nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    expires_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_accessed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_expired(self, now: datetime.datetime) -> bool:
        expires_at = as_utc(self.expires_at)
        return expires_at is not None and expires_at <= now

    def __repr__(self) -> str:
        return f"<ShortURL(id={self.id}, short_code='{self.short_code}', clicks={self.clicks})>"
