"""SQLAlchemy models for the generation ledger."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""


class GenerationRecord(Base):
    """One index generation and where it is in its lifecycle."""

    __tablename__ = "generations"

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    # created, loaded, live, previous, deleted, failed
    status: Mapped[str] = mapped_column(String(32), default="created")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    document_count: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    promoted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), default=None)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), default=None)
    error: Mapped[Optional[str]] = mapped_column(Text, default=None)
