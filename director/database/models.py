"""
director.database.models — SQLAlchemy 2.0 Data Models
======================================================

Tables:
- director_sessions — one row per streaming session holding the latest
  accepted ``{savedAt, gameState}`` snapshot
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Director ORM models."""


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------
class SessionRecord(Base):
    """Latest snapshot per session.  ``updated_at`` is the snapshot's savedAt."""

    __tablename__ = "director_sessions"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    state: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict
    )
    # epoch ms; rows past this are treated as absent and purged lazily
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __table_args__ = (Index("ix_director_sessions_expires_at", "expires_at"),)
