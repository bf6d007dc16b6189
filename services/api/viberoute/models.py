"""SQLAlchemy ORM models for the route generation service.

Tables:
- notes: Trip notes (owned by the notes service; read here for ownership checks only)
- itineraries: One row per generation attempt, versioned per note
- generation_usage: Token usage per attempt, backs the monthly spend cap

Concurrency rules live in the indexes, not in application code:
- (note_id, version) unique
- (user_id, request_id) unique, the idempotency key
- user_id unique WHERE status = 'running', at most one in-flight generation per user
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Text,
    Integer,
    Float,
    ForeignKey,
    Index,
    UniqueConstraint,
    CheckConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON

from .db import Base


def generate_uuid() -> str:
    return str(uuid.uuid4())


class Note(Base):
    """Free-text trip note. CRUD lives elsewhere."""
    __tablename__ = "notes"
    __table_args__ = (
        Index("ix_notes_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    note_text: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    itineraries: Mapped[list["Itinerary"]] = relationship(
        "Itinerary", back_populates="note", cascade="all, delete-orphan"
    )


class Itinerary(Base):
    """A single generation attempt and, once completed, its canonical route.

    State machine: pending → running → completed | failed, with
    pending/running → cancelled on request. Terminal rows only change via deleted_at.
    """
    __tablename__ = "itineraries"
    __table_args__ = (
        UniqueConstraint("note_id", "version", name="uq_itineraries_note_version"),
        UniqueConstraint("user_id", "request_id", name="uq_itineraries_user_request"),
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="ck_itineraries_status",
        ),
        Index(
            "uq_itineraries_user_running",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
        Index("ix_itineraries_note_id", "note_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    note_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("notes.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    request_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Canonical representation, only set on completion
    route_geojson: Mapped[Optional[dict]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"), nullable=True
    )

    # Derived summary for cheap listing
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    total_distance_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    total_duration_h: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Progress / failure reporting
    progress: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    note: Mapped["Note"] = relationship("Note", back_populates="itineraries")


class GenerationUsage(Base):
    """Token usage and estimated cost of one plan request."""
    __tablename__ = "generation_usage"
    __table_args__ = (
        Index("ix_generation_usage_user_created", "user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    itinerary_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("itineraries.id", ondelete="SET NULL"), nullable=True
    )
    model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    prompt_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_cost_usd: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
