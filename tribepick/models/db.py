"""
SQLAlchemy ORM models for persistent storage.

Models mirror the dataclass models but add database persistence. Nested
session state (turn order, skip records, history) is stored as JSON; a
session is always loaded and saved as a whole.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class DecisionSessionDB(Base):
    """A decision session row."""

    __tablename__ = "decision_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), index=True)

    participants: Mapped[list[str]] = mapped_column(JSON, default=list)
    source_item_ids: Mapped[list[str]] = mapped_column(JSON, default=list)
    filter_config: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    requested_k: Mapped[int] = mapped_column(Integer)
    requested_m: Mapped[int] = mapped_column(Integer)
    turn_timeout_seconds: Mapped[float] = mapped_column(Float)
    session_timeout_seconds: Mapped[float] = mapped_column(Float)

    # Resolved parameters; null while configuring
    param_k: Mapped[int | None] = mapped_column(Integer, nullable=True)
    param_n: Mapped[int | None] = mapped_column(Integer, nullable=True)
    param_m: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Turn state
    elimination_order: Mapped[list[str]] = mapped_column(JSON, default=list)
    current_round: Mapped[int] = mapped_column(Integer, default=0)
    current_turn_index: Mapped[int] = mapped_column(Integer, default=0)
    turn_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    skip_records: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    skip_counts: Mapped[dict[str, int]] = mapped_column(JSON, default=dict)

    # Candidates and outcome
    initial_candidates: Mapped[list[str]] = mapped_column(JSON, default=list)
    candidate_set: Mapped[list[str]] = mapped_column(JSON, default=list)
    candidate_scores: Mapped[dict[str, float]] = mapped_column(JSON, default=dict)
    history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    final_selection: Mapped[str | None] = mapped_column(String(255), nullable=True)
    runners_up: Mapped[list[str]] = mapped_column(JSON, default=list)
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<DecisionSessionDB(id={self.id}, status={self.status})>"


class ActivityEntryDB(Base):
    """A logged visit (or planned visit) to an item."""

    __tablename__ = "activity_entries"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    item_id: Mapped[str] = mapped_column(String(255), index=True)
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    tribe_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    activity_type: Mapped[str] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(20))
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    recorded_by: Mapped[str] = mapped_column(String(255))
    participants: Mapped[list[str]] = mapped_column(JSON, default=list)
    decision_session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self) -> str:
        return f"<ActivityEntryDB(item={self.item_id}, user={self.user_id})>"
