"""SQLAlchemy ORM models for session storage."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class AssistantSession(Base):
    """Assistant session table - one row per session, payload as JSON.

    ``version`` drives optimistic concurrency; every write is a conditional
    UPDATE on (session_id, version).
    """

    __tablename__ = "assistant_session"
    __table_args__ = (
        Index("idx_session_owner", "owner_id"),
        Index("idx_session_expires", "expires_at"),
    )

    session_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    conversation: Mapped[list[dict[str, Any]]] = mapped_column(JsonColumn, nullable=False, default=list)
    tool_invocations: Mapped[list[dict[str, Any]]] = mapped_column(JsonColumn, nullable=False, default=list)
    skipper_profile: Mapped[Any] = mapped_column(JsonColumn, nullable=True)
    crew_requirements: Mapped[Any] = mapped_column(JsonColumn, nullable=True)
    journey_details: Mapped[Any] = mapped_column(JsonColumn, nullable=True)
    # Drafts, module progress and last use case
    state: Mapped[dict[str, Any]] = mapped_column(JsonColumn, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
