"""Chat session, message and daily usage models."""

import uuid
from datetime import date, datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, utcnow


class ChatSession(Base):
    """One conversation per (project, user)."""

    __tablename__ = "chat_sessions"
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_chat_session_project_user"),
    )

    project_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("ix_chat_messages_session_created", "session_id", "created_at"),
    )

    session_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    places: Mapped[Optional[List[Any]]] = mapped_column(JSON, nullable=True)

    # Re-declared to carry an index; the minute window queries on it
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<ChatMessage(role='{self.role}', session={self.session_id})>"


class ChatUsage(Base):
    """Per-user message counter for one KST calendar day."""

    __tablename__ = "chat_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "date", name="uq_chat_usage_user_date"),
    )

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
