"""SQLAlchemy ORM models for the assistant: conversations, actions, schedules, insights, jobs."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from feedback_assistant.db.base import Base
from feedback_assistant.db.enums import (
    DEFAULT_JOB_STATUS,
    DEFAULT_SUGGESTION_STATUS,
    DeliveryMethod,
)
from feedback_assistant.db.types import JSONType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Conversations
# =============================================================================

class Conversation(Base):
    """
    A threaded question/answer sequence scoped to one project.

    Created on the first question. `last_message_at` is bumped on every
    append and drives listing order together with `is_pinned`.
    """

    __tablename__ = "ask_conversations"
    __table_args__ = (
        Index("idx_ask_conversations_listing", "project_id", "is_pinned", "last_message_at"),
        Index("idx_ask_conversations_user", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    is_pinned: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    last_message_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    messages: Mapped[list["Message"]] = relationship(
        back_populates="conversation",
        order_by="Message.position",
        cascade="all, delete-orphan",
    )


class Message(Base):
    """
    One message in a conversation.

    Role and content never change after insert. The only user-driven
    mutation is `feedback`, set at most once. Assistant messages may carry
    an action intent while it awaits confirmation; the intent is cleared
    once it is executed, fails or is cancelled.
    """

    __tablename__ = "ask_messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "position", name="uq_ask_messages_position"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ask_conversations.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    sources: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    # Column is "metadata"; the attribute name is taken by DeclarativeBase
    message_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    query_type: Mapped[str | None] = mapped_column(String(30), nullable=True)

    feedback: Mapped[str | None] = mapped_column(String(10), nullable=True)
    feedback_at: Mapped[datetime | None] = mapped_column(nullable=True)

    is_voice_input: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    voice_duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)

    action_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    action_intent: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    action_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    action_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    conversation: Mapped["Conversation"] = relationship(back_populates="messages")
    action_result: Mapped[ActionResult | None] = relationship(
        back_populates="message",
        uselist=False,
        cascade="all, delete-orphan",
    )


class ActionResult(Base):
    """Durable outcome of a confirmed action. One per message, never updated."""

    __tablename__ = "ask_action_results"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("ask_messages.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_resource_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    message: Mapped["Message"] = relationship(back_populates="action_result")


# =============================================================================
# Scheduled Queries
# =============================================================================

class ScheduledQuery(Base):
    """
    A recurring question answered and delivered without a live session.

    `next_run_at` doubles as the concurrency guard for the sweep: a run is
    claimed by advancing it with a compare-and-set on the old value.
    """

    __tablename__ = "ask_scheduled_queries"
    __table_args__ = (
        Index("idx_ask_scheduled_queries_due", "is_active", "next_run_at"),
        Index("idx_ask_scheduled_queries_project", "project_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    recipient_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    query_text: Mapped[str] = mapped_column(Text, nullable=False)
    frequency: Mapped[str] = mapped_column(String(10), nullable=False)
    day_of_week: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)  # 0=Sunday
    day_of_month: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    time_utc: Mapped[str] = mapped_column(
        String(5), default="09:00", server_default=text("'09:00'"), nullable=False
    )

    delivery_method: Mapped[str] = mapped_column(
        String(10), default=DeliveryMethod.EMAIL.value, nullable=False
    )
    slack_channel_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    next_run_at: Mapped[datetime] = mapped_column(nullable=False)
    last_run_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_delivery_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_delivery_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_conversation_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("ask_conversations.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)


# =============================================================================
# Proactive Suggestions
# =============================================================================

class ProactiveSuggestion(Base):
    """
    An insight produced by periodic corpus analysis.

    Never deleted: dismissed and acted-upon records stay for audit and for
    suppressing repeats within the analysis window.
    """

    __tablename__ = "ask_proactive_suggestions"
    __table_args__ = (
        Index("idx_ask_suggestions_project_status", "project_id", "status", "created_at"),
        Index("idx_ask_suggestions_project_type", "project_id", "suggestion_type", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    suggestion_type: Mapped[str] = mapped_column(String(30), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    query_suggestion: Mapped[str] = mapped_column(Text, nullable=False)
    context_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default=DEFAULT_SUGGESTION_STATUS.value,
        server_default=text(f"'{DEFAULT_SUGGESTION_STATUS.value}'"),
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    dismissed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    acted_upon_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


# =============================================================================
# Jobs
# =============================================================================

class Job(Base):
    """
    Background job for async processing.

    Used for: scheduled query sweeps, suggestion analysis.
    Worker polls for pending jobs and processes them.
    """

    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_pending", "status", "run_at"),
        Index("uq_job_idempotency", "idempotency_key", unique=True),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Sweeps cover every project; project-specific jobs set this
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    run_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=DEFAULT_JOB_STATUS.value,
        server_default=text(f"'{DEFAULT_JOB_STATUS.value}'"),
        nullable=False,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"), nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, server_default=text("3"), nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
