"""Conversation service - persistence for assistant conversations and messages."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from feedback_assistant.db.enums import ActionStatus, MessageRole
from feedback_assistant.db.models import Conversation, Message, utcnow
from feedback_assistant.schemas.action import ActionResultRead, MessageActionRead
from feedback_assistant.schemas.conversation import (
    MAX_CONVERSATION_TITLE_LENGTH,
    ConversationDetail,
    ConversationRead,
    MessageRead,
    MessageSource,
)
from feedback_assistant.services.ai_provider import ChatMessage


class FeedbackAlreadySet(Exception):
    """Feedback on a message can be set once."""

    pass


def derive_title(question_text: str) -> str:
    """Title from the first question, collapsed to one line and capped."""
    title = " ".join(question_text.split())
    if len(title) > MAX_CONVERSATION_TITLE_LENGTH:
        title = title[: MAX_CONVERSATION_TITLE_LENGTH - 3].rstrip() + "..."
    return title or "New conversation"


def listing_order():
    """Pinned first, then most recent activity, then newest."""
    return (
        Conversation.is_pinned.desc(),
        Conversation.last_message_at.desc(),
        Conversation.created_at.desc(),
    )


# =============================================================================
# Conversations
# =============================================================================

def create_conversation(
    db: Session,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    title: str,
) -> Conversation:
    conversation = Conversation(
        project_id=project_id,
        user_id=user_id,
        title=derive_title(title),
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def get_conversation(
    db: Session,
    project_id: uuid.UUID,
    conversation_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
) -> Conversation | None:
    query = db.query(Conversation).filter(
        Conversation.id == conversation_id,
        Conversation.project_id == project_id,
    )
    if user_id is not None:
        query = query.filter(Conversation.user_id == user_id)
    return query.first()


def list_conversations(
    db: Session,
    project_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
) -> list[Conversation]:
    query = db.query(Conversation).filter(Conversation.project_id == project_id)
    if user_id is not None:
        query = query.filter(Conversation.user_id == user_id)
    return query.order_by(*listing_order()).all()


def set_pinned(db: Session, conversation: Conversation, pinned: bool) -> Conversation:
    conversation.is_pinned = pinned
    db.commit()
    db.refresh(conversation)
    return conversation


def delete_conversation(db: Session, conversation: Conversation) -> None:
    db.delete(conversation)
    db.commit()


# =============================================================================
# Messages
# =============================================================================

def _next_position(db: Session, conversation_id: uuid.UUID) -> int:
    current = (
        db.query(func.max(Message.position))
        .filter(Message.conversation_id == conversation_id)
        .scalar()
    )
    return 0 if current is None else current + 1


def append_message(
    db: Session,
    conversation: Conversation,
    role: MessageRole,
    content: str,
    *,
    sources: list[dict[str, Any]] | None = None,
    metadata: dict[str, Any] | None = None,
    query_type: str | None = None,
    is_voice_input: bool = False,
    voice_duration_seconds: float | None = None,
    action_intent: dict[str, Any] | None = None,
) -> Message:
    """Append at the next position and bump the conversation's activity time."""
    now = utcnow()
    message = Message(
        conversation_id=conversation.id,
        role=role.value,
        content=content if isinstance(content, str) else str(content),
        position=_next_position(db, conversation.id),
        sources=sources or [],
        message_metadata=metadata,
        query_type=query_type,
        is_voice_input=is_voice_input,
        voice_duration_seconds=voice_duration_seconds,
        created_at=now,
    )
    if action_intent is not None:
        message.action_type = action_intent["action_type"]
        message.action_intent = action_intent
        message.action_status = ActionStatus.PENDING.value
    db.add(message)
    conversation.last_message_at = now
    db.commit()
    db.refresh(message)
    return message


def get_message(
    db: Session,
    conversation_id: uuid.UUID,
    message_id: uuid.UUID,
) -> Message | None:
    return (
        db.query(Message)
        .filter(Message.id == message_id, Message.conversation_id == conversation_id)
        .first()
    )


def get_project_message(
    db: Session,
    project_id: uuid.UUID,
    message_id: uuid.UUID,
) -> Message | None:
    """Message lookup scoped through its conversation's project."""
    return (
        db.query(Message)
        .join(Conversation, Conversation.id == Message.conversation_id)
        .filter(Message.id == message_id, Conversation.project_id == project_id)
        .first()
    )


def get_last_message(db: Session, conversation_id: uuid.UUID) -> Message | None:
    return (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.position.desc())
        .first()
    )


def get_history(db: Session, conversation_id: uuid.UUID, limit: int) -> list[ChatMessage]:
    """The last `limit` messages, oldest first, as model context. Error replies are skipped."""
    rows = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.position.desc())
        .limit(limit)
        .all()
    )
    history = []
    for row in reversed(rows):
        if (row.message_metadata or {}).get("error"):
            continue
        history.append(ChatMessage(role=row.role, content=row.content))
    return history


def set_message_feedback(db: Session, message: Message, feedback: str) -> Message:
    """Record thumbs up/down. Only the first call wins."""
    result = db.execute(
        update(Message)
        .where(Message.id == message.id, Message.feedback.is_(None))
        .values(feedback=feedback, feedback_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise FeedbackAlreadySet("Feedback has already been recorded for this message")
    db.commit()
    db.refresh(message)
    return message


# =============================================================================
# Serialization
# =============================================================================

def _action_view(message: Message) -> MessageActionRead | None:
    if not message.action_status or not message.action_type:
        return None

    # Import here to avoid circular imports
    from feedback_assistant.services.query_router import build_confirmation

    confirmation = None
    if message.action_intent:
        confirmation = build_confirmation(message.action_intent, message.action_status)
    result = None
    if message.action_result is not None:
        result = ActionResultRead.model_validate(message.action_result)
    return MessageActionRead(
        action_type=message.action_type,
        status=message.action_status,
        error=message.action_error,
        confirmation=confirmation,
        result=result,
    )


def to_message_read(message: Message) -> MessageRead:
    return MessageRead(
        id=message.id,
        conversation_id=message.conversation_id,
        role=message.role,
        content=message.content,
        position=message.position,
        sources=[MessageSource.model_validate(s) for s in message.sources or []],
        metadata=message.message_metadata,
        query_type=message.query_type,
        feedback=message.feedback,
        is_voice_input=message.is_voice_input,
        voice_duration_seconds=message.voice_duration_seconds,
        action=_action_view(message),
        created_at=message.created_at,
    )


def to_conversation_detail(conversation: Conversation) -> ConversationDetail:
    summary = ConversationRead.model_validate(conversation)
    return ConversationDetail(
        **summary.model_dump(),
        messages=[to_message_read(m) for m in conversation.messages],
    )
