"""Pydantic schemas for conversations and messages."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from feedback_assistant.db.enums import MessageFeedback, SourceType
from feedback_assistant.schemas.action import MessageActionRead

MAX_CONVERSATION_TITLE_LENGTH = 100
MAX_MESSAGE_CONTENT_LENGTH = 4000


class MessageSource(BaseModel):
    """Citation linking an answer to an underlying feedback item or document."""
    id: str
    type: SourceType
    similarity: float | None = Field(None, ge=0.0, le=1.0)
    title: str | None = None
    preview: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def similarity_percent(self) -> int | None:
        if self.similarity is None:
            return None
        return round(self.similarity * 100)


class StartConversationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_text: str = Field(
        ..., alias="questionText", min_length=1, max_length=MAX_MESSAGE_CONTENT_LENGTH
    )
    project_id: UUID | None = Field(None, alias="projectId")
    is_voice_input: bool = Field(False, alias="isVoiceInput")
    voice_duration_seconds: float | None = Field(None, alias="voiceDurationSeconds", ge=0)


class StartConversationResponse(BaseModel):
    """New conversation id; `error` is set when the first answer could not be generated."""
    model_config = ConfigDict(populate_by_name=True)

    conversation_id: UUID = Field(..., alias="conversationId")
    error: str | None = None


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(..., min_length=1, max_length=MAX_MESSAGE_CONTENT_LENGTH)
    is_voice_input: bool = Field(False, alias="isVoiceInput")
    voice_duration_seconds: float | None = Field(None, alias="voiceDurationSeconds", ge=0)


class ConversationUpdate(BaseModel):
    is_pinned: bool


class MessageFeedbackRequest(BaseModel):
    feedback: MessageFeedback


class MessageRead(BaseModel):
    id: UUID
    conversation_id: UUID
    role: str
    content: str
    position: int
    sources: list[MessageSource] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None
    query_type: str | None = None
    feedback: str | None = None
    is_voice_input: bool = False
    voice_duration_seconds: float | None = None
    action: MessageActionRead | None = None
    created_at: datetime


class ConversationRead(BaseModel):
    id: UUID
    project_id: UUID
    title: str
    is_pinned: bool
    last_message_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class ConversationDetail(ConversationRead):
    messages: list[MessageRead] = Field(default_factory=list)


class CancelGenerationResponse(BaseModel):
    cancelled: bool
