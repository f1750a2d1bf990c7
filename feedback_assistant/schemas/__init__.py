"""Pydantic schemas for API request/response models."""

from feedback_assistant.schemas.auth import TokenPayload, UserSession
from feedback_assistant.schemas.action import (
    ActionIntent,
    ActionResultRead,
    ConfirmationPrompt,
    ExecuteActionRequest,
    MessageActionRead,
)
from feedback_assistant.schemas.conversation import (
    ConversationDetail,
    ConversationRead,
    ConversationUpdate,
    MessageFeedbackRequest,
    MessageRead,
    MessageSource,
    SendMessageRequest,
    StartConversationRequest,
    StartConversationResponse,
)
from feedback_assistant.schemas.scheduled_query import (
    ScheduledQueryCreate,
    ScheduledQueryRead,
    ScheduledQueryUpdate,
)
from feedback_assistant.schemas.suggestion import SuggestionRead, SuggestionStatusUpdate
from feedback_assistant.schemas.transcription import TranscriptionRead, TranscriptionResponse

__all__ = [
    "TokenPayload",
    "UserSession",
    "ActionIntent",
    "ActionResultRead",
    "ConfirmationPrompt",
    "ExecuteActionRequest",
    "MessageActionRead",
    "ConversationDetail",
    "ConversationRead",
    "ConversationUpdate",
    "MessageFeedbackRequest",
    "MessageRead",
    "MessageSource",
    "SendMessageRequest",
    "StartConversationRequest",
    "StartConversationResponse",
    "ScheduledQueryCreate",
    "ScheduledQueryRead",
    "ScheduledQueryUpdate",
    "SuggestionRead",
    "SuggestionStatusUpdate",
    "TranscriptionRead",
    "TranscriptionResponse",
]
