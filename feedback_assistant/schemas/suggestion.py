"""Pydantic schemas for proactive suggestions."""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel

from feedback_assistant.db.enums import SuggestionPriority, SuggestionStatus, SuggestionType


class SuggestionRead(BaseModel):
    id: UUID
    project_id: UUID
    suggestion_type: SuggestionType
    priority: SuggestionPriority
    title: str
    description: str
    query_suggestion: str
    context_data: dict[str, Any] | None = None
    status: SuggestionStatus
    icon: str
    color: str
    expires_at: datetime | None = None
    dismissed_at: datetime | None = None
    acted_upon_at: datetime | None = None
    created_at: datetime


class SuggestionStatusUpdate(BaseModel):
    """Only the acted-upon transition goes through PATCH; dismissal has its own route."""
    status: Literal["acted_upon"]
