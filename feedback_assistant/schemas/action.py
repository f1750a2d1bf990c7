"""Pydantic schemas for action intents and results."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ActionIntent(BaseModel):
    """A proposed, not yet executed action inferred from a question."""
    requires_action: bool = True
    action_type: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(..., ge=0.0, le=1.0)
    confirmation_message: str | None = None


class ConfirmationPrompt(BaseModel):
    """What the confirm dialog renders for a pending intent."""
    action_type: str
    action_label: str
    parameters: dict[str, Any]
    confidence: float
    confirmation_message: str
    low_confidence_warning: str | None = None
    confirm_enabled: bool = True


class ActionResultRead(BaseModel):
    """Durable outcome of a confirmed action."""
    id: UUID
    message_id: UUID
    action_type: str
    success: bool
    created_resource_url: str | None = None
    data: dict[str, Any] | None = None
    duration_ms: int | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class MessageActionRead(BaseModel):
    """Action state attached to an assistant message."""
    action_type: str
    status: str
    error: str | None = None
    confirmation: ConfirmationPrompt | None = None
    result: ActionResultRead | None = None


class ExecuteActionRequest(BaseModel):
    """Confirm and execute the pending intent on a message."""
    model_config = ConfigDict(populate_by_name=True)

    message_id: UUID = Field(..., alias="messageId")
    project_id: UUID = Field(..., alias="projectId")
    action_type: str = Field(..., alias="actionType", min_length=1, max_length=50)
    parameters: dict[str, Any] = Field(default_factory=dict)

    @field_validator("action_type")
    @classmethod
    def _strip_action_type(cls, value: str) -> str:
        return value.strip()


class CancelActionResponse(BaseModel):
    message_id: UUID
    status: str
    # True when an executing action was asked to stop; the execute call reports the outcome
    cancel_requested: bool = False
