"""Pydantic schemas for scheduled queries."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from feedback_assistant.db.enums import DeliveryMethod, Frequency
from feedback_assistant.services.recurrence import SchedulingComputationError, validate_recurrence


class ScheduledQueryCreate(BaseModel):
    """
    Request to create a scheduled query.

    Cross-field recurrence rules (day_of_week iff weekly, day_of_month iff
    monthly, HH:MM time) are enforced by the recurrence module.
    """
    model_config = ConfigDict(populate_by_name=True)

    project_id: UUID = Field(..., alias="projectId")
    query_text: str = Field(..., min_length=1, max_length=2000)
    frequency: Frequency
    day_of_week: int | None = None
    day_of_month: int | None = None
    time_utc: str = "09:00"
    delivery_method: DeliveryMethod = DeliveryMethod.EMAIL
    slack_channel_id: str | None = Field(None, max_length=100)
    recipient_email: str | None = Field(None, max_length=255)

    @model_validator(mode="after")
    def _check_recurrence(self) -> "ScheduledQueryCreate":
        try:
            rule = validate_recurrence(
                self.frequency, self.time_utc, self.day_of_week, self.day_of_month
            )
        except SchedulingComputationError as e:
            raise ValueError(str(e)) from e
        self.time_utc = rule.time_utc
        if self.delivery_method != DeliveryMethod.EMAIL and not self.slack_channel_id:
            raise ValueError("slack_channel_id is required for Slack delivery")
        return self


class ScheduledQueryUpdate(BaseModel):
    """Partial update. Changing recurrence fields recomputes next_run_at."""
    query_text: str | None = Field(None, min_length=1, max_length=2000)
    frequency: Frequency | None = None
    day_of_week: int | None = None
    day_of_month: int | None = None
    time_utc: str | None = None
    delivery_method: DeliveryMethod | None = None
    slack_channel_id: str | None = Field(None, max_length=100)
    recipient_email: str | None = Field(None, max_length=255)
    is_active: bool | None = None


class ScheduledQueryRead(BaseModel):
    id: UUID
    project_id: UUID
    query_text: str
    frequency: Frequency
    day_of_week: int | None
    day_of_month: int | None
    time_utc: str
    delivery_method: DeliveryMethod
    slack_channel_id: str | None
    recipient_email: str | None
    is_active: bool
    next_run_at: datetime
    last_run_at: datetime | None
    last_delivery_status: str | None
    last_delivery_error: str | None
    last_conversation_id: UUID | None
    created_at: datetime

    model_config = {"from_attributes": True}
