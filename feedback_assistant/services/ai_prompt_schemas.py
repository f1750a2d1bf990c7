"""Pydantic schemas for AI responses."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from feedback_assistant.db.enums import QueryType


class AIClassificationOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    query_type: str = QueryType.GENERAL.value
    requires_action: bool = False
    action_type: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    confidence: float = 0.0
    confirmation_message: str | None = None
    search_query: str | None = None

    @field_validator("query_type", mode="before")
    @classmethod
    def _known_query_type(cls, value: Any) -> str:
        if isinstance(value, str) and QueryType.has_value(value.strip().lower()):
            return value.strip().lower()
        return QueryType.GENERAL.value

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.0
        return min(max(number, 0.0), 1.0)

    @field_validator("parameters", mode="before")
    @classmethod
    def _parameters_object(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}
