"""Suggestion service - listing and one-way status changes for proactive suggestions."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import case, or_, update
from sqlalchemy.orm import Session

from feedback_assistant.db.enums import SuggestionPriority, SuggestionStatus, SuggestionType
from feedback_assistant.db.models import ProactiveSuggestion
from feedback_assistant.schemas.suggestion import SuggestionRead


class SuggestionStateError(Exception):
    """The requested status change is not allowed from the current status."""

    pass


@dataclass(frozen=True)
class SuggestionTypeStyle:
    label: str
    icon: str
    color: str


@dataclass(frozen=True)
class PriorityStyle:
    rank: int
    color: str


SUGGESTION_TYPE_STYLES: dict[SuggestionType, SuggestionTypeStyle] = {
    SuggestionType.SENTIMENT_DROP: SuggestionTypeStyle("Sentiment drop", "trending-down", "red"),
    SuggestionType.THEME_SPIKE: SuggestionTypeStyle("Theme spike", "activity", "orange"),
    SuggestionType.CHURN_RISK: SuggestionTypeStyle("Churn risk", "user-minus", "red"),
    SuggestionType.OPPORTUNITY: SuggestionTypeStyle("Opportunity", "lightbulb", "green"),
    SuggestionType.COMPETITOR_MOVE: SuggestionTypeStyle("Competitor move", "swords", "purple"),
}

PRIORITY_STYLES: dict[SuggestionPriority, PriorityStyle] = {
    SuggestionPriority.CRITICAL: PriorityStyle(0, "red"),
    SuggestionPriority.HIGH: PriorityStyle(1, "orange"),
    SuggestionPriority.MEDIUM: PriorityStyle(2, "yellow"),
    SuggestionPriority.LOW: PriorityStyle(3, "gray"),
}

if set(SUGGESTION_TYPE_STYLES) != set(SuggestionType):
    raise RuntimeError("SUGGESTION_TYPE_STYLES must cover every SuggestionType")
if set(PRIORITY_STYLES) != set(SuggestionPriority):
    raise RuntimeError("PRIORITY_STYLES must cover every SuggestionPriority")


def _priority_rank():
    return case(
        {p.value: style.rank for p, style in PRIORITY_STYLES.items()},
        value=ProactiveSuggestion.priority,
        else_=len(PRIORITY_STYLES),
    )


def list_suggestions(
    db: Session,
    project_id: uuid.UUID,
    status: SuggestionStatus | None = SuggestionStatus.ACTIVE,
    now: datetime | None = None,
    limit: int = 50,
) -> list[ProactiveSuggestion]:
    """Suggestions ordered critical first, then newest. Expired ones are left out of the active list."""
    now = now or datetime.now(timezone.utc)
    query = db.query(ProactiveSuggestion).filter(ProactiveSuggestion.project_id == project_id)
    if status is not None:
        query = query.filter(ProactiveSuggestion.status == status.value)
        if status == SuggestionStatus.ACTIVE:
            query = query.filter(
                or_(ProactiveSuggestion.expires_at.is_(None), ProactiveSuggestion.expires_at > now)
            )
    return (
        query.order_by(_priority_rank(), ProactiveSuggestion.created_at.desc())
        .limit(limit)
        .all()
    )


def get_suggestion(
    db: Session,
    project_id: uuid.UUID,
    suggestion_id: uuid.UUID,
) -> ProactiveSuggestion | None:
    return (
        db.query(ProactiveSuggestion)
        .filter(
            ProactiveSuggestion.id == suggestion_id,
            ProactiveSuggestion.project_id == project_id,
        )
        .first()
    )


def _resolve(
    db: Session,
    suggestion: ProactiveSuggestion,
    target: SuggestionStatus,
    timestamp_field: str,
    now: datetime | None,
) -> ProactiveSuggestion:
    if suggestion.status == target.value:
        return suggestion
    if suggestion.status != SuggestionStatus.ACTIVE.value:
        raise SuggestionStateError(f"Suggestion is already {suggestion.status}")

    result = db.execute(
        update(ProactiveSuggestion)
        .where(
            ProactiveSuggestion.id == suggestion.id,
            ProactiveSuggestion.status == SuggestionStatus.ACTIVE.value,
        )
        .values({"status": target.value, timestamp_field: now or datetime.now(timezone.utc)})
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(suggestion)
    if result.rowcount != 1 and suggestion.status != target.value:
        raise SuggestionStateError(f"Suggestion is already {suggestion.status}")
    return suggestion


def dismiss_suggestion(
    db: Session, suggestion: ProactiveSuggestion, now: datetime | None = None
) -> ProactiveSuggestion:
    """Dismiss. Dismissing twice is a no-op; acted-upon suggestions can't be dismissed."""
    return _resolve(db, suggestion, SuggestionStatus.DISMISSED, "dismissed_at", now)


def mark_acted_upon(
    db: Session, suggestion: ProactiveSuggestion, now: datetime | None = None
) -> ProactiveSuggestion:
    return _resolve(db, suggestion, SuggestionStatus.ACTED_UPON, "acted_upon_at", now)


def to_suggestion_read(suggestion: ProactiveSuggestion) -> SuggestionRead:
    style = SUGGESTION_TYPE_STYLES[SuggestionType(suggestion.suggestion_type)]
    return SuggestionRead(
        id=suggestion.id,
        project_id=suggestion.project_id,
        suggestion_type=suggestion.suggestion_type,
        priority=suggestion.priority,
        title=suggestion.title,
        description=suggestion.description,
        query_suggestion=suggestion.query_suggestion,
        context_data=suggestion.context_data,
        status=suggestion.status,
        icon=style.icon,
        color=style.color,
        expires_at=suggestion.expires_at,
        dismissed_at=suggestion.dismissed_at,
        acted_upon_at=suggestion.acted_upon_at,
        created_at=suggestion.created_at,
    )
