"""Proactive suggestion routes."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from feedback_assistant.core.deps import (
    get_current_session,
    get_db,
    require_csrf_header,
    require_project_scope,
)
from feedback_assistant.db.enums import SuggestionStatus
from feedback_assistant.schemas.auth import UserSession
from feedback_assistant.schemas.suggestion import SuggestionRead, SuggestionStatusUpdate
from feedback_assistant.services import suggestion_service

router = APIRouter(prefix="/suggestions", tags=["suggestions"])


def _get_or_404(db: Session, session: UserSession, suggestion_id: uuid.UUID):
    suggestion = suggestion_service.get_suggestion(db, session.project_id, suggestion_id)
    if not suggestion:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    return suggestion


@router.get("", response_model=list[SuggestionRead])
def list_suggestions(
    project_id: uuid.UUID | None = Query(None, alias="projectId"),
    status: SuggestionStatus = Query(SuggestionStatus.ACTIVE),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> list[SuggestionRead]:
    """Suggestions for the project, most urgent first. An empty list is a normal answer."""
    scope = require_project_scope(project_id, session)
    rows = suggestion_service.list_suggestions(db, scope, status=status, limit=limit)
    return [suggestion_service.to_suggestion_read(s) for s in rows]


@router.post(
    "/{suggestion_id}/dismiss",
    response_model=SuggestionRead,
    dependencies=[Depends(require_csrf_header)],
)
def dismiss_suggestion(
    suggestion_id: uuid.UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> SuggestionRead:
    suggestion = _get_or_404(db, session, suggestion_id)
    try:
        suggestion = suggestion_service.dismiss_suggestion(db, suggestion)
    except suggestion_service.SuggestionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return suggestion_service.to_suggestion_read(suggestion)


@router.patch(
    "/{suggestion_id}",
    response_model=SuggestionRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_suggestion(
    suggestion_id: uuid.UUID,
    body: SuggestionStatusUpdate,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> SuggestionRead:
    """Mark a suggestion as acted upon (the user asked its suggested question)."""
    suggestion = _get_or_404(db, session, suggestion_id)
    try:
        suggestion = suggestion_service.mark_acted_upon(db, suggestion)
    except suggestion_service.SuggestionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return suggestion_service.to_suggestion_read(suggestion)
