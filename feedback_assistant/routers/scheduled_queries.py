"""Scheduled query routes."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from feedback_assistant.core.deps import (
    get_current_session,
    get_db,
    require_csrf_header,
    require_project_scope,
)
from feedback_assistant.schemas.auth import UserSession
from feedback_assistant.schemas.scheduled_query import (
    ScheduledQueryCreate,
    ScheduledQueryRead,
    ScheduledQueryUpdate,
)
from feedback_assistant.services import scheduled_query_service
from feedback_assistant.services.recurrence import SchedulingComputationError

router = APIRouter(prefix="/scheduled-queries", tags=["scheduled-queries"])


def _get_or_404(db: Session, session: UserSession, query_id: uuid.UUID):
    query = scheduled_query_service.get_scheduled_query(db, session.project_id, query_id)
    if not query or query.user_id != session.user_id:
        raise HTTPException(status_code=404, detail="Scheduled query not found")
    return query


@router.get("", response_model=list[ScheduledQueryRead])
def list_scheduled_queries(
    project_id: uuid.UUID | None = Query(None, alias="projectId"),
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> list[ScheduledQueryRead]:
    """The user's scheduled queries, next to run first."""
    scope = require_project_scope(project_id, session)
    return scheduled_query_service.list_scheduled_queries(db, scope, user_id=session.user_id)


@router.post(
    "",
    response_model=ScheduledQueryRead,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
def create_scheduled_query(
    body: ScheduledQueryCreate,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> ScheduledQueryRead:
    project_id = require_project_scope(body.project_id, session)
    try:
        return scheduled_query_service.create_scheduled_query(
            db,
            project_id=project_id,
            user_id=session.user_id,
            query_text=body.query_text,
            frequency=body.frequency.value,
            time_utc=body.time_utc,
            day_of_week=body.day_of_week,
            day_of_month=body.day_of_month,
            delivery_method=body.delivery_method.value,
            slack_channel_id=body.slack_channel_id,
            recipient_email=body.recipient_email or session.email,
        )
    except (SchedulingComputationError, scheduled_query_service.ScheduledQueryError) as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.get("/{query_id}", response_model=ScheduledQueryRead)
def get_scheduled_query(
    query_id: uuid.UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> ScheduledQueryRead:
    return _get_or_404(db, session, query_id)


@router.patch(
    "/{query_id}",
    response_model=ScheduledQueryRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_scheduled_query(
    query_id: uuid.UUID,
    body: ScheduledQueryUpdate,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> ScheduledQueryRead:
    """Partial update. Recurrence changes and reactivation recompute the next run."""
    query = _get_or_404(db, session, query_id)
    changes = body.model_dump(exclude_unset=True)
    try:
        return scheduled_query_service.update_scheduled_query(db, query, changes)
    except (SchedulingComputationError, scheduled_query_service.ScheduledQueryError) as e:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(e))


@router.delete(
    "/{query_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_scheduled_query(
    query_id: uuid.UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
) -> Response:
    query = _get_or_404(db, session, query_id)
    scheduled_query_service.delete_scheduled_query(db, query)
    return Response(status_code=204)
