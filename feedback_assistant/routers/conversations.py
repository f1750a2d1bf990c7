"""Assistant conversation routes."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from feedback_assistant.core.async_utils import OperationCancelled
from feedback_assistant.core.deps import (
    get_conversation_store,
    get_current_session,
    get_db,
    require_csrf_header,
    require_project_scope,
)
from feedback_assistant.core.rate_limit import ASK_LIMIT, limiter
from feedback_assistant.schemas.auth import UserSession
from feedback_assistant.schemas.conversation import (
    CancelGenerationResponse,
    ConversationDetail,
    ConversationRead,
    ConversationUpdate,
    MessageFeedbackRequest,
    MessageRead,
    SendMessageRequest,
    StartConversationRequest,
    StartConversationResponse,
)
from feedback_assistant.services import conversation_service
from feedback_assistant.services.conversation_store import (
    ConversationNotFound,
    ConversationStore,
    ConversationView,
    RecoverableStoreError,
)
from feedback_assistant.services.query_router import RoutingError

router = APIRouter(prefix="/conversations", tags=["conversations"])
logger = logging.getLogger(__name__)


def _view_to_read(view: ConversationView, project_id: uuid.UUID) -> ConversationRead:
    return ConversationRead(
        id=view.id,
        project_id=project_id,
        title=view.title,
        is_pinned=view.is_pinned,
        last_message_at=view.last_message_at,
        created_at=view.created_at,
    )


@router.post(
    "",
    response_model=StartConversationResponse,
    status_code=201,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit(ASK_LIMIT)
async def start_conversation(
    request: Request,  # Required by limiter
    body: StartConversationRequest,
    session: UserSession = Depends(get_current_session),
    store: ConversationStore = Depends(get_conversation_store),
) -> StartConversationResponse:
    """Start a conversation with its first question.

    A failed first answer still creates the conversation; the response then
    carries `error` next to the id.
    """
    require_project_scope(body.project_id, session)
    try:
        conversation_id = await store.start_new_conversation(
            body.question_text,
            is_voice_input=body.is_voice_input,
            voice_duration_seconds=body.voice_duration_seconds,
        )
    except RoutingError as e:
        return StartConversationResponse(conversation_id=e.conversation_id, error=str(e))
    except OperationCancelled as e:
        raise HTTPException(status_code=409, detail=e.reason)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return StartConversationResponse(conversation_id=conversation_id)


@router.get("", response_model=list[ConversationRead])
def list_conversations(
    project_id: uuid.UUID | None = Query(None, alias="projectId"),
    session: UserSession = Depends(get_current_session),
    store: ConversationStore = Depends(get_conversation_store),
) -> list[ConversationRead]:
    """Conversations in listing order: pinned first, then most recent activity."""
    scope = require_project_scope(project_id, session)
    return [_view_to_read(view, scope) for view in store.load_conversations()]


@router.get("/{conversation_id}", response_model=ConversationDetail)
def get_conversation(
    conversation_id: uuid.UUID,
    store: ConversationStore = Depends(get_conversation_store),
) -> ConversationDetail:
    try:
        conversation = store.get_conversation(conversation_id)
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation_service.to_conversation_detail(conversation)


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageRead,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit(ASK_LIMIT)
async def send_message(
    request: Request,  # Required by limiter
    conversation_id: uuid.UUID,
    body: SendMessageRequest,
    db: Session = Depends(get_db),
    store: ConversationStore = Depends(get_conversation_store),
) -> MessageRead:
    """Ask a follow-up question. Returns the assistant's reply (an error reply if routing failed)."""
    try:
        message = await store.send_message(
            conversation_id,
            body.text,
            is_voice_input=body.is_voice_input,
            voice_duration_seconds=body.voice_duration_seconds,
        )
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except RoutingError:
        message = conversation_service.get_last_message(db, conversation_id)
        if message is None:
            raise HTTPException(status_code=502, detail="Couldn't generate an answer")
    except OperationCancelled as e:
        raise HTTPException(status_code=409, detail=e.reason)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return conversation_service.to_message_read(message)


@router.post(
    "/{conversation_id}/cancel",
    response_model=CancelGenerationResponse,
    dependencies=[Depends(require_csrf_header)],
)
def cancel_generation(
    conversation_id: uuid.UUID,
    store: ConversationStore = Depends(get_conversation_store),
) -> CancelGenerationResponse:
    """Stop the answer being generated for this conversation, if any."""
    try:
        cancelled = store.cancel(conversation_id)
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return CancelGenerationResponse(cancelled=cancelled)


@router.patch(
    "/{conversation_id}",
    response_model=ConversationRead,
    dependencies=[Depends(require_csrf_header)],
)
def update_conversation(
    conversation_id: uuid.UUID,
    body: ConversationUpdate,
    store: ConversationStore = Depends(get_conversation_store),
) -> ConversationRead:
    try:
        view = store.pin_conversation(conversation_id, body.is_pinned)
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except RecoverableStoreError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _view_to_read(view, store.project_id)


@router.delete(
    "/{conversation_id}",
    status_code=204,
    dependencies=[Depends(require_csrf_header)],
)
def delete_conversation(
    conversation_id: uuid.UUID,
    store: ConversationStore = Depends(get_conversation_store),
) -> Response:
    try:
        store.delete_conversation(conversation_id)
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")
    except RecoverableStoreError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return Response(status_code=204)


@router.post(
    "/{conversation_id}/messages/{message_id}/feedback",
    response_model=MessageRead,
    dependencies=[Depends(require_csrf_header)],
)
def set_message_feedback(
    conversation_id: uuid.UUID,
    message_id: uuid.UUID,
    body: MessageFeedbackRequest,
    db: Session = Depends(get_db),
    store: ConversationStore = Depends(get_conversation_store),
) -> MessageRead:
    """Thumbs up/down on an assistant message. Can be set once."""
    try:
        store.get_conversation(conversation_id)
    except ConversationNotFound:
        raise HTTPException(status_code=404, detail="Conversation not found")

    message = conversation_service.get_message(db, conversation_id, message_id)
    if not message:
        raise HTTPException(status_code=404, detail="Message not found")

    try:
        message = conversation_service.set_message_feedback(db, message, body.feedback.value)
    except conversation_service.FeedbackAlreadySet as e:
        raise HTTPException(status_code=409, detail=str(e))
    return conversation_service.to_message_read(message)
