"""Assistant action confirmation routes."""

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from feedback_assistant.core.async_utils import OperationCancelled
from feedback_assistant.core.deps import (
    get_action_registry,
    get_ai_provider,
    get_corpus,
    get_current_session,
    get_db,
    get_query_router,
    require_csrf_header,
    require_project_scope,
)
from feedback_assistant.core.rate_limit import ASK_LIMIT, limiter
from feedback_assistant.core.structured_logging import build_log_context
from feedback_assistant.db.enums import ActionStatus
from feedback_assistant.schemas.action import (
    ActionResultRead,
    CancelActionResponse,
    ExecuteActionRequest,
)
from feedback_assistant.schemas.auth import UserSession
from feedback_assistant.services.ai_provider import AIProvider
from feedback_assistant.services.feedback_corpus import FeedbackCorpus
from feedback_assistant.services.query_router import QueryRouter

router = APIRouter(prefix="/actions", tags=["actions"])
logger = logging.getLogger(__name__)


def _get_owned_message(db: Session, session: UserSession, message_id: uuid.UUID):
    from feedback_assistant.services import conversation_service

    message = conversation_service.get_project_message(db, session.project_id, message_id)
    if not message or message.conversation.user_id != session.user_id:
        raise HTTPException(status_code=404, detail="Message not found")
    return message


@router.post(
    "/execute",
    response_model=ActionResultRead,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit(ASK_LIMIT)
async def execute_action(
    request: Request,  # Required by limiter
    body: ExecuteActionRequest,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
    provider: AIProvider = Depends(get_ai_provider),
    corpus: FeedbackCorpus = Depends(get_corpus),
    query_router: QueryRouter = Depends(get_query_router),
    registry=Depends(get_action_registry),
) -> ActionResultRead:
    """Execute the pending action on a message after the user confirmed it.

    Errors:
        400: unsupported action type
        409: no pending action, already processed, or cancelled while executing
        422: parameters failed validation (the action stays pending)
        502: the action handler failed
    """
    # Import here to avoid circular imports
    from feedback_assistant.services.action_executor import (
        ActionContext,
        ActionExecutionError,
        ActionStateError,
        InvalidActionParameters,
        UnsupportedActionError,
        execute_confirmed_action,
    )

    project_id = require_project_scope(body.project_id, session)
    message = _get_owned_message(db, session, body.message_id)

    try:
        token = registry.begin(message.id)
    except ActionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))

    context = ActionContext(
        db=db,
        project_id=project_id,
        user_id=session.user_id,
        user_email=session.email,
        provider=provider,
        corpus=corpus,
        router=query_router,
        token=token,
    )
    try:
        result = await execute_confirmed_action(
            db, message, body.action_type, body.parameters, context
        )
    except UnsupportedActionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ActionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except InvalidActionParameters as e:
        raise HTTPException(status_code=422, detail=str(e))
    except OperationCancelled as e:
        raise HTTPException(status_code=409, detail=e.reason)
    except ActionExecutionError as e:
        logger.warning(
            f"Action {body.action_type} failed",
            extra=build_log_context(project_id=project_id, user_id=session.user_id),
        )
        raise HTTPException(status_code=502, detail=str(e))
    finally:
        registry.finish(message.id, token)
    return ActionResultRead.model_validate(result)


@router.post(
    "/{message_id}/cancel",
    response_model=CancelActionResponse,
    dependencies=[Depends(require_csrf_header)],
)
async def cancel_action(
    message_id: uuid.UUID,
    db: Session = Depends(get_db),
    session: UserSession = Depends(get_current_session),
    registry=Depends(get_action_registry),
) -> CancelActionResponse:
    """Decline a pending action, or stop one that is executing.

    Stopping is asynchronous: the execute call that started the action
    answers 409 and the action ends up failed.
    """
    from feedback_assistant.services import action_executor

    message = _get_owned_message(db, session, message_id)
    if message.action_status == ActionStatus.EXECUTING.value:
        if not registry.cancel(message.id):
            raise HTTPException(status_code=409, detail="Action is not running in this process")
        return CancelActionResponse(
            message_id=message.id, status=message.action_status, cancel_requested=True
        )

    try:
        message = action_executor.cancel_action(db, message)
    except action_executor.ActionStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return CancelActionResponse(message_id=message.id, status=message.action_status)
