"""FastAPI dependencies for authentication, database access and assistant services."""

from typing import Generator
from uuid import UUID

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from feedback_assistant.core.config import settings
from feedback_assistant.core.security import decode_session_token
from feedback_assistant.db.session import SessionLocal
from feedback_assistant.schemas.auth import TokenPayload, UserSession
from feedback_assistant.services.ai_provider import AIProvider, get_provider
from feedback_assistant.services.feedback_corpus import FeedbackCorpus, get_feedback_corpus
from feedback_assistant.services.query_router import QueryRouter
from feedback_assistant.services.transcription_service import TranscriptionBridge

# Cookie and header names
COOKIE_NAME = "assistant_session"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_session(request: Request) -> UserSession:
    """
    Session context (user, project) from the signed session cookie.

    Raises:
        HTTPException 401: Not authenticated
    """
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = TokenPayload.model_validate(decode_session_token(token))
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid session")

    return UserSession(user_id=payload.sub, project_id=payload.project_id, email=payload.email)


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on mutations.

    Apply to state-changing endpoints (POST, PATCH, DELETE).

    Raises:
        HTTPException 403: Missing or invalid CSRF header
    """
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'",
        )


def require_project_scope(project_id: UUID | None, session: UserSession) -> UUID:
    """
    Resolve the project a request targets.

    A projectId other than the session's reads as not found, so project
    ids can't be probed.
    """
    if project_id is not None and project_id != session.project_id:
        raise HTTPException(status_code=404, detail="Project not found")
    return session.project_id


# =============================================================================
# Assistant services (overridable in tests)
# =============================================================================

def get_ai_provider() -> AIProvider:
    return get_provider("openai", settings.OPENAI_API_KEY, settings.ASK_AI_MODEL)


def get_corpus() -> FeedbackCorpus:
    return get_feedback_corpus()


def build_query_router(
    provider: AIProvider | None = None,
    corpus: FeedbackCorpus | None = None,
) -> QueryRouter:
    """Router for background callers that have no request."""
    return QueryRouter(
        provider or get_provider("openai", settings.OPENAI_API_KEY, settings.ASK_AI_MODEL),
        corpus or get_feedback_corpus(),
    )


def get_query_router(
    provider: AIProvider = Depends(get_ai_provider),
    corpus: FeedbackCorpus = Depends(get_corpus),
) -> QueryRouter:
    return QueryRouter(provider, corpus)


def get_conversation_registry(request: Request):
    return request.app.state.conversation_registry


def get_action_registry(request: Request):
    return request.app.state.action_registry


def get_conversation_store(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    router: QueryRouter = Depends(get_query_router),
    registry=Depends(get_conversation_registry),
):
    """ConversationStore scoped to the session's project and user."""
    # Import here to avoid circular imports
    from feedback_assistant.services.conversation_store import ConversationStore

    return ConversationStore(db, session.project_id, session.user_id, router, registry)


def get_transcriber() -> TranscriptionBridge:
    return TranscriptionBridge()
