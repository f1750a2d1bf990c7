"""FastAPI application entry point."""
import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from feedback_assistant.core.config import settings
from feedback_assistant.db.session import engine

logger = logging.getLogger(__name__)

if settings.ENV != "dev" and settings.JWT_SECRET == "change-this-in-production":
    raise RuntimeError("JWT_SECRET must be set outside dev")

# ============================================================================
# Sentry Integration (optional, for production error tracking)
# ============================================================================

if settings.SENTRY_DSN and settings.ENV != "dev":
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENV,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,  # 10% of requests for performance monitoring
        send_default_pii=False,  # Questions and answers stay out of Sentry
    )
    logging.info("Sentry initialized for error tracking")

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from feedback_assistant.core.rate_limit import limiter
from feedback_assistant.services.action_executor import ActionRegistry
from feedback_assistant.services.conversation_store import ConversationRegistry

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title=settings.APP_NAME,
    description="Conversational assistant over product feedback",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Per-conversation send locks, in-flight answers and actions (process-wide)
app.state.conversation_registry = ConversationRegistry()
app.state.action_registry = ActionRegistry()

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for cookies
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Requested-With"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a request id (client-supplied or generated) to the request and response."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ============================================================================
# Routers
# ============================================================================

from feedback_assistant.routers import (
    actions,
    conversations,
    internal,
    scheduled_queries,
    suggestions,
    transcription,
)

app.include_router(conversations.router)
app.include_router(actions.router)
app.include_router(suggestions.router)
app.include_router(scheduled_queries.router)
app.include_router(transcription.router)

# Internal cron endpoints (protected by X-Internal-Secret)
app.include_router(internal.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
