"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, recreated for each test
- Stub AI provider and feedback corpus (no network)
- Session token minting for authenticated tests
- HTTPX AsyncClient with proper headers
"""
import json
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncGenerator, Generator

# Configure before the app reads settings
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["TESTING"] = "1"
os.environ["ENV"] = "test"
os.environ["JWT_SECRET"] = "test-secret-not-for-production"
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["OPENAI_API_KEY"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["SLACK_BOT_TOKEN"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from feedback_assistant.core.deps import COOKIE_NAME, get_ai_provider, get_corpus, get_db
from feedback_assistant.core.security import create_session_token
from feedback_assistant.db.base import Base
from feedback_assistant.db.session import SessionLocal, engine
from feedback_assistant.main import app
from feedback_assistant.services.action_executor import ActionRegistry
from feedback_assistant.services.ai_provider import AIProvider, AIProviderError, ChatMessage, ChatResponse
from feedback_assistant.services.conversation_store import ConversationRegistry, ConversationStore
from feedback_assistant.services.feedback_corpus import (
    CompetitorEvent,
    CorpusError,
    FeedbackCorpus,
    FeedbackHit,
    FeedbackItem,
)
from feedback_assistant.services.query_router import QueryRouter


# =============================================================================
# Stubs
# =============================================================================

DEFAULT_CLASSIFICATION = {
    "query_type": "feedback",
    "requires_action": False,
    "action_type": None,
    "parameters": {},
    "confidence": 0.9,
    "confirmation_message": None,
    "search_query": "export problems",
}


class StubProvider(AIProvider):
    """Classifies with a fixed JSON payload and answers with fixed text."""

    def __init__(self) -> None:
        self.classification: dict[str, Any] | str = dict(DEFAULT_CLASSIFICATION)
        self.answer = "Users mostly mention slow CSV exports [1]."
        self.error: Exception | None = None
        self.calls: list[list[ChatMessage]] = []

    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> ChatResponse:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        if json_mode:
            content = (
                self.classification
                if isinstance(self.classification, str)
                else json.dumps(self.classification)
            )
        else:
            content = self.answer
        return ChatResponse(
            content=content,
            prompt_tokens=10,
            completion_tokens=5,
            total_tokens=15,
            model=model or "gpt-4o-mini",
        )

    def propose(self, action_type: str, parameters: dict[str, Any], confidence: float = 0.9) -> None:
        self.classification = {
            "query_type": "actions",
            "requires_action": True,
            "action_type": action_type,
            "parameters": parameters,
            "confidence": confidence,
            "confirmation_message": f"I'll {action_type.replace('_', ' ')}.",
            "search_query": None,
        }

    def fail(self) -> None:
        self.error = AIProviderError("AI service returned 503")


@dataclass
class StubCorpus(FeedbackCorpus):
    hits: list[FeedbackHit] = field(default_factory=list)
    items: list[FeedbackItem] = field(default_factory=list)
    events: list[CompetitorEvent] = field(default_factory=list)
    project_ids: list[uuid.UUID] = field(default_factory=list)
    search_error: bool = False
    priority_error: bool = False
    priority_updates: list[tuple] = field(default_factory=list)
    write_error: bool = False
    roadmap_items: list[dict] = field(default_factory=list)
    specs: list[dict] = field(default_factory=list)

    async def search(self, project_id, query, *, limit=10, match_threshold=0.7):
        if self.search_error:
            raise CorpusError("Feedback API is unreachable")
        return list(self.hits)

    async def list_feedback(self, project_id, *, since: datetime, until: datetime | None = None):
        return list(self.items)

    async def list_competitor_events(self, project_id, *, since: datetime):
        return list(self.events)

    async def update_priority(self, project_id, feedback_id, priority, reason=None):
        if self.priority_error:
            raise CorpusError("Feedback API returned 500")
        self.priority_updates.append((project_id, feedback_id, priority, reason))
        return {"id": feedback_id, "priority": priority}

    async def create_roadmap_item(self, project_id, *, title, description, quarter, priority, created_by):
        if self.write_error:
            raise CorpusError("Feedback API returned 500")
        item = {"id": f"rm-{len(self.roadmap_items) + 1}", "title": title, "target_quarter": quarter, "priority": priority}
        self.roadmap_items.append(item)
        return item

    async def create_spec(self, project_id, *, title, content, created_by):
        if self.write_error:
            raise CorpusError("Feedback API returned 500")
        spec = {"id": f"spec-{len(self.specs) + 1}", "title": title, "content": content}
        self.specs.append(spec)
        return spec

    async def list_project_ids(self):
        return list(self.project_ids)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test on the shared in-memory connection."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def project_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


# =============================================================================
# Assistant Fixtures
# =============================================================================

@pytest.fixture
def provider() -> StubProvider:
    return StubProvider()


@pytest.fixture
def corpus() -> StubCorpus:
    return StubCorpus(
        hits=[
            FeedbackHit(
                id="fb-2",
                title="Export times out",
                content="Exporting <b>large</b> projects times out",
                similarity=0.72,
            ),
            FeedbackHit(
                id="fb-1",
                title="CSV export is slow",
                content="CSV export takes minutes for 10k rows",
                similarity=0.91,
            ),
        ]
    )


@pytest.fixture
def query_router(provider: StubProvider, corpus: StubCorpus) -> QueryRouter:
    return QueryRouter(provider, corpus, model="gpt-4o-mini", source_limit=10, match_threshold=0.7)


@pytest.fixture
def registry() -> ConversationRegistry:
    return ConversationRegistry()


@pytest.fixture
def store(db, project_id, user_id, query_router, registry) -> ConversationStore:
    return ConversationStore(db, project_id, user_id, query_router, registry)


# =============================================================================
# Auth Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user_id: uuid.UUID
    project_id: uuid.UUID
    email: str
    token: str
    cookie_name: str = COOKIE_NAME


@pytest.fixture(scope="function")
def test_auth(project_id: uuid.UUID, user_id: uuid.UUID) -> TestAuth:
    email = f"pm-{uuid.uuid4().hex[:8]}@test.com"
    return TestAuth(
        user_id=user_id,
        project_id=project_id,
        email=email,
        token=create_session_token(user_id, project_id, email),
    )


# =============================================================================
# Client Fixtures
# =============================================================================

def _install_overrides(db: Session, provider: StubProvider, corpus: StubCorpus) -> None:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ai_provider] = lambda: provider
    app.dependency_overrides[get_corpus] = lambda: corpus
    app.state.conversation_registry = ConversationRegistry()
    app.state.action_registry = ActionRegistry()


@pytest.fixture(scope="function")
async def client(db, provider, corpus) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient."""
    _install_overrides(db, provider, corpus)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def authed_client(db, provider, corpus, test_auth: TestAuth) -> AsyncGenerator[AsyncClient, None]:
    """Authenticated AsyncClient with session cookie and CSRF header."""
    _install_overrides(db, provider, corpus)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={test_auth.cookie_name: test_auth.token},
        headers={"X-Requested-With": "XMLHttpRequest"},  # CSRF header
    ) as c:
        yield c

    app.dependency_overrides.clear()
