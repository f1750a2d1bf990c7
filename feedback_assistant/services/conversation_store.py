"""Project-scoped conversation store.

One `ConversationStore` is built per request from the session's project and
user. It owns the local view of the project's conversations and applies
pin/delete with an explicit optimistic protocol:

    1. apply to the local view
    2. commit to the database
    3. on failure roll back both, record a StoreError, raise RecoverableStoreError

The process-wide `ConversationRegistry` serializes sends per conversation
and tracks the in-flight cancellation token of each conversation.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass, replace
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from feedback_assistant.core.async_utils import CancellationToken
from feedback_assistant.core.config import settings
from feedback_assistant.core.structured_logging import build_log_context
from feedback_assistant.db.enums import MessageRole
from feedback_assistant.db.models import Conversation, Message
from feedback_assistant.services import conversation_service
from feedback_assistant.services.ai_provider import ChatMessage
from feedback_assistant.services.query_router import QueryRouter, RoutingError

logger = logging.getLogger(__name__)


class ConversationNotFound(Exception):
    pass


class RecoverableStoreError(Exception):
    """A local change was rolled back because the database rejected it."""

    def __init__(self, message: str, conversation_id: uuid.UUID):
        super().__init__(message)
        self.conversation_id = conversation_id


@dataclass(frozen=True)
class StoreError:
    operation: str
    conversation_id: uuid.UUID
    reason: str


@dataclass(frozen=True)
class ConversationView:
    """Snapshot of a conversation as the user's list shows it."""

    id: uuid.UUID
    title: str
    is_pinned: bool
    last_message_at: datetime
    created_at: datetime

    @classmethod
    def from_model(cls, conversation: Conversation) -> "ConversationView":
        return cls(
            id=conversation.id,
            title=conversation.title,
            is_pinned=conversation.is_pinned,
            last_message_at=conversation.last_message_at,
            created_at=conversation.created_at,
        )

    def sort_key(self) -> tuple:
        return (
            not self.is_pinned,
            -self.last_message_at.timestamp(),
            -self.created_at.timestamp(),
        )


class ConversationRegistry:
    """Per-conversation send locks and in-flight answer tokens."""

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._in_flight: dict[uuid.UUID, CancellationToken] = {}

    def lock_for(self, conversation_id: uuid.UUID) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    def begin(self, conversation_id: uuid.UUID) -> CancellationToken:
        token = CancellationToken()
        self._in_flight[conversation_id] = token
        return token

    def finish(self, conversation_id: uuid.UUID, token: CancellationToken) -> None:
        if self._in_flight.get(conversation_id) is token:
            del self._in_flight[conversation_id]

    def cancel(self, conversation_id: uuid.UUID, reason: str = "Answer cancelled") -> bool:
        token = self._in_flight.get(conversation_id)
        if token is None or token.cancelled:
            return False
        token.cancel(reason)
        return True

    def is_in_flight(self, conversation_id: uuid.UUID) -> bool:
        return conversation_id in self._in_flight


class ConversationStore:
    """Conversation state for one project session."""

    def __init__(
        self,
        db: Session,
        project_id: uuid.UUID,
        user_id: uuid.UUID,
        router: QueryRouter,
        registry: ConversationRegistry,
    ):
        self.db = db
        self.project_id = project_id
        self.user_id = user_id
        self.router = router
        self.registry = registry
        self.errors: list[StoreError] = []
        self._views: dict[uuid.UUID, ConversationView] = {}

    # -------------------------------------------------------------------------
    # Local view
    # -------------------------------------------------------------------------

    @property
    def conversations(self) -> list[ConversationView]:
        return sorted(self._views.values(), key=ConversationView.sort_key)

    def _remember(self, conversation: Conversation) -> ConversationView:
        view = ConversationView.from_model(conversation)
        self._views[conversation.id] = view
        return view

    def _require_conversation(self, conversation_id: uuid.UUID) -> Conversation:
        conversation = conversation_service.get_conversation(
            self.db, self.project_id, conversation_id, user_id=self.user_id
        )
        if conversation is None:
            self._views.pop(conversation_id, None)
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        return conversation

    def _record_error(self, operation: str, conversation_id: uuid.UUID, exc: Exception) -> None:
        self.errors.append(StoreError(operation, conversation_id, type(exc).__name__))
        logger.error(
            f"Conversation {operation} failed: {type(exc).__name__}",
            extra=build_log_context(
                project_id=self.project_id,
                user_id=self.user_id,
                conversation_id=conversation_id,
            ),
        )

    def load_conversations(self) -> list[ConversationView]:
        rows = conversation_service.list_conversations(self.db, self.project_id, user_id=self.user_id)
        self._views = {row.id: ConversationView.from_model(row) for row in rows}
        return self.conversations

    def get_conversation(self, conversation_id: uuid.UUID) -> Conversation:
        conversation = self._require_conversation(conversation_id)
        self._remember(conversation)
        return conversation

    # -------------------------------------------------------------------------
    # Questions and answers
    # -------------------------------------------------------------------------

    async def start_new_conversation(
        self,
        question_text: str,
        *,
        is_voice_input: bool = False,
        voice_duration_seconds: float | None = None,
    ) -> uuid.UUID:
        """Create a conversation from its first question and answer it.

        The conversation survives a routing failure; RoutingError then
        carries its id.
        """
        question = question_text.strip()
        if not question:
            raise ValueError("Question text is required")

        conversation = conversation_service.create_conversation(
            self.db, self.project_id, self.user_id, title=question
        )
        async with self.registry.lock_for(conversation.id):
            conversation_service.append_message(
                self.db,
                conversation,
                MessageRole.USER,
                question,
                is_voice_input=is_voice_input,
                voice_duration_seconds=voice_duration_seconds,
            )
            self._remember(conversation)
            await self._reply(conversation, question, [])
        return conversation.id

    async def send_message(
        self,
        conversation_id: uuid.UUID,
        text: str,
        *,
        is_voice_input: bool = False,
        voice_duration_seconds: float | None = None,
    ) -> Message:
        """Append a question and its reply. Sends to one conversation run one at a time."""
        question = text.strip()
        if not question:
            raise ValueError("Message text is required")

        async with self.registry.lock_for(conversation_id):
            conversation = self._require_conversation(conversation_id)
            history = conversation_service.get_history(
                self.db, conversation.id, limit=settings.ASK_HISTORY_LIMIT
            )
            conversation_service.append_message(
                self.db,
                conversation,
                MessageRole.USER,
                question,
                is_voice_input=is_voice_input,
                voice_duration_seconds=voice_duration_seconds,
            )
            self._remember(conversation)
            return await self._reply(conversation, question, history)

    async def _reply(
        self,
        conversation: Conversation,
        question: str,
        history: list[ChatMessage],
    ) -> Message:
        token = self.registry.begin(conversation.id)
        try:
            try:
                reply = await self.router.route(self.project_id, question, history, token=token)
            except RoutingError as e:
                logger.warning(
                    f"Routing failed: {e}",
                    extra=build_log_context(
                        project_id=self.project_id, conversation_id=conversation.id
                    ),
                )
                conversation_service.append_message(
                    self.db,
                    conversation,
                    MessageRole.ASSISTANT,
                    f"I couldn't answer that: {e}",
                    metadata={"error": True},
                )
                self._remember(conversation)
                raise RoutingError(str(e), conversation_id=conversation.id) from e

            token.raise_if_cancelled()
            message = conversation_service.append_message(
                self.db,
                conversation,
                MessageRole.ASSISTANT,
                reply.content,
                sources=reply.sources,
                metadata=reply.metadata,
                query_type=reply.query_type,
                action_intent=reply.intent.model_dump() if reply.intent else None,
            )
            self._remember(conversation)
            return message
        finally:
            self.registry.finish(conversation.id, token)

    def cancel(self, conversation_id: uuid.UUID) -> bool:
        """Stop the in-flight answer for a conversation. The question stays, no reply is stored."""
        self._require_conversation(conversation_id)
        cancelled = self.registry.cancel(conversation_id)
        if cancelled:
            logger.info(
                "Cancelled in-flight answer",
                extra=build_log_context(project_id=self.project_id, conversation_id=conversation_id),
            )
        return cancelled

    # -------------------------------------------------------------------------
    # Pin / delete
    # -------------------------------------------------------------------------

    def pin_conversation(self, conversation_id: uuid.UUID, pinned: bool) -> ConversationView:
        conversation = self._require_conversation(conversation_id)
        previous = self._views.get(conversation_id) or ConversationView.from_model(conversation)

        self._views[conversation_id] = replace(previous, is_pinned=pinned)
        try:
            conversation_service.set_pinned(self.db, conversation, pinned)
        except SQLAlchemyError as e:
            self.db.rollback()
            self._views[conversation_id] = previous
            self._record_error("pin", conversation_id, e)
            raise RecoverableStoreError("Couldn't update the conversation", conversation_id) from e
        return self._remember(conversation)

    def delete_conversation(self, conversation_id: uuid.UUID) -> None:
        conversation = self._require_conversation(conversation_id)
        previous = self._views.pop(conversation_id, None) or ConversationView.from_model(conversation)

        try:
            conversation_service.delete_conversation(self.db, conversation)
        except SQLAlchemyError as e:
            self.db.rollback()
            self._views[conversation_id] = previous
            self._record_error("delete", conversation_id, e)
            raise RecoverableStoreError("Couldn't delete the conversation", conversation_id) from e
        self.registry.cancel(conversation_id, reason="Conversation deleted")
