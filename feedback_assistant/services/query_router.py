"""Query/action router.

Turns a question into either a sourced answer or an action intent that
waits for confirmation. Nothing here executes actions.

    Submitted -> Classified -> Answered
                            -> PendingConfirmation (see action_executor)
"""

from __future__ import annotations

import html
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, TypeVar
from uuid import UUID

import nh3

from feedback_assistant.core.async_utils import CancellationToken
from feedback_assistant.core.config import settings
from feedback_assistant.db.enums import ActionStatus, ActionType, QueryType, SourceType
from feedback_assistant.schemas.action import ActionIntent, ConfirmationPrompt
from feedback_assistant.schemas.conversation import MessageSource
from feedback_assistant.services.action_executor import action_label
from feedback_assistant.services.ai_prompt_registry import get_prompt
from feedback_assistant.services.ai_prompt_schemas import AIClassificationOutput
from feedback_assistant.services.ai_provider import AIProvider, AIProviderError, ChatMessage
from feedback_assistant.services.ai_response_validation import parse_json_object, validate_model
from feedback_assistant.services.feedback_corpus import CorpusError, FeedbackCorpus, FeedbackHit

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOW_CONFIDENCE_THRESHOLD = 0.8
PREVIEW_LENGTH = 150


class RoutingError(Exception):
    """Classification or answer generation failed."""

    def __init__(self, message: str, conversation_id: UUID | None = None):
        super().__init__(message)
        self.conversation_id = conversation_id


@dataclass
class RoutedReply:
    """The assistant's reply to one question."""

    content: str
    query_type: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    intent: ActionIntent | None = None

    @property
    def is_actionable(self) -> bool:
        return self.intent is not None


# ============================================================================
# Formatting helpers
# ============================================================================

def make_preview(text: str | None, limit: int = PREVIEW_LENGTH) -> str | None:
    if not text:
        return None
    plain = html.unescape(nh3.clean(text, tags=set()))  # Strip HTML
    plain = " ".join(plain.split())
    return plain[:limit] + "..." if len(plain) > limit else plain


def build_source(hit: FeedbackHit) -> MessageSource:
    source_type = hit.source_type if hit.source_type in SourceType._value2member_map_ else "feedback"
    similarity = None
    if hit.similarity is not None:
        similarity = min(max(hit.similarity, 0.0), 1.0)
    return MessageSource(
        id=hit.id,
        type=SourceType(source_type),
        similarity=similarity,
        title=hit.title or None,
        preview=make_preview(hit.content),
    )


def rank_hits(hits: list[FeedbackHit]) -> list[FeedbackHit]:
    """Highest similarity first; hits without a score go last."""
    return sorted(
        hits,
        key=lambda h: (h.similarity is None, -(h.similarity or 0.0)),
    )


def format_context(hits: list[FeedbackHit]) -> str:
    if not hits:
        return "No relevant feedback found."
    blocks = []
    for i, hit in enumerate(hits, start=1):
        lines = [f"[{i}] {hit.title or 'Untitled'}"]
        lines.append(
            f"Status: {hit.status or 'n/a'} | Category: {hit.category or 'n/a'} | Votes: {hit.vote_count or 0}"
        )
        if hit.content:
            lines.append(make_preview(hit.content, limit=1000) or "")
        if hit.similarity is not None:
            lines.append(f"(Similarity: {round(hit.similarity * 100)}%)")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def format_history(history: list[ChatMessage]) -> str:
    if not history:
        return "(no prior messages)"
    return "\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in history
    )


def build_confirmation(
    intent: ActionIntent | dict[str, Any],
    status: ActionStatus | str = ActionStatus.PENDING,
) -> ConfirmationPrompt:
    """
    Confirmation view state for an intent.

    Low-confidence intents carry an explicit warning. The confirm control is
    only enabled while the intent is pending.
    """
    if isinstance(intent, dict):
        intent = ActionIntent.model_validate(intent)
    label = action_label(intent.action_type)
    warning = None
    if intent.confidence < LOW_CONFIDENCE_THRESHOLD:
        warning = (
            f"Low confidence ({round(intent.confidence * 100)}%): "
            "review the parameters carefully before confirming."
        )
    return ConfirmationPrompt(
        action_type=intent.action_type,
        action_label=label,
        parameters=intent.parameters,
        confidence=intent.confidence,
        confirmation_message=intent.confirmation_message or default_confirmation_message(intent),
        low_confidence_warning=warning,
        confirm_enabled=ActionStatus(status) == ActionStatus.PENDING,
    )


def default_confirmation_message(intent: ActionIntent) -> str:
    return f"I can {action_label(intent.action_type).lower()} for you. Review the details and confirm to proceed."


# ============================================================================
# Router
# ============================================================================

class QueryRouter:
    """Classifies questions and produces answers or intents for one provider/corpus pair."""

    def __init__(
        self,
        provider: AIProvider,
        corpus: FeedbackCorpus,
        *,
        model: str | None = None,
        source_limit: int | None = None,
        match_threshold: float | None = None,
    ):
        self.provider = provider
        self.corpus = corpus
        self.model = model or settings.ASK_AI_MODEL
        self.source_limit = source_limit or settings.ASK_SOURCE_LIMIT
        self.match_threshold = (
            match_threshold if match_threshold is not None else settings.ASK_MATCH_THRESHOLD
        )

    @staticmethod
    async def _guarded(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
        if token is None:
            return await awaitable
        return await token.run(awaitable)

    async def classify(
        self,
        question: str,
        history: list[ChatMessage],
        token: CancellationToken | None = None,
    ) -> AIClassificationOutput:
        prompt = get_prompt("ask_classify")
        messages = [
            ChatMessage(role="system", content=prompt.system),
            ChatMessage(
                role="user",
                content=prompt.render_user(history=format_history(history), question=question),
            ),
        ]
        try:
            response = await self._guarded(
                self.provider.chat(
                    messages, model=self.model, temperature=0.1, max_tokens=600, json_mode=True
                ),
                token,
            )
        except AIProviderError as e:
            raise RoutingError(f"Couldn't classify the question: {e}") from e

        output = validate_model(AIClassificationOutput, parse_json_object(response.content))
        if output is None:
            raise RoutingError("Couldn't classify the question: the model returned an invalid response")

        if output.requires_action and not ActionType.has_value(output.action_type or ""):
            logger.warning(f"Classifier proposed unknown action '{output.action_type}', answering instead")
            output = output.model_copy(update={"requires_action": False, "action_type": None})
        return output

    async def retrieve(self, project_id: UUID, query: str) -> list[FeedbackHit]:
        """Search the corpus. Sources are advisory: a corpus failure yields no sources, not an error."""
        try:
            hits = await self.corpus.search(
                project_id, query, limit=self.source_limit, match_threshold=self.match_threshold
            )
        except CorpusError as e:
            logger.warning(f"Feedback search failed for project {project_id}: {e}")
            return []
        return rank_hits(hits)[: self.source_limit]

    async def answer(
        self,
        project_id: UUID,
        question: str,
        history: list[ChatMessage],
        *,
        search_query: str | None = None,
        query_type: str = QueryType.GENERAL.value,
        token: CancellationToken | None = None,
    ) -> RoutedReply:
        started = time.perf_counter()
        hits = await self._guarded(self.retrieve(project_id, search_query or question), token)

        prompt = get_prompt("ask_answer")
        messages = [
            ChatMessage(role="system", content=prompt.system),
            ChatMessage(
                role="user",
                content=prompt.render_user(
                    context=format_context(hits),
                    history=format_history(history),
                    question=question,
                ),
            ),
        ]
        try:
            response = await self._guarded(
                self.provider.chat(messages, model=self.model, temperature=0.7, max_tokens=1000),
                token,
            )
        except AIProviderError as e:
            raise RoutingError(f"Couldn't generate an answer: {e}") from e

        content = response.content.strip()
        if not content:
            raise RoutingError("Couldn't generate an answer: the model returned nothing")

        return RoutedReply(
            content=content,
            query_type=query_type,
            sources=[build_source(hit).model_dump(mode="json", exclude={"similarity_percent"}) for hit in hits],
            metadata={
                "model": response.model,
                "tokens": response.total_tokens,
                "latency_ms": int((time.perf_counter() - started) * 1000),
                "search_results_count": len(hits),
                "query_type": query_type,
            },
        )

    async def route(
        self,
        project_id: UUID,
        question: str,
        history: list[ChatMessage],
        token: CancellationToken | None = None,
    ) -> RoutedReply:
        """Classify, then answer or return an intent awaiting confirmation."""
        if token is not None:
            token.raise_if_cancelled()
        started = time.perf_counter()
        classification = await self.classify(question, history, token)

        if classification.requires_action and classification.action_type:
            intent = ActionIntent(
                requires_action=True,
                action_type=classification.action_type,
                parameters=classification.parameters,
                confidence=classification.confidence,
                confirmation_message=classification.confirmation_message,
            )
            return RoutedReply(
                content=intent.confirmation_message or default_confirmation_message(intent),
                query_type=QueryType.ACTIONS.value,
                metadata={
                    "model": self.model,
                    "latency_ms": int((time.perf_counter() - started) * 1000),
                    "query_type": QueryType.ACTIONS.value,
                    "confidence": intent.confidence,
                },
                intent=intent,
            )

        return await self.answer(
            project_id,
            question,
            history,
            search_query=classification.search_query,
            query_type=classification.query_type,
            token=token,
        )
