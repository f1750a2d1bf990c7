"""Assistant action executor framework.

Handles execution of assistant-proposed actions after user confirmation.
Each action type has its own executor that performs the actual work.

An intent lives on the assistant message that proposed it:

    pending -> executing -> completed | failed
    pending -> cancelled

The pending -> executing step is a compare-and-set on the message row, so
a handler's side effects run at most once per confirmation. Nothing here
retries; a failed action stays failed.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import httpx
from sqlalchemy import update
from sqlalchemy.orm import Session

from feedback_assistant.core.async_utils import CancellationToken, OperationCancelled
from feedback_assistant.core.config import settings
from feedback_assistant.db.enums import ActionStatus, ActionType, DeliveryMethod
from feedback_assistant.db.models import ActionResult, Message
from feedback_assistant.services.ai_prompt_registry import get_prompt
from feedback_assistant.services.ai_provider import AIProvider, AIProviderError, ChatMessage
from feedback_assistant.services.feedback_corpus import CorpusError, FeedbackCorpus

if TYPE_CHECKING:
    from feedback_assistant.services.query_router import QueryRouter

logger = logging.getLogger(__name__)

ESCALATION_PRIORITIES = ("low", "medium", "high", "critical")
ROADMAP_PRIORITIES = ("low", "medium", "high", "critical")


class UnsupportedActionError(Exception):
    """No handler is registered for the action tag."""

    pass


class ActionExecutionError(Exception):
    """A handler failed. Not retried."""

    pass


class InvalidActionParameters(Exception):
    """Parameters failed validation; nothing was executed and the intent stays pending."""

    pass


class ActionStateError(Exception):
    """The intent is not in a state that allows the requested transition."""

    pass


@dataclass
class ActionContext:
    """Everything a handler may touch."""

    db: Session
    project_id: uuid.UUID
    user_id: uuid.UUID
    user_email: str | None
    provider: AIProvider
    corpus: FeedbackCorpus
    router: QueryRouter
    token: CancellationToken | None = None


@dataclass
class ActionOutcome:
    data: dict[str, Any] = field(default_factory=dict)
    created_resource_url: str | None = None


@dataclass(frozen=True)
class ActionPresentation:
    label: str
    icon: str


ACTION_PRESENTATION: dict[ActionType, ActionPresentation] = {
    ActionType.GENERATE_REPORT: ActionPresentation("Generate report", "file-text"),
    ActionType.CREATE_TICKET: ActionPresentation("Create ticket", "ticket"),
    ActionType.SEND_DIGEST: ActionPresentation("Send digest", "send"),
    ActionType.ESCALATE_ISSUE: ActionPresentation("Escalate issue", "alert-triangle"),
    ActionType.SCHEDULE_QUERY: ActionPresentation("Schedule query", "calendar-clock"),
    ActionType.CREATE_ROADMAP_ITEM: ActionPresentation("Add to roadmap", "map"),
    ActionType.CREATE_SPEC: ActionPresentation("Draft spec", "file-plus"),
}


def action_label(action_type: str) -> str:
    if ActionType.has_value(action_type):
        return ACTION_PRESENTATION[ActionType(action_type)].label
    return action_type.replace("_", " ").capitalize()


def _text_param(parameters: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = parameters.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


# ============================================================================
# Base Executor
# ============================================================================

class ActionExecutor(ABC):
    """Base class for action executors."""

    action_type: ActionType

    @abstractmethod
    def validate(self, parameters: dict[str, Any]) -> tuple[bool, str | None]:
        """Validate the action parameters.

        Returns:
            (is_valid, error_message)
        """
        pass

    @abstractmethod
    async def execute(self, parameters: dict[str, Any], context: ActionContext) -> ActionOutcome:
        """Execute the action. Raise ActionExecutionError on failure."""
        pass


# ============================================================================
# Action Executors
# ============================================================================

class GenerateReportExecutor(ActionExecutor):
    """Write a markdown report on a topic, grounded in matching feedback."""

    action_type = ActionType.GENERATE_REPORT

    def validate(self, parameters: dict[str, Any]) -> tuple[bool, str | None]:
        if not _text_param(parameters, "topic"):
            return False, "topic is required"
        return True, None

    async def execute(self, parameters: dict[str, Any], context: ActionContext) -> ActionOutcome:
        # Import here to avoid circular imports
        from feedback_assistant.services.query_router import format_context

        topic = _text_param(parameters, "topic")
        hits = await context.router.retrieve(context.project_id, topic)
        prompt = get_prompt("report_generate")
        messages = [
            ChatMessage(role="system", content=prompt.system),
            ChatMessage(
                role="user",
                content=prompt.render_user(
                    topic=topic,
                    time_range=_text_param(parameters, "time_range") or "last 30 days",
                    format=_text_param(parameters, "format") or "executive summary",
                    context=format_context(hits),
                ),
            ),
        ]
        try:
            response = await context.provider.chat(
                messages, model=settings.ASK_REPORT_MODEL, temperature=0.7, max_tokens=2000
            )
        except AIProviderError as e:
            raise ActionExecutionError(f"Failed to generate report: {e}") from e

        report = response.content.strip()
        if not report:
            raise ActionExecutionError("Failed to generate report")

        return ActionOutcome(
            data={
                "topic": topic,
                "report_content": report,
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "model": response.model,
                "sources_count": len(hits),
            }
        )


class CreateTicketExecutor(ActionExecutor):
    """Open an issue in the tracker through its webhook."""

    action_type = ActionType.CREATE_TICKET

    def validate(self, parameters: dict[str, Any]) -> tuple[bool, str | None]:
        if not _text_param(parameters, "title"):
            return False, "title is required"
        feedback_ids = parameters.get("feedback_ids")
        if feedback_ids is not None and not isinstance(feedback_ids, list):
            return False, "feedback_ids must be a list"
        return True, None

    async def execute(self, parameters: dict[str, Any], context: ActionContext) -> ActionOutcome:
        if not settings.ISSUE_TRACKER_WEBHOOK_URL:
            raise ActionExecutionError("Issue tracker is not configured")

        body = {
            "title": _text_param(parameters, "title"),
            "description": _text_param(parameters, "description") or "",
            "priority": _text_param(parameters, "priority") or "medium",
            "feedback_ids": [str(i) for i in parameters.get("feedback_ids") or []],
            "project_id": str(context.project_id),
            "source": "feedback-assistant",
        }
        try:
            async with httpx.AsyncClient(timeout=15.0) as client:
                response = await client.post(settings.ISSUE_TRACKER_WEBHOOK_URL, json=body)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            raise ActionExecutionError(
                f"Issue tracker returned {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ActionExecutionError("Issue tracker request failed") from e

        if not isinstance(payload, dict):
            payload = {}
        return ActionOutcome(
            data={"ticket_id": payload.get("id"), "title": body["title"]},
            created_resource_url=payload.get("url"),
        )


class SendDigestExecutor(ActionExecutor):
    """Answer a topic and deliver it by email and/or Slack."""

    action_type = ActionType.SEND_DIGEST

    def validate(self, parameters: dict[str, Any]) -> tuple[bool, str | None]:
        if not _text_param(parameters, "topic"):
            return False, "topic is required"
        if not _text_param(parameters, "recipient", "slack_channel_id"):
            return False, "recipient or slack_channel_id is required"
        return True, None

    async def execute(self, parameters: dict[str, Any], context: ActionContext) -> ActionOutcome:
        from feedback_assistant.services import delivery_service
        from feedback_assistant.services.query_router import RoutingError

        topic = _text_param(parameters, "topic")
        recipient = _text_param(parameters, "recipient")
        channel = _text_param(parameters, "slack_channel_id")
        try:
            reply = await context.router.answer(context.project_id, topic, [], token=context.token)
        except RoutingError as e:
            raise ActionExecutionError(f"Failed to build digest: {e}") from e

        if recipient and channel:
            method = DeliveryMethod.BOTH
        elif channel:
            method = DeliveryMethod.SLACK
        else:
            method = DeliveryMethod.EMAIL
        try:
            await delivery_service.deliver(
                method,
                subject=f"Feedback digest: {topic[:80]}",
                body=reply.content,
                recipient_email=recipient,
                slack_channel_id=channel,
            )
        except delivery_service.DeliveryFailure as e:
            raise ActionExecutionError(str(e)) from e

        return ActionOutcome(
            data={
                "topic": topic,
                "recipient": recipient,
                "slack_channel_id": channel,
                "sent_at": datetime.now(timezone.utc).isoformat(),
                "sources_count": len(reply.sources),
            }
        )


class EscalateIssueExecutor(ActionExecutor):
    """Raise a feedback item's priority in the corpus."""

    action_type = ActionType.ESCALATE_ISSUE

    def validate(self, parameters: dict[str, Any]) -> tuple[bool, str | None]:
        if not _text_param(parameters, "feedback_id"):
            return False, "feedback_id is required"
        priority = _text_param(parameters, "priority") or "high"
        if priority not in ESCALATION_PRIORITIES:
            return False, f"priority must be one of: {', '.join(ESCALATION_PRIORITIES)}"
        return True, None

    async def execute(self, parameters: dict[str, Any], context: ActionContext) -> ActionOutcome:
        feedback_id = _text_param(parameters, "feedback_id")
        priority = _text_param(parameters, "priority") or "high"
        reason = _text_param(parameters, "reason")
        try:
            await context.corpus.update_priority(context.project_id, feedback_id, priority, reason)
        except CorpusError as e:
            raise ActionExecutionError(f"Failed to escalate feedback item: {e}") from e

        return ActionOutcome(
            data={"feedback_id": feedback_id, "priority": priority, "reason": reason},
            created_resource_url=f"/{context.project_id}/post/{feedback_id}",
        )


class ScheduleQueryExecutor(ActionExecutor):
    """Create a scheduled query from the conversation."""

    action_type = ActionType.SCHEDULE_QUERY

    def validate(self, parameters: dict[str, Any]) -> tuple[bool, str | None]:
        from feedback_assistant.services.recurrence import (
            SchedulingComputationError,
            validate_recurrence,
        )

        if not _text_param(parameters, "query_text", "query"):
            return False, "query_text is required"
        if not _text_param(parameters, "frequency"):
            return False, "frequency is required"
        delivery = _text_param(parameters, "delivery_method") or DeliveryMethod.EMAIL.value
        if delivery not in DeliveryMethod._value2member_map_:
            return False, f"Unknown delivery_method '{delivery}'"
        try:
            validate_recurrence(
                parameters["frequency"],
                _text_param(parameters, "time_utc") or "09:00",
                parameters.get("day_of_week"),
                parameters.get("day_of_month"),
            )
        except SchedulingComputationError as e:
            return False, str(e)
        return True, None

    async def execute(self, parameters: dict[str, Any], context: ActionContext) -> ActionOutcome:
        from feedback_assistant.services import scheduled_query_service
        from feedback_assistant.services.recurrence import SchedulingComputationError

        try:
            query = scheduled_query_service.create_scheduled_query(
                context.db,
                project_id=context.project_id,
                user_id=context.user_id,
                query_text=_text_param(parameters, "query_text", "query"),
                frequency=parameters["frequency"],
                time_utc=_text_param(parameters, "time_utc") or "09:00",
                day_of_week=parameters.get("day_of_week"),
                day_of_month=parameters.get("day_of_month"),
                delivery_method=_text_param(parameters, "delivery_method") or DeliveryMethod.EMAIL.value,
                slack_channel_id=_text_param(parameters, "slack_channel_id"),
                recipient_email=context.user_email,
            )
        except (SchedulingComputationError, scheduled_query_service.ScheduledQueryError) as e:
            raise ActionExecutionError(str(e)) from e

        return ActionOutcome(
            data={
                "scheduled_query_id": str(query.id),
                "next_run_at": query.next_run_at.isoformat(),
            },
            created_resource_url=f"/scheduled-queries/{query.id}",
        )


class CreateRoadmapItemExecutor(ActionExecutor):
    """Add a planned feature to the project roadmap."""

    action_type = ActionType.CREATE_ROADMAP_ITEM

    def validate(self, parameters: dict[str, Any]) -> tuple[bool, str | None]:
        if not _text_param(parameters, "feature_name"):
            return False, "feature_name is required"
        priority = _text_param(parameters, "priority") or "medium"
        if priority not in ROADMAP_PRIORITIES:
            return False, f"priority must be one of: {', '.join(ROADMAP_PRIORITIES)}"
        return True, None

    async def execute(self, parameters: dict[str, Any], context: ActionContext) -> ActionOutcome:
        feature_name = _text_param(parameters, "feature_name")
        quarter = _text_param(parameters, "quarter")
        priority = _text_param(parameters, "priority") or "medium"
        try:
            item = await context.corpus.create_roadmap_item(
                context.project_id,
                title=feature_name,
                description="Created from the feedback assistant",
                quarter=quarter,
                priority=priority,
                created_by=context.user_id,
            )
        except CorpusError as e:
            raise ActionExecutionError(f"Failed to create roadmap item: {e}") from e

        return ActionOutcome(
            data={
                "roadmap_item_id": str(item["id"]),
                "title": item.get("title") or feature_name,
                "quarter": quarter,
                "priority": priority,
            },
            created_resource_url=f"/{context.project_id}/roadmap",
        )


class CreateSpecExecutor(ActionExecutor):
    """Draft a product spec for a feature and save it to the project."""

    action_type = ActionType.CREATE_SPEC

    def validate(self, parameters: dict[str, Any]) -> tuple[bool, str | None]:
        if not _text_param(parameters, "feature_description"):
            return False, "feature_description is required"
        return True, None

    async def execute(self, parameters: dict[str, Any], context: ActionContext) -> ActionOutcome:
        from feedback_assistant.services.query_router import format_context

        feature = _text_param(parameters, "feature_description")
        hits = await context.router.retrieve(context.project_id, feature)
        prompt = get_prompt("spec_generate")
        messages = [
            ChatMessage(role="system", content=prompt.system),
            ChatMessage(
                role="user",
                content=prompt.render_user(
                    feature_description=feature,
                    target_segment=_text_param(parameters, "target_segment") or "not specified",
                    success_metrics=_text_param(parameters, "success_metrics") or "not specified",
                    context=format_context(hits),
                ),
            ),
        ]
        try:
            response = await context.provider.chat(
                messages, model=settings.ASK_REPORT_MODEL, temperature=0.7, max_tokens=2000
            )
        except AIProviderError as e:
            raise ActionExecutionError(f"Failed to generate spec: {e}") from e

        content = response.content.strip()
        if not content:
            raise ActionExecutionError("Failed to generate spec content")

        title = f"Spec: {feature}"
        try:
            spec = await context.corpus.create_spec(
                context.project_id, title=title, content=content, created_by=context.user_id
            )
        except CorpusError as e:
            raise ActionExecutionError(f"Failed to save spec: {e}") from e

        return ActionOutcome(
            data={
                "spec_id": str(spec["id"]),
                "title": spec.get("title") or title,
                "spec_content": content,
                "model": response.model,
                "sources_count": len(hits),
            },
            created_resource_url=f"/{context.project_id}/specs/{spec['id']}",
        )


# ============================================================================
# Executor Registry
# ============================================================================

EXECUTORS: dict[ActionType, ActionExecutor] = {
    ActionType.GENERATE_REPORT: GenerateReportExecutor(),
    ActionType.CREATE_TICKET: CreateTicketExecutor(),
    ActionType.SEND_DIGEST: SendDigestExecutor(),
    ActionType.ESCALATE_ISSUE: EscalateIssueExecutor(),
    ActionType.SCHEDULE_QUERY: ScheduleQueryExecutor(),
    ActionType.CREATE_ROADMAP_ITEM: CreateRoadmapItemExecutor(),
    ActionType.CREATE_SPEC: CreateSpecExecutor(),
}

for _table_name, _table in (("EXECUTORS", EXECUTORS), ("ACTION_PRESENTATION", ACTION_PRESENTATION)):
    _missing = set(ActionType) - set(_table)
    if _missing:
        raise RuntimeError(
            f"{_table_name} is missing action types: {sorted(m.value for m in _missing)}"
        )


def get_executor(action_type: str) -> ActionExecutor | None:
    """Get executor for an action type."""
    if not ActionType.has_value(action_type):
        return None
    return EXECUTORS.get(ActionType(action_type))


# ============================================================================
# In-flight actions
# ============================================================================

class ActionRegistry:
    """Cancellation tokens for actions that are executing right now, keyed by message id."""

    def __init__(self) -> None:
        self._in_flight: dict[uuid.UUID, CancellationToken] = {}

    def begin(self, message_id: uuid.UUID) -> CancellationToken:
        if message_id in self._in_flight:
            raise ActionStateError("Action is already executing")
        token = CancellationToken()
        self._in_flight[message_id] = token
        return token

    def finish(self, message_id: uuid.UUID, token: CancellationToken) -> None:
        if self._in_flight.get(message_id) is token:
            del self._in_flight[message_id]

    def cancel(self, message_id: uuid.UUID, reason: str = "Action cancelled by user") -> bool:
        token = self._in_flight.get(message_id)
        if token is None or token.cancelled:
            return False
        token.cancel(reason)
        return True

    def is_in_flight(self, message_id: uuid.UUID) -> bool:
        return message_id in self._in_flight


# ============================================================================
# State transitions
# ============================================================================

def _transition(db: Session, message: Message, expected: ActionStatus, **values: Any) -> bool:
    """Compare-and-set on action_status. Returns False if another request got there first."""
    result = db.execute(
        update(Message)
        .where(Message.id == message.id, Message.action_status == expected.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _mark_failed(db: Session, message: Message, expected: ActionStatus, error: str) -> None:
    db.rollback()
    _transition(
        db,
        message,
        expected,
        action_status=ActionStatus.FAILED.value,
        action_error=error,
        action_intent=None,
    )
    db.commit()
    db.refresh(message)


async def execute_confirmed_action(
    db: Session,
    message: Message,
    action_type: str,
    parameters: dict[str, Any],
    context: ActionContext,
) -> ActionResult:
    """Execute the pending intent on `message` after the user confirmed it.

    Args:
        db: Database session
        message: Assistant message carrying the pending intent
        action_type: Tag the user confirmed; must match the intent
        parameters: Reviewed parameters (overlay on the intent's own)
        context: Handler context

    Returns:
        The ActionResult row (created exactly once)

    Raises:
        ActionStateError: no pending intent, mismatch, or already processed
        UnsupportedActionError: no handler for the tag
        InvalidActionParameters: validation failed; intent stays pending
        ActionExecutionError: handler failed; intent marked failed
        OperationCancelled: token fired mid-flight; intent marked failed
    """
    if message.action_status is None:
        raise ActionStateError("No action is pending on this message")
    if message.action_status != ActionStatus.PENDING.value:
        raise ActionStateError(f"Action already processed (status: {message.action_status})")

    executor = get_executor(action_type)
    if executor is None:
        error = f"Unsupported action type: {action_type}"
        _mark_failed(db, message, ActionStatus.PENDING, error)
        logger.warning(f"Rejected unsupported action type for message {message.id}")
        raise UnsupportedActionError(error)

    if action_type != message.action_type:
        raise ActionStateError("Action type does not match the pending intent")

    intent_parameters = (message.action_intent or {}).get("parameters") or {}
    merged = {**intent_parameters, **(parameters or {})}
    is_valid, error = executor.validate(merged)
    if not is_valid:
        raise InvalidActionParameters(error or "Invalid parameters")

    if not _transition(db, message, ActionStatus.PENDING, action_status=ActionStatus.EXECUTING.value):
        db.rollback()
        raise ActionStateError("Action already processed")
    db.commit()
    db.refresh(message)

    started = time.perf_counter()
    try:
        if context.token is not None:
            outcome = await context.token.run(executor.execute(merged, context))
        else:
            outcome = await executor.execute(merged, context)
    except (OperationCancelled, asyncio.CancelledError):
        # The request itself may be torn down; the row must not stay executing
        _mark_failed(db, message, ActionStatus.EXECUTING, "Action was cancelled before it finished")
        raise
    except ActionExecutionError as e:
        logger.warning(f"Action {action_type} failed for message {message.id}: {e}")
        _mark_failed(db, message, ActionStatus.EXECUTING, str(e))
        raise
    except Exception as e:
        logger.exception(f"Action {action_type} crashed for message {message.id}")
        _mark_failed(db, message, ActionStatus.EXECUTING, f"Action failed: {type(e).__name__}")
        raise ActionExecutionError(f"Action failed: {type(e).__name__}") from e

    result = ActionResult(
        message_id=message.id,
        project_id=context.project_id,
        action_type=action_type,
        success=True,
        created_resource_url=outcome.created_resource_url,
        data=outcome.data,
        duration_ms=int((time.perf_counter() - started) * 1000),
    )
    db.add(result)
    message.action_status = ActionStatus.COMPLETED.value
    message.action_intent = None
    message.action_error = None
    db.commit()
    db.refresh(result)
    logger.info(f"Action {action_type} executed for message {message.id} in {result.duration_ms}ms")
    return result


def cancel_action(db: Session, message: Message) -> Message:
    """Decline a pending intent. No ActionResult, no retry."""
    if message.action_status == ActionStatus.CANCELLED.value:
        return message
    if message.action_status != ActionStatus.PENDING.value:
        raise ActionStateError(
            "No action is pending on this message"
            if message.action_status is None
            else f"Action already processed (status: {message.action_status})"
        )
    if not _transition(
        db,
        message,
        ActionStatus.PENDING,
        action_status=ActionStatus.CANCELLED.value,
        action_intent=None,
    ):
        db.rollback()
        raise ActionStateError("Action already processed")
    db.commit()
    db.refresh(message)
    return message
