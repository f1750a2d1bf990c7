"""Scheduled query service - recurring questions answered and delivered in the background."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from feedback_assistant.core.config import settings
from feedback_assistant.core.structured_logging import build_log_context
from feedback_assistant.db.enums import DeliveryMethod, DeliveryStatus, MessageRole, QueryType
from feedback_assistant.db.models import ScheduledQuery, utcnow
from feedback_assistant.services import conversation_service, delivery_service
from feedback_assistant.services.query_router import QueryRouter, RoutingError
from feedback_assistant.services.recurrence import compute_next_run, validate_recurrence

logger = logging.getLogger(__name__)

RECURRENCE_FIELDS = ("frequency", "time_utc", "day_of_week", "day_of_month")
SWEEP_BATCH_SIZE = 50


class ScheduledQueryError(Exception):
    """Scheduled query request is invalid (outside recurrence rules)."""

    pass


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


def _check_delivery(delivery_method: str, slack_channel_id: str | None, recipient_email: str | None) -> None:
    try:
        method = DeliveryMethod(delivery_method)
    except ValueError:
        raise ScheduledQueryError(f"Unknown delivery_method '{delivery_method}'")
    if method in (DeliveryMethod.SLACK, DeliveryMethod.BOTH) and not slack_channel_id:
        raise ScheduledQueryError("slack_channel_id is required for Slack delivery")
    if method in (DeliveryMethod.EMAIL, DeliveryMethod.BOTH) and not recipient_email:
        raise ScheduledQueryError("A recipient email is required for email delivery")


# =============================================================================
# CRUD
# =============================================================================

def create_scheduled_query(
    db: Session,
    *,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    query_text: str,
    frequency: str,
    time_utc: str = "09:00",
    day_of_week: int | None = None,
    day_of_month: int | None = None,
    delivery_method: str = DeliveryMethod.EMAIL.value,
    slack_channel_id: str | None = None,
    recipient_email: str | None = None,
    now: datetime | None = None,
) -> ScheduledQuery:
    """Create a scheduled query with its first next_run_at.

    Raises:
        SchedulingComputationError: malformed recurrence
        ScheduledQueryError: empty query or incomplete delivery settings
    """
    text = (query_text or "").strip()
    if not text:
        raise ScheduledQueryError("query_text is required")
    rule = validate_recurrence(_enum_value(frequency), time_utc, day_of_week, day_of_month)
    delivery_method = _enum_value(delivery_method)
    _check_delivery(delivery_method, slack_channel_id, recipient_email)

    query = ScheduledQuery(
        project_id=project_id,
        user_id=user_id,
        recipient_email=recipient_email,
        query_text=text,
        frequency=rule.frequency.value,
        time_utc=rule.time_utc,
        day_of_week=rule.day_of_week,
        day_of_month=rule.day_of_month,
        delivery_method=delivery_method,
        slack_channel_id=slack_channel_id,
        is_active=True,
        next_run_at=rule.next_after(now),
    )
    db.add(query)
    db.commit()
    db.refresh(query)
    logger.info(
        f"Scheduled query created: {rule.describe()}",
        extra=build_log_context(project_id=project_id, user_id=user_id),
    )
    return query


def list_scheduled_queries(
    db: Session,
    project_id: uuid.UUID,
    user_id: uuid.UUID | None = None,
) -> list[ScheduledQuery]:
    query = db.query(ScheduledQuery).filter(ScheduledQuery.project_id == project_id)
    if user_id is not None:
        query = query.filter(ScheduledQuery.user_id == user_id)
    return query.order_by(ScheduledQuery.next_run_at.asc()).all()


def get_scheduled_query(
    db: Session,
    project_id: uuid.UUID,
    query_id: uuid.UUID,
) -> ScheduledQuery | None:
    return (
        db.query(ScheduledQuery)
        .filter(ScheduledQuery.id == query_id, ScheduledQuery.project_id == project_id)
        .first()
    )


def update_scheduled_query(
    db: Session,
    query: ScheduledQuery,
    changes: dict[str, Any],
    now: datetime | None = None,
) -> ScheduledQuery:
    """
    Apply a partial update.

    Recurrence changes are validated as a whole rule and recompute
    next_run_at. Deactivation keeps next_run_at; reactivation recomputes it
    from now so a long-paused query does not fire immediately.
    """
    changes = {k: _enum_value(v) for k, v in changes.items()}
    recurrence_changed = any(
        field in changes and changes[field] != getattr(query, field) for field in RECURRENCE_FIELDS
    )

    if "query_text" in changes:
        text = (changes["query_text"] or "").strip()
        if not text:
            raise ScheduledQueryError("query_text is required")
        query.query_text = text

    if recurrence_changed:
        frequency = changes.get("frequency", query.frequency)
        # Switching frequency drops the day fields the new rule doesn't use
        day_of_week = changes.get("day_of_week", query.day_of_week if frequency == "weekly" else None)
        day_of_month = changes.get("day_of_month", query.day_of_month if frequency == "monthly" else None)
        rule = validate_recurrence(
            frequency,
            changes.get("time_utc", query.time_utc),
            day_of_week,
            day_of_month,
        )
        query.frequency = rule.frequency.value
        query.time_utc = rule.time_utc
        query.day_of_week = rule.day_of_week
        query.day_of_month = rule.day_of_month

    delivery = {
        field: changes.get(field, getattr(query, field))
        for field in ("delivery_method", "slack_channel_id", "recipient_email")
    }
    _check_delivery(delivery["delivery_method"], delivery["slack_channel_id"], delivery["recipient_email"])
    for field, value in delivery.items():
        setattr(query, field, value)

    reactivated = changes.get("is_active") is True and not query.is_active
    if "is_active" in changes and changes["is_active"] is not None:
        query.is_active = changes["is_active"]

    if recurrence_changed or reactivated:
        query.next_run_at = compute_next_run(
            query.frequency,
            query.time_utc,
            day_of_week=query.day_of_week,
            day_of_month=query.day_of_month,
            now=now,
        )

    db.commit()
    db.refresh(query)
    return query


def set_active(db: Session, query: ScheduledQuery, is_active: bool, now: datetime | None = None) -> ScheduledQuery:
    return update_scheduled_query(db, query, {"is_active": is_active}, now=now)


def delete_scheduled_query(db: Session, query: ScheduledQuery) -> None:
    db.delete(query)
    db.commit()


# =============================================================================
# Sweep
# =============================================================================

def get_due_queries(db: Session, now: datetime, limit: int = SWEEP_BATCH_SIZE) -> list[ScheduledQuery]:
    return (
        db.query(ScheduledQuery)
        .filter(ScheduledQuery.is_active.is_(True), ScheduledQuery.next_run_at <= now)
        .order_by(ScheduledQuery.next_run_at.asc())
        .limit(limit)
        .all()
    )


def claim_scheduled_query(db: Session, query: ScheduledQuery, now: datetime) -> datetime | None:
    """
    Claim one run by advancing next_run_at from the value we saw.

    Returns the new next_run_at, or None if another sweep already claimed
    this run (or the query was deactivated in between).
    """
    seen = query.next_run_at
    next_run = compute_next_run(
        query.frequency,
        query.time_utc,
        day_of_week=query.day_of_week,
        day_of_month=query.day_of_month,
        now=now,
    )
    result = db.execute(
        update(ScheduledQuery)
        .where(
            ScheduledQuery.id == query.id,
            ScheduledQuery.next_run_at == seen,
            ScheduledQuery.is_active.is_(True),
        )
        .values(next_run_at=next_run, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        return None
    db.commit()
    db.refresh(query)
    return next_run


def _conversation_link(conversation_id: uuid.UUID) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/ask/{conversation_id}"


def _record_outcome(
    db: Session,
    query: ScheduledQuery,
    now: datetime,
    status: DeliveryStatus,
    error: str | None = None,
    conversation_id: uuid.UUID | None = None,
) -> None:
    query.last_run_at = now
    query.last_delivery_status = status.value
    query.last_delivery_error = error
    if conversation_id is not None:
        query.last_conversation_id = conversation_id
    db.commit()


async def run_scheduled_query(
    db: Session,
    router: QueryRouter,
    query: ScheduledQuery,
    now: datetime,
) -> DeliveryStatus:
    """Answer one claimed query, store it as a conversation and deliver it. Never retried."""
    conversation = conversation_service.create_conversation(
        db, query.project_id, query.user_id, title=query.query_text
    )
    conversation_service.append_message(db, conversation, MessageRole.USER, query.query_text)

    try:
        reply = await router.answer(query.project_id, query.query_text, [])
    except RoutingError as e:
        conversation_service.append_message(
            db,
            conversation,
            MessageRole.ASSISTANT,
            f"I couldn't answer that: {e}",
            metadata={"error": True, "scheduled_query_id": str(query.id)},
        )
        _record_outcome(db, query, now, DeliveryStatus.FAILED, str(e), conversation.id)
        return DeliveryStatus.FAILED

    conversation_service.append_message(
        db,
        conversation,
        MessageRole.ASSISTANT,
        reply.content,
        sources=reply.sources,
        metadata={**reply.metadata, "scheduled_query_id": str(query.id)},
        query_type=reply.query_type or QueryType.GENERAL.value,
    )

    try:
        await delivery_service.deliver(
            query.delivery_method,
            subject=f"Scheduled answer: {query.query_text[:80]}",
            body=reply.content,
            recipient_email=query.recipient_email,
            slack_channel_id=query.slack_channel_id,
            link=_conversation_link(conversation.id),
        )
    except delivery_service.DeliveryFailure as e:
        logger.warning(
            f"Scheduled query {query.id} delivery failed: {e}",
            extra=build_log_context(project_id=query.project_id, conversation_id=conversation.id),
        )
        _record_outcome(db, query, now, DeliveryStatus.FAILED, str(e), conversation.id)
        return DeliveryStatus.FAILED

    _record_outcome(db, query, now, DeliveryStatus.DELIVERED, None, conversation.id)
    return DeliveryStatus.DELIVERED


async def run_due_queries(
    db: Session,
    router: QueryRouter,
    now: datetime | None = None,
) -> dict[str, int]:
    """
    Process every due, active scheduled query.

    Each query is claimed before it runs, so overlapping sweeps never
    deliver the same occurrence twice. One query's failure never affects
    the others.
    """
    now = now or datetime.now(timezone.utc)
    summary = {"due": 0, "claimed": 0, "skipped": 0, "delivered": 0, "failed": 0, "errors": 0}

    due = get_due_queries(db, now)
    summary["due"] = len(due)
    for query in due:
        query_id = query.id
        try:
            if claim_scheduled_query(db, query, now) is None:
                summary["skipped"] += 1
                continue
            summary["claimed"] += 1
            status = await run_scheduled_query(db, router, query, now)
            summary["delivered" if status == DeliveryStatus.DELIVERED else "failed"] += 1
        except Exception:
            db.rollback()
            summary["errors"] += 1
            logger.exception(f"Scheduled query {query_id} failed")

    if summary["due"]:
        logger.info(f"Scheduled query sweep: {summary}")
    return summary
