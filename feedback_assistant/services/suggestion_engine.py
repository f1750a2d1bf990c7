"""Proactive suggestion engine.

Detectors are pure functions over corpus data and return a candidate or
None. `generate_suggestions` runs them for one project and persists the
candidates that survive deduplication.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from feedback_assistant.core.structured_logging import build_log_context
from feedback_assistant.db.enums import SuggestionPriority, SuggestionStatus, SuggestionType
from feedback_assistant.db.models import ProactiveSuggestion
from feedback_assistant.services.feedback_corpus import (
    CompetitorEvent,
    FeedbackCorpus,
    FeedbackItem,
)

logger = logging.getLogger(__name__)

SUGGESTION_TTL = timedelta(days=7)
DEDUPE_WINDOW = timedelta(days=7)
MATERIAL_CHANGE_RATIO = 0.10

# Detector thresholds
SENTIMENT_MIN_ITEMS = 5
SENTIMENT_DROP_THRESHOLD = 0.2
THEME_MIN_ITEMS = 10
THEME_SPIKE_SHARE = 30.0
CHURN_SENTIMENT = -0.3
CHURN_MIN_USERS = 3
OPPORTUNITY_SENTIMENT = 0.5
OPPORTUNITY_MIN_UPVOTES = 5
OPPORTUNITY_MIN_ITEMS = 3


@dataclass
class SuggestionCandidate:
    suggestion_type: SuggestionType
    priority: SuggestionPriority
    title: str
    description: str
    query_suggestion: str
    context_data: dict[str, Any] = field(default_factory=dict)


def _in_window(item: FeedbackItem, start: datetime, end: datetime) -> bool:
    return item.created_at is not None and start <= item.created_at < end


def _average(values: list[float]) -> float:
    return sum(values) / len(values)


# =============================================================================
# Detectors
# =============================================================================

def detect_sentiment_drop(items: list[FeedbackItem], now: datetime) -> SuggestionCandidate | None:
    """Average sentiment of the last 7 days vs the 7 days before."""
    week_ago = now - timedelta(days=7)
    two_weeks_ago = now - timedelta(days=14)
    recent = [i.sentiment for i in items if i.sentiment is not None and _in_window(i, week_ago, now)]
    previous = [
        i.sentiment for i in items if i.sentiment is not None and _in_window(i, two_weeks_ago, week_ago)
    ]
    if len(recent) < SENTIMENT_MIN_ITEMS or len(previous) < SENTIMENT_MIN_ITEMS:
        return None

    recent_avg = _average(recent)
    previous_avg = _average(previous)
    drop = previous_avg - recent_avg
    if drop <= SENTIMENT_DROP_THRESHOLD:
        return None

    if drop > 0.4:
        priority = SuggestionPriority.CRITICAL
    elif drop > 0.3:
        priority = SuggestionPriority.HIGH
    else:
        priority = SuggestionPriority.MEDIUM
    return SuggestionCandidate(
        suggestion_type=SuggestionType.SENTIMENT_DROP,
        priority=priority,
        title="Sentiment Drop Detected",
        description=(
            f"Customer sentiment has dropped by {drop * 100:.0f}% in the last week. "
            "Recent feedback shows increased negative sentiment."
        ),
        query_suggestion="What are customers complaining about most this week?",
        context_data={
            "recent_avg": round(recent_avg, 4),
            "previous_avg": round(previous_avg, 4),
            "drop_percentage": round(drop * 100, 2),
            "feedback_count": len(recent),
        },
    )


def _top_theme(items: list[FeedbackItem]) -> tuple[str, int] | None:
    counts: Counter[str] = Counter()
    for item in items:
        counts.update(item.themes)
    if not counts:
        return None
    return counts.most_common(1)[0]


def detect_theme_spike(items: list[FeedbackItem], now: datetime) -> SuggestionCandidate | None:
    """One theme showing up in more than 30% of last week's themed feedback."""
    themed = [i for i in items if i.themes and _in_window(i, now - timedelta(days=7), now)]
    if len(themed) < THEME_MIN_ITEMS:
        return None
    top = _top_theme(themed)
    if top is None:
        return None

    theme, count = top
    share = count / len(themed) * 100
    if share <= THEME_SPIKE_SHARE:
        return None
    return SuggestionCandidate(
        suggestion_type=SuggestionType.THEME_SPIKE,
        priority=SuggestionPriority.HIGH if share > 50 else SuggestionPriority.MEDIUM,
        title=f"Theme Spike: {theme}",
        description=(
            f'The theme "{theme}" has appeared in {count} feedback items '
            f"({share:.0f}%) in the last week."
        ),
        query_suggestion=f"Show me all feedback about {theme}",
        context_data={
            "theme": theme,
            "count": count,
            "percentage": round(share, 2),
            "total_feedback": len(themed),
        },
    )


def detect_churn_risk(items: list[FeedbackItem], now: datetime) -> SuggestionCandidate | None:
    """Several distinct users leaving clearly negative feedback in the last 30 days."""
    negative = [
        i
        for i in items
        if i.sentiment is not None
        and i.sentiment < CHURN_SENTIMENT
        and i.author_email
        and _in_window(i, now - timedelta(days=30), now)
    ]
    users = {i.author_email.strip().lower() for i in negative}
    if len(users) < CHURN_MIN_USERS:
        return None
    return SuggestionCandidate(
        suggestion_type=SuggestionType.CHURN_RISK,
        priority=SuggestionPriority.HIGH if len(users) > 5 else SuggestionPriority.MEDIUM,
        title="Churn Risk Detected",
        description=(
            f"{len(users)} users have submitted negative feedback in the last 30 days. "
            "This may indicate churn risk."
        ),
        query_suggestion="Show me recent negative feedback and common complaints",
        context_data={
            "user_count": len(users),
            "feedback_count": len(negative),
            "avg_sentiment": round(_average([i.sentiment for i in negative]), 4),
        },
    )


def detect_opportunity(items: list[FeedbackItem], now: datetime) -> SuggestionCandidate | None:
    """Positive, well-voted feedback clustering on one theme."""
    positive = [
        i
        for i in items
        if i.sentiment is not None
        and i.sentiment > OPPORTUNITY_SENTIMENT
        and i.upvotes > OPPORTUNITY_MIN_UPVOTES
        and _in_window(i, now - timedelta(days=30), now)
    ]
    if len(positive) < OPPORTUNITY_MIN_ITEMS:
        return None
    positive = sorted(positive, key=lambda i: i.upvotes, reverse=True)[:10]
    top = _top_theme(positive)
    if top is None:
        return None

    theme, count = top
    return SuggestionCandidate(
        suggestion_type=SuggestionType.OPPORTUNITY,
        priority=SuggestionPriority.MEDIUM,
        title=f"Growth Opportunity: {theme}",
        description=(
            f'{count} highly-voted, positive feedback items mention "{theme}". '
            "This could be a growth opportunity."
        ),
        query_suggestion=f"What are users saying about {theme}?",
        context_data={
            "theme": theme,
            "count": count,
            "total_votes": sum(i.upvotes for i in positive),
        },
    )


def detect_competitor_move(events: list[CompetitorEvent], now: datetime) -> SuggestionCandidate | None:
    """The most recent high-impact competitor event of the last week."""
    week_ago = now - timedelta(days=7)
    relevant = [
        e
        for e in events
        if e.impact in ("critical", "high") and (e.occurred_at is None or e.occurred_at >= week_ago)
    ]
    if not relevant:
        return None
    event = max(relevant, key=lambda e: e.occurred_at or week_ago)
    return SuggestionCandidate(
        suggestion_type=SuggestionType.COMPETITOR_MOVE,
        priority=SuggestionPriority.CRITICAL if event.impact == "critical" else SuggestionPriority.HIGH,
        title=f"Competitor Alert: {event.title or event.competitor_name}",
        description=event.summary or f"{event.competitor_name} has made a significant move.",
        query_suggestion="How does this compare to our current features and roadmap?",
        context_data={
            "event_id": event.id,
            "event_type": event.event_type,
            "competitor": event.competitor_name,
            "event_date": event.occurred_at.isoformat() if event.occurred_at else None,
        },
    )


FEEDBACK_DETECTORS = (
    detect_sentiment_drop,
    detect_theme_spike,
    detect_churn_risk,
    detect_opportunity,
)


# =============================================================================
# Deduplication
# =============================================================================

def context_changed(previous: dict[str, Any] | None, current: dict[str, Any] | None) -> bool:
    """
    True if the evidence behind a suggestion changed materially.

    Any differing key set or non-numeric value counts; numbers count only
    when they moved by more than 10% relative to the previous value.
    """
    previous = previous or {}
    current = current or {}
    if set(previous) != set(current):
        return True
    for key, old in previous.items():
        new = current[key]
        numeric = (
            isinstance(old, (int, float))
            and isinstance(new, (int, float))
            and not isinstance(old, bool)
            and not isinstance(new, bool)
        )
        if numeric:
            if old == new:
                continue
            if old == 0 or abs(new - old) / abs(old) > MATERIAL_CHANGE_RATIO:
                return True
        elif old != new:
            return True
    return False


def should_create(db: Session, project_id: uuid.UUID, candidate: SuggestionCandidate, now: datetime) -> bool:
    """
    Dedupe against suggestions of the same type from the last 7 days.

    An active one suppresses the candidate. A dismissed or acted-upon one
    stays resolved; a new record appears only for materially changed evidence.
    """
    recent = (
        db.query(ProactiveSuggestion)
        .filter(
            ProactiveSuggestion.project_id == project_id,
            ProactiveSuggestion.suggestion_type == candidate.suggestion_type.value,
            ProactiveSuggestion.created_at >= now - DEDUPE_WINDOW,
        )
        .order_by(ProactiveSuggestion.created_at.desc())
        .all()
    )
    if not recent:
        return True
    if any(s.status == SuggestionStatus.ACTIVE.value for s in recent):
        return False
    return context_changed(recent[0].context_data, candidate.context_data)


# =============================================================================
# Generation
# =============================================================================

async def collect_candidates(
    corpus: FeedbackCorpus,
    project_id: uuid.UUID,
    now: datetime,
) -> list[SuggestionCandidate]:
    items = await corpus.list_feedback(project_id, since=now - timedelta(days=30), until=now)
    candidates = [c for c in (detect(items, now) for detect in FEEDBACK_DETECTORS) if c is not None]

    events = await corpus.list_competitor_events(project_id, since=now - timedelta(days=7))
    competitor = detect_competitor_move(events, now)
    if competitor is not None:
        candidates.append(competitor)
    return candidates


async def generate_suggestions(
    db: Session,
    corpus: FeedbackCorpus,
    project_id: uuid.UUID,
    now: datetime | None = None,
) -> list[ProactiveSuggestion]:
    """Run every detector for a project and persist the new suggestions."""
    now = now or datetime.now(timezone.utc)
    candidates = await collect_candidates(corpus, project_id, now)

    created = []
    for candidate in candidates:
        if not should_create(db, project_id, candidate, now):
            continue
        suggestion = ProactiveSuggestion(
            project_id=project_id,
            suggestion_type=candidate.suggestion_type.value,
            priority=candidate.priority.value,
            title=candidate.title[:255],
            description=candidate.description,
            query_suggestion=candidate.query_suggestion,
            context_data=candidate.context_data,
            status=SuggestionStatus.ACTIVE.value,
            expires_at=now + SUGGESTION_TTL,
            created_at=now,
        )
        db.add(suggestion)
        created.append(suggestion)

    if created:
        db.commit()
        logger.info(
            f"Created {len(created)} suggestions",
            extra=build_log_context(project_id=project_id),
        )
    return created


async def analyze_all_projects(
    db: Session,
    corpus: FeedbackCorpus,
    project_ids: list[uuid.UUID],
    now: datetime | None = None,
) -> dict[str, Any]:
    """Generate suggestions for each project. One project's failure never stops the rest."""
    now = now or datetime.now(timezone.utc)
    summary: dict[str, Any] = {"projects": len(project_ids), "created": 0, "failed": []}
    for project_id in project_ids:
        try:
            created = await generate_suggestions(db, corpus, project_id, now)
            summary["created"] += len(created)
        except Exception:
            db.rollback()
            summary["failed"].append(str(project_id))
            logger.exception(
                "Suggestion analysis failed",
                extra=build_log_context(project_id=project_id),
            )
    return summary
