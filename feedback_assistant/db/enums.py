"""Enum definitions for application constants."""

from enum import Enum


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class QueryType(str, Enum):
    """What a question is about, as classified by the router."""
    FEEDBACK = "feedback"
    SENTIMENT = "sentiment"
    COMPETITIVE = "competitive"
    THEMES = "themes"
    METRICS = "metrics"
    ACTIONS = "actions"
    GENERAL = "general"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class MessageFeedback(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"


class SourceType(str, Enum):
    FEEDBACK = "feedback"
    THEME = "theme"
    COMPETITOR = "competitor"
    METRIC = "metric"
    ROADMAP = "roadmap"
    PRODUCT_DOC = "product_doc"


class ActionType(str, Enum):
    """Side-effecting actions the assistant can propose."""
    GENERATE_REPORT = "generate_report"
    CREATE_TICKET = "create_ticket"
    SEND_DIGEST = "send_digest"
    ESCALATE_ISSUE = "escalate_issue"
    SCHEDULE_QUERY = "schedule_query"
    CREATE_ROADMAP_ITEM = "create_roadmap_item"
    CREATE_SPEC = "create_spec"

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class ActionStatus(str, Enum):
    """
    Lifecycle of an intent attached to an assistant message.

    pending -> executing -> completed | failed
    pending -> cancelled
    """
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class DeliveryMethod(str, Enum):
    EMAIL = "email"
    SLACK = "slack"
    BOTH = "both"


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


class SuggestionType(str, Enum):
    SENTIMENT_DROP = "sentiment_drop"
    THEME_SPIKE = "theme_spike"
    CHURN_RISK = "churn_risk"
    OPPORTUNITY = "opportunity"
    COMPETITOR_MOVE = "competitor_move"


class SuggestionPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SuggestionStatus(str, Enum):
    """Status changes are one-way: active -> dismissed | acted_upon."""
    ACTIVE = "active"
    DISMISSED = "dismissed"
    ACTED_UPON = "acted_upon"


class JobType(str, Enum):
    """Types of background jobs."""
    SCHEDULED_QUERY_SWEEP = "scheduled_query_sweep"
    SUGGESTION_ANALYSIS = "suggestion_analysis"


class JobStatus(str, Enum):
    """Status of background jobs."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


DEFAULT_JOB_STATUS = JobStatus.PENDING
DEFAULT_ACTION_STATUS = ActionStatus.PENDING
DEFAULT_SUGGESTION_STATUS = SuggestionStatus.ACTIVE
