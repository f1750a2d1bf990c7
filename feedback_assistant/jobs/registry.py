"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from feedback_assistant.db.enums import JobType
from feedback_assistant.jobs.handlers import scheduled_queries, suggestions

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.SCHEDULED_QUERY_SWEEP.value: scheduled_queries.process_scheduled_query_sweep,
    JobType.SUGGESTION_ANALYSIS.value: suggestions.process_suggestion_analysis,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
