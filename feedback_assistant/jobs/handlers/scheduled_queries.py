"""Scheduled query sweep job handler."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


async def process_scheduled_query_sweep(db, job) -> None:
    """
    Process a SCHEDULED_QUERY_SWEEP job - answer and deliver every due scheduled query.

    Payload: none. Overlapping sweeps are safe; each occurrence is claimed once.
    """
    from feedback_assistant.core.deps import build_query_router
    from feedback_assistant.services import scheduled_query_service

    summary = await scheduled_query_service.run_due_queries(db, build_query_router())
    logger.info(f"Scheduled query sweep finished: job={job.id} summary={summary}")
