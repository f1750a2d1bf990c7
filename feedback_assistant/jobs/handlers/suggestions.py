"""Proactive suggestion analysis job handler."""

from __future__ import annotations

import logging
from uuid import UUID

logger = logging.getLogger(__name__)


async def process_suggestion_analysis(db, job) -> None:
    """
    Process a SUGGESTION_ANALYSIS job.

    Payload:
        - project_id: Project to analyze (optional, analyzes every project if not provided)
    """
    from feedback_assistant.services import suggestion_engine
    from feedback_assistant.services.feedback_corpus import get_feedback_corpus

    corpus = get_feedback_corpus()
    project_id = (job.payload or {}).get("project_id") or job.project_id
    if project_id:
        project_ids = [UUID(str(project_id))]
    else:
        project_ids = await corpus.list_project_ids()

    summary = await suggestion_engine.analyze_all_projects(db, corpus, project_ids)
    logger.info(f"Suggestion analysis finished: job={job.id} summary={summary}")
    if summary["failed"] and len(summary["failed"]) == len(project_ids):
        raise RuntimeError(f"Suggestion analysis failed for all {len(project_ids)} projects")
