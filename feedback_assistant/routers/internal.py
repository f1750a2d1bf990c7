"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron when the worker isn't running.
"""

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from feedback_assistant.core.async_utils import run_async
from feedback_assistant.core.config import settings
from feedback_assistant.core.deps import get_corpus, get_db, get_query_router
from feedback_assistant.services.feedback_corpus import CorpusError, FeedbackCorpus
from feedback_assistant.services.query_router import QueryRouter

router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class ScheduledQuerySweepResponse(BaseModel):
    due: int
    claimed: int
    skipped: int
    delivered: int
    failed: int
    errors: int


class SuggestionAnalysisResponse(BaseModel):
    projects: int
    created: int
    failed: list[str]


@router.post(
    "/scheduled-queries",
    response_model=ScheduledQuerySweepResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def scheduled_query_sweep(
    db: Session = Depends(get_db),
    query_router: QueryRouter = Depends(get_query_router),
) -> ScheduledQuerySweepResponse:
    """
    Answer and deliver every due scheduled query.

    Safe to call from overlapping cron runs: each occurrence is claimed once.
    """
    from feedback_assistant.services import scheduled_query_service

    summary = run_async(scheduled_query_service.run_due_queries(db, query_router))
    return ScheduledQuerySweepResponse(**summary)


@router.post(
    "/suggestions",
    response_model=SuggestionAnalysisResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def suggestion_analysis(
    db: Session = Depends(get_db),
    corpus: FeedbackCorpus = Depends(get_corpus),
) -> SuggestionAnalysisResponse:
    """Run the suggestion detectors for every project the corpus knows about."""
    from feedback_assistant.services import suggestion_engine

    try:
        project_ids = run_async(corpus.list_project_ids())
    except CorpusError as e:
        raise HTTPException(status_code=502, detail=str(e))

    summary = run_async(suggestion_engine.analyze_all_projects(db, corpus, project_ids))
    return SuggestionAnalysisResponse(**summary)
