"""Voice transcription route."""

import logging

from fastapi import APIRouter, Depends, File, Request, UploadFile

from feedback_assistant.core.async_utils import OperationCancelled
from feedback_assistant.core.config import settings
from feedback_assistant.core.deps import get_current_session, get_transcriber, require_csrf_header
from feedback_assistant.core.rate_limit import ASK_LIMIT, limiter
from feedback_assistant.core.structured_logging import build_log_context
from feedback_assistant.schemas.auth import UserSession
from feedback_assistant.schemas.transcription import TranscriptionRead, TranscriptionResponse
from feedback_assistant.services.transcription_service import (
    MAX_AUDIO_BYTES,
    TranscriptionBridge,
    TranscriptionError,
)

router = APIRouter(tags=["transcription"])
logger = logging.getLogger(__name__)


@router.post(
    "/transcribe",
    response_model=TranscriptionResponse,
    dependencies=[Depends(require_csrf_header)],
)
@limiter.limit(ASK_LIMIT)
async def transcribe(
    request: Request,  # Required by limiter
    audio: UploadFile = File(...),
    session: UserSession = Depends(get_current_session),
    transcriber: TranscriptionBridge = Depends(get_transcriber),
) -> TranscriptionResponse:
    """Transcribe a recorded voice question.

    Transcription problems are reported in the body (`success: false`) so
    the client can show them next to the input.
    """
    data = await audio.read(MAX_AUDIO_BYTES + 1)
    try:
        result = await transcriber.transcribe(
            data,
            audio.content_type or "",
            filename=audio.filename or "recording.webm",
        )
    except (TranscriptionError, OperationCancelled) as e:
        logger.info(
            f"Transcription rejected: {e}",
            extra=build_log_context(project_id=session.project_id, user_id=session.user_id),
        )
        return TranscriptionResponse(success=False, error=str(e))

    limit = settings.VOICE_MAX_DURATION_SECONDS
    if result.duration_seconds is not None and result.duration_seconds > limit:
        logger.info(
            f"Transcription rejected: clip is {result.duration_seconds}s, limit {limit}s",
            extra=build_log_context(project_id=session.project_id, user_id=session.user_id),
        )
        return TranscriptionResponse(
            success=False,
            error=f"Recording is longer than the {limit} second limit. Please record a shorter question.",
        )

    return TranscriptionResponse(
        success=True,
        transcription=TranscriptionRead(text=result.text, duration=result.duration_seconds),
    )
