"""Speech-to-text bridge for voice questions (OpenAI Whisper over HTTP)."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from feedback_assistant.core.async_utils import CancellationToken
from feedback_assistant.core.config import settings

logger = logging.getLogger(__name__)

WHISPER_URL = "https://api.openai.com/v1/audio/transcriptions"
MAX_AUDIO_BYTES = 25 * 1024 * 1024  # Whisper upload limit

TRANSCRIBABLE_MIME_TYPES = frozenset(
    {
        "audio/webm",
        "audio/ogg",
        "audio/mp4",
        "audio/m4a",
        "audio/x-m4a",
        "audio/mpeg",
        "audio/mp3",
        "audio/mpga",
        "audio/wav",
        "audio/x-wav",
        "audio/flac",
        "video/webm",
    }
)


class TranscriptionError(Exception):
    """The clip could not be turned into text."""

    pass


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    duration_seconds: float | None = None


def _base_mime_type(mime_type: str | None) -> str:
    # "audio/webm;codecs=opus" -> "audio/webm"
    return (mime_type or "").split(";", 1)[0].strip().lower()


def validate_audio(audio: bytes, mime_type: str | None) -> str:
    if not audio:
        raise TranscriptionError("No audio was recorded")
    if len(audio) > MAX_AUDIO_BYTES:
        raise TranscriptionError("Audio file is too large (max 25 MB)")
    base = _base_mime_type(mime_type)
    if base not in TRANSCRIBABLE_MIME_TYPES:
        raise TranscriptionError(f"Unsupported audio format: {base or 'unknown'}")
    return base


async def _post_audio(
    audio: bytes,
    filename: str,
    mime_type: str,
    api_key: str,
    model: str,
    transport: httpx.AsyncBaseTransport | None,
) -> dict:
    try:
        async with httpx.AsyncClient(timeout=60.0, transport=transport) as client:
            response = await client.post(
                WHISPER_URL,
                headers={"Authorization": f"Bearer {api_key}"},
                data={"model": model, "response_format": "verbose_json"},
                files={"file": (filename, audio, mime_type)},
            )
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as e:
        logger.error(f"Transcription failed: {e.response.status_code}")
        raise TranscriptionError(f"Transcription service returned {e.response.status_code}") from e
    except httpx.HTTPError as e:
        logger.error(f"Transcription request error: {type(e).__name__}")
        raise TranscriptionError("Transcription service is unreachable") from e
    except ValueError as e:
        raise TranscriptionError("Transcription service returned invalid JSON") from e


async def transcribe_audio(
    audio: bytes,
    filename: str = "recording.webm",
    mime_type: str = "audio/webm",
    api_key: str | None = None,
    *,
    model: str | None = None,
    token: CancellationToken | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> TranscriptionResult:
    """
    Transcribe a recorded clip.

    Raises:
        TranscriptionError: empty/oversized/unsupported audio, service failure, no speech
        OperationCancelled: the token fired before the service answered
    """
    base_mime = validate_audio(audio, mime_type)
    api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
    if not api_key:
        raise TranscriptionError("Voice input is not configured")

    call = _post_audio(
        audio,
        filename or "recording.webm",
        base_mime,
        api_key,
        model or settings.TRANSCRIPTION_MODEL,
        transport,
    )
    if token is not None:
        data = await token.run(call)
    else:
        data = await call

    if not isinstance(data, dict):
        raise TranscriptionError("Transcription service returned an unexpected payload")
    text = " ".join(str(data.get("text") or "").split())
    if not text:
        raise TranscriptionError("No speech detected. Please try again.")

    duration = data.get("duration")
    try:
        duration_seconds = float(duration) if duration is not None else None
    except (TypeError, ValueError):
        duration_seconds = None
    return TranscriptionResult(text=text, duration_seconds=duration_seconds)


class TranscriptionBridge:
    """Binds settings to transcribe_audio for callers that hold a transcriber object."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self._transport = transport

    async def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        filename: str = "recording.webm",
        token: CancellationToken | None = None,
    ) -> TranscriptionResult:
        return await transcribe_audio(
            audio,
            filename,
            mime_type,
            self.api_key,
            model=self.model,
            token=token,
            transport=self._transport,
        )
