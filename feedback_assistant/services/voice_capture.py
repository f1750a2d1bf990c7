"""Voice capture adapter.

Collects a bounded-duration clip and hands it to the transcriber. The
controller is sequential: one capture at a time per instance.

    idle -> recording -> processing -> idle
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterable, Callable, Protocol

import anyio

from feedback_assistant.core.async_utils import CancellationToken, OperationCancelled
from feedback_assistant.core.config import settings
from feedback_assistant.services.transcription_service import TranscriptionError, TranscriptionResult

logger = logging.getLogger(__name__)

TIME_WARNING_RATIO = 0.10


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"


class CaptureBusyError(Exception):
    """A capture is already recording or being transcribed."""

    pass


class Transcriber(Protocol):
    async def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        filename: str = ...,
        token: CancellationToken | None = ...,
    ) -> TranscriptionResult: ...


@dataclass(frozen=True)
class VoiceRecordingResult:
    audio: bytes
    mime_type: str
    duration_seconds: float


class VoiceCaptureController:
    """Drives one recording at a time and submits it for transcription."""

    def __init__(
        self,
        transcriber: Transcriber,
        max_duration_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transcriber = transcriber
        self.max_duration_seconds = float(
            max_duration_seconds or settings.VOICE_MAX_DURATION_SECONDS
        )
        self._clock = clock
        self.state = RecorderState.IDLE
        self.last_text: str | None = None
        self.last_error: str | None = None
        self.last_duration_seconds: float | None = None
        self._chunks: list[bytes] = []
        self._mime_type = "audio/webm"
        self._started_at: float | None = None
        self._ceiling_reached = False
        self._token: CancellationToken | None = None

    @property
    def can_start(self) -> bool:
        return self.state == RecorderState.IDLE

    @property
    def elapsed_seconds(self) -> float:
        if self.state != RecorderState.RECORDING or self._started_at is None:
            return 0.0
        return min(self._clock() - self._started_at, self.max_duration_seconds)

    @property
    def remaining_seconds(self) -> float:
        return max(self.max_duration_seconds - self.elapsed_seconds, 0.0)

    @property
    def time_warning(self) -> bool:
        return (
            self.state == RecorderState.RECORDING
            and self.remaining_seconds < self.max_duration_seconds * TIME_WARNING_RATIO
        )

    @property
    def ceiling_reached(self) -> bool:
        return self._ceiling_reached

    def start(self, mime_type: str = "audio/webm") -> None:
        if not self.can_start:
            raise CaptureBusyError(f"Voice capture is {self.state.value}")
        self.state = RecorderState.RECORDING
        self._chunks = []
        self._mime_type = mime_type
        self._started_at = self._clock()
        self._ceiling_reached = False
        self.last_text = None
        self.last_error = None

    def add_chunk(self, chunk: bytes) -> bool:
        """Buffer audio. Returns False once the duration ceiling is hit; the recording then stops accepting."""
        if self.state != RecorderState.RECORDING:
            return False
        if self._ceiling_reached or self._clock() - self._started_at >= self.max_duration_seconds:
            self._ceiling_reached = True
            return False
        if chunk:
            self._chunks.append(chunk)
        if self._clock() - self._started_at >= self.max_duration_seconds:
            self._ceiling_reached = True
        return True

    def _finish_recording(self) -> VoiceRecordingResult:
        duration = round(self.elapsed_seconds, 2)
        clip = VoiceRecordingResult(
            audio=b"".join(self._chunks),
            mime_type=self._mime_type,
            duration_seconds=duration,
        )
        self._chunks = []
        self._started_at = None
        return clip

    async def stop(self) -> TranscriptionResult | None:
        """Submit the clip. Returns None if the capture was cancelled or failed (see last_error)."""
        if self.state != RecorderState.RECORDING:
            return None
        clip = self._finish_recording()
        self.last_duration_seconds = clip.duration_seconds
        self.state = RecorderState.PROCESSING
        self._token = CancellationToken()
        try:
            result = await self.transcriber.transcribe(clip.audio, clip.mime_type, token=self._token)
        except OperationCancelled:
            logger.info("Voice transcription cancelled")
            return None
        except TranscriptionError as e:
            self.last_error = str(e)
            return None
        finally:
            self._token = None
            self.state = RecorderState.IDLE

        self.last_text = result.text
        if result.duration_seconds is not None:
            self.last_duration_seconds = result.duration_seconds
        return result

    def cancel(self) -> None:
        """Discard a recording, or abandon a transcription in flight."""
        if self.state == RecorderState.RECORDING:
            self._chunks = []
            self._started_at = None
            self.state = RecorderState.IDLE
        elif self.state == RecorderState.PROCESSING and self._token is not None:
            self._token.cancel("Voice capture cancelled")

    async def record(
        self, chunks: AsyncIterable[bytes], mime_type: str = "audio/webm"
    ) -> TranscriptionResult | None:
        """Record from a chunk stream until it ends or the ceiling stops it, then transcribe.

        A stream that stalls is cut off once the ceiling elapses.
        """
        self.start(mime_type)
        with anyio.move_on_after(self.remaining_seconds) as scope:
            async for chunk in chunks:
                if self.state != RecorderState.RECORDING:
                    break
                if not self.add_chunk(chunk) or self._ceiling_reached:
                    break
        if scope.cancelled_caught:
            logger.info("Voice stream stalled; stopping at the duration ceiling")
            self._ceiling_reached = True
        if self.state != RecorderState.RECORDING:
            return None
        return await self.stop()
