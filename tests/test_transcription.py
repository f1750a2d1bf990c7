"""Voice transcription bridge and /transcribe route."""

import json

import httpx
import pytest
from httpx import AsyncClient

from feedback_assistant.core.config import settings
from feedback_assistant.core.deps import get_transcriber
from feedback_assistant.main import app
from feedback_assistant.services.transcription_service import (
    TranscriptionBridge,
    TranscriptionError,
    transcribe_audio,
)

AUDIO = b"\x1aE\xdf\xa3fake-webm-bytes"


def _transport(status_code=200, payload=None, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if status_code != 200:
            return httpx.Response(status_code, text="upstream error")
        return httpx.Response(200, content=json.dumps(payload or {}))

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_transcribe_returns_text_and_duration():
    seen = []
    transport = _transport(payload={"text": "  Why are   exports slow? ", "duration": 3.4}, seen=seen)

    result = await transcribe_audio(
        AUDIO, "clip.webm", "audio/webm;codecs=opus", api_key="sk-test", transport=transport
    )

    assert result.text == "Why are exports slow?"
    assert result.duration_seconds == 3.4
    assert seen[0].headers["Authorization"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_empty_transcript_means_no_speech():
    transport = _transport(payload={"text": "   "})

    with pytest.raises(TranscriptionError, match="No speech detected"):
        await transcribe_audio(AUDIO, api_key="sk-test", transport=transport)


@pytest.mark.asyncio
async def test_service_error_is_reported():
    with pytest.raises(TranscriptionError, match="500"):
        await transcribe_audio(AUDIO, api_key="sk-test", transport=_transport(status_code=500))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "audio,mime_type,message",
    [
        (b"", "audio/webm", "No audio"),
        (AUDIO, "application/pdf", "Unsupported audio format"),
        (AUDIO, None, "Unsupported audio format"),
    ],
)
async def test_invalid_audio_is_rejected_before_upload(audio, mime_type, message):
    seen = []
    with pytest.raises(TranscriptionError, match=message):
        await transcribe_audio(
            audio, mime_type=mime_type, api_key="sk-test", transport=_transport(seen=seen)
        )
    assert seen == []


@pytest.mark.asyncio
async def test_missing_api_key():
    with pytest.raises(TranscriptionError, match="not configured"):
        await transcribe_audio(AUDIO, api_key="")


# =============================================================================
# Route
# =============================================================================

@pytest.fixture
def whisper_ok():
    bridge = TranscriptionBridge(
        api_key="sk-test",
        transport=_transport(payload={"text": "What do churned users say?", "duration": 2.0}),
    )
    app.dependency_overrides[get_transcriber] = lambda: bridge
    yield bridge
    app.dependency_overrides.pop(get_transcriber, None)


@pytest.mark.asyncio
async def test_transcribe_route(authed_client: AsyncClient, whisper_ok):
    response = await authed_client.post(
        "/transcribe",
        files={"audio": ("recording.webm", AUDIO, "audio/webm")},
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "transcription": {"text": "What do churned users say?", "duration": 2.0},
        "error": None,
    }


@pytest.mark.asyncio
async def test_transcribe_route_reports_failure_in_body(authed_client: AsyncClient, whisper_ok):
    response = await authed_client.post(
        "/transcribe",
        files={"audio": ("notes.txt", b"hello", "text/plain")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert "Unsupported audio format" in body["error"]


@pytest.mark.asyncio
async def test_transcribe_route_rejects_clip_over_duration_limit(authed_client: AsyncClient, monkeypatch):
    monkeypatch.setattr(settings, "VOICE_MAX_DURATION_SECONDS", 120)
    bridge = TranscriptionBridge(
        api_key="sk-test",
        transport=_transport(payload={"text": "A very long ramble", "duration": 185.5}),
    )
    app.dependency_overrides[get_transcriber] = lambda: bridge
    try:
        response = await authed_client.post(
            "/transcribe",
            files={"audio": ("recording.webm", AUDIO, "audio/webm")},
        )
    finally:
        app.dependency_overrides.pop(get_transcriber, None)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["transcription"] is None
    assert "120 second limit" in body["error"]


@pytest.mark.asyncio
async def test_transcribe_route_requires_session(client: AsyncClient):
    response = await client.post(
        "/transcribe",
        files={"audio": ("recording.webm", AUDIO, "audio/webm")},
        headers={"X-Requested-With": "XMLHttpRequest"},
    )
    assert response.status_code == 401
