"""Pydantic schemas for voice transcription."""

from pydantic import BaseModel


class TranscriptionRead(BaseModel):
    text: str
    duration: float | None = None


class TranscriptionResponse(BaseModel):
    success: bool
    transcription: TranscriptionRead | None = None
    error: str | None = None
