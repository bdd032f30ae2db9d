"""
Pydantic schemas for the media worker dispatch protocol.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TranscriptionMode(str, Enum):
    """How the worker feeds audio to the speech-to-text backend."""
    PRERECORDED = "prerecorded"
    STREAMING = "streaming"


class TranscribeRequest(BaseModel):
    """Body of a signed extraction request."""
    resource_url: str = Field(..., min_length=1)
    language_hint: str = "en"
    mode: TranscriptionMode = TranscriptionMode.PRERECORDED

    class Config:
        extra = "forbid"


class TranscribeResponse(BaseModel):
    """Normalized transcript returned by the worker."""
    duration_seconds: int = Field(..., ge=0)
    text: str
    language: str


class WorkerErrorResponse(BaseModel):
    """Error body returned by the worker for any rejected or failed request."""
    error: str
    details: Optional[str] = None
