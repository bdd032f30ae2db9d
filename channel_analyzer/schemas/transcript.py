"""
Pydantic schemas for transcript-related API responses.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class TranscriptResponse(BaseModel):
    """Schema for transcript API responses."""
    item_id: str
    source: str
    language: Optional[str] = None
    text: str
    created_at: datetime

    class Config:
        from_attributes = True


class ItemTranscriptResponse(BaseModel):
    """Schema for an item together with its transcript."""
    item_id: str
    title: str
    published_at: datetime
    status: str
    transcript: Optional[TranscriptResponse] = None
