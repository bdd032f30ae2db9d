"""
Pydantic schemas for catalog entries and item API responses.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class CatalogEntry(BaseModel):
    """One item as listed by the external catalog, before it is stored."""
    external_id: str = Field(..., min_length=1)
    title: str
    published_at: datetime
    iso_duration: Optional[str] = None  # ISO 8601 (e.g. PT15M33S)


class ItemResponse(BaseModel):
    """Schema for item API responses."""
    id: str
    title: str
    published_at: datetime
    duration_sec: Optional[int] = None
    status: str  # queued, processing, succeeded, failed
    processed_at: Optional[datetime] = None
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class ItemListResponse(BaseModel):
    """Schema for the recent items listing."""
    items: List[ItemResponse]
    total: int
