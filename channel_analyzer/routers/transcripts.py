"""
API routes for transcripts.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from channel_analyzer.db.database import get_db
from channel_analyzer.routers.dependencies import error_detail
from channel_analyzer.schemas.transcript import ItemTranscriptResponse, TranscriptResponse
from channel_analyzer.services.transcript_service import TranscriptService
from channel_analyzer.utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/api/transcripts", tags=["transcripts"])


@router.get("/latest", response_model=ItemTranscriptResponse)
def get_latest_transcript(db: Session = Depends(get_db)) -> ItemTranscriptResponse:
    """Get the most recently published succeeded item with its transcript."""
    logger.info("Latest transcript request")

    latest = TranscriptService(db).get_latest()
    if latest is None:
        raise HTTPException(status_code=404, detail=error_detail(
            "TRANSCRIPT_NOT_FOUND", "No transcripts available yet"
        ))

    item, transcript = latest
    return ItemTranscriptResponse(
        item_id=item.id,
        title=item.title,
        published_at=item.published_at,
        status=item.status,
        transcript=TranscriptResponse.model_validate(transcript)
    )
