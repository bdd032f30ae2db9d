"""
API routes for catalog items.
Handles listing, retrieval and explicit reprocessing of items.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from channel_analyzer.db.database import get_db
from channel_analyzer.routers.dependencies import error_detail, get_pipeline_driver
from channel_analyzer.schemas.item import ItemListResponse, ItemResponse
from channel_analyzer.schemas.transcript import ItemTranscriptResponse, TranscriptResponse
from channel_analyzer.services.dispatch_client import DispatchError
from channel_analyzer.services.item_service import ItemStore
from channel_analyzer.services.transcript_service import TranscriptService
from channel_analyzer.utils.logger import get_logger
from channel_analyzer.workers.pipeline_runner import ItemBusyError, PipelineDriver

logger = get_logger(__name__)
router = APIRouter(prefix="/api/items", tags=["items"])


@router.get("", response_model=ItemListResponse)
def list_items(
    limit: int = Query(20, ge=1, le=100, description="Number of items to return (max 100)"),
    db: Session = Depends(get_db)
) -> ItemListResponse:
    """List the most recently published items, newest first."""
    logger.info("List items request", limit=limit)

    items = ItemStore(db).recent(limit)
    return ItemListResponse(
        items=[ItemResponse.model_validate(item) for item in items],
        total=len(items)
    )


@router.get("/{item_id}", response_model=ItemTranscriptResponse)
def get_item(item_id: str, db: Session = Depends(get_db)) -> ItemTranscriptResponse:
    """
    Get one item together with its transcript, if it has one.

    Unknown ids are answered with 404 by the ItemNotFoundError handler.
    """
    logger.info("Get item request", item_id=item_id)

    item = ItemStore(db).get(item_id)
    transcript = TranscriptService(db).get_by_item_id(item_id)

    return ItemTranscriptResponse(
        item_id=item.id,
        title=item.title,
        published_at=item.published_at,
        status=item.status,
        transcript=TranscriptResponse.model_validate(transcript) if transcript else None
    )


@router.post("/{item_id}/transcribe", response_model=TranscriptResponse)
def transcribe_item(
    item_id: str,
    driver: PipelineDriver = Depends(get_pipeline_driver)
) -> TranscriptResponse:
    """
    Explicitly reprocess one item.

    Returns the existing transcript when there is one; otherwise resets the item
    to queued and runs extraction for it through the media worker.
    """
    logger.info("Transcribe item request", item_id=item_id)

    try:
        transcript = driver.transcribe_item(item_id)
    except ItemBusyError as e:
        logger.warning("Item busy", item_id=item_id, error=str(e))
        raise HTTPException(status_code=409, detail=error_detail("ITEM_BUSY", str(e)))
    except DispatchError as e:
        raise HTTPException(status_code=502, detail=error_detail(
            "TRANSCRIPTION_FAILED", "Transcription failed", details=str(e)
        ))

    return TranscriptResponse.model_validate(transcript)
