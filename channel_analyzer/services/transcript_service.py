"""
Service layer for transcript persistence.
Handles the 1:1 transcript upsert and transcript lookups.
"""

from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from channel_analyzer.models.item import Item
from channel_analyzer.models.transcript import Transcript
from channel_analyzer.utils.logger import get_logger

logger = get_logger(__name__)


class TranscriptService:
    """
    Service class for transcript operations.

    Transcripts are keyed by item id; saving again replaces the stored text,
    language and timestamp instead of adding a row.
    """

    def __init__(self, db: Session) -> None:
        """
        Initialize the transcript service.

        Args:
            db: Database session for operations
        """
        self.db: Session = db

    def upsert_transcript(self, item_id: str, text: str, language: Optional[str], source: str = "deepgram") -> Transcript:
        """
        Insert or overwrite the transcript for an item.

        Args:
            item_id: Owning item id
            text: Transcript text
            language: Detected language
            source: Speech-to-text backend that produced it

        Returns:
            Stored Transcript model instance
        """
        transcript = self.db.get(Transcript, item_id)
        overwritten = transcript is not None

        if transcript is None:
            transcript = Transcript(item_id=item_id)
            self.db.add(transcript)

        transcript.text = text
        transcript.language = language
        transcript.source = source
        transcript.created_at = datetime.utcnow()

        try:
            self.db.commit()
            self.db.refresh(transcript)
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to save transcript", item_id=item_id, error=str(e))
            raise

        logger.info("Saved transcript",
                    item_id=item_id,
                    characters=len(text),
                    language=language,
                    overwritten=overwritten)
        return transcript

    def get_by_item_id(self, item_id: str) -> Optional[Transcript]:
        """
        Get the transcript of an item.

        Returns:
            Transcript model instance or None if not transcribed yet
        """
        return self.db.get(Transcript, item_id)

    def get_latest(self) -> Optional[Tuple[Item, Transcript]]:
        """
        Get the most recently published succeeded item that has a transcript.

        Returns:
            Tuple of (item, transcript) or None if nothing is transcribed yet
        """
        result = (self.db.query(Item, Transcript)
                  .join(Transcript, Transcript.item_id == Item.id)
                  .filter(Item.status == "succeeded")
                  .order_by(Item.published_at.desc())
                  .first())

        if not result:
            logger.info("No transcribed items yet")
            return None

        return result[0], result[1]
