"""
SQLAlchemy model for item transcripts.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship

from channel_analyzer.db.database import Base


class Transcript(Base):
    """
    Database model for the transcript of one item.

    Keyed by item id (1:1), so reprocessing overwrites the row wholesale.
    """

    __tablename__ = "transcripts"

    item_id = Column(String(64), ForeignKey("items.id", ondelete="CASCADE"), primary_key=True)
    source = Column(String(50), nullable=False, default="deepgram")
    language = Column(String(20), nullable=True)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationship
    item = relationship("Item", back_populates="transcript")

    def __repr__(self) -> str:
        return f"<Transcript(item_id={self.item_id}, chars={len(self.text or '')})>"
