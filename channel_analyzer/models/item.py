"""
SQLAlchemy model for catalog items tracked through the pipeline.
"""

from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, Text
from sqlalchemy.orm import relationship

from channel_analyzer.db.database import Base

ITEM_STATUSES = ("queued", "processing", "succeeded", "failed")


class Item(Base):
    """
    Database model for a discovered catalog item (one channel video).

    The external catalog id is the primary key, so re-discovery can never
    create a duplicate row. Status moves queued -> processing -> succeeded|failed.
    """

    __tablename__ = "items"

    id = Column(String(64), primary_key=True)  # external catalog id
    title = Column(String(500), nullable=False)
    published_at = Column(DateTime, nullable=False, index=True)
    duration_sec = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default="queued", index=True)  # queued, processing, succeeded, failed
    processed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    transcript = relationship("Transcript", back_populates="item", uselist=False, cascade="all, delete-orphan")
    analyses = relationship("AnalysisRecord", back_populates="item", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Item(id={self.id}, status='{self.status}')>"
