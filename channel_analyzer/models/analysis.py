"""
SQLAlchemy model for agent analysis records.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from channel_analyzer.db.database import Base, JSONType


class AnalysisRecord(Base):
    """
    Database model for the output of one agent kind over one item's transcript.

    Unique per (item_id, agent_kind); reruns update the existing row.
    """

    __tablename__ = "analysis_records"
    __table_args__ = (
        UniqueConstraint("item_id", "agent_kind", name="uq_analysis_item_agent_kind"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    item_id = Column(String(64), ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_kind = Column(String(50), nullable=False, index=True)
    findings = Column(JSONType, nullable=False, default=list)  # Array of finding objects
    summary = Column(Text, nullable=True)
    confidence = Column(String(10), nullable=True)  # HIGH, MEDIUM, LOW
    notes = Column(Text, nullable=True)
    raw_model_output = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationship
    item = relationship("Item", back_populates="analyses")

    def __repr__(self) -> str:
        return f"<AnalysisRecord(item_id={self.item_id}, agent_kind='{self.agent_kind}', confidence='{self.confidence}')>"
