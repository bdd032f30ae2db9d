"""
Service layer for analysis records.
Handles the (item, agent kind) upsert and retrieval of stored agent output.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from channel_analyzer.models.analysis import AnalysisRecord
from channel_analyzer.schemas.analysis import AnalysisOutput
from channel_analyzer.utils.logger import get_logger

logger = get_logger(__name__)


class AnalysisNotFoundError(Exception):
    """Raised when an analysis record is not found in the database."""
    pass


class AnalysisService:
    """
    Service class for analysis record operations.

    At most one record exists per (item, agent kind); rerunning an agent
    overwrites that record and bumps its updated_at.
    """

    def __init__(self, db: Session) -> None:
        """
        Initialize the analysis service.

        Args:
            db: Database session for operations
        """
        self.db: Session = db

    def upsert_analysis(self, item_id: str, agent_kind: str, output: AnalysisOutput,
                        raw_model_output: Optional[str] = None) -> AnalysisRecord:
        """
        Save validated agent output for an item.

        Args:
            item_id: Analyzed item id
            agent_kind: Name of the agent kind that produced the output
            output: Schema-validated structured output
            raw_model_output: Unparsed model response kept for auditing

        Returns:
            Stored AnalysisRecord model instance
        """
        record = self.get_for_item_and_kind(item_id, agent_kind)
        created = record is None

        if record is None:
            record = AnalysisRecord(item_id=item_id, agent_kind=agent_kind)
            self.db.add(record)

        record.findings = [finding.model_dump(mode="json") for finding in output.findings]
        record.summary = output.summary
        record.confidence = output.confidence.value
        record.notes = output.notes
        record.raw_model_output = raw_model_output
        record.updated_at = datetime.utcnow()

        try:
            self.db.commit()
            self.db.refresh(record)
        except Exception as e:
            self.db.rollback()
            logger.error("Failed to save analysis record",
                         item_id=item_id,
                         agent_kind=agent_kind,
                         error=str(e))
            raise

        logger.info("Saved analysis record",
                    item_id=item_id,
                    agent_kind=agent_kind,
                    analysis_id=record.id,
                    findings_count=len(output.findings),
                    confidence=record.confidence,
                    created=created)
        return record

    def get_for_item_and_kind(self, item_id: str, agent_kind: str) -> Optional[AnalysisRecord]:
        """Get the record of one agent kind for one item, if any."""
        return (self.db.query(AnalysisRecord)
                .filter(AnalysisRecord.item_id == item_id,
                        AnalysisRecord.agent_kind == agent_kind)
                .first())

    def list_for_item(self, item_id: str) -> List[AnalysisRecord]:
        """
        List all analysis records of an item.

        Raises:
            AnalysisNotFoundError: If the item has no analysis yet
        """
        records = (self.db.query(AnalysisRecord)
                   .filter(AnalysisRecord.item_id == item_id)
                   .order_by(AnalysisRecord.agent_kind)
                   .all())

        if not records:
            logger.warning("No analysis found for item", item_id=item_id)
            raise AnalysisNotFoundError(f"No analysis found for item {item_id}")

        logger.info("Retrieved analysis records", item_id=item_id, count=len(records))
        return records
