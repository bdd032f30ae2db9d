"""
API routes for agent analyses.
Handles retrieval of stored analysis records and on-demand agent runs.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from channel_analyzer.agents.base_agent import AgentProcessingError
from channel_analyzer.agents.kinds import AGENT_KINDS
from channel_analyzer.agents.orchestrator import SchemaValidationError
from channel_analyzer.db.database import get_db
from channel_analyzer.routers.dependencies import error_detail, get_pipeline_driver
from channel_analyzer.schemas.analysis import AnalysisRecordResponse, ItemAnalysisResponse
from channel_analyzer.services.analysis_service import AnalysisService
from channel_analyzer.utils.logger import get_logger
from channel_analyzer.workers.pipeline_runner import PipelineDriver, TranscriptNotFoundError

logger = get_logger(__name__)
router = APIRouter(prefix="/api/analysis", tags=["analysis"])


@router.get("/{item_id}", response_model=ItemAnalysisResponse)
def get_item_analyses(item_id: str, db: Session = Depends(get_db)) -> ItemAnalysisResponse:
    """Get every stored analysis record of an item (404 when there is none)."""
    logger.info("Get analyses request", item_id=item_id)

    records = AnalysisService(db).list_for_item(item_id)
    return ItemAnalysisResponse(
        item_id=item_id,
        analyses=[AnalysisRecordResponse.model_validate(record) for record in records]
    )


@router.post("/{item_id}/{agent_kind}", response_model=AnalysisRecordResponse)
def run_analysis(
    item_id: str,
    agent_kind: str,
    driver: PipelineDriver = Depends(get_pipeline_driver)
) -> AnalysisRecordResponse:
    """
    Run one agent kind over the item's stored transcript and store the result.

    Rerunning a kind overwrites its previous record for the item.
    """
    kind = AGENT_KINDS.get(agent_kind)
    if kind is None:
        raise HTTPException(status_code=400, detail=error_detail(
            "INVALID_AGENT_KIND", f"Invalid agent kind: {agent_kind}", valid_kinds=list(AGENT_KINDS)
        ))

    logger.info("Run analysis request", item_id=item_id, agent_kind=agent_kind)

    try:
        record = driver.analyze_item(item_id, kind)
    except TranscriptNotFoundError as e:
        logger.warning("Transcript not available for analysis", item_id=item_id, error=str(e))
        raise HTTPException(status_code=404, detail=error_detail(
            "TRANSCRIPT_NOT_FOUND", "Transcribe the item before running analysis"
        ))
    except SchemaValidationError as e:
        raise HTTPException(status_code=422, detail=error_detail("INVALID_AGENT_OUTPUT", str(e)))
    except AgentProcessingError as e:
        raise HTTPException(status_code=502, detail=error_detail("AGENT_FAILED", str(e)))

    return AnalysisRecordResponse.model_validate(record)
