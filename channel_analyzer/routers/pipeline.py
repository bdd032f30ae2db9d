"""
API routes that trigger pipeline runs.
"""

from typing import Optional

from fastapi import APIRouter, Depends

from channel_analyzer.routers.dependencies import get_pipeline_driver, verify_cron_secret
from channel_analyzer.schemas.pipeline import CheckRequest, RunSummary
from channel_analyzer.utils.logger import get_logger
from channel_analyzer.workers.pipeline_runner import PipelineDriver

logger = get_logger(__name__)
router = APIRouter(prefix="/api", tags=["pipeline"])

MAX_CHECK_LIMIT = 20


@router.api_route("/cron/process-new-items", methods=["GET", "POST"], response_model=RunSummary,
                  dependencies=[Depends(verify_cron_secret)])
def process_new_items(driver: PipelineDriver = Depends(get_pipeline_driver)) -> RunSummary:
    """
    Run one full batch: scan, queue, extract, analyze and notify.

    Intended to be called by a scheduler. The run is synchronous, so the
    response arrives when the whole batch has finished.
    """
    logger.info("Scheduled batch run requested")
    return driver.run_batch()


@router.post("/check", response_model=RunSummary)
def check_for_new_items(
    request: Optional[CheckRequest] = None,
    driver: PipelineDriver = Depends(get_pipeline_driver)
) -> RunSummary:
    """Scan the catalog and queue new items without processing them."""
    requested = request.limit if request and request.limit else driver.fetch_limit
    limit = min(requested, MAX_CHECK_LIMIT)
    logger.info("Manual catalog check requested", limit=limit)
    return driver.discover(limit)
