"""
Shared FastAPI dependencies and error payload helpers for the API routers.
"""

import hmac
from typing import Any, Dict, Generator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from channel_analyzer.config import ConfigurationError, get_settings
from channel_analyzer.db.database import get_db
from channel_analyzer.utils.logger import get_correlation_id, get_logger
from channel_analyzer.workers.pipeline_runner import PipelineDriver, build_driver

logger = get_logger(__name__)


def error_detail(code: str, message: str, **extra: Any) -> Dict[str, Any]:
    """Build the error body used by every API route."""
    error = {"code": code, "message": message, "correlation_id": get_correlation_id()}
    error.update(extra)
    return {"error": error}


def get_pipeline_driver(db: Session = Depends(get_db)) -> Generator[PipelineDriver, None, None]:
    """Provide a driver bound to the request's session; outbound clients are closed afterwards."""
    settings = get_settings()
    try:
        settings.validate_for_pipeline()
    except ConfigurationError as e:
        logger.error("Pipeline not configured", error=str(e))
        raise HTTPException(status_code=503, detail=error_detail("PIPELINE_NOT_CONFIGURED", str(e)))

    driver = build_driver(settings, db)
    try:
        yield driver
    finally:
        driver.close()


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """
    Require `Authorization: Bearer <CRON_SECRET>` when a cron secret is configured.

    Raises:
        HTTPException: 401 when the header is missing or wrong
    """
    cron_secret = get_settings().cron_secret
    if not cron_secret:
        return

    expected = f"Bearer {cron_secret}"
    if not authorization or not hmac.compare_digest(authorization.encode("utf-8"), expected.encode("utf-8")):
        logger.error("Unauthorized cron request")
        raise HTTPException(status_code=401, detail=error_detail("UNAUTHORIZED", "Unauthorized"))
