"""
Media worker HTTP service.
Verifies signed extraction requests, then downloads, transcodes and transcribes media.
"""

import sys
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from channel_analyzer.config import ConfigurationError, Settings, get_settings
from channel_analyzer.schemas.dispatch import TranscribeRequest, WorkerErrorResponse
from channel_analyzer.services.media_pipeline import ExtractionStageError, MediaPipeline
from channel_analyzer.services.stt_client import DeepgramClient
from channel_analyzer.utils.logger import get_logger, set_correlation_id, setup_logging
from channel_analyzer.utils.signing import SIGNATURE_HEADER, verify_signature

logger = get_logger(__name__)


def _error(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=WorkerErrorResponse(error=error, details=details).model_dump(exclude_none=True),
    )


def _invalid_fields(error: ValidationError) -> str:
    fields = [".".join(str(part) for part in err["loc"]) or "body" for err in error.errors()]
    return "Invalid or missing fields: " + ", ".join(fields)


def create_app(secret: str, pipeline: MediaPipeline) -> FastAPI:
    """
    Build the worker application.

    Args:
        secret: Pre-shared signing secret
        pipeline: Extraction pipeline that does the actual work

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(title="Channel Analyzer Media Worker", version="1.0.0", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        """Health probe for the dispatch client and container orchestration."""
        return {"status": "ok"}

    @app.post("/transcribe")
    async def transcribe(request: Request) -> JSONResponse:
        """
        Verify the signature over the raw body, then run the extraction pipeline.

        Authentication happens before the body is even parsed, so a rejected
        request never triggers any download or transcode work.
        """
        correlation_id = set_correlation_id()
        body = await request.body()
        signature = request.headers.get(SIGNATURE_HEADER)

        if not signature:
            logger.error("Missing signature header")
            return _error(401, "Missing signature")

        if not verify_signature(body, signature, secret):
            logger.error("Invalid signature", body_bytes=len(body))
            return _error(401, "Invalid signature")

        try:
            transcribe_request = TranscribeRequest.model_validate_json(body)
        except ValidationError as e:
            logger.warning("Invalid transcription request", errors=e.error_count())
            return _error(400, "Invalid request", details=_invalid_fields(e))

        logger.info("Transcription request accepted",
                    resource_url=transcribe_request.resource_url,
                    language_hint=transcribe_request.language_hint,
                    mode=transcribe_request.mode.value)

        try:
            result = await run_in_threadpool(pipeline.process, transcribe_request)
        except ExtractionStageError as e:
            logger.error("Transcription failed", stage=e.stage, error=str(e), details=e.details)
            return _error(500, str(e), details=e.details)
        except Exception as e:
            logger.error("Unexpected error during transcription", error=str(e), error_type=type(e).__name__)
            return _error(500, "Transcription failed", details=type(e).__name__)

        response = JSONResponse(content=result.model_dump())
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    return app


def build_app_from_settings(settings: Settings) -> FastAPI:
    """Validate worker settings and wire the pipeline with a real Deepgram client."""
    settings.validate_for_media_worker()
    stt_client = DeepgramClient(
        api_key=settings.deepgram_api_key,
        base_url=settings.deepgram_base_url,
        model=settings.deepgram_model,
    )
    return create_app(settings.media_worker_secret, MediaPipeline(stt_client))


def main():
    """Main entry point for the media worker."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level)

    logger.info("Media worker starting",
                port=settings.media_worker_port,
                signing_configured=bool(settings.media_worker_secret),
                deepgram_configured=bool(settings.deepgram_api_key))

    try:
        app = build_app_from_settings(settings)
    except ConfigurationError as e:
        logger.error("Invalid media worker configuration", error=str(e))
        sys.exit(1)

    uvicorn.run(app, host="0.0.0.0", port=settings.media_worker_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
