"""
FastAPI application entry point for Channel Analyzer.
Configures the application, middleware, routes, and error handlers.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from channel_analyzer.config import get_settings
from channel_analyzer.db.database import init_db
from channel_analyzer.routers import analysis, items, pipeline, transcripts
from channel_analyzer.services.analysis_service import AnalysisNotFoundError
from channel_analyzer.services.item_service import ItemNotFoundError
from channel_analyzer.utils.logger import get_correlation_id, get_logger, set_correlation_id, setup_logging

# Initialize settings and logging
settings = get_settings()
setup_logging(settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Channel Analyzer API", version="1.0.0")

    try:
        init_db()
        logger.info("Database initialization completed")
    except Exception as e:
        logger.error("Database initialization failed", error=str(e))
        raise

    yield

    logger.info("Shutting down Channel Analyzer API")


app = FastAPI(
    title="Channel Analyzer API",
    description="Transcript extraction and agent analysis for a video channel",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next) -> Response:
    """Add correlation ID to all requests for tracing."""
    correlation_id = set_correlation_id(request.headers.get("X-Correlation-ID"))

    logger.info("Request started",
                method=request.method,
                path=request.url.path,
                client_ip=request.client.host if request.client else "unknown")

    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id

    logger.info("Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code)

    return response


def _error_response(status_code: int, code: str, message: str, request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "correlation_id": get_correlation_id()
            }
        }
    )


@app.exception_handler(ItemNotFoundError)
async def item_not_found_handler(request: Request, exc: ItemNotFoundError) -> JSONResponse:
    """Handle item not found errors."""
    logger.warning("Item not found", error=str(exc), path=request.url.path)
    return _error_response(404, "ITEM_NOT_FOUND", "The requested item does not exist", request)


@app.exception_handler(AnalysisNotFoundError)
async def analysis_not_found_handler(request: Request, exc: AnalysisNotFoundError) -> JSONResponse:
    """Handle analysis not found errors."""
    logger.warning("Analysis not found", error=str(exc), path=request.url.path)
    return _error_response(404, "ANALYSIS_NOT_FOUND", "No analysis exists for the requested item", request)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other unhandled exceptions."""
    logger.error("Unhandled exception",
                 error=str(exc),
                 error_type=type(exc).__name__,
                 path=request.url.path)
    return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred", request)


app.include_router(items.router)
app.include_router(transcripts.router)
app.include_router(analysis.router)
app.include_router(pipeline.router)


@app.get("/health")
async def health_check() -> Dict[str, str]:
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "service": "channel-analyzer-api",
        "version": "1.0.0"
    }


@app.get("/")
async def root() -> Dict[str, str]:
    """Root endpoint with API information."""
    return {
        "service": "Channel Analyzer API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


def main():
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "channel_analyzer.main:app",
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    main()
