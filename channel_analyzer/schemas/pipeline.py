"""
Pydantic schemas for batch run summaries.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class RunSummary(BaseModel):
    """Aggregate outcome of one batch run. Never carries stack traces or secrets."""
    discovered: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    analyzed: int = 0
    high_urgency_findings: int = 0
    notified: int = 0
    errors: List[str] = []
    aborted: bool = False
    duration_seconds: float = 0.0


class CheckRequest(BaseModel):
    """Optional body of a manual catalog check."""
    limit: Optional[int] = Field(None, ge=1, description="Number of recent catalog entries to scan (capped at 20)")
