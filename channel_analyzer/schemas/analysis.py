"""
Pydantic schemas for agent structured output and analysis API responses.

Each agent kind declares its own output contract as a subclass of
``AnalysisOutput``; the orchestrator validates terminal model output against it.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class UrgencyLevel(str, Enum):
    """How urgently the analyst's recommendation should be acted on."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ConfidenceLevel(str, Enum):
    """Overall confidence in an analysis, driven by transcript clarity."""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Finding(BaseModel):
    """One subject the analyst made a recommendation about."""
    subject_name: str = Field(..., min_length=1, description="Name exactly as transcribed (do not correct or guess spelling)")
    attributes: Dict[str, Any] = Field(
        default_factory=dict,
        description="Only explicitly mentioned details, e.g. team, position, roster_percentage (0-100)",
    )
    urgency: UrgencyLevel = Field(..., description="How urgent this recommendation is")
    reasoning: str = Field(..., description="Exact quote or close paraphrase from the transcript explaining the recommendation")
    context: Optional[str] = Field(None, description="Additional context like injury status, recent games, schedule")

    class Config:
        extra = "forbid"


class AnalysisOutput(BaseModel):
    """Common structured-output contract shared by every agent kind."""
    findings: List[Finding] = Field(..., description="Subjects matching the agent's criteria; empty when none qualify")
    summary: str = Field(..., description="Brief 2-3 sentence summary of key findings")
    confidence: ConfidenceLevel = Field(..., description="Overall confidence in this analysis based on transcript clarity")
    notes: Optional[str] = Field(None, description="Any caveats, uncertainties, or additional observations")

    class Config:
        extra = "forbid"

    def high_urgency_findings(self) -> List[Finding]:
        """Return only the findings at HIGH urgency."""
        return [finding for finding in self.findings if finding.urgency == UrgencyLevel.HIGH]


class MustRosterOutput(AnalysisOutput):
    """Players the analyst says must be picked up now."""


class WatchListOutput(AnalysisOutput):
    """Players worth monitoring but not yet adding."""


class DropOutput(AnalysisOutput):
    """Players the analyst recommends dropping."""


class InjuryReturnOutput(AnalysisOutput):
    """Players returning from injury with fantasy impact."""


class SellHighOutput(AnalysisOutput):
    """Players to trade away while their value is at its peak."""


class BuyLowOutput(AnalysisOutput):
    """Players to acquire while their value is depressed."""


class AnalysisRecordResponse(BaseModel):
    """Schema for a stored analysis record."""
    id: str
    item_id: str
    agent_kind: str
    findings: List[Finding]
    summary: Optional[str] = None
    confidence: Optional[ConfidenceLevel] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ItemAnalysisResponse(BaseModel):
    """Schema for all analysis records of one item."""
    item_id: str
    analyses: List[AnalysisRecordResponse]
