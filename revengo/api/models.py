"""
Pydantic models for API requests and responses.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from revengo.core.models import AnalysisResult, FileInfo


# ==================== ANALYSIS ====================

class AnalyzeResponse(BaseModel):
    """Response of POST /analyze."""
    status: str = Field("success", description="Always 'success'; failures use HTTP error codes")
    capability: str = Field(..., description="Capability that produced the analysis")
    file_info: FileInfo
    analysis: AnalysisResult
    inconclusive: bool = Field(False, description="True when every analysis task failed")


# ==================== HEALTH CHECK ====================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
    default_capability: str
    capabilities: List[str]
    providers: List[str]
    anthropic_configured: bool
    openai_configured: bool
    external_strings_available: bool
    usage: Dict[str, Any] = Field(default_factory=dict, description="Capability calls, tokens and cost since start")
