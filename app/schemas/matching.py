"""
Request and response schemas for contractor matching.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.contractor import (
    CaseRequest,
    CommunicationTemplate,
    ContractorProfile,
    MatchResult,
    MatchStrategy,
)


class MatchRequest(BaseModel):
    case: CaseRequest
    candidates: List[ContractorProfile] = Field(default_factory=list)


class MatchResponse(BaseModel):
    strategy: MatchStrategy
    results: List[MatchResult] = Field(..., min_length=1)
    coordination_notes: Optional[str] = None
    communication_template: Optional[CommunicationTemplate] = None
