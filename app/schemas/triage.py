"""
Request and response schemas for triage API endpoints.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.contractor import MatchResult, MatchStrategy
from app.models.triage import CaseDraft, ChatMessage


class StartTriageRequest(BaseModel):
    """Request schema for opening a triage session."""

    participant_id: str = Field(..., min_length=1, description="Requester identity")
    org_id: str = Field(..., min_length=1, description="Organization the request belongs to")
    message: str = Field(..., min_length=1, max_length=4000, description="First requester message")


class TriageMessageRequest(BaseModel):
    """Request schema for a follow-up requester message."""

    message: str = Field(..., min_length=1, max_length=4000)


class CaseSummary(BaseModel):
    """Outcome of the pipeline run triggered by a completed session."""

    case_id: str
    case_number: Optional[str] = None
    strategy: MatchStrategy
    matches: List[MatchResult] = Field(default_factory=list)
    assigned_contractor_id: Optional[str] = None


class TriageTurnResponse(BaseModel):
    """Response schema for one triage turn."""

    session_id: str
    reply: str
    is_complete: bool = False
    case_draft: Optional[CaseDraft] = Field(
        default=None, description="Present only on the turn that completes the session"
    )
    case: Optional[CaseSummary] = None
    case_error: Optional[str] = Field(
        default=None, description="Set when the draft was produced but the case could not be stored"
    )


class TriageSessionResponse(BaseModel):
    """Response schema for a session transcript."""

    session_id: str
    participant_id: str
    org_id: str
    is_complete: bool
    case_id: Optional[str] = None
    messages: List[ChatMessage]
    created_at: datetime
    last_activity_at: datetime
