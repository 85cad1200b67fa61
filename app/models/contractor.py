"""
Contractor matching models: candidate profiles, case requests and match results.
"""
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from app.models.triage import CaseDraft, Urgency

Severity = Literal["Low", "Medium", "High", "Urgent", "Critical"]

ADMIN_INTERVENTION_ID = "admin-intervention-required"


class ContractorProfile(BaseModel):
    """Snapshot of a contractor as owned by the case store."""

    id: str = Field(..., description="Contractor identifier")
    name: str = Field(default="", description="Display name")
    category: Optional[str] = Field(default=None, description="Primary trade category")
    specializations: List[str] = Field(default_factory=list)
    availability_pattern: str = Field(default="", description="Free-text availability")
    response_time_hours: float = Field(default=24.0, ge=0)
    current_workload: int = Field(default=0, ge=0)
    max_jobs_per_day: int = Field(default=1, ge=0)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    emergency_available: bool = False
    is_active: bool = True
    hourly_rate: Optional[float] = Field(default=None, ge=0)

    @property
    def has_capacity(self) -> bool:
        return self.current_workload < self.max_jobs_per_day


class CaseRequest(BaseModel):
    """The case-like record a matching call scores candidates against."""

    id: Optional[str] = None
    title: str = ""
    category: str
    priority: Severity = "Medium"
    urgency: Severity = "Medium"
    description: str = ""
    location: Optional[str] = None
    estimated_duration: str = "Unknown"
    safety_risk: Literal["None", "Low", "Medium", "High"] = "None"
    contractor_type: Optional[str] = None

    @property
    def is_urgent(self) -> bool:
        return self.priority in ("Urgent", "Critical") or self.urgency in ("Urgent", "Critical")

    @classmethod
    def from_draft(cls, draft: CaseDraft, case_id: Optional[str] = None) -> "CaseRequest":
        priority, urgency, safety_risk = {
            Urgency.EMERGENCY: ("Critical", "Critical", "High"),
            Urgency.URGENT: ("Urgent", "High", "Medium"),
            Urgency.ROUTINE: ("Medium", "Medium", "None"),
        }[draft.urgency]
        return cls(
            id=case_id,
            title=draft.title,
            category=draft.category,
            priority=priority,
            urgency=urgency,
            description=draft.description,
            location=draft.location,
            safety_risk=safety_risk,
        )


class AvailabilitySnapshot(BaseModel):
    """Availability of a contractor at the time of a matching call."""

    contractor_id: str
    is_available: bool
    current_workload: int
    max_capacity: int
    availability_reason: Optional[str] = None

    @classmethod
    def of(cls, contractor: ContractorProfile) -> "AvailabilitySnapshot":
        return cls(
            contractor_id=contractor.id,
            is_available=contractor.has_capacity,
            current_workload=contractor.current_workload,
            max_capacity=contractor.max_jobs_per_day,
            availability_reason=contractor.availability_pattern,
        )


class MatchResult(BaseModel):
    """One scored (case, contractor) pairing."""

    contractor_id: str
    contractor_name: str = ""
    match_score: float = Field(..., ge=0, le=100)
    reasoning: str
    estimated_response_time: str
    risk_factors: Optional[List[str]] = None
    availability: AvailabilitySnapshot


class MatchStrategy(str, Enum):
    MODEL = "model"
    FALLBACK = "fallback"


# Schema the model-assisted path must satisfy

class RecommendedContractor(BaseModel):
    contractorId: str
    matchScore: float = Field(..., ge=0, le=100)
    reasoning: str
    estimatedResponseTime: str
    riskFactors: Optional[List[str]] = None


class AlternativeContractor(BaseModel):
    contractorId: str
    matchScore: float = Field(..., ge=0, le=100)
    reasoning: str


class CommunicationTemplate(BaseModel):
    subject: str
    message: str
    urgencyLevel: Literal["normal", "high", "urgent", "emergency"]


class AssignmentResponse(BaseModel):
    recommendedContractor: RecommendedContractor
    alternativeContractors: List[AlternativeContractor] = Field(default_factory=list, max_length=2)
    coordinationNotes: str
    communicationTemplate: CommunicationTemplate


class MatchOutcome(BaseModel):
    """Result of a matching call along with how it was produced."""

    strategy: MatchStrategy
    results: List[MatchResult]
    coordination_notes: Optional[str] = None
    communication_template: Optional[CommunicationTemplate] = None
