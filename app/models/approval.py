"""
Approval token models for occupant site-access consent.
"""
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


class ApprovalState(str, Enum):
    """Externally reported approval state. EXPIRED is computed, never stored."""

    PENDING = "pending"
    APPROVED = "approved"
    DECLINED = "declined"
    EXPIRED = "expired"


class AppointmentStatus(str, Enum):
    """Persisted appointment statuses this service reads and writes."""

    PROPOSED = "Proposed"
    APPROVED = "Approved"
    CANCELLED = "Cancelled"


class TimeSlot(BaseModel):
    """Counter-proposed time window."""

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_order(self) -> "TimeSlot":
        if self.end <= self.start:
            raise ValueError("Time slot end must be after start")
        return self


class ApprovalResponse(BaseModel):
    """Occupant's answer to an approval request."""

    approved: bool
    reason: Optional[str] = Field(default=None, max_length=1000)
    preferred_time_slot: Optional[TimeSlot] = None
    contact_preference: Optional[Literal["email", "phone", "text"]] = None


class ApprovalTokenPayload(BaseModel):
    """Signed half of an approval token. Epoch values are milliseconds."""

    appointmentId: str
    orgId: Optional[str] = None
    expiresAt: int
    iat: int


class ApprovalTokenGrant(BaseModel):
    """Issued approval token with its one-click links."""

    token: str
    appointment_id: str
    expires_at: datetime
    approve_url: str
    decline_url: str


class ApprovalStatus(BaseModel):
    """Approval state of an appointment."""

    status: ApprovalState
    expires_at: datetime
    responded_at: Optional[datetime] = None
    response: Optional[ApprovalResponse] = None
