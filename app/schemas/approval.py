"""
Request and response schemas for appointment approval endpoints.
"""
from typing import Literal, Optional

from pydantic import BaseModel, Field

from app.models.approval import ApprovalStatus, ApprovalTokenGrant, TimeSlot
from app.models.notification import DeliveryReport


class IssueTokenRequest(BaseModel):
    """Request schema for issuing an approval token."""

    ttl_hours: Optional[int] = Field(
        default=None, description="Token lifetime in hours, 1 to 72 (default 24)"
    )
    notify_occupant: bool = Field(
        default=True, description="Send the approval request to the appointment's occupant"
    )


class IssueTokenResponse(BaseModel):
    grant: ApprovalTokenGrant
    notification: Optional[DeliveryReport] = None


class ApprovalDecisionRequest(BaseModel):
    """Optional body posted with an approve/decline action."""

    reason: Optional[str] = Field(default=None, max_length=1000)
    preferred_time_slot: Optional[TimeSlot] = None
    contact_preference: Optional[Literal["email", "phone", "text"]] = None


class ApprovalStatusResponse(BaseModel):
    appointment_id: str
    approval: Optional[ApprovalStatus] = Field(
        default=None, description="Absent when no approval token was ever issued"
    )
