"""
Notification models for multi-channel dispatch.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class NotificationType(str, Enum):
    CASE_CREATED = "case_created"
    CONTRACTOR_ASSIGNED = "contractor_assigned"
    CASE_UPDATED = "case_updated"
    EMERGENCY_ALERT = "emergency_alert"
    APPROVAL_REQUESTED = "approval_requested"


class Channel(str, Enum):
    PUSH = "push"
    EMAIL = "email"
    SMS = "sms"


class NotificationEnvelope(BaseModel):
    """A notification to deliver; lives only for the duration of one dispatch."""

    type: NotificationType
    subject: str
    message: str
    urgency_level: Optional[str] = None
    case_id: Optional[str] = None
    case_number: Optional[str] = None
    appointment_id: Optional[str] = None
    channels: List[Channel] = Field(
        default_factory=lambda: [Channel.PUSH, Channel.EMAIL, Channel.SMS]
    )
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RecipientSelector(BaseModel):
    """Who a dispatch targets: one party, every live member of a role, or both."""

    party_id: Optional[str] = None
    role: Optional[str] = None
    org_id: Optional[str] = None

    @model_validator(mode="after")
    def check_target(self) -> "RecipientSelector":
        if not self.party_id and not self.role:
            raise ValueError("Either party_id or role is required")
        if self.role and not self.org_id:
            raise ValueError("org_id is required when selecting by role")
        return self


class DeliveryOutcome(BaseModel):
    channel: Channel
    target: str
    success: bool
    error: Optional[str] = None


class DeliveryReport(BaseModel):
    """Observable outcome of one dispatch."""

    notification_type: NotificationType
    outcomes: List[DeliveryOutcome] = Field(default_factory=list)
    skipped: List[Channel] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)

    @property
    def total_failure(self) -> bool:
        """Nothing was delivered although a send was attempted or a channel skipped."""
        return self.succeeded == 0 and bool(self.outcomes or self.skipped)

    def merge(self, other: "DeliveryReport") -> "DeliveryReport":
        self.outcomes.extend(other.outcomes)
        self.skipped.extend(c for c in other.skipped if c not in self.skipped)
        return self
