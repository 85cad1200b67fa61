"""
Triage conversation models: chat sessions and the case drafts they produce.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    Field,
    PrivateAttr,
    computed_field,
    field_validator,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChatRole(str, Enum):
    """Author of a transcript entry."""

    REQUESTER = "requester"
    ASSISTANT = "assistant"


class Urgency(str, Enum):
    """Urgency classification of a case draft."""

    EMERGENCY = "Emergency"
    URGENT = "Urgent"
    ROUTINE = "Routine"


class ChatMessage(BaseModel):
    """A single entry of the append-only triage transcript."""

    role: ChatRole = Field(..., description="Who wrote the message")
    text: str = Field(..., description="Message text")
    timestamp: datetime = Field(default_factory=utcnow, description="When it was appended")


class ChatSession(BaseModel):
    """Triage conversation state. Completion is monotonic: once complete, always complete."""

    id: str = Field(..., description="Session identifier")
    participant_id: str = Field(..., description="Requester identity")
    org_id: str = Field(..., description="Owning organization")
    messages: List[ChatMessage] = Field(default_factory=list, description="Ordered transcript")
    case_id: Optional[str] = Field(default=None, description="Case created from this session")
    created_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)

    _complete: bool = PrivateAttr(default=False)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_complete(self) -> bool:
        return self._complete

    def mark_complete(self) -> None:
        self._complete = True

    def append(self, role: ChatRole, text: str) -> ChatMessage:
        message = ChatMessage(role=role, text=text)
        self.messages.append(message)
        self.last_activity_at = message.timestamp
        return message


class CaseDraft(BaseModel):
    """Structured case extracted from a triage conversation, not yet persisted."""

    title: str = Field(..., min_length=1, description="Brief title of the issue")
    description: str = Field(..., min_length=1, description="Detailed description for the contractor")
    urgency: Urgency = Field(..., description="Emergency, Urgent or Routine")
    location: str = Field(..., min_length=1, description="Building and room")
    category: str = Field(..., min_length=1, description="Trade category, e.g. HVAC")
    requester_contact: str = Field(
        default="",
        validation_alias=AliasChoices(
            "requester_contact", "requesterContact", "requesterInfo", "studentInfo"
        ),
        description="Free-form requester contact details",
    )

    @field_validator("urgency", mode="before")
    @classmethod
    def normalize_urgency(cls, v):
        if isinstance(v, str):
            return v.strip().capitalize()
        return v

    @field_validator("requester_contact", mode="before")
    @classmethod
    def flatten_contact(cls, v):
        if isinstance(v, dict):
            return ", ".join(f"{key}: {value}" for key, value in v.items() if value)
        return v


class TriageReply(BaseModel):
    """Result of one triage turn. ``case_draft`` is set only on the completing turn."""

    session_id: str
    reply: str
    case_draft: Optional[CaseDraft] = None
    is_complete: bool = False
