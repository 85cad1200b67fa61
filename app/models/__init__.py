"""
Models package for the Maintenance Request Orchestrator.
"""
from .triage import CaseDraft, ChatMessage, ChatRole, ChatSession, Urgency
from .contractor import CaseRequest, ContractorProfile, MatchResult
from .approval import ApprovalResponse, ApprovalStatus, ApprovalTokenGrant
from .notification import (
    Channel,
    DeliveryReport,
    NotificationEnvelope,
    NotificationType,
    RecipientSelector,
)

__all__ = [
    "ApprovalResponse",
    "ApprovalStatus",
    "ApprovalTokenGrant",
    "CaseDraft",
    "CaseRequest",
    "Channel",
    "ChatMessage",
    "ChatRole",
    "ChatSession",
    "ContractorProfile",
    "DeliveryReport",
    "MatchResult",
    "NotificationEnvelope",
    "NotificationType",
    "RecipientSelector",
    "Urgency",
]
