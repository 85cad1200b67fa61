"""
Request and response schemas for notification endpoints.
"""
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.notification import (
    Channel,
    DeliveryOutcome,
    NotificationEnvelope,
    NotificationType,
    RecipientSelector,
)


class DispatchRequest(BaseModel):
    envelope: NotificationEnvelope
    recipient: RecipientSelector


class DispatchResponse(BaseModel):
    notification_type: NotificationType
    succeeded: int
    failed: int
    total_failure: bool
    skipped: List[Channel] = Field(default_factory=list)
    outcomes: List[DeliveryOutcome] = Field(default_factory=list)


class NotificationStatsResponse(BaseModel):
    dispatches: int
    deliveries_succeeded: int
    deliveries_failed: int
    total_outages: int
    live_connections: int
    delivery_configured: bool
    circuit_breaker: Optional[dict] = None
