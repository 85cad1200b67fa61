"""
Health check endpoint for the Maintenance Request Orchestrator.
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.config import settings
from app.core.dependencies import get_delivery_gateway, get_session_store
from app.core.logging import get_logger
from app.services.delivery_gateway import DeliveryGateway
from app.services.triage_service import SessionStore

router = APIRouter()
logger = get_logger(__name__)

_started_at = time.time()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    uptime_seconds: float
    timestamp: datetime
    service_name: str
    checks: Dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(
    session_store: SessionStore = Depends(get_session_store),
    gateway: DeliveryGateway = Depends(get_delivery_gateway),
) -> HealthResponse:
    """
    Basic health check.

    Missing delivery or store credentials degrade the service rather than
    failing it, so they are reported but never turn the status unhealthy.
    """
    breaker = gateway.get_circuit_breaker_status()
    status = "healthy"
    if not gateway.configured or breaker["state"] != "closed":
        status = "degraded"

    return HealthResponse(
        status=status,
        version=settings.version,
        uptime_seconds=round(time.time() - _started_at, 2),
        timestamp=datetime.now(timezone.utc),
        service_name=settings.service_name,
        checks={
            "active_sessions": len(session_store),
            "delivery_configured": gateway.configured,
            "delivery_circuit": breaker["state"],
            "case_store": "supabase" if settings.supabase_configured else "in_memory",
        },
    )
