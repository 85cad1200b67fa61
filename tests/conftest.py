"""
Pytest configuration and fixtures for the Maintenance Request Orchestrator.
"""
from datetime import datetime, timedelta, timezone
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.core.dependencies import (
    get_approval_service,
    get_case_store,
    get_completion_service,
    get_connection_registry,
    get_delivery_gateway,
    get_matching_service,
    get_notification_dispatcher,
    get_session_store,
)
from app.main import app
from app.models.contractor import CaseRequest, ContractorProfile
from app.models.triage import CaseDraft
from app.services.approval_service import ApprovalTokenService
from app.services.case_store import InMemoryCaseStore
from app.services.completion_service import CompletionService
from app.services.delivery_gateway import DeliveryGateway
from app.services.matching_service import ContractorMatchingService
from app.services.notification_service import ConnectionRegistry, NotificationDispatcher
from app.services.triage_service import SessionStore

FIXED_NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for expiry tests."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def case_store() -> InMemoryCaseStore:
    """In-memory store seeded with an appointment, an occupant and a contractor user."""
    store = InMemoryCaseStore()
    store.add_appointment(
        {
            "id": "apt-1",
            "org_id": "org-1",
            "case_id": "case-1",
            "occupant_id": "occupant-1",
            "contractor_id": "contractor-a",
            "title": "Fix heating unit",
            "status": "Scheduled",
            "scheduled_start_at": datetime(2024, 3, 4, 14, 30, tzinfo=timezone.utc),
            "notes": None,
        }
    )
    store.add_user(
        {"id": "occupant-1", "email": "occupant@example.com", "phone": "+15550001111"}
    )
    store.add_user(
        {"id": "contractor-a", "name": "Ace HVAC", "email": "ace@example.com", "phone": "+15550002222"}
    )
    store.add_user({"id": "ghost", "email": None, "phone": None})
    return store


@pytest.fixture
def session_store() -> SessionStore:
    return SessionStore(idle_ttl=timedelta(hours=4))


@pytest.fixture
def mock_completion_service() -> MagicMock:
    service = MagicMock(spec=CompletionService)
    service.complete = AsyncMock(return_value="Can you tell me which room this is in?")
    service.complete_json = AsyncMock()
    return service


@pytest.fixture
def mock_gateway() -> MagicMock:
    gateway = MagicMock(spec=DeliveryGateway)
    gateway.configured = True
    gateway.send_email = AsyncMock(return_value=True)
    gateway.send_sms = AsyncMock(return_value=True)
    gateway.get_circuit_breaker_status.return_value = {"state": "closed"}
    return gateway


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def dispatcher(registry, case_store, mock_gateway) -> NotificationDispatcher:
    return NotificationDispatcher(registry, case_store, mock_gateway)


@pytest.fixture
def sample_draft() -> CaseDraft:
    return CaseDraft(
        title="No heat in bedroom",
        description="Radiator is cold and the thermostat shows 55F",
        urgency="Urgent",
        location="Building 4, Unit 12B, bedroom",
        category="HVAC",
        requester_contact="occupant@example.com",
    )


@pytest.fixture
def hvac_case() -> CaseRequest:
    return CaseRequest(
        id="case-1",
        title="No heat",
        category="HVAC",
        priority="High",
        urgency="Urgent",
        description="Furnace not igniting",
    )


@pytest.fixture
def contractor_a() -> ContractorProfile:
    return ContractorProfile(
        id="contractor-a",
        name="Ace HVAC",
        category="HVAC",
        current_workload=1,
        max_jobs_per_day=5,
        response_time_hours=2,
        emergency_available=True,
    )


@pytest.fixture
def contractor_b() -> ContractorProfile:
    return ContractorProfile(
        id="contractor-b",
        name="Bob General",
        category="General",
        current_workload=4,
        max_jobs_per_day=5,
        response_time_hours=24,
    )


@pytest.fixture
def sample_headers() -> dict:
    """Sample request headers with correlation ID."""
    return {
        "X-Correlation-ID": "test-correlation-123",
        "X-Org-ID": "org-1",
        "Content-Type": "application/json",
    }


@pytest.fixture
def api_client(
    session_store, case_store, mock_completion_service, registry, dispatcher, mock_gateway, clock
) -> Generator[TestClient, None, None]:
    """TestClient wired to isolated stores, a fake clock and mocked outbound services."""
    approval_service = ApprovalTokenService(
        case_store, secret_key="test-secret", base_url="http://testserver", clock=clock
    )
    matching_service = ContractorMatchingService(mock_completion_service, timeout_seconds=0.5)

    app.dependency_overrides.update(
        {
            get_session_store: lambda: session_store,
            get_case_store: lambda: case_store,
            get_completion_service: lambda: mock_completion_service,
            get_connection_registry: lambda: registry,
            get_delivery_gateway: lambda: mock_gateway,
            get_notification_dispatcher: lambda: dispatcher,
            get_approval_service: lambda: approval_service,
            get_matching_service: lambda: matching_service,
        }
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
