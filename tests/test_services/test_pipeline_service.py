"""
Tests for the end-to-end maintenance pipeline.
"""
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from app.core.exceptions import CaseCreationError, ExternalServiceError, NotFoundError
from app.models.approval import ApprovalState
from app.models.contractor import ADMIN_INTERVENTION_ID, MatchStrategy
from app.models.notification import Channel, NotificationType
from app.models.triage import Urgency
from app.services.approval_service import ApprovalTokenService
from app.services.matching_service import ContractorMatchingService
from app.services.pipeline_service import MaintenancePipeline
from app.services.triage_service import TriageSessionManager


class RecordingConnection:
    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)


class TestMaintenancePipeline:
    """Test cases for MaintenancePipeline."""

    @pytest.fixture
    def admin_socket(self, registry):
        socket = RecordingConnection()
        registry.add(socket, "admin-1", "admin", "org-1")
        return socket

    @pytest.fixture
    def admin_user(self, case_store):
        return case_store.add_user(
            {"id": "admin-1", "org_id": "org-1", "role": "admin",
             "email": "admin@example.com", "phone": "+15550003333"}
        )

    @pytest.fixture
    def approval_service(self, case_store, clock):
        return ApprovalTokenService(case_store, secret_key="test-secret", clock=clock)

    @pytest.fixture
    def triage_manager(self, session_store, mock_completion_service, case_store):
        return TriageSessionManager(session_store, mock_completion_service, case_store)

    @pytest.fixture
    def pipeline(self, triage_manager, approval_service, dispatcher, case_store):
        return MaintenancePipeline(
            triage_manager,
            ContractorMatchingService(None),
            approval_service,
            dispatcher,
            case_store,
        )

    @pytest_asyncio.fixture
    async def session_id(self, triage_manager):
        started = await triage_manager.start_triage("occupant-1", "org-1", "No heat in my bedroom")
        return started.session_id

    @pytest.fixture
    def hvac_contractor(self, case_store):
        return case_store.add_contractor(
            {
                "id": "contractor-a",
                "org_id": "org-1",
                "name": "Ace HVAC",
                "category": "HVAC",
                "current_workload": 1,
                "max_jobs_per_day": 5,
                "response_time_hours": 2,
                "emergency_available": True,
            }
        )

    @pytest.mark.asyncio
    async def test_case_matched_and_contractor_notified(
        self, pipeline, session_id, sample_draft, hvac_contractor, admin_socket, case_store, mock_gateway
    ):
        result = await pipeline.process_case_draft(session_id, sample_draft)

        assert result.case_id in case_store.cases
        assert result.case_number == "MC-00001"
        assert result.strategy == MatchStrategy.FALLBACK
        assert result.assigned_contractor_id == "contractor-a"
        assert len(result.reports) == 2

        admin_message = admin_socket.sent[0]["data"]
        assert admin_message["type"] == "case_created"
        assert admin_message["case_number"] == "MC-00001"

        contractor_report = result.reports[1]
        assert contractor_report.notification_type == NotificationType.CONTRACTOR_ASSIGNED
        assert {o.target for o in contractor_report.outcomes} == {"ace@example.com", "+15550002222"}
        assert Channel.PUSH in contractor_report.skipped

    @pytest.mark.asyncio
    async def test_emergency_draft_alerts_admins(
        self, pipeline, session_id, sample_draft, hvac_contractor, admin_socket
    ):
        emergency = sample_draft.model_copy(update={"urgency": Urgency.EMERGENCY})

        await pipeline.process_case_draft(session_id, emergency)

        admin_message = admin_socket.sent[0]["data"]
        assert admin_message["type"] == "emergency_alert"
        assert admin_message["subject"].startswith("EMERGENCY:")

    @pytest.mark.asyncio
    async def test_no_contractors_escalates_to_admins(
        self, pipeline, session_id, sample_draft, admin_socket, admin_user, mock_gateway
    ):
        result = await pipeline.process_case_draft(session_id, sample_draft)

        assert result.assigned_contractor_id is None
        assert result.matches[0].contractor_id == ADMIN_INTERVENTION_ID
        assert [m["data"]["type"] for m in admin_socket.sent] == ["case_created", "case_updated"]
        subjects = [call.args[1] for call in mock_gateway.send_email.await_args_list]
        assert subjects[-1] == "Manual assignment needed: No heat in bedroom"
        assert all(call.args[0] == "admin@example.com" for call in mock_gateway.send_email.await_args_list)

    @pytest.mark.asyncio
    async def test_emergency_reaches_offline_admins(
        self, pipeline, session_id, sample_draft, hvac_contractor, admin_user, mock_gateway
    ):
        emergency = sample_draft.model_copy(update={"urgency": Urgency.EMERGENCY})

        result = await pipeline.process_case_draft(session_id, emergency)

        alert = result.reports[0]
        assert alert.notification_type == NotificationType.EMERGENCY_ALERT
        assert {o.target for o in alert.outcomes} == {"admin@example.com", "+15550003333"}
        assert alert.skipped == [Channel.PUSH]
        assert alert.total_failure is False

    @pytest.mark.asyncio
    async def test_emergency_with_no_admins_is_an_outage(self, pipeline, session_id, sample_draft, dispatcher):
        emergency = sample_draft.model_copy(update={"urgency": Urgency.EMERGENCY})

        result = await pipeline.process_case_draft(session_id, emergency)

        assert result.reports[0].total_failure is True
        assert dispatcher.stats()["total_outages"] >= 1

    @pytest.mark.asyncio
    async def test_malformed_contractor_records_skipped(
        self, pipeline, session_id, sample_draft, hvac_contractor, case_store
    ):
        case_store.add_contractor({"id": "broken", "org_id": "org-1", "current_workload": -3})

        result = await pipeline.process_case_draft(session_id, sample_draft)

        assert [m.contractor_id for m in result.matches] == ["contractor-a"]

    @pytest.mark.asyncio
    async def test_contractor_lookup_failure(self, pipeline, session_id, sample_draft, case_store):
        case_store.list_contractors = AsyncMock(side_effect=ExternalServiceError("Case Store", "down"))

        result = await pipeline.process_case_draft(session_id, sample_draft)

        assert result.matches[0].contractor_id == ADMIN_INTERVENTION_ID

    @pytest.mark.asyncio
    async def test_delivery_failures_do_not_abort(
        self, pipeline, session_id, sample_draft, hvac_contractor, mock_gateway
    ):
        mock_gateway.send_email.return_value = False
        mock_gateway.send_sms.side_effect = RuntimeError("gateway down")

        result = await pipeline.process_case_draft(session_id, sample_draft)

        assert result.assigned_contractor_id == "contractor-a"
        assert result.reports[1].total_failure is True

    @pytest.mark.asyncio
    async def test_case_creation_failure_propagates(self, pipeline, session_id, sample_draft, case_store):
        case_store.create_case = AsyncMock(side_effect=ExternalServiceError("Case Store", "down"))

        with pytest.raises(CaseCreationError):
            await pipeline.process_case_draft(session_id, sample_draft)


class TestOccupantApprovalRequest:
    @pytest.fixture
    def pipeline(self, session_store, mock_completion_service, case_store, dispatcher, clock):
        return MaintenancePipeline(
            TriageSessionManager(session_store, mock_completion_service, case_store),
            ContractorMatchingService(None),
            ApprovalTokenService(case_store, secret_key="test-secret", clock=clock),
            dispatcher,
            case_store,
        )

    @pytest.mark.asyncio
    async def test_request_sends_links_to_occupant(self, pipeline, mock_gateway, case_store):
        result = await pipeline.request_occupant_approval("apt-1", ttl_hours=12)

        assert case_store.appointments["apt-1"]["status"] == "Proposed"
        assert result.report.succeeded == 2
        to, subject, html, text = mock_gateway.send_email.await_args.args
        assert to == "occupant@example.com"
        assert result.grant.approve_url in text
        phone, body = mock_gateway.send_sms.await_args.args
        assert phone == "+15550001111"
        assert len(body) <= 160

    @pytest.mark.asyncio
    async def test_request_without_notification(self, pipeline, mock_gateway):
        result = await pipeline.request_occupant_approval("apt-1", notify=False)

        assert result.report is None
        mock_gateway.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_request_unknown_appointment(self, pipeline):
        with pytest.raises(NotFoundError):
            await pipeline.request_occupant_approval("apt-missing")

    @pytest.mark.asyncio
    async def test_token_resolves_after_request(self, pipeline):
        result = await pipeline.request_occupant_approval("apt-1")

        status = await pipeline.approval_service.respond_to_approval(result.grant.token, approved=True)

        assert status.status == ApprovalState.APPROVED
