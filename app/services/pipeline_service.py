"""
Maintenance pipeline: case draft to case, contractor match, notifications
and occupant approval.
"""
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from app.core.exceptions import ExternalServiceError, NotFoundError
from app.core.logging import performance_timing
from app.models.approval import ApprovalTokenGrant
from app.models.contractor import (
    ADMIN_INTERVENTION_ID,
    CaseRequest,
    ContractorProfile,
    MatchResult,
    MatchStrategy,
)
from app.models.notification import (
    DeliveryReport,
    NotificationEnvelope,
    NotificationType,
    RecipientSelector,
)
from app.models.triage import CaseDraft, Urgency
from app.services.approval_service import ApprovalTokenService
from app.services.case_store import CaseStore
from app.services.matching_service import ContractorMatchingService
from app.services.notification_service import NotificationDispatcher
from app.services.triage_service import TriageSessionManager

logger = structlog.get_logger(__name__)

ADMIN_ROLE = "admin"


class PipelineResult(BaseModel):
    case_id: str
    case_number: Optional[str] = None
    strategy: MatchStrategy
    matches: List[MatchResult]
    assigned_contractor_id: Optional[str] = None
    reports: List[DeliveryReport] = Field(default_factory=list)


class ApprovalRequestResult(BaseModel):
    grant: ApprovalTokenGrant
    report: Optional[DeliveryReport] = None


class MaintenancePipeline:
    """Runs everything that follows a completed triage session."""

    def __init__(
        self,
        triage_manager: TriageSessionManager,
        matching_service: ContractorMatchingService,
        approval_service: ApprovalTokenService,
        dispatcher: NotificationDispatcher,
        case_store: CaseStore,
    ):
        self.triage_manager = triage_manager
        self.matching_service = matching_service
        self.approval_service = approval_service
        self.dispatcher = dispatcher
        self.case_store = case_store

    async def process_case_draft(self, session_id: str, draft: CaseDraft) -> PipelineResult:
        """
        Persist the draft, alert admins, match and notify a contractor.

        Notification failures are recorded in the result and never abort
        the flow. Case creation failures propagate.

        Raises:
            SessionNotFoundError: If the session is unknown
            CaseCreationError: If the case store rejects the draft
        """
        session = self.triage_manager.get_session(session_id)
        record = await self.triage_manager.create_case(session_id, draft)
        case_id = str(record["id"])
        case_number = record.get("case_number")
        reports: List[DeliveryReport] = []

        reports.append(
            await self.dispatcher.dispatch(
                self._case_created_envelope(draft, case_id, case_number),
                RecipientSelector(role=ADMIN_ROLE, org_id=session.org_id),
            )
        )

        case = CaseRequest.from_draft(draft, case_id=case_id)
        candidates = await self._load_candidates(session.org_id)
        with performance_timing("contractor_matching", case_id=case_id, candidates=len(candidates)):
            outcome = await self.matching_service.match_with_details(case, candidates)
        top = outcome.results[0]

        assigned = None
        if top.contractor_id == ADMIN_INTERVENTION_ID:
            logger.warning("No contractor could be assigned", case_id=case_id)
            reports.append(
                await self.dispatcher.dispatch(
                    NotificationEnvelope(
                        type=NotificationType.CASE_UPDATED,
                        subject=f"Manual assignment needed: {draft.title}",
                        message=top.reasoning,
                        urgency_level=draft.urgency.value,
                        case_id=case_id,
                        case_number=case_number,
                    ),
                    RecipientSelector(role=ADMIN_ROLE, org_id=session.org_id),
                )
            )
        else:
            assigned = top.contractor_id
            envelope = self.matching_service.build_contractor_notification(
                case, top, outcome=outcome, case_number=case_number
            )
            reports.append(
                await self.dispatcher.dispatch(envelope, RecipientSelector(party_id=assigned))
            )

        logger.info(
            "Case pipeline completed",
            case_id=case_id,
            strategy=outcome.strategy.value,
            assigned_contractor_id=assigned,
        )

        return PipelineResult(
            case_id=case_id,
            case_number=case_number,
            strategy=outcome.strategy,
            matches=outcome.results,
            assigned_contractor_id=assigned,
            reports=reports,
        )

    async def request_occupant_approval(
        self,
        appointment_id: str,
        ttl_hours: Optional[int] = None,
        notify: bool = True,
    ) -> ApprovalRequestResult:
        """
        Issue an approval token and send it to the appointment's occupant.

        Raises:
            ValidationError: If ttl_hours is out of range
            NotFoundError: If the appointment does not exist
        """
        grant = await self.approval_service.issue_approval_token(appointment_id, ttl_hours)
        if not notify:
            return ApprovalRequestResult(grant=grant)

        appointment = await self.case_store.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)

        occupant_id = appointment.get("occupant_id")
        if not occupant_id:
            logger.warning("Appointment has no occupant to notify", appointment_id=appointment_id)
            return ApprovalRequestResult(grant=grant)

        contractor = await self._lookup_user(appointment.get("contractor_id"))
        envelope = self.approval_service.build_occupant_notification(appointment, contractor, grant)
        report = await self.dispatcher.dispatch(envelope, RecipientSelector(party_id=occupant_id))
        return ApprovalRequestResult(grant=grant, report=report)

    async def _load_candidates(self, org_id: str) -> List[ContractorProfile]:
        try:
            records = await self.case_store.list_contractors(org_id)
        except ExternalServiceError as e:
            logger.error("Contractor lookup failed, matching with none", org_id=org_id, error=str(e))
            return []

        candidates = []
        for record in records:
            try:
                candidates.append(ContractorProfile.model_validate(record))
            except PydanticValidationError as e:
                logger.warning(
                    "Skipping malformed contractor record",
                    contractor_id=record.get("id"),
                    error_count=e.error_count(),
                )
        return candidates

    async def _lookup_user(self, user_id: Optional[str]) -> Dict[str, Any]:
        if not user_id:
            return {}
        try:
            return await self.case_store.get_user(user_id) or {}
        except ExternalServiceError as e:
            logger.warning("User lookup failed", user_id=user_id, error=str(e))
            return {}

    @staticmethod
    def _case_created_envelope(
        draft: CaseDraft, case_id: str, case_number: Optional[str]
    ) -> NotificationEnvelope:
        emergency = draft.urgency == Urgency.EMERGENCY
        return NotificationEnvelope(
            type=NotificationType.EMERGENCY_ALERT if emergency else NotificationType.CASE_CREATED,
            subject=(
                f"EMERGENCY: {draft.title}" if emergency else f"New Maintenance Case: {draft.title}"
            ),
            message=f"{draft.description}\n\nLocation: {draft.location}\nCategory: {draft.category}",
            urgency_level=draft.urgency.value,
            case_id=case_id,
            case_number=case_number,
            metadata={"requester_contact": draft.requester_contact},
        )
