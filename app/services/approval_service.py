"""
Approval token service for occupant site-access consent.

Tokens are ``base64url(payload + "." + hex(HMAC-SHA256(secret, payload)))``
with padding stripped, where ``payload`` is compact JSON carrying the
appointment id, organization id and issue/expiry times in epoch milliseconds.
"""
import base64
import binascii
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    TokenRejectedError,
    ValidationError,
)
from app.core.logging import log_business_event
from app.models.approval import (
    ApprovalResponse,
    ApprovalState,
    ApprovalStatus,
    ApprovalTokenGrant,
    ApprovalTokenPayload,
    AppointmentStatus,
)
from app.models.notification import NotificationEnvelope, NotificationType
from app.services.case_store import CaseStore

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def _from_millis(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def _as_datetime(value: Any) -> Optional[datetime]:
    """Coerce a stored timestamp (datetime or ISO string) to an aware datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class ApprovalTokenService:
    """Issues, verifies and resolves signed appointment approval tokens."""

    def __init__(
        self,
        case_store: CaseStore,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.case_store = case_store
        self.secret_key = (secret_key or settings.approval_secret_key).encode()
        self.base_url = (base_url or settings.public_base_url).rstrip("/")
        self.clock = clock or _utcnow

    def _sign(self, payload: str) -> str:
        return hmac.new(self.secret_key, payload.encode(), hashlib.sha256).hexdigest()

    def _encode(self, payload: ApprovalTokenPayload) -> str:
        serialized = json.dumps(payload.model_dump(), separators=(",", ":"))
        raw = f"{serialized}.{self._sign(serialized)}".encode()
        return base64.urlsafe_b64encode(raw).decode().rstrip("=")

    async def issue_approval_token(
        self, appointment_id: str, ttl_hours: Optional[int] = None
    ) -> ApprovalTokenGrant:
        """
        Issue a token for an appointment and mark it Proposed.

        Args:
            appointment_id: Appointment awaiting occupant consent
            ttl_hours: Token lifetime, 1 to 72 hours (default 24)

        Returns:
            Grant with the token and its approve/decline links

        Raises:
            ValidationError: If ttl_hours is out of range
            NotFoundError: If the appointment does not exist
        """
        if ttl_hours is None:
            ttl_hours = settings.approval_default_ttl_hours
        if not settings.approval_min_ttl_hours <= ttl_hours <= settings.approval_max_ttl_hours:
            raise ValidationError(
                f"must be between {settings.approval_min_ttl_hours} and "
                f"{settings.approval_max_ttl_hours} hours",
                field="ttl_hours",
                value=ttl_hours,
            )

        appointment = await self.case_store.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)

        issued_at = self.clock()
        expires_at = issued_at + timedelta(hours=ttl_hours)
        token = self._encode(
            ApprovalTokenPayload(
                appointmentId=str(appointment["id"]),
                orgId=appointment.get("org_id"),
                expiresAt=_to_millis(expires_at),
                iat=_to_millis(issued_at),
            )
        )

        await self.case_store.update_appointment(
            appointment_id,
            {
                "approval_token": token,
                "approval_expires_at": expires_at,
                "status": AppointmentStatus.PROPOSED.value,
            },
        )

        log_business_event(
            "approval_token_issued",
            appointment_id=appointment_id,
            org_id=appointment.get("org_id"),
            ttl_hours=ttl_hours,
            expires_at=expires_at.isoformat(),
        )

        return ApprovalTokenGrant(
            token=token,
            appointment_id=appointment_id,
            expires_at=expires_at,
            approve_url=f"{self.base_url}/api/approvals/{token}?action=approve",
            decline_url=f"{self.base_url}/api/approvals/{token}?action=decline",
        )

    def verify_token(self, token: str) -> ApprovalTokenPayload:
        """
        Verify a token's signature and expiry.

        Raises:
            TokenRejectedError: reason ``malformed``, ``invalid_signature`` or ``expired``
        """
        try:
            padded = token + "=" * (-len(token) % 4)
            decoded = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
        except (binascii.Error, UnicodeError, ValueError):
            raise TokenRejectedError("malformed")

        serialized, separator, signature = decoded.rpartition(".")
        if not separator or not serialized or not signature:
            raise TokenRejectedError("malformed")

        if not hmac.compare_digest(signature.encode(), self._sign(serialized).encode()):
            logger.warning("Approval token signature mismatch")
            raise TokenRejectedError("invalid_signature")

        try:
            payload = ApprovalTokenPayload.model_validate_json(serialized)
        except PydanticValidationError:
            raise TokenRejectedError("malformed")

        if _to_millis(self.clock()) > payload.expiresAt:
            logger.info("Approval token expired", appointment_id=payload.appointmentId)
            raise TokenRejectedError("expired", appointment_id=payload.appointmentId)

        return payload

    async def respond_to_approval(
        self,
        token: str,
        approved: bool,
        response: Optional[ApprovalResponse] = None,
    ) -> ApprovalStatus:
        """
        Record the occupant's answer. The first response wins.

        A counter-proposed time slot is stored but never reschedules anything.

        Raises:
            TokenRejectedError: If the token fails verification
            NotFoundError: If the appointment no longer exists
            ConflictError: If the appointment is no longer Proposed
        """
        payload = self.verify_token(token)
        appointment_id = payload.appointmentId

        appointment = await self.case_store.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)

        current_status = appointment.get("status")
        if current_status != AppointmentStatus.PROPOSED.value:
            logger.warning(
                "Approval response rejected, appointment already resolved",
                appointment_id=appointment_id,
                current_status=current_status,
            )
            raise ConflictError(
                f"Appointment is no longer pending approval (status: {current_status})",
                entity_id=appointment_id,
                current_status=current_status,
            )

        if response is None:
            response = ApprovalResponse(approved=approved)
        else:
            response = response.model_copy(update={"approved": approved})

        responded_at = self.clock()
        patch: Dict[str, Any] = {
            "status": (
                AppointmentStatus.APPROVED.value if approved else AppointmentStatus.CANCELLED.value
            ),
            "access_approved": approved,
            "approval_responded_at": responded_at,
        }
        if response.reason:
            notes = appointment.get("notes") or ""
            patch["notes"] = f"{notes}\nOccupant response: {response.reason}".strip()
        if response.preferred_time_slot:
            patch["preferred_time_slot"] = response.preferred_time_slot.model_dump(mode="json")
            logger.info(
                "Occupant proposed an alternative time slot",
                appointment_id=appointment_id,
                start=response.preferred_time_slot.start.isoformat(),
                end=response.preferred_time_slot.end.isoformat(),
            )
        if response.contact_preference:
            patch["contact_preference"] = response.contact_preference

        await self.case_store.update_appointment(appointment_id, patch)

        state = ApprovalState.APPROVED if approved else ApprovalState.DECLINED
        log_business_event(
            "approval_recorded",
            appointment_id=appointment_id,
            org_id=payload.orgId,
            status=state.value,
        )

        return ApprovalStatus(
            status=state,
            expires_at=_from_millis(payload.expiresAt),
            responded_at=responded_at,
            response=response,
        )

    async def get_approval_status(self, appointment_id: str) -> Optional[ApprovalStatus]:
        """
        Report the approval state of an appointment.

        Expiry is evaluated on every call from the stored expiry alone, so an
        appointment past its expiry reports ``expired`` whatever its status.
        Returns None when no token was ever issued.

        Raises:
            NotFoundError: If the appointment does not exist
        """
        appointment = await self.case_store.get_appointment(appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)

        expires_at = _as_datetime(appointment.get("approval_expires_at"))
        if not appointment.get("approval_token") or expires_at is None:
            return None

        persisted = appointment.get("status")
        if self.clock() > expires_at:
            state = ApprovalState.EXPIRED
        elif persisted == AppointmentStatus.APPROVED.value or appointment.get("access_approved"):
            state = ApprovalState.APPROVED
        elif persisted == AppointmentStatus.CANCELLED.value:
            state = ApprovalState.DECLINED
        else:
            state = ApprovalState.PENDING

        return ApprovalStatus(
            status=state,
            expires_at=expires_at,
            responded_at=_as_datetime(appointment.get("approval_responded_at")),
        )

    @staticmethod
    def build_occupant_notification(
        appointment: Dict[str, Any],
        contractor: Dict[str, Any],
        grant: ApprovalTokenGrant,
    ) -> NotificationEnvelope:
        """Approval request sent to the occupant of the unit."""
        scheduled = _as_datetime(appointment.get("scheduled_start_at"))
        if scheduled is not None:
            date_line = scheduled.strftime("%A, %B %d, %Y")
            time_line = scheduled.strftime("%I:%M %p").lstrip("0")
        else:
            date_line = time_line = "To be confirmed"

        respond_by = grant.expires_at.strftime("%Y-%m-%d at %H:%M UTC")
        message = (
            "A maintenance appointment has been scheduled for your unit and requires "
            "your approval:\n\n"
            f"Date: {date_line}\n"
            f"Time: {time_line}\n"
            f"Contractor: {contractor.get('name') or 'Assigned contractor'}\n"
            f"Work: {appointment.get('title') or 'Maintenance work'}\n"
            f"Contact: {contractor.get('email') or 'N/A'}\n"
            f"Phone: {contractor.get('phone') or 'N/A'}\n\n"
            "The contractor will need access to your unit. Please review and respond:\n\n"
            f"APPROVE: {grant.approve_url}\n"
            f"DECLINE: {grant.decline_url}\n\n"
            f"Please respond by {respond_by}.\n\n"
            "If you have questions about this request, please contact property management."
        )

        return NotificationEnvelope(
            type=NotificationType.APPROVAL_REQUESTED,
            subject="Maintenance Appointment Approval Needed",
            message=message,
            urgency_level="normal",
            case_id=appointment.get("case_id"),
            appointment_id=grant.appointment_id,
            metadata={
                "approve_url": grant.approve_url,
                "decline_url": grant.decline_url,
                "expires_at": grant.expires_at.isoformat(),
            },
        )
