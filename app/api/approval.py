"""
Appointment approval API endpoints.

The ``/api/approvals/{token}`` routes are the one-click links sent to
occupants, so they accept GET as well as POST.
"""
from typing import Literal, Optional

from fastapi import APIRouter, Body, Depends, Query

from app.core.dependencies import get_approval_service, get_pipeline
from app.core.exceptions import ExternalServiceError, map_external_service_error
from app.core.logging import get_logger
from app.models.approval import ApprovalResponse, ApprovalStatus
from app.schemas.approval import (
    ApprovalDecisionRequest,
    ApprovalStatusResponse,
    IssueTokenRequest,
    IssueTokenResponse,
)
from app.services.approval_service import ApprovalTokenService
from app.services.pipeline_service import MaintenancePipeline

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["approval"])


@router.post(
    "/appointments/{appointment_id}/approval-token",
    response_model=IssueTokenResponse,
    summary="Issue an occupant approval token",
)
async def issue_approval_token(
    appointment_id: str,
    request: Optional[IssueTokenRequest] = Body(default=None),
    pipeline: MaintenancePipeline = Depends(get_pipeline),
) -> IssueTokenResponse:
    request = request or IssueTokenRequest()
    try:
        result = await pipeline.request_occupant_approval(
            appointment_id, ttl_hours=request.ttl_hours, notify=request.notify_occupant
        )
    except ExternalServiceError as e:
        logger.error("Approval token not issued", appointment_id=appointment_id, error=str(e))
        raise map_external_service_error(e)
    return IssueTokenResponse(grant=result.grant, notification=result.report)


@router.get(
    "/appointments/{appointment_id}/approval-status",
    response_model=ApprovalStatusResponse,
    summary="Get the approval state of an appointment",
)
async def get_approval_status(
    appointment_id: str,
    approval_service: ApprovalTokenService = Depends(get_approval_service),
) -> ApprovalStatusResponse:
    try:
        approval = await approval_service.get_approval_status(appointment_id)
    except ExternalServiceError as e:
        raise map_external_service_error(e)
    return ApprovalStatusResponse(appointment_id=appointment_id, approval=approval)


@router.api_route(
    "/approvals/{token}",
    methods=["GET", "POST"],
    response_model=ApprovalStatus,
    summary="Approve or decline an appointment",
)
async def respond_to_approval(
    token: str,
    action: Literal["approve", "decline"] = Query(...),
    decision: Optional[ApprovalDecisionRequest] = Body(default=None),
    approval_service: ApprovalTokenService = Depends(get_approval_service),
) -> ApprovalStatus:
    approved = action == "approve"
    response = None
    if decision is not None:
        response = ApprovalResponse(approved=approved, **decision.model_dump())

    logger.info("Approval response received", action=action)
    try:
        return await approval_service.respond_to_approval(token, approved, response)
    except ExternalServiceError as e:
        logger.error("Approval response not recorded", action=action, error=str(e))
        raise map_external_service_error(e)
