"""
Triage conversation API endpoints.
"""
from fastapi import APIRouter, Depends, status

from app.core.dependencies import get_pipeline, get_triage_manager
from app.core.exceptions import (
    AIServiceError,
    CaseCreationError,
    NotFoundError,
    SessionNotFoundError,
    map_ai_service_error,
)
from app.core.logging import correlation_context, get_logger
from app.models.triage import TriageReply
from app.schemas.triage import (
    CaseSummary,
    StartTriageRequest,
    TriageMessageRequest,
    TriageSessionResponse,
    TriageTurnResponse,
)
from app.services.pipeline_service import MaintenancePipeline
from app.services.triage_service import TriageSessionManager

logger = get_logger(__name__)

router = APIRouter(prefix="/api/triage", tags=["triage"])


async def _finish_turn(reply: TriageReply, pipeline: MaintenancePipeline) -> TriageTurnResponse:
    response = TriageTurnResponse(
        session_id=reply.session_id,
        reply=reply.reply,
        is_complete=reply.is_complete,
        case_draft=reply.case_draft,
    )
    if reply.case_draft is None:
        return response

    try:
        result = await pipeline.process_case_draft(reply.session_id, reply.case_draft)
    except CaseCreationError as e:
        logger.error("Case creation failed after triage", session_id=reply.session_id, error=str(e))
        response.case_error = str(e)
        return response

    response.case = CaseSummary(
        case_id=result.case_id,
        case_number=result.case_number,
        strategy=result.strategy,
        matches=result.matches,
        assigned_contractor_id=result.assigned_contractor_id,
    )
    return response


@router.post(
    "/sessions",
    response_model=TriageTurnResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a triage conversation",
)
async def start_session(
    request: StartTriageRequest,
    manager: TriageSessionManager = Depends(get_triage_manager),
    pipeline: MaintenancePipeline = Depends(get_pipeline),
) -> TriageTurnResponse:
    try:
        reply = await manager.start_triage(request.participant_id, request.org_id, request.message)
    except AIServiceError as e:
        raise map_ai_service_error(e)

    with correlation_context(org_id=request.org_id, session_id=reply.session_id):
        return await _finish_turn(reply, pipeline)


@router.post(
    "/sessions/{session_id}/messages",
    response_model=TriageTurnResponse,
    summary="Send a requester message to a triage session",
)
async def send_message(
    session_id: str,
    request: TriageMessageRequest,
    manager: TriageSessionManager = Depends(get_triage_manager),
    pipeline: MaintenancePipeline = Depends(get_pipeline),
) -> TriageTurnResponse:
    with correlation_context(session_id=session_id):
        try:
            reply = await manager.continue_triage(session_id, request.message)
        except SessionNotFoundError:
            raise NotFoundError("Session", session_id)
        except AIServiceError as e:
            raise map_ai_service_error(e)

        return await _finish_turn(reply, pipeline)


@router.get(
    "/sessions/{session_id}",
    response_model=TriageSessionResponse,
    summary="Get a triage session transcript",
)
async def get_session(
    session_id: str,
    manager: TriageSessionManager = Depends(get_triage_manager),
) -> TriageSessionResponse:
    try:
        session = manager.get_session(session_id)
    except SessionNotFoundError:
        raise NotFoundError("Session", session_id)

    return TriageSessionResponse(
        session_id=session.id,
        participant_id=session.participant_id,
        org_id=session.org_id,
        is_complete=session.is_complete,
        case_id=session.case_id,
        messages=session.messages,
        created_at=session.created_at,
        last_activity_at=session.last_activity_at,
    )
