"""
Contractor matching API endpoint.
"""
from fastapi import APIRouter, Depends

from app.core.dependencies import get_matching_service
from app.core.logging import get_logger
from app.schemas.matching import MatchRequest, MatchResponse
from app.services.matching_service import ContractorMatchingService

logger = get_logger(__name__)

router = APIRouter(prefix="/api/contractors", tags=["matching"])


@router.post(
    "/match",
    response_model=MatchResponse,
    summary="Rank contractors for a case",
    description=(
        "Returns a non-empty, score-descending list. When no candidate is active "
        "with spare capacity the single result is an admin-intervention marker."
    ),
)
async def match_contractors(
    request: MatchRequest,
    matching_service: ContractorMatchingService = Depends(get_matching_service),
) -> MatchResponse:
    logger.info(
        "Contractor match requested",
        category=request.case.category,
        candidate_count=len(request.candidates),
    )
    outcome = await matching_service.match_with_details(request.case, request.candidates)
    return MatchResponse(
        strategy=outcome.strategy,
        results=outcome.results,
        coordination_notes=outcome.coordination_notes,
        communication_template=outcome.communication_template,
    )
