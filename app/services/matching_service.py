"""
Contractor matching engine with model-assisted ranking and a rule-based fallback.
"""
import asyncio
from typing import Dict, List, Optional, Sequence

import structlog
from pydantic import ValidationError

from app.config import settings
from app.core.exceptions import AIServiceError
from app.core.logging import log_business_event
from app.models.contractor import (
    AssignmentResponse,
    AvailabilitySnapshot,
    CaseRequest,
    ContractorProfile,
    MatchOutcome,
    MatchResult,
    MatchStrategy,
)
from app.models.notification import NotificationEnvelope, NotificationType
from app.services.completion_service import CompletionService
from app.utils.match_scoring import FallbackScorer

logger = structlog.get_logger(__name__)

COORDINATOR_SYSTEM_PROMPT = (
    "You are a contractor coordination assistant for a housing organization. Match "
    "maintenance cases to the best available contractors based on skills, availability, "
    "workload and response time. Optimize for fast, safe and successful completion. "
    "Always answer with a single JSON object."
)


class ContractorMatchingService:
    """Ranks contractors for a case."""

    def __init__(
        self,
        completion_service: Optional[CompletionService],
        scorer: Optional[FallbackScorer] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.completion_service = completion_service
        self.scorer = scorer or FallbackScorer(max_results=settings.matching_max_results)
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.matching_timeout_seconds
        )

    async def match_contractor(
        self, case: CaseRequest, candidates: Sequence[ContractorProfile]
    ) -> List[MatchResult]:
        """Return a non-empty list of results, best first."""
        outcome = await self.match_with_details(case, candidates)
        return outcome.results

    async def match_with_details(
        self, case: CaseRequest, candidates: Sequence[ContractorProfile]
    ) -> MatchOutcome:
        """
        Rank candidates, preferring the model and falling back to rules.

        The model call is bounded by ``timeout_seconds``. On timeout the call is
        cancelled and its result, if any, is never used.
        """
        outcome = None
        if self.completion_service is not None and candidates:
            outcome = await self._model_assisted(case, candidates)

        if outcome is None:
            outcome = MatchOutcome(
                strategy=MatchStrategy.FALLBACK,
                results=self.scorer.rank(case, candidates),
            )

        log_business_event(
            "contractor_matched",
            case_id=case.id,
            category=case.category,
            strategy=outcome.strategy.value,
            top_contractor=outcome.results[0].contractor_id,
            top_score=outcome.results[0].match_score,
        )
        return outcome

    async def _model_assisted(
        self, case: CaseRequest, candidates: Sequence[ContractorProfile]
    ) -> Optional[MatchOutcome]:
        prompt = self.build_coordination_prompt(case, candidates)

        try:
            raw = await asyncio.wait_for(
                self.completion_service.complete_json(COORDINATOR_SYSTEM_PROMPT, prompt),
                timeout=self.timeout_seconds,
            )
            assignment = AssignmentResponse.model_validate(raw)
        except asyncio.TimeoutError:
            logger.warning(
                "Model-assisted matching timed out, using fallback",
                case_id=case.id,
                timeout_seconds=self.timeout_seconds,
            )
            return None
        except (AIServiceError, ValidationError) as e:
            logger.warning(
                "Model-assisted matching failed, using fallback",
                case_id=case.id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None

        results = self._to_results(assignment, candidates)
        if not results:
            logger.warning(
                "Model recommended no known contractors, using fallback",
                case_id=case.id,
                recommended=assignment.recommendedContractor.contractorId,
            )
            return None

        return MatchOutcome(
            strategy=MatchStrategy.MODEL,
            results=results,
            coordination_notes=assignment.coordinationNotes,
            communication_template=assignment.communicationTemplate,
        )

    def _to_results(
        self, assignment: AssignmentResponse, candidates: Sequence[ContractorProfile]
    ) -> List[MatchResult]:
        by_id: Dict[str, ContractorProfile] = {c.id: c for c in candidates}
        results: List[MatchResult] = []
        seen = set()

        primary = assignment.recommendedContractor
        contractor = by_id.get(primary.contractorId)
        if contractor is not None:
            seen.add(contractor.id)
            results.append(
                MatchResult(
                    contractor_id=contractor.id,
                    contractor_name=contractor.name,
                    match_score=primary.matchScore,
                    reasoning=primary.reasoning,
                    estimated_response_time=primary.estimatedResponseTime,
                    risk_factors=primary.riskFactors,
                    availability=AvailabilitySnapshot.of(contractor),
                )
            )

        for alternative in assignment.alternativeContractors:
            contractor = by_id.get(alternative.contractorId)
            if contractor is None or contractor.id in seen:
                continue
            seen.add(contractor.id)
            results.append(
                MatchResult(
                    contractor_id=contractor.id,
                    contractor_name=contractor.name,
                    match_score=alternative.matchScore,
                    reasoning=alternative.reasoning,
                    estimated_response_time=f"{contractor.response_time_hours:g} hours",
                    availability=AvailabilitySnapshot.of(contractor),
                )
            )

        return sorted(results, key=lambda result: -result.match_score)

    def build_coordination_prompt(
        self, case: CaseRequest, candidates: Sequence[ContractorProfile]
    ) -> str:
        contractor_lines = "\n".join(
            f"""- {c.name or c.id} (ID: {c.id})
  * Category: {c.category or 'General'}
  * Specializations: {', '.join(c.specializations) or 'General maintenance'}
  * Response Time: {c.response_time_hours:g} hours
  * Availability: {c.availability_pattern or 'Unspecified'}
  * Current Workload: {c.current_workload}/{c.max_jobs_per_day} jobs
  * Emergency Available: {'Yes' if c.emergency_available else 'No'}
  * Rating: {c.rating if c.rating is not None else 'Not rated'}
  * Hourly Rate: {f'${c.hourly_rate:g}' if c.hourly_rate is not None else 'TBD'}
  * Active: {'Yes' if c.is_active else 'No'}"""
            for c in candidates
        )

        return f"""Analyze this maintenance case and the available contractors to find the optimal assignment.

CASE DETAILS:
- ID: {case.id or 'new'}
- Title: {case.title}
- Category: {case.category}
- Priority: {case.priority}
- Urgency: {case.urgency}
- Description: {case.description}
- Location: {case.location or 'Unspecified'}
- Estimated Duration: {case.estimated_duration}
- Safety Risk: {case.safety_risk}
- Preferred Contractor Type: {case.contractor_type or 'Any qualified'}

AVAILABLE CONTRACTORS:
{contractor_lines}

Match specialization to category, respect workload and capacity, prefer faster response
for urgent cases and emergency availability for safety risks.

Respond with JSON in exactly this format:
{{
  "recommendedContractor": {{"contractorId": "exact ID", "matchScore": 0-100,
    "reasoning": "...", "estimatedResponseTime": "e.g. 2 hours", "riskFactors": ["..."]}},
  "alternativeContractors": [{{"contractorId": "exact ID", "matchScore": 0-100, "reasoning": "..."}}],
  "coordinationNotes": "...",
  "communicationTemplate": {{"subject": "...", "message": "...",
    "urgencyLevel": "normal|high|urgent|emergency"}}
}}
List at most two alternatives.
Score on: skill match 30%, availability 25%, response time 20%, workload 15%, cost 10%."""

    @staticmethod
    def build_contractor_notification(
        case: CaseRequest,
        match: MatchResult,
        outcome: Optional[MatchOutcome] = None,
        case_number: Optional[str] = None,
    ) -> NotificationEnvelope:
        """Notification telling the selected contractor about a new assignment."""
        template = outcome.communication_template if outcome else None
        if template is not None:
            subject, message, urgency = template.subject, template.message, template.urgencyLevel
        else:
            subject = f"New Maintenance Assignment: {case.title or case.category}"
            message = (
                f"You have been assigned a new maintenance case.\n\n"
                f"Case: {case.title}\n"
                f"Location: {case.location or 'Unspecified'}\n"
                f"Priority: {case.priority}\n"
                f"Description: {case.description}\n\n"
                "Please confirm your availability and estimated start time."
            )
            urgency = "urgent" if case.is_urgent else "normal"

        return NotificationEnvelope(
            type=NotificationType.CONTRACTOR_ASSIGNED,
            subject=subject,
            message=message,
            urgency_level=urgency,
            case_id=case.id,
            case_number=case_number,
            metadata={"match_score": match.match_score, "contractor_id": match.contractor_id},
        )
