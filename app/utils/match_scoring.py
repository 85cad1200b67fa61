"""
Rule-based contractor scoring used when model-assisted matching is unavailable.
"""
from typing import List, Sequence

import structlog

from app.models.contractor import (
    ADMIN_INTERVENTION_ID,
    AvailabilitySnapshot,
    CaseRequest,
    ContractorProfile,
    MatchResult,
)

logger = structlog.get_logger(__name__)


class FallbackScorer:
    """Deterministic 0-100 scoring of contractors for a case."""

    BASE_SCORE = 50.0
    CATEGORY_BONUS = 25.0
    SPECIALIZATION_BONUS = 20.0
    IDLE_CAPACITY_BONUS = 15.0
    EMERGENCY_BONUS = 15.0
    FAST_RESPONSE_BONUS = 10.0  # <= 2h
    MODERATE_RESPONSE_BONUS = 5.0  # <= 8h
    RATING_BONUS = 10.0
    RATING_THRESHOLD = 4.0

    def __init__(self, max_results: int = 3):
        self.max_results = max_results

    def rank(
        self, case: CaseRequest, candidates: Sequence[ContractorProfile]
    ) -> List[MatchResult]:
        """
        Score and rank candidates for a case.

        Args:
            case: Case being matched
            candidates: Contractor snapshot, in input order

        Returns:
            Up to ``max_results`` results sorted by descending score (ties keep
            input order), or a single admin-intervention result when no
            candidate is active with spare capacity. Never empty.
        """
        eligible = [c for c in candidates if c.is_active and c.has_capacity]

        if not eligible:
            logger.warning(
                "No contractors available, admin intervention required",
                category=case.category,
                candidate_count=len(candidates),
            )
            return [self.admin_intervention(case)]

        scored = [self._result(case, contractor) for contractor in eligible]
        ranked = sorted(scored, key=lambda result: -result.match_score)[: self.max_results]

        logger.info(
            "Fallback contractor scoring completed",
            category=case.category,
            eligible=len(eligible),
            top_contractor=ranked[0].contractor_id,
            top_score=ranked[0].match_score,
        )
        return ranked

    def score(self, case: CaseRequest, contractor: ContractorProfile) -> float:
        score = self.BASE_SCORE

        if contractor.category and contractor.category.lower() in case.category.lower():
            score += self.CATEGORY_BONUS

        description = case.description.lower()
        if any(spec and spec.lower() in description for spec in contractor.specializations):
            score += self.SPECIALIZATION_BONUS

        if contractor.max_jobs_per_day > 0:
            idle_ratio = 1 - contractor.current_workload / contractor.max_jobs_per_day
            score += max(idle_ratio, 0.0) * self.IDLE_CAPACITY_BONUS

        if case.is_urgent and contractor.emergency_available:
            score += self.EMERGENCY_BONUS

        if contractor.response_time_hours <= 2:
            score += self.FAST_RESPONSE_BONUS
        elif contractor.response_time_hours <= 8:
            score += self.MODERATE_RESPONSE_BONUS

        if contractor.rating is not None and contractor.rating >= self.RATING_THRESHOLD:
            score += self.RATING_BONUS

        return round(min(max(score, 0.0), 100.0), 2)

    def _result(self, case: CaseRequest, contractor: ContractorProfile) -> MatchResult:
        return MatchResult(
            contractor_id=contractor.id,
            contractor_name=contractor.name,
            match_score=self.score(case, contractor),
            reasoning=(
                f"Fallback matching: category {contractor.category or 'general'}, "
                f"{contractor.current_workload}/{contractor.max_jobs_per_day} workload, "
                f"{contractor.response_time_hours:g}h response time"
            ),
            estimated_response_time=f"{contractor.response_time_hours:g} hours",
            availability=AvailabilitySnapshot.of(contractor),
        )

    @staticmethod
    def admin_intervention(case: CaseRequest) -> MatchResult:
        return MatchResult(
            contractor_id=ADMIN_INTERVENTION_ID,
            contractor_name="Admin Intervention Needed",
            match_score=0,
            reasoning=(
                f"No {case.category} contractors available. Suggested actions: "
                "1) flag a general maintenance contractor, "
                "2) contact an external emergency service, "
                "3) reassign to an available contractor with a different specialization"
            ),
            estimated_response_time="Immediate admin action required",
            risk_factors=["no_specialized_contractors", "potential_delay"],
            availability=AvailabilitySnapshot(
                contractor_id=ADMIN_INTERVENTION_ID,
                is_available=False,
                current_workload=0,
                max_capacity=0,
                availability_reason=(
                    f"No active {case.category} contractors with capacity. "
                    "Reassign to a general contractor or contact external services."
                ),
            ),
        )
