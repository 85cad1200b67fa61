"""
Tests for the contractor matching endpoint.
"""
from fastapi.testclient import TestClient

from app.core.exceptions import AIServiceTimeoutError

CASE = {
    "id": "case-1",
    "title": "No heat",
    "category": "HVAC",
    "priority": "High",
    "urgency": "Urgent",
    "description": "Furnace not igniting",
}

CANDIDATES = [
    {
        "id": "contractor-b",
        "name": "Bob General",
        "category": "General",
        "current_workload": 4,
        "max_jobs_per_day": 5,
        "response_time_hours": 24,
    },
    {
        "id": "contractor-a",
        "name": "Ace HVAC",
        "category": "HVAC",
        "current_workload": 1,
        "max_jobs_per_day": 5,
        "response_time_hours": 2,
        "emergency_available": True,
    },
]


class TestMatchEndpoint:
    def test_model_assisted(self, api_client: TestClient, mock_completion_service):
        mock_completion_service.complete_json.return_value = {
            "recommendedContractor": {
                "contractorId": "contractor-a",
                "matchScore": 91,
                "reasoning": "HVAC specialist",
                "estimatedResponseTime": "2 hours",
            },
            "alternativeContractors": [],
            "coordinationNotes": "Bring igniter parts",
            "communicationTemplate": {
                "subject": "HVAC job",
                "message": "Furnace repair needed",
                "urgencyLevel": "urgent",
            },
        }

        response = api_client.post("/api/contractors/match", json={"case": CASE, "candidates": CANDIDATES})

        assert response.status_code == 200
        data = response.json()
        assert data["strategy"] == "model"
        assert [r["contractor_id"] for r in data["results"]] == ["contractor-a"]
        assert data["coordination_notes"] == "Bring igniter parts"

    def test_fallback_on_model_failure(self, api_client: TestClient, mock_completion_service):
        mock_completion_service.complete_json.side_effect = AIServiceTimeoutError("timed out")

        response = api_client.post("/api/contractors/match", json={"case": CASE, "candidates": CANDIDATES})

        data = response.json()
        assert data["strategy"] == "fallback"
        assert [r["contractor_id"] for r in data["results"]] == ["contractor-a", "contractor-b"]
        scores = [r["match_score"] for r in data["results"]]
        assert scores == sorted(scores, reverse=True)
        assert all(0 <= score <= 100 for score in scores)

    def test_no_candidates(self, api_client: TestClient):
        response = api_client.post("/api/contractors/match", json={"case": CASE, "candidates": []})

        assert response.status_code == 200
        results = response.json()["results"]
        assert len(results) == 1
        assert results[0]["contractor_id"] == "admin-intervention-required"

    def test_invalid_case(self, api_client: TestClient):
        response = api_client.post(
            "/api/contractors/match", json={"case": {"title": "No category"}, "candidates": []}
        )

        assert response.status_code == 422
