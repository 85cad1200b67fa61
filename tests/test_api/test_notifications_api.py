"""
Tests for the notification endpoints and the live push channel.
"""
from fastapi.testclient import TestClient

ENVELOPE = {
    "type": "case_updated",
    "subject": "Case MC-00042 updated",
    "message": "Contractor is on the way",
    "urgency_level": "Routine",
    "case_id": "case-42",
    "case_number": "MC-00042",
}


class TestDispatchEndpoint:
    def test_dispatch_to_party(self, api_client: TestClient, mock_gateway):
        response = api_client.post(
            "/api/notifications/dispatch",
            json={"envelope": ENVELOPE, "recipient": {"party_id": "occupant-1"}},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["succeeded"] == 2
        assert data["failed"] == 0
        assert data["total_failure"] is False
        assert data["skipped"] == ["push"]
        mock_gateway.send_sms.assert_awaited_once()

    def test_total_failure_is_still_200(self, api_client: TestClient, mock_gateway):
        mock_gateway.send_email.return_value = False
        mock_gateway.send_sms.return_value = False

        response = api_client.post(
            "/api/notifications/dispatch",
            json={"envelope": ENVELOPE, "recipient": {"party_id": "occupant-1"}},
        )

        assert response.status_code == 200
        assert response.json()["total_failure"] is True

    def test_recipient_requires_target(self, api_client: TestClient):
        response = api_client.post(
            "/api/notifications/dispatch", json={"envelope": ENVELOPE, "recipient": {}}
        )

        assert response.status_code == 422

    def test_stats_accumulate(self, api_client: TestClient):
        for _ in range(2):
            api_client.post(
                "/api/notifications/dispatch",
                json={"envelope": ENVELOPE, "recipient": {"party_id": "occupant-1"}},
            )

        stats = api_client.get("/api/notifications/stats").json()

        assert stats["dispatches"] == 2
        assert stats["deliveries_succeeded"] == 4
        assert stats["live_connections"] == 0


class TestNotificationSocket:
    def test_role_broadcast_reaches_socket(self, api_client: TestClient, registry):
        with api_client.websocket_connect(
            "/ws/notifications?user_id=admin-1&role=admin&org_id=org-1"
        ) as websocket:
            assert websocket.receive_json() == {"type": "connected", "user_id": "admin-1", "role": "admin"}
            assert len(registry) == 1

            response = api_client.post(
                "/api/notifications/dispatch",
                json={"envelope": ENVELOPE, "recipient": {"role": "admin", "org_id": "org-1"}},
            )
            message = websocket.receive_json()

        assert response.json()["succeeded"] == 1
        assert message["type"] == "notification"
        assert message["data"]["case_number"] == "MC-00042"

    def test_disconnect_unregisters(self, api_client: TestClient, registry):
        with api_client.websocket_connect("/ws/notifications?user_id=occupant-1&role=occupant") as websocket:
            websocket.receive_json()
            websocket.send_text("ping")

        assert len(registry) == 0

    def test_other_org_not_reached(self, api_client: TestClient, registry):
        with api_client.websocket_connect(
            "/ws/notifications?user_id=admin-9&role=admin&org_id=org-9"
        ) as websocket:
            websocket.receive_json()

            response = api_client.post(
                "/api/notifications/dispatch",
                json={"envelope": ENVELOPE, "recipient": {"role": "admin", "org_id": "org-1"}},
            )

        assert set(response.json()["skipped"]) == {"email", "sms", "push"}
