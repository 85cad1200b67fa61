"""
Tests for the notification dispatcher and the live connection registry.
"""
from unittest.mock import AsyncMock

import pytest

from app.core.exceptions import ExternalServiceError
from app.models.notification import (
    Channel,
    NotificationEnvelope,
    NotificationType,
    RecipientSelector,
)


class FakeConnection:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


@pytest.fixture
def envelope() -> NotificationEnvelope:
    return NotificationEnvelope(
        type=NotificationType.CASE_CREATED,
        subject="New Maintenance Case: Leak",
        message="Water under the sink",
        urgency_level="Urgent",
        case_id="case-1",
        case_number="MC-00001",
    )


class TestConnectionRegistry:
    def test_matching_filters(self, registry):
        admin_1 = FakeConnection()
        admin_2 = FakeConnection()
        occupant = FakeConnection()
        registry.add(admin_1, "admin-1", "admin", "org-1")
        registry.add(admin_2, "admin-2", "admin", "org-2")
        registry.add(occupant, "occupant-1", "occupant", "org-1")

        assert [c.identity for c in registry.matching(role="admin", org_id="org-1")] == ["admin-1"]
        assert [c.identity for c in registry.matching(identity="occupant-1")] == ["occupant-1"]
        assert len(registry.matching()) == 3

    def test_remove_by_connection(self, registry):
        first = FakeConnection()
        second = FakeConnection()
        registry.add(first, "admin-1", "admin", "org-1")
        registry.add(second, "admin-1", "admin", "org-1")

        registry.remove(first)
        registry.remove(first)

        assert len(registry) == 1
        assert registry.matching()[0].connection is second

    def test_snapshot_is_detached(self, registry):
        registry.add(FakeConnection(), "admin-1", "admin", "org-1")
        snapshot = registry.matching()

        registry.add(FakeConnection(), "admin-2", "admin", "org-1")

        assert len(snapshot) == 1


class TestNotificationDispatcher:
    """Test cases for NotificationDispatcher."""

    @pytest.mark.asyncio
    async def test_notify_role_pushes_to_live_members(self, dispatcher, registry, envelope):
        connections = [FakeConnection(), FakeConnection()]
        registry.add(connections[0], "admin-1", "admin", "org-1")
        registry.add(connections[1], "admin-2", "admin", "org-1")
        registry.add(FakeConnection(), "admin-3", "admin", "org-2")

        report = await dispatcher.notify_role("admin", "org-1", envelope)

        assert report.succeeded == 2
        message = connections[0].sent[0]
        assert message["type"] == "notification"
        assert message["data"]["type"] == "case_created"
        assert message["data"]["case_number"] == "MC-00001"

    @pytest.mark.asyncio
    async def test_failed_push_does_not_affect_siblings(self, dispatcher, registry, envelope):
        healthy = FakeConnection()
        registry.add(FakeConnection(fail=True), "admin-1", "admin", "org-1")
        registry.add(healthy, "admin-2", "admin", "org-1")

        report = await dispatcher.notify_role("admin", "org-1", envelope)

        assert report.succeeded == 1
        assert report.failed == 1
        assert len(healthy.sent) == 1
        failure = next(o for o in report.outcomes if not o.success)
        assert failure.target == "admin-1"
        assert "socket closed" in failure.error

    @pytest.mark.asyncio
    async def test_notify_role_without_connections(self, dispatcher, envelope):
        report = await dispatcher.notify_role("admin", "org-1", envelope)

        assert report.outcomes == []
        assert report.skipped == [Channel.EMAIL, Channel.SMS, Channel.PUSH]
        assert report.total_failure is True

    @pytest.mark.asyncio
    async def test_notify_role_emails_stored_members(self, dispatcher, case_store, mock_gateway, envelope):
        case_store.add_user(
            {"id": "admin-1", "org_id": "org-1", "role": "admin",
             "email": "admin@example.com", "phone": "+15550003333"}
        )
        case_store.add_user({"id": "admin-9", "org_id": "org-9", "role": "admin", "email": "other@example.com"})

        report = await dispatcher.notify_role("admin", "org-1", envelope)

        assert report.succeeded == 2
        assert {o.target for o in report.outcomes} == {"admin@example.com", "+15550003333"}
        assert report.skipped == [Channel.PUSH]
        mock_gateway.send_email.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_live_member_pushed_once(self, dispatcher, registry, case_store, envelope):
        connection = FakeConnection()
        registry.add(connection, "admin-1", "admin", "org-1")
        case_store.add_user({"id": "admin-1", "org_id": "org-1", "role": "admin", "email": "admin@example.com"})

        report = await dispatcher.notify_role("admin", "org-1", envelope)

        assert len(connection.sent) == 1
        assert [o.channel for o in report.outcomes].count(Channel.PUSH) == 1
        assert report.skipped == [Channel.SMS]

    @pytest.mark.asyncio
    async def test_member_lookup_failure_still_pushes(self, dispatcher, registry, case_store, envelope):
        case_store.list_users_by_role = AsyncMock(side_effect=ExternalServiceError("Case Store", "offline"))
        registry.add(FakeConnection(), "admin-1", "admin", "org-1")

        report = await dispatcher.notify_role("admin", "org-1", envelope)

        assert report.succeeded == 1
        assert report.skipped == [Channel.EMAIL, Channel.SMS]

    @pytest.mark.asyncio
    async def test_unreachable_role_counts_as_outage(self, dispatcher, envelope):
        report = await dispatcher.dispatch(envelope, RecipientSelector(role="admin", org_id="org-1"))

        assert report.total_failure is True
        assert dispatcher.stats()["total_outages"] == 1

    @pytest.mark.asyncio
    async def test_notify_party_all_channels(self, dispatcher, registry, mock_gateway, envelope):
        connection = FakeConnection()
        registry.add(connection, "occupant-1", "occupant", "org-1")

        report = await dispatcher.notify_party("occupant-1", envelope)

        assert report.succeeded == 3
        assert {o.channel for o in report.outcomes} == {Channel.EMAIL, Channel.SMS, Channel.PUSH}
        to, subject, html, text = mock_gateway.send_email.await_args.args
        assert to == "occupant@example.com"
        assert subject == "New Maintenance Case: Leak"
        phone, body = mock_gateway.send_sms.await_args.args
        assert phone == "+15550001111"
        assert body.startswith("NEW CASE: MC-00001")
        assert len(connection.sent) == 1

    @pytest.mark.asyncio
    async def test_email_failure_does_not_block_sms(self, dispatcher, mock_gateway, envelope):
        mock_gateway.send_email.side_effect = ExternalServiceError("Delivery Gateway", "boom")

        report = await dispatcher.notify_party("occupant-1", envelope)

        mock_gateway.send_sms.assert_awaited_once()
        by_channel = {o.channel: o for o in report.outcomes}
        assert by_channel[Channel.EMAIL].success is False
        assert by_channel[Channel.SMS].success is True
        assert report.skipped == [Channel.PUSH]

    @pytest.mark.asyncio
    async def test_gateway_refusal_is_a_failed_outcome(self, dispatcher, mock_gateway, envelope):
        mock_gateway.send_sms.return_value = False

        report = await dispatcher.notify_party("occupant-1", envelope)

        sms = next(o for o in report.outcomes if o.channel == Channel.SMS)
        assert sms.success is False
        assert sms.error == "not delivered"

    @pytest.mark.asyncio
    async def test_party_without_contact_details(self, dispatcher, mock_gateway, envelope):
        report = await dispatcher.dispatch(envelope, RecipientSelector(party_id="ghost"))

        assert report.succeeded == 0
        assert set(report.skipped) == {Channel.EMAIL, Channel.SMS, Channel.PUSH}
        mock_gateway.send_email.assert_not_awaited()
        mock_gateway.send_sms.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_party(self, dispatcher, mock_gateway, envelope):
        report = await dispatcher.notify_party("nobody", envelope)

        assert report.outcomes == []
        mock_gateway.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_failure_on_lookup(self, dispatcher, case_store, envelope):
        case_store.get_user = AsyncMock(side_effect=ExternalServiceError("Case Store", "offline"))

        report = await dispatcher.notify_party("occupant-1", envelope)

        assert report.outcomes == []

    @pytest.mark.asyncio
    async def test_channel_selection(self, dispatcher, mock_gateway, envelope):
        email_only = envelope.model_copy(update={"channels": [Channel.EMAIL]})

        report = await dispatcher.notify_party("occupant-1", email_only)

        assert [o.channel for o in report.outcomes] == [Channel.EMAIL]
        mock_gateway.send_sms.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dispatch_merges_party_and_role(self, dispatcher, registry, envelope):
        registry.add(FakeConnection(), "admin-1", "admin", "org-1")

        report = await dispatcher.dispatch(
            envelope, RecipientSelector(party_id="occupant-1", role="admin", org_id="org-1")
        )

        assert report.succeeded == 3
        assert set(report.skipped) == {Channel.EMAIL, Channel.SMS, Channel.PUSH}

    @pytest.mark.asyncio
    async def test_total_outage_is_not_raised(self, dispatcher, mock_gateway, envelope):
        mock_gateway.send_email.return_value = False
        mock_gateway.send_sms.side_effect = RuntimeError("network down")

        report = await dispatcher.dispatch(envelope, RecipientSelector(party_id="occupant-1"))

        assert report.total_failure is True
        assert dispatcher.stats()["total_outages"] == 1

    @pytest.mark.asyncio
    async def test_stats(self, dispatcher, registry, envelope):
        registry.add(FakeConnection(), "admin-1", "admin", "org-1")
        await dispatcher.dispatch(envelope, RecipientSelector(role="admin", org_id="org-1"))
        await dispatcher.dispatch(envelope, RecipientSelector(party_id="occupant-1"))

        stats = dispatcher.stats()

        assert stats["dispatches"] == 2
        assert stats["deliveries_succeeded"] == 3
        assert stats["deliveries_failed"] == 0
        assert stats["live_connections"] == 1
        assert stats["delivery_configured"] is True
        assert stats["circuit_breaker"] == {"state": "closed"}


class TestRecipientSelector:
    def test_requires_a_target(self):
        with pytest.raises(ValueError):
            RecipientSelector()

    def test_role_requires_org(self):
        with pytest.raises(ValueError):
            RecipientSelector(role="admin")
