"""
Notification dispatcher for push, email and SMS delivery.
"""
import asyncio
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import structlog

from app.core.exceptions import ExternalServiceError
from app.core.logging import log_business_event
from app.models.notification import (
    Channel,
    DeliveryOutcome,
    DeliveryReport,
    NotificationEnvelope,
    RecipientSelector,
)
from app.services.case_store import CaseStore
from app.services.delivery_gateway import DeliveryGateway
from app.utils.notification_templates import render_email, render_sms

logger = structlog.get_logger(__name__)


class PushConnection(Protocol):
    """Anything that can write a JSON message to a live client, e.g. a WebSocket."""

    async def send_json(self, data: Any) -> None: ...


@dataclass(frozen=True)
class LiveConnection:
    connection: PushConnection
    identity: str
    role: str
    org_id: Optional[str] = None


class ConnectionRegistry:
    """Thread-safe table of live push connections."""

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: List[LiveConnection] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def add(
        self,
        connection: PushConnection,
        identity: str,
        role: str,
        org_id: Optional[str] = None,
    ) -> LiveConnection:
        entry = LiveConnection(connection=connection, identity=identity, role=role, org_id=org_id)
        with self._lock:
            self._connections.append(entry)
        logger.info("Push connection registered", identity=identity, role=role, org_id=org_id)
        return entry

    def remove(self, connection: PushConnection) -> None:
        with self._lock:
            removed = [c for c in self._connections if c.connection is connection]
            self._connections = [c for c in self._connections if c.connection is not connection]
        for entry in removed:
            logger.info("Push connection removed", identity=entry.identity, role=entry.role)

    def matching(
        self,
        role: Optional[str] = None,
        org_id: Optional[str] = None,
        identity: Optional[str] = None,
    ) -> List[LiveConnection]:
        """Snapshot of connections matching every given filter."""
        with self._lock:
            snapshot = list(self._connections)
        return [
            c
            for c in snapshot
            if (role is None or c.role == role)
            and (org_id is None or c.org_id == org_id)
            and (identity is None or c.identity == identity)
        ]


class NotificationDispatcher:
    """
    Fans a notification out to parties and roles.

    Delivery is best effort. Every channel send is independent and every
    outcome is collected before returning; no failure, including a total
    outage, is raised to the caller.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        case_store: CaseStore,
        gateway: DeliveryGateway,
    ):
        self.registry = registry
        self.case_store = case_store
        self.gateway = gateway
        self._stats_lock = threading.Lock()
        self._stats = {
            "dispatches": 0,
            "deliveries_succeeded": 0,
            "deliveries_failed": 0,
            "total_outages": 0,
        }

    async def dispatch(
        self, envelope: NotificationEnvelope, selector: RecipientSelector
    ) -> DeliveryReport:
        """Deliver an envelope to a party, a role within an organization, or both."""
        report = DeliveryReport(notification_type=envelope.type)

        if selector.party_id:
            report.merge(await self.notify_party(selector.party_id, envelope))
        if selector.role:
            report.merge(await self.notify_role(selector.role, selector.org_id, envelope))

        self._record(report)

        if report.total_failure:
            logger.error(
                "Notification delivered on no channel",
                notification_type=envelope.type.value,
                party_id=selector.party_id,
                role=selector.role,
                attempts=len(report.outcomes),
            )

        log_business_event(
            "notification_dispatched",
            notification_type=envelope.type.value,
            case_id=envelope.case_id,
            appointment_id=envelope.appointment_id,
            succeeded=report.succeeded,
            failed=report.failed,
            skipped=[c.value for c in report.skipped],
        )
        return report

    async def notify_role(
        self, role: str, org_id: Optional[str], envelope: NotificationEnvelope
    ) -> DeliveryReport:
        """
        Reach every member of ``role`` in ``org_id``.

        Stored members get email and SMS; push goes to every live connection
        holding the role, so a member is never pushed twice.
        """
        report = DeliveryReport(notification_type=envelope.type)

        direct = envelope.model_copy(
            update={"channels": [c for c in envelope.channels if c != Channel.PUSH]}
        )
        if direct.channels:
            members = await self._list_members(role, org_id)
            if not members:
                report.skipped.extend(direct.channels)
            member_reports = await asyncio.gather(
                *(self._deliver_direct(str(m["id"]), m, direct) for m in members)
            )
            for member_report in member_reports:
                report.merge(member_report)

        if Channel.PUSH in envelope.channels:
            connections = self.registry.matching(role=role, org_id=org_id)
            if connections:
                report.outcomes.extend(await self._push(connections, envelope))
            else:
                logger.info("No live connections for role", role=role, org_id=org_id)
                report.skipped.append(Channel.PUSH)

        return report

    async def notify_party(
        self, party_id: str, envelope: NotificationEnvelope
    ) -> DeliveryReport:
        """Email, SMS and push a single party, settling every channel."""
        try:
            user = await self.case_store.get_user(party_id)
        except ExternalServiceError as e:
            logger.error("Recipient lookup failed", party_id=party_id, error=str(e))
            return DeliveryReport(notification_type=envelope.type)

        if user is None:
            logger.warning("Notification recipient not found", party_id=party_id)
            return DeliveryReport(notification_type=envelope.type)

        report = await self._deliver_direct(party_id, user, envelope)

        if Channel.PUSH in envelope.channels:
            connections = self.registry.matching(identity=party_id)
            if connections:
                report.outcomes.extend(await self._push(connections, envelope))
            else:
                report.skipped.append(Channel.PUSH)

        return report

    async def _list_members(self, role: str, org_id: Optional[str]) -> List[Dict[str, Any]]:
        if org_id is None:
            return []
        try:
            return await self.case_store.list_users_by_role(org_id, role)
        except ExternalServiceError as e:
            logger.error("Role member lookup failed", role=role, org_id=org_id, error=str(e))
            return []

    async def _deliver_direct(
        self, party_id: str, user: Dict[str, Any], envelope: NotificationEnvelope
    ) -> DeliveryReport:
        report = DeliveryReport(notification_type=envelope.type)
        sends = []
        email = user.get("email")
        phone = user.get("phone")

        if Channel.EMAIL in envelope.channels:
            if email:
                content = render_email(envelope)
                sends.append(
                    (Channel.EMAIL, email,
                     self.gateway.send_email(email, content.subject, content.html, content.text))
                )
            else:
                report.skipped.append(Channel.EMAIL)

        if Channel.SMS in envelope.channels:
            if phone:
                sends.append((Channel.SMS, phone, self.gateway.send_sms(phone, render_sms(envelope))))
            else:
                report.skipped.append(Channel.SMS)

        results = await asyncio.gather(*(send for _, _, send in sends), return_exceptions=True)
        for (channel, target, _), result in zip(sends, results):
            if isinstance(result, Exception):
                logger.error(
                    "Channel delivery raised",
                    channel=channel.value,
                    party_id=party_id,
                    error=str(result),
                )
                report.outcomes.append(
                    DeliveryOutcome(channel=channel, target=target, success=False, error=str(result))
                )
            else:
                report.outcomes.append(
                    DeliveryOutcome(
                        channel=channel,
                        target=target,
                        success=bool(result),
                        error=None if result else "not delivered",
                    )
                )

        return report

    async def _push(
        self, connections: List[LiveConnection], envelope: NotificationEnvelope
    ) -> List[DeliveryOutcome]:
        message = {"type": "notification", "data": envelope.model_dump(mode="json")}
        outcomes = []

        for entry in connections:
            try:
                await entry.connection.send_json(message)
            except Exception as e:
                logger.warning(
                    "Push delivery failed",
                    identity=entry.identity,
                    role=entry.role,
                    error=str(e),
                )
                outcomes.append(
                    DeliveryOutcome(channel=Channel.PUSH, target=entry.identity, success=False, error=str(e))
                )
            else:
                outcomes.append(DeliveryOutcome(channel=Channel.PUSH, target=entry.identity, success=True))

        return outcomes

    def _record(self, report: DeliveryReport) -> None:
        with self._stats_lock:
            self._stats["dispatches"] += 1
            self._stats["deliveries_succeeded"] += report.succeeded
            self._stats["deliveries_failed"] += report.failed
            if report.total_failure:
                self._stats["total_outages"] += 1

    def stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            counters = dict(self._stats)
        counters["live_connections"] = len(self.registry)
        counters["delivery_configured"] = self.gateway.configured
        counters["circuit_breaker"] = self.gateway.get_circuit_breaker_status()
        return counters
