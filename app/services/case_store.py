"""
Case and appointment store adapters.

The orchestrator never owns persistence; it reads and writes cases,
appointments and users through the narrow CaseStore interface.
"""
import asyncio
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import structlog

from app.config import settings
from app.core.exceptions import ExternalServiceError
from app.models.triage import CaseDraft

logger = structlog.get_logger(__name__)


class CaseStore(Protocol):
    """Persistence collaborator. Last write wins; no concurrency token."""

    async def get_appointment(self, appointment_id: str) -> Optional[Dict[str, Any]]: ...

    async def update_appointment(
        self, appointment_id: str, patch: Dict[str, Any]
    ) -> Dict[str, Any]: ...

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]: ...

    async def create_case(
        self, draft: CaseDraft, org_id: str, requester_id: str
    ) -> Dict[str, Any]: ...

    async def list_contractors(self, org_id: str) -> List[Dict[str, Any]]: ...

    async def list_users_by_role(self, org_id: str, role: str) -> List[Dict[str, Any]]: ...


class InMemoryCaseStore:
    """Dict-backed store for development and tests."""

    def __init__(self):
        self.appointments: Dict[str, Dict[str, Any]] = {}
        self.users: Dict[str, Dict[str, Any]] = {}
        self.cases: Dict[str, Dict[str, Any]] = {}
        self.contractors: Dict[str, Dict[str, Any]] = {}

    def add_appointment(self, appointment: Dict[str, Any]) -> Dict[str, Any]:
        self.appointments[appointment["id"]] = dict(appointment)
        return self.appointments[appointment["id"]]

    def add_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        self.users[user["id"]] = dict(user)
        return self.users[user["id"]]

    def add_contractor(self, contractor: Dict[str, Any]) -> Dict[str, Any]:
        self.contractors[contractor["id"]] = dict(contractor)
        return self.contractors[contractor["id"]]

    async def get_appointment(self, appointment_id: str) -> Optional[Dict[str, Any]]:
        appointment = self.appointments.get(appointment_id)
        return dict(appointment) if appointment else None

    async def update_appointment(
        self, appointment_id: str, patch: Dict[str, Any]
    ) -> Dict[str, Any]:
        if appointment_id not in self.appointments:
            raise ExternalServiceError("Case Store", f"Appointment {appointment_id} not found")
        self.appointments[appointment_id].update(
            patch, updated_at=datetime.now(timezone.utc)
        )
        return dict(self.appointments[appointment_id])

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        user = self.users.get(user_id)
        return dict(user) if user else None

    async def create_case(
        self, draft: CaseDraft, org_id: str, requester_id: str
    ) -> Dict[str, Any]:
        case_id = str(uuid.uuid4())
        record = {
            "id": case_id,
            "case_number": f"MC-{len(self.cases) + 1:05d}",
            "org_id": org_id,
            "requester_id": requester_id,
            "status": "New",
            **draft.model_dump(mode="json"),
        }
        self.cases[case_id] = record
        return dict(record)

    async def list_contractors(self, org_id: str) -> List[Dict[str, Any]]:
        return [
            dict(contractor)
            for contractor in self.contractors.values()
            if contractor.get("org_id") in (None, org_id)
        ]

    async def list_users_by_role(self, org_id: str, role: str) -> List[Dict[str, Any]]:
        return [
            dict(user)
            for user in self.users.values()
            if user.get("org_id") == org_id and user.get("role") == role
        ]


class SupabaseCaseStore:
    """Store backed by Supabase tables ``appointments``, ``users`` and ``smart_cases``."""

    def __init__(self, client=None):
        if client is None:
            from supabase import create_client

            client = create_client(settings.supabase_url, settings.supabase_key)
        self.client = client

    async def _execute(self, operation: str, query) -> Any:
        try:
            response = await asyncio.to_thread(query.execute)
        except Exception as e:
            logger.error("Case store operation failed", operation=operation, error=str(e))
            raise ExternalServiceError("Case Store", f"{operation} failed: {e}")
        return response.data

    async def get_appointment(self, appointment_id: str) -> Optional[Dict[str, Any]]:
        data = await self._execute(
            "get_appointment",
            self.client.table("appointments").select("*").eq("id", appointment_id).limit(1),
        )
        return data[0] if data else None

    async def update_appointment(
        self, appointment_id: str, patch: Dict[str, Any]
    ) -> Dict[str, Any]:
        row = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in patch.items()
        }
        row["updated_at"] = datetime.now(timezone.utc).isoformat()
        data = await self._execute(
            "update_appointment",
            self.client.table("appointments").update(row).eq("id", appointment_id),
        )
        return data[0] if data else row

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        data = await self._execute(
            "get_user",
            self.client.table("users").select("*").eq("id", user_id).limit(1),
        )
        return data[0] if data else None

    async def create_case(
        self, draft: CaseDraft, org_id: str, requester_id: str
    ) -> Dict[str, Any]:
        row = {
            "org_id": org_id,
            "requester_id": requester_id,
            "status": "New",
            **draft.model_dump(mode="json"),
        }
        data = await self._execute("create_case", self.client.table("smart_cases").insert(row))
        if not data:
            raise ExternalServiceError("Case Store", "create_case returned no row")
        return data[0]

    async def list_contractors(self, org_id: str) -> List[Dict[str, Any]]:
        return await self._execute(
            "list_contractors",
            self.client.table("contractors").select("*").eq("org_id", org_id),
        ) or []

    async def list_users_by_role(self, org_id: str, role: str) -> List[Dict[str, Any]]:
        return await self._execute(
            "list_users_by_role",
            self.client.table("users").select("*").eq("org_id", org_id).eq("role", role),
        ) or []
