"""
Triage session manager: turns a requester conversation into a case draft.
"""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import structlog

from app.config import settings
from app.core.exceptions import CaseCreationError, ExternalServiceError, SessionNotFoundError
from app.core.logging import log_business_event
from app.models.triage import CaseDraft, ChatRole, ChatSession, TriageReply
from app.services.case_store import CaseStore
from app.services.completion_service import CompletionService
from app.utils.case_extraction import CASE_MARKER, CaseDraftExtractor

logger = structlog.get_logger(__name__)

TRIAGE_SYSTEM_PROMPT = f"""You are a warm, practical maintenance assistant for residents of managed housing. \
Think like the contractor who will be dispatched and ask what you would need to know before coming on site:
1. How urgent is it? Is anyone unsafe or is property at risk?
2. What exactly is happening, since when, constant or intermittent?
3. Where is it? Building, room, floor, appliance.
4. Are there simple, safe checks the resident can try now (breaker, plug, thermostat)?

Ask questions in small, natural groups. Offer safe mitigation steps while they wait.
Classify urgency as Emergency (safety hazard, active flooding, gas smell, no heat in cold weather, no power),
Urgent (contained leak, partial power, major appliance down) or Routine (minor drip, cosmetic, inconvenience).

When you have the location, a clear description and a way to contact the resident, respond with ONLY:
{CASE_MARKER} {{"title": "...", "description": "...", "urgency": "Emergency|Urgent|Routine", \
"location": "...", "category": "...", "requester_contact": "..."}}
Output nothing before or after that line."""

CASE_READY_REPLY = (
    "I've gathered all the information needed and I'm creating a maintenance request "
    "for you now. A contractor will be in touch soon!"
)

ALREADY_SUBMITTED_REPLY = (
    "Your maintenance request has already been submitted. We'll keep you updated "
    "as a contractor is scheduled."
)


class SessionStore:
    """
    Process-wide triage session table.

    Construct once per process and inject it; tests build isolated instances.
    Each session id has its own asyncio.Lock so at most one turn per session
    is in flight.
    """

    def __init__(self, idle_ttl: Optional[timedelta] = None):
        self.idle_ttl = idle_ttl or timedelta(minutes=settings.session_idle_ttl_minutes)
        self._sessions: Dict[str, ChatSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Optional[ChatSession]:
        return self._sessions.get(session_id)

    def put(self, session: ChatSession) -> None:
        self._sessions[session.id] = session

    def remove(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)

    def lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def evict_idle(self, now: Optional[datetime] = None) -> List[str]:
        """Drop sessions idle longer than the TTL whose lock is free."""
        now = now or datetime.now(timezone.utc)
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if now - session.last_activity_at > self.idle_ttl
            and not self.lock_for(session_id).locked()
        ]
        for session_id in expired:
            self.remove(session_id)

        if expired:
            logger.info("Evicted idle triage sessions", count=len(expired))
        return expired


class TriageSessionManager:
    """Drives triage conversations through the completion service."""

    def __init__(
        self,
        store: SessionStore,
        completion_service: CompletionService,
        case_store: CaseStore,
        extractor: Optional[CaseDraftExtractor] = None,
    ):
        self.store = store
        self.completion_service = completion_service
        self.case_store = case_store
        self.extractor = extractor or CaseDraftExtractor()

    async def start_triage(self, participant_id: str, org_id: str, message: str) -> TriageReply:
        """
        Open a session with the requester's first message and run one turn.

        Raises:
            AIServiceError: If the completion service fails
        """
        session = ChatSession(
            id=f"chat_{uuid.uuid4().hex[:16]}",
            participant_id=participant_id,
            org_id=org_id,
        )

        # Stored only once the opening turn has replied
        reply = await self._run_turn(session, message)
        self.store.put(session)

        logger.info(
            "Triage session started",
            session_id=session.id,
            participant_id=participant_id,
            org_id=org_id,
        )
        return reply

    async def continue_triage(self, session_id: str, message: str) -> TriageReply:
        """
        Append a requester message and run one turn.

        Raises:
            SessionNotFoundError: If the session id is unknown or was evicted
            AIServiceError: If the completion service fails
        """
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        async with self.store.lock_for(session_id):
            if session.is_complete:
                session.append(ChatRole.REQUESTER, message)
                session.append(ChatRole.ASSISTANT, ALREADY_SUBMITTED_REPLY)
                return TriageReply(
                    session_id=session_id,
                    reply=ALREADY_SUBMITTED_REPLY,
                    is_complete=True,
                )
            return await self._run_turn(session, message)

    async def _run_turn(self, session: ChatSession, message: str) -> TriageReply:
        session.append(ChatRole.REQUESTER, message)

        reply = await self.completion_service.complete(TRIAGE_SYSTEM_PROMPT, list(session.messages))
        result = self.extractor.extract(reply)

        if result.succeeded:
            session.mark_complete()
            session.append(ChatRole.ASSISTANT, CASE_READY_REPLY)
            log_business_event(
                "triage_completed",
                session_id=session.id,
                org_id=session.org_id,
                urgency=result.draft.urgency.value,
                category=result.draft.category,
            )
            return TriageReply(
                session_id=session.id,
                reply=CASE_READY_REPLY,
                case_draft=result.draft,
                is_complete=True,
            )

        if result.marker_found:
            logger.warning(
                "Case marker present but draft unusable, replying with raw text",
                session_id=session.id,
                error=result.error,
            )

        session.append(ChatRole.ASSISTANT, reply)
        return TriageReply(session_id=session.id, reply=reply)

    async def create_case(self, session_id: str, draft: CaseDraft) -> Dict[str, Any]:
        """
        Persist a case draft and link it to its session.

        Returns the stored case record; its id is recorded on the session.

        A store rejection propagates; the session stays complete regardless.

        Raises:
            SessionNotFoundError: If the session id is unknown
            CaseCreationError: If the case store rejects the draft
        """
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        try:
            record = await self.case_store.create_case(
                draft, org_id=session.org_id, requester_id=session.participant_id
            )
        except ExternalServiceError as e:
            logger.error(
                "Case store rejected draft",
                session_id=session_id,
                error=str(e),
            )
            raise CaseCreationError(str(e), session_id=session_id)

        case_id = str(record["id"])
        session.case_id = case_id
        log_business_event(
            "case_created",
            session_id=session_id,
            case_id=case_id,
            org_id=session.org_id,
        )
        return record

    def get_session(self, session_id: str) -> ChatSession:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def clear_session(self, session_id: str) -> None:
        self.store.remove(session_id)


class SessionSweeper:
    """Background task that periodically evicts idle triage sessions."""

    def __init__(self, store: SessionStore, interval_seconds: int = 300):
        self.store = store
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._task and not self._task.done():
            logger.warning("Session sweeper already running")
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Session sweeper started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Session sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.store.evict_idle()
