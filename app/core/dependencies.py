"""
Dependency injection for FastAPI application.

Provides factory functions for the process-wide collaborators. Each factory
is cached so one instance exists per process; tests substitute isolated
instances through ``app.dependency_overrides``.
"""
from datetime import timedelta
from functools import lru_cache

from fastapi import Depends

from app.config import settings
from app.core.logging import get_logger
from app.services.approval_service import ApprovalTokenService
from app.services.case_store import CaseStore, InMemoryCaseStore, SupabaseCaseStore
from app.services.completion_service import CompletionService
from app.services.delivery_gateway import DeliveryGateway
from app.services.matching_service import ContractorMatchingService
from app.services.notification_service import ConnectionRegistry, NotificationDispatcher
from app.services.pipeline_service import MaintenancePipeline
from app.services.triage_service import SessionStore, TriageSessionManager
from app.utils.match_scoring import FallbackScorer

logger = get_logger(__name__)


@lru_cache()
def get_session_store() -> SessionStore:
    return SessionStore(idle_ttl=timedelta(minutes=settings.session_idle_ttl_minutes))


@lru_cache()
def get_connection_registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@lru_cache()
def get_case_store() -> CaseStore:
    """Supabase when configured, otherwise an in-process store."""
    if settings.supabase_configured:
        return SupabaseCaseStore()
    logger.warning("Supabase not configured, using in-memory case store")
    return InMemoryCaseStore()


@lru_cache()
def get_completion_service() -> CompletionService:
    return CompletionService()


@lru_cache()
def get_delivery_gateway() -> DeliveryGateway:
    return DeliveryGateway()


def get_triage_manager(
    store: SessionStore = Depends(get_session_store),
    completion_service: CompletionService = Depends(get_completion_service),
    case_store: CaseStore = Depends(get_case_store),
) -> TriageSessionManager:
    return TriageSessionManager(store, completion_service, case_store)


def get_matching_service(
    completion_service: CompletionService = Depends(get_completion_service),
) -> ContractorMatchingService:
    return ContractorMatchingService(
        completion_service, FallbackScorer(max_results=settings.matching_max_results)
    )


def get_approval_service(
    case_store: CaseStore = Depends(get_case_store),
) -> ApprovalTokenService:
    return ApprovalTokenService(case_store)


@lru_cache()
def _dispatcher_for(
    registry: ConnectionRegistry, case_store: CaseStore, gateway: DeliveryGateway
) -> NotificationDispatcher:
    return NotificationDispatcher(registry, case_store, gateway)


def get_notification_dispatcher(
    registry: ConnectionRegistry = Depends(get_connection_registry),
    case_store: CaseStore = Depends(get_case_store),
    gateway: DeliveryGateway = Depends(get_delivery_gateway),
) -> NotificationDispatcher:
    """One dispatcher per collaborator set, so ``stats()`` accumulate."""
    return _dispatcher_for(registry, case_store, gateway)


def get_pipeline(
    triage_manager: TriageSessionManager = Depends(get_triage_manager),
    matching_service: ContractorMatchingService = Depends(get_matching_service),
    approval_service: ApprovalTokenService = Depends(get_approval_service),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
    case_store: CaseStore = Depends(get_case_store),
) -> MaintenancePipeline:
    return MaintenancePipeline(
        triage_manager, matching_service, approval_service, dispatcher, case_store
    )
