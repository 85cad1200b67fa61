"""
Custom exception classes for the Maintenance Request Orchestrator.
"""
from typing import Optional, Any, Dict
import uuid
from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    """Base exception for API errors."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.detail,
            "correlation_id": self.correlation_id,
            "context": self.context,
        }


class ValidationError(BaseAPIException):
    """Exception for validation errors."""

    def __init__(
        self,
        detail: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **context
    ):
        error_code = "MRO_001"
        if field:
            error_code = f"MRO_001_{field.upper()}"
            detail = f"Validation failed for field '{field}': {detail}"

        context_dict = {"field": field, "value": value, **context}

        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code,
            context=context_dict,
        )


class NotFoundError(BaseAPIException):
    """Exception for a referenced entity that does not exist."""

    def __init__(self, entity: str, entity_id: str, **context):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{entity} '{entity_id}' not found",
            error_code=f"MRO_002_{entity.upper()}",
            context={"entity": entity, "entity_id": entity_id, **context},
        )


class ConflictError(BaseAPIException):
    """Exception for a state transition that is no longer allowed."""

    def __init__(
        self,
        detail: str,
        entity_id: Optional[str] = None,
        current_status: Optional[str] = None,
        **context
    ):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="MRO_003",
            context={"entity_id": entity_id, "current_status": current_status, **context},
        )


class TokenRejectedError(BaseAPIException):
    """Exception for an approval token that failed verification."""

    REASONS = {
        "malformed": "Approval token is malformed",
        "invalid_signature": "Approval token signature is invalid",
        "expired": "Approval token has expired",
    }

    def __init__(self, reason: str, **context):
        self.reason = reason
        status_code = (
            status.HTTP_410_GONE if reason == "expired" else status.HTTP_400_BAD_REQUEST
        )
        super().__init__(
            status_code=status_code,
            detail=self.REASONS.get(reason, "Approval token rejected"),
            error_code=f"MRO_004_{reason.upper()}",
            context={"reason": reason, **context},
        )


class ServiceUnavailableError(BaseAPIException):
    """Exception for external service unavailability."""

    def __init__(
        self,
        service_name: str,
        detail: Optional[str] = None,
        retry_after: Optional[int] = None,
        **context
    ):
        self.service_name = service_name
        self.retry_after = retry_after
        if not detail:
            detail = f"External service '{service_name}' is currently unavailable"

        headers = {}
        if retry_after:
            headers["Retry-After"] = str(retry_after)

        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="MRO_005",
            headers=headers,
            context={"service_name": service_name, "retry_after": retry_after, **context},
        )


# AI Service Exceptions
class AIServiceError(Exception):
    """Base exception for AI service errors."""

    pass


class AIServiceTimeoutError(AIServiceError):
    """Exception for AI service timeout errors."""

    pass


class AIServiceRateLimitError(AIServiceError):
    """Exception for AI service rate limit errors."""

    pass


class AIServiceResponseError(AIServiceError):
    """Exception for AI output that cannot be parsed or validated."""

    pass


# External Service Exceptions
class ExternalServiceError(Exception):
    """Exception for external service call errors."""

    def __init__(
        self,
        service_name: str,
        message: str,
        status_code: Optional[int] = None,
        **context
    ):
        self.service_name = service_name
        self.status_code = status_code
        self.context = context
        super().__init__(f"[{service_name}] {message}")


class CircuitOpenError(ExternalServiceError):
    """Exception raised when a circuit breaker refuses a call."""

    def __init__(self, service_name: str):
        super().__init__(service_name=service_name, message="Circuit breaker is OPEN")


# Triage Exceptions
class SessionNotFoundError(Exception):
    """Exception for an unknown or evicted triage session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Chat session '{session_id}' not found")


class CaseCreationError(Exception):
    """Exception for a case draft rejected by the case store."""

    def __init__(self, detail: str, session_id: Optional[str] = None):
        self.session_id = session_id
        message = detail
        if session_id:
            message = f"Case creation for session '{session_id}' failed: {detail}"
        super().__init__(message)


def map_ai_service_error(error: AIServiceError) -> BaseAPIException:
    """Map an AI service error to an API exception."""
    if isinstance(error, AIServiceRateLimitError):
        return ServiceUnavailableError(
            service_name="Completion Service",
            detail=f"Rate limit exceeded: {error}",
            retry_after=30,
        )
    return ServiceUnavailableError(
        service_name="Completion Service",
        detail=str(error) or "Completion service failed",
    )


def map_external_service_error(error: ExternalServiceError) -> BaseAPIException:
    """Map a collaborator outage to a retryable API exception."""
    return ServiceUnavailableError(
        service_name=error.service_name,
        detail=str(error),
        retry_after=10,
    )
