"""
Delivery gateway for transactional email and SMS through the Brevo API.
"""
from typing import Any, Dict, Optional

import httpx
import structlog

from app.config import settings
from app.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from app.core.exceptions import CircuitOpenError, ExternalServiceError

logger = structlog.get_logger(__name__)

SERVICE_NAME = "Delivery Gateway"


class DeliveryGateway:
    """
    Sends email and SMS. Every call returns True on acceptance, False otherwise.

    Without an API key both channels are logged no-ops. Failures never raise
    to the caller; repeated failures open the circuit breaker, after which
    calls are refused without touching the network until it resets.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.brevo_api_key
        self.base_url = settings.brevo_base_url.rstrip("/")
        self._client = client
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            service_name=SERVICE_NAME,
            config=CircuitBreakerConfig(
                failure_threshold=settings.delivery_failure_threshold,
                timeout=settings.circuit_breaker_timeout,
            ),
        )

        if not self.api_key:
            logger.warning("Delivery API key not configured, email and SMS are disabled")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send_email(self, to: str, subject: str, html: str, text: str) -> bool:
        if not self.configured:
            logger.warning("Email channel not configured, skipping", recipient=to)
            return False

        payload = {
            "sender": {"email": settings.sender_email, "name": settings.sender_name},
            "to": [{"email": to}],
            "subject": subject,
            "htmlContent": html,
            "textContent": text,
        }
        return await self._deliver("email", to, "/smtp/email", payload)

    async def send_sms(self, to: str, body: str) -> bool:
        if not self.configured:
            logger.warning("SMS channel not configured, skipping", recipient=to)
            return False

        payload = {
            "sender": settings.sms_sender,
            "recipient": to,
            "content": body,
            "type": "transactional",
        }
        return await self._deliver("sms", to, "/transactionalSMS/sms", payload)

    async def _deliver(
        self, channel: str, recipient: str, path: str, payload: Dict[str, Any]
    ) -> bool:
        try:
            await self.circuit_breaker.call_async(self._post, path, payload)
        except CircuitOpenError:
            logger.warning(
                "Delivery refused, circuit open", channel=channel, recipient=recipient
            )
            return False
        except ExternalServiceError as e:
            logger.error(
                "Delivery failed",
                channel=channel,
                recipient=recipient,
                status_code=e.status_code,
                error=str(e),
            )
            return False

        logger.info("Delivery accepted", channel=channel, recipient=recipient)
        return True

    async def _post(self, path: str, payload: Dict[str, Any]) -> int:
        url = f"{self.base_url}{path}"
        headers = {"api-key": self.api_key, "accept": "application/json"}

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=settings.brevo_timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()

        except httpx.TimeoutException as e:
            raise ExternalServiceError(
                SERVICE_NAME, f"Request timeout after {settings.brevo_timeout} seconds: {e}"
            )
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            )
        except httpx.HTTPError as e:
            raise ExternalServiceError(SERVICE_NAME, f"Transport error: {e}")

        return response.status_code

    def get_circuit_breaker_status(self) -> Dict[str, Any]:
        return self.circuit_breaker.get_status()
