"""
Notification Gateway client - delivers outbox messages to users

One HTTP attempt per call; retries belong to the outbox backoff. Every call
goes through the shared circuit breaker so an unreachable gateway fails fast.
"""
from typing import Any, Optional

import httpx

from app.core.circuit_breaker import CircuitBreaker, get_notification_gateway_breaker
from app.core.config import settings
from app.core.exceptions import NotificationGatewayError, ServiceTimeoutError
from app.core.logging import get_correlation_id, get_logger

logger = get_logger(__name__)


class NotificationGatewayClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = (base_url if base_url is not None else settings.NOTIFICATION_GATEWAY_URL).rstrip("/")
        self._token = token if token is not None else settings.NOTIFICATION_GATEWAY_TOKEN
        self._timeout = timeout_seconds or settings.NOTIFICATION_TIMEOUT_SECONDS
        self._breaker = breaker or get_notification_gateway_breaker()
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        return headers

    async def send(
        self,
        user_id: int,
        message_type: str,
        content: dict[str, Any],
        message_id: Optional[int] = None,
    ) -> None:
        """Deliver one notification to one user.

        Raises:
            NotificationGatewayError: gateway not configured, unreachable or non-2xx
            ServiceTimeoutError: no response within the configured timeout
            CircuitBreakerOpenError: too many recent failures
        """
        if not self.is_configured:
            raise NotificationGatewayError("gateway URL is not configured")

        payload = {
            "user_id": user_id,
            "type": message_type,
            "content": content,
            "message_id": message_id,
        }
        await self._breaker.call(self._post, "/notifications", payload)

        logger.debug(
            "Notification sent",
            extra_data={"user_id": user_id, "message_type": message_type, "message_id": message_id},
        )

    async def health(self) -> bool:
        """True when the gateway answers its health endpoint with 200"""
        if not self.is_configured:
            return False
        async with httpx.AsyncClient(timeout=5.0, transport=self._transport) as client:
            response = await client.get(f"{self._base_url}/health")
        return response.status_code == 200

    async def _post(self, path: str, payload: dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    f"{self._base_url}{path}",
                    json=payload,
                    headers=self._headers(),
                )
            except httpx.TimeoutException:
                raise ServiceTimeoutError("notification_gateway", self._timeout) from None
            except httpx.RequestError as exc:
                raise NotificationGatewayError(
                    f"POST {path} network error: {exc}",
                    details={"network_error": True},
                ) from exc

        if not response.is_success:
            raise NotificationGatewayError.from_response(f"POST {path}", response)
