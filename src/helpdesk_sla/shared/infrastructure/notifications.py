"""
Notification Delivery
=====================

Webhook-backed notification dispatcher used by SLA violation alerts and
escalation actions.

Each send is a single POST of {"recipient": ..., "payload": ...}. Delivery
is not retried; repeated failures open a circuit breaker so a dead webhook
does not slow down ticket evaluation.
"""

import time
from typing import Any, Dict, Optional

import httpx

from helpdesk_sla.config import settings
from helpdesk_sla.core import NotificationDispatchException
from helpdesk_sla.shared.infrastructure.logging import get_logger
from helpdesk_sla.sla.application import INotificationDispatcher

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class WebhookNotificationDispatcher(INotificationDispatcher):
    """
    Posts notifications to a single webhook that fans them out to email,
    SMS or chat.

    send() returns False when nothing was attempted (no webhook configured or
    circuit open) and raises NotificationDispatchException when the webhook
    could not be reached or rejected the notification.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self._webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self._timeout = timeout_seconds or settings.notification_timeout_seconds
        self._http_client = client
        self._circuit_breaker = circuit_breaker or CircuitBreaker()

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def send(self, recipient: str, payload: Dict[str, Any]) -> bool:
        if not self._webhook_url:
            logger.debug(
                "Notification webhook URL not configured, skipping notification",
                extra={"recipient": recipient}
            )
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping notification",
                extra={"recipient": recipient, "event": payload.get("event")}
            )
            return False

        try:
            client = await self._get_client()
            response = await client.post(
                self._webhook_url,
                json={"recipient": recipient, "payload": payload}
            )
        except httpx.HTTPError as e:
            self._circuit_breaker.record_failure()
            raise NotificationDispatchException(
                f"Webhook request failed: {e}",
                {"recipient": recipient, "event": payload.get("event")}
            ) from e

        if response.is_success:
            self._circuit_breaker.record_success()
            logger.info(
                "Notification sent",
                extra={"recipient": recipient, "event": payload.get("event")}
            )
            return True

        self._circuit_breaker.record_failure()
        raise NotificationDispatchException(
            f"Webhook returned {response.status_code}",
            {"recipient": recipient, "status_code": response.status_code}
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
