"""
Webhook client that delivers settlement events to the notification sink.

Retries with exponential backoff using tenacity and observes latency metrics.
"""
import time
from typing import Optional

import httpx
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from domain.config import NotificationConfig, get_notification_config
from infrastructure.logging.structlog_logs import logger
from infrastructure.metrics.metrics import notification_latency_seconds


class NotificationWebhookClient:
    """
    HTTP client for the notification sink.

    Retries on non-2xx responses and network errors, up to ``max_attempts``
    deliveries in total.
    """

    def __init__(self, config: Optional[NotificationConfig] = None, target_url: Optional[str] = None):
        self.config = config or get_notification_config()
        self.target_url = target_url or self.config.sink_url
        self.max_attempts = max(self.config.max_attempts, 1)

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=self.config.connect_timeout,
                read=self.config.read_timeout,
                write=self.config.read_timeout,
                pool=self.config.connect_timeout,
            ),
        )

    async def _post_once(self, payload: dict, request_id: Optional[str]) -> int:
        headers = {"X-Request-ID": request_id} if request_id else {}
        start_time = time.time()
        try:
            response = await self._client.post(self.target_url, json=payload, headers=headers)
            response.raise_for_status()
            return response.status_code
        finally:
            notification_latency_seconds.observe(time.time() - start_time)

    async def send(self, payload: dict, request_id: Optional[str] = None) -> tuple[bool, int]:
        """
        Post one event with retries.

        Returns:
            Tuple of (success, attempt_count). Never raises on delivery failure.
        """
        log = logger.bind(
            request_id=request_id or "unknown",
            installment_id=payload.get("installmentId"),
            step="notification_send"
        )
        attempt_count = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.config.backoff_seconds, max=30),
                retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.RequestError)),
            ):
                with attempt:
                    attempt_count = attempt.retry_state.attempt_number
                    status_code = await self._post_once(payload, request_id)
            log.info("notification_sent", status_code=status_code, attempts=attempt_count)
            return True, attempt_count
        except RetryError as e:
            log.error(
                "notification_failed_after_retries",
                error=str(e.last_attempt.exception()),
                attempts=attempt_count,
            )
            return False, attempt_count
        except Exception as e:
            log.error("notification_unexpected_error", error=str(e), attempts=attempt_count, exc_info=True)
            return False, attempt_count

    async def close(self):
        """Close the httpx client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
