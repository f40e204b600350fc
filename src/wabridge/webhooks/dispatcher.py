"""Reliable webhook delivery with bounded retries and exponential backoff.

Security: key material and media hashes are stripped from every body. Logs
carry only payload structure, never values, and never the verify token.
"""

import base64
import json
import random
import time
from dataclasses import dataclass
from typing import Any, Callable

import requests

from wabridge.config import RetryPolicy
from wabridge.errors import WebhookAttemptFailed
from wabridge.observability.correlation import correlation_scope
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import (
    LOG_OMIT_KEYS,
    WIRE_OMIT_KEYS,
    deep_sanitize,
    safe_log_context,
)
from wabridge.sessions.engine import WebhookEvent

logger = get_logger(__name__)

# Upper bound (exclusive) of the random jitter added to each retry delay
JITTER_MAX_MS = 1000

DEFAULT_TIMEOUT = 30.0


def _default_jitter_ms() -> float:
    return random.random() * JITTER_MAX_MS


@dataclass(frozen=True)
class DeliveryOutcome:
    delivered: bool
    attempts: int
    status_code: int | None = None
    error: str | None = None


def build_body(
    event: WebhookEvent,
    verify_token: str,
    await_response: bool | None = None,
) -> dict[str, Any]:
    """Wire body: ``{event, data, extra?, webhookVerifyToken, awaitResponse?}``."""
    body = deep_sanitize(event.to_body(), WIRE_OMIT_KEYS)
    body["webhookVerifyToken"] = verify_token
    if await_response is not None:
        body["awaitResponse"] = await_response
    return body


def _json_default(value: Any) -> Any:
    """Binary values go out as base64 text, anything else as ``str``."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    return str(value)


def _describe_error(exc: Exception) -> str:
    """PII-free error description (no URLs, no bodies)."""
    if isinstance(exc, WebhookAttemptFailed):
        return f"HTTP {exc.status_code}"
    return type(exc).__name__


class WebhookDispatcher:
    """Delivers webhook events with at most ``max_retries + 1`` attempts.

    ``sleep`` and ``jitter_ms`` are injectable so tests can assert the exact
    delay sequence without waiting.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        jitter_ms: Callable[[], float] = _default_jitter_ms,
    ) -> None:
        self.retry_policy = retry_policy
        self.timeout = timeout
        self._session = session or requests.Session()
        self._sleep = sleep
        self._jitter_ms = jitter_ms

    def deliver(
        self,
        event: WebhookEvent,
        *,
        url: str,
        verify_token: str,
        await_response: bool | None = None,
        connection: str = "",
    ) -> DeliveryOutcome:
        """Deliver one event. Never raises on delivery failure.

        Args:
            event: Event to deliver.
            url: Webhook URL.
            verify_token: Shared secret echoed in the body.
            await_response: Forwarded as ``awaitResponse`` when set.
            connection: Hashed connection identity, for logs only.

        Returns:
            DeliveryOutcome with the number of attempts made.
        """
        body = build_body(event, verify_token, await_response)
        data = json.dumps(body, default=_json_default).encode("utf-8")

        logged_payload = deep_sanitize(event.to_body(), LOG_OMIT_KEYS)
        log_ctx = safe_log_context(
            connection=connection,
            event=event.event,
            payload=logged_payload.get("data"),
            await_response=await_response,
        )

        max_attempts = self.retry_policy.max_attempts
        last_status: int | None = None
        last_error: str | None = None

        with correlation_scope():
            logger.debug("delivering webhook", extra={"extra_fields": log_ctx})

            for attempt in range(max_attempts):
                try:
                    status_code = self._post(url, data)
                    logger.debug(
                        "webhook delivered",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx, attempt=attempt + 1, status_code=status_code
                            )
                        },
                    )
                    return DeliveryOutcome(
                        delivered=True, attempts=attempt + 1, status_code=status_code
                    )
                except (requests.RequestException, WebhookAttemptFailed) as e:
                    last_error = _describe_error(e)
                    if isinstance(e, WebhookAttemptFailed):
                        last_status = e.status_code
                    logger.error(
                        "webhook attempt failed",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx, attempt=attempt + 1, error=last_error
                            )
                        },
                    )

                if attempt + 1 < max_attempts:
                    delay_ms = self.retry_policy.delay_ms(attempt)
                    logger.info(
                        "webhook retrying",
                        extra={
                            "extra_fields": safe_log_context(
                                **log_ctx,
                                attempt=attempt + 1,
                                max_retries=self.retry_policy.max_retries,
                                delay_ms=delay_ms,
                            )
                        },
                    )
                    self._sleep((delay_ms + self._jitter_ms()) / 1000)

            logger.error(
                "webhook delivery failed",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx, attempts=max_attempts, error=last_error
                    )
                },
            )
            return DeliveryOutcome(
                delivered=False,
                attempts=max_attempts,
                status_code=last_status,
                error=last_error,
            )

    def _post(self, url: str, data: bytes) -> int:
        """POST once. Returns the 2xx status, raises otherwise."""
        response = self._session.post(
            url,
            data=data,
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        if not 200 <= response.status_code < 300:
            raise WebhookAttemptFailed(response.status_code, response.reason or "")
        return response.status_code

    def close(self) -> None:
        self._session.close()
