"""Email sending adapters: HTTP sending-service client and a log-only sender."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Optional

import httpx

from cadence.exceptions import DeliveryError
from cadence.types import DeliveryResult

logger = logging.getLogger(__name__)

RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
_RETRY_EXCEPTIONS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout, httpx.WriteTimeout)


class HttpEmailSender:
    """POSTs messages as JSON to a transactional sending service.

    Retries connection errors, timeouts and 429/5xx responses with
    exponential backoff (``backoff_base * 2**attempt``, capped at
    ``backoff_max``; a numeric ``Retry-After`` header wins).  The same
    ``Idempotency-Key`` header is sent on every attempt so the service can
    drop duplicates.
    """

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        from_address: str = "no-reply@localhost",
        timeout: float = 10.0,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_url = api_url
        self._api_key = api_key
        self._from_address = from_address
        self._max_attempts = max(1, max_attempts)
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @classmethod
    def from_config(cls, cfg) -> "HttpEmailSender":
        return cls(
            api_url=cfg.email_api_url,
            api_key=cfg.email_api_key,
            from_address=cfg.email_from_address,
            timeout=cfg.email_timeout_seconds,
            max_attempts=cfg.email_max_attempts,
            backoff_base=cfg.email_backoff_base,
            backoff_max=cfg.email_backoff_max,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        *,
        idempotency_key: Optional[str] = None,
    ) -> DeliveryResult:
        key = idempotency_key or str(uuid.uuid4())
        headers = {"Idempotency-Key": key}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        body = {"from": self._from_address, "to": to, "subject": subject, "html": html_body}

        last_error = ""
        for attempt in range(self._max_attempts):
            final = attempt == self._max_attempts - 1
            try:
                response = await self._client.post(self._api_url, json=body, headers=headers)
            except _RETRY_EXCEPTIONS as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning("Email send attempt %d/%d failed: %s", attempt + 1, self._max_attempts, last_error)
                if not final:
                    await asyncio.sleep(self._backoff(attempt))
                continue

            if response.status_code in RETRY_STATUSES:
                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                logger.warning("Email send attempt %d/%d got %s", attempt + 1, self._max_attempts, response.status_code)
                if not final:
                    await asyncio.sleep(self._backoff(attempt, response.headers.get("Retry-After")))
                continue

            if response.status_code >= 400:
                raise DeliveryError(
                    f"Sending service rejected message: HTTP {response.status_code}: {response.text[:200]}",
                    transient=False,
                    status_code=response.status_code,
                )

            delivery_id = _delivery_id(response) or key
            logger.debug("Email accepted to=%s delivery_id=%s", to, delivery_id)
            return DeliveryResult(delivery_id=delivery_id)

        raise DeliveryError(
            f"Delivery failed after {self._max_attempts} attempts: {last_error}",
            transient=True,
        )

    def _backoff(self, attempt: int, retry_after: Optional[str] = None) -> float:
        if retry_after:
            try:
                return min(float(retry_after), self._backoff_max)
            except ValueError:
                pass
        return min(self._backoff_base * (2 ** attempt), self._backoff_max)


def _delivery_id(response: httpx.Response) -> Optional[str]:
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict):
        value = payload.get("id") or payload.get("messageId")
        return str(value) if value else None
    return None


class LoggingEmailSender:
    """Development sender: logs the message instead of delivering it."""

    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        *,
        idempotency_key: Optional[str] = None,
    ) -> DeliveryResult:
        delivery_id = idempotency_key or str(uuid.uuid4())
        self.sent.append({"to": to, "subject": subject, "html": html_body, "delivery_id": delivery_id})
        logger.info("Email not delivered (logging sender) to=%s subject=%r", to, subject)
        return DeliveryResult(delivery_id=delivery_id)


def build_email_sender(cfg):
    """HttpEmailSender when a sending service is configured, else LoggingEmailSender."""
    if cfg.email_api_url:
        return HttpEmailSender.from_config(cfg)
    logger.warning("CADENCE_EMAIL_API_URL not set — emails will only be logged")
    return LoggingEmailSender()
