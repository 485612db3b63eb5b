"""Subscriber, tag and publication adapter backed by the platform's internal HTTP API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from cadence.types import PublicationContext, SubscriberContext

from .email import RETRY_STATUSES, _RETRY_EXCEPTIONS
from .memory import InMemoryDirectory

logger = logging.getLogger(__name__)


class PlatformDirectoryError(Exception):
    pass


class PlatformDirectory:
    """Implements TagStore, SubscriberStore and PublicationStore over HTTP.

    Endpoints (relative to ``base_url``)::

        GET    /subscribers/{id}                    → SubscriberContext JSON
        GET    /publications/{id}/subscribers       → {"subscriberIds": [...]}
        PUT    /subscribers/{id}/tags/{tag}         (idempotent)
        DELETE /subscribers/{id}/tags/{tag}         (idempotent)
        GET    /publications/{id}                   → PublicationContext JSON

    404 on a lookup means "unknown" and maps to None.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, headers=headers)
        self._owns_client = client is None
        self._max_attempts = max(1, max_attempts)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str) -> Optional[httpx.Response]:
        for attempt in range(self._max_attempts):
            try:
                response = await self._client.request(method, path)
            except _RETRY_EXCEPTIONS as exc:
                if attempt == self._max_attempts - 1:
                    raise PlatformDirectoryError(f"{method} {path} failed: {exc}") from exc
                await asyncio.sleep(2 ** attempt)
                continue
            if response.status_code in RETRY_STATUSES and attempt < self._max_attempts - 1:
                await asyncio.sleep(2 ** attempt)
                continue
            if response.status_code == 404:
                return None
            if response.status_code >= 400:
                raise PlatformDirectoryError(f"{method} {path} returned HTTP {response.status_code}")
            return response
        return None

    async def get_context(self, subscriber_id: str) -> Optional[SubscriberContext]:
        response = await self._request("GET", f"/subscribers/{subscriber_id}")
        if response is None:
            return None
        data: dict[str, Any] = response.json()
        return SubscriberContext.model_validate({"subscriberId": subscriber_id, **data})

    async def list_subscribers(self, publication_id: str) -> list[str]:
        response = await self._request("GET", f"/publications/{publication_id}/subscribers")
        if response is None:
            return []
        return list(response.json().get("subscriberIds", []))

    async def add_tag(self, subscriber_id: str, tag_id: str) -> None:
        await self._request("PUT", f"/subscribers/{subscriber_id}/tags/{tag_id}")

    async def remove_tag(self, subscriber_id: str, tag_id: str) -> None:
        await self._request("DELETE", f"/subscribers/{subscriber_id}/tags/{tag_id}")

    async def get_publication(self, publication_id: str) -> Optional[PublicationContext]:
        response = await self._request("GET", f"/publications/{publication_id}")
        if response is None:
            return None
        return PublicationContext.model_validate({"publicationId": publication_id, **response.json()})


def build_directory(cfg):
    """PlatformDirectory when the platform API is configured, else an empty InMemoryDirectory."""
    if cfg.platform_api_url:
        return PlatformDirectory(
            base_url=cfg.platform_api_url,
            api_key=cfg.platform_api_key,
            timeout=cfg.email_timeout_seconds,
        )
    logger.warning("CADENCE_PLATFORM_API_URL not set — using an empty in-memory subscriber directory")
    return InMemoryDirectory()
