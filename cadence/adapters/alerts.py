"""Operator alerts: forwards degraded-delivery signals to a webhook."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from cadence.triggers.event_bus import EVENT_WORKFLOW_DEGRADED, EventBus

logger = logging.getLogger(__name__)


class AlertWebhook:
    """POSTs ``{"event": ..., **data}`` to ``url`` for each alert-worthy bus event.

    Alerts are rare (the delivery monitor raises at most one per workflow per
    window), so each post opens its own short-lived client.  A failed post is
    logged; it never affects the run that caused it.
    """

    events = (EVENT_WORKFLOW_DEGRADED,)

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._headers = headers or {}
        self._transport = transport

    def attach(self, event_bus: EventBus) -> None:
        for event in self.events:
            event_bus.subscribe(event, self._handler(event))

    def _handler(self, event: str):
        async def _post(data: Any) -> None:
            await self.post(event, data or {})
        return _post

    async def post(self, event: str, data: dict[str, Any]) -> bool:
        payload = {"event": event, **data}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._url, json=payload, headers=self._headers)
        except httpx.HTTPError as exc:
            logger.warning("Alert %s not delivered to %s: %s", event, self._url, exc)
            return False
        if response.status_code >= 400:
            logger.warning("Alert %s rejected by %s: HTTP %d", event, self._url, response.status_code)
            return False
        logger.info("Alert %s delivered for workflow=%s", event, data.get("workflow_id"))
        return True


def attach_alerts(event_bus: EventBus, cfg) -> Optional[AlertWebhook]:
    """Subscribe the configured alert webhook to *event_bus*; None when unset."""
    if not cfg.alert_webhook_url:
        return None
    headers = {"Authorization": f"Bearer {cfg.alert_webhook_token}"} if cfg.alert_webhook_token else None
    webhook = AlertWebhook(cfg.alert_webhook_url, timeout=cfg.alert_timeout_seconds, headers=headers)
    webhook.attach(event_bus)
    return webhook
