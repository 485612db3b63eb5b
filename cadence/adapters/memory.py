"""Dict-backed subscriber, tag and publication directory for tests and local runs."""

from __future__ import annotations

from typing import Any, Optional

from cadence.types import PublicationContext, SubscriberContext


class InMemoryDirectory:
    """Implements TagStore, SubscriberStore and PublicationStore over dicts."""

    def __init__(self) -> None:
        self._subscribers: dict[str, SubscriberContext] = {}
        self._memberships: dict[str, str] = {}          # subscriber_id → publication_id
        self._publications: dict[str, PublicationContext] = {}

    # ── Seeding ──

    def add_subscriber(self, publication_id: str, subscriber_id: str, **fields: Any) -> SubscriberContext:
        ctx = SubscriberContext(subscriber_id=subscriber_id, **fields)
        self._subscribers[subscriber_id] = ctx
        self._memberships[subscriber_id] = publication_id
        return ctx

    def add_publication(self, publication_id: str, name: str, url: Optional[str] = None) -> PublicationContext:
        pub = PublicationContext(publication_id=publication_id, name=name, url=url)
        self._publications[publication_id] = pub
        return pub

    # ── SubscriberStore ──

    async def get_context(self, subscriber_id: str) -> Optional[SubscriberContext]:
        ctx = self._subscribers.get(subscriber_id)
        return ctx.model_copy(deep=True) if ctx is not None else None

    async def list_subscribers(self, publication_id: str) -> list[str]:
        return sorted(s for s, p in self._memberships.items() if p == publication_id)

    # ── TagStore ──

    async def add_tag(self, subscriber_id: str, tag_id: str) -> None:
        ctx = self._subscribers.get(subscriber_id)
        if ctx is not None and tag_id not in ctx.tags:
            ctx.tags.append(tag_id)

    async def remove_tag(self, subscriber_id: str, tag_id: str) -> None:
        ctx = self._subscribers.get(subscriber_id)
        if ctx is not None and tag_id in ctx.tags:
            ctx.tags.remove(tag_id)

    # ── PublicationStore ──

    async def get_publication(self, publication_id: str) -> Optional[PublicationContext]:
        return self._publications.get(publication_id)
