"""Interfaces of the external collaborators the execution engine calls.

Implementations live outside the engine (sending service, subscriber/tag
services).  The engine never mutates subscriber or tag data except through
these interfaces.
"""

from typing import Optional, Protocol, runtime_checkable

from cadence.types import DeliveryResult, PublicationContext, SubscriberContext


@runtime_checkable
class EmailSender(Protocol):
    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        *,
        idempotency_key: Optional[str] = None,
    ) -> DeliveryResult:
        """Hand one message to the sending service.

        Transient failures are retried inside the adapter with bounded
        backoff; when retries are exhausted, or the failure is permanent,
        raises ``DeliveryError``.
        """
        ...


@runtime_checkable
class TagStore(Protocol):
    async def add_tag(self, subscriber_id: str, tag_id: str) -> None:
        """Attach a tag. Adding a tag the subscriber already has is a no-op."""
        ...

    async def remove_tag(self, subscriber_id: str, tag_id: str) -> None:
        """Detach a tag. Removing an absent tag is a no-op."""
        ...


@runtime_checkable
class SubscriberStore(Protocol):
    async def get_context(self, subscriber_id: str) -> Optional[SubscriberContext]:
        ...

    async def list_subscribers(self, publication_id: str) -> list[str]:
        """Active subscriber ids of a publication (CUSTOM_DATE fan-out)."""
        ...


@runtime_checkable
class PublicationStore(Protocol):
    async def get_publication(self, publication_id: str) -> Optional[PublicationContext]:
        ...
