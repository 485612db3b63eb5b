"""Graph builders and fakes shared by the test modules.

Node and edge builders return the editor's camelCase dicts so every test
also exercises the wire format.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from cadence.exceptions import DeliveryError
from cadence.types import DeliveryResult, WorkflowDefinition


# ── Node / edge builders ──────────────────────────────────────────────────────

def trigger_node(node_id: str = "trigger", trigger_type: str = "SUBSCRIBE", **config: Any) -> dict:
    return {
        "id": node_id,
        "type": "trigger",
        "position": {"x": 0, "y": 0},
        "data": {"type": "trigger", "triggerType": trigger_type, "label": "Start", "config": config},
    }


def email_node(
    node_id: str,
    subject: str = "Welcome, {{subscriber.firstName}}",
    content: str = "<p>Thanks for joining {{publication.name}}.</p>",
    personalization: Optional[dict] = None,
) -> dict:
    return {
        "id": node_id,
        "type": "action",
        "data": {
            "type": "action",
            "actionType": "SEND_EMAIL",
            "config": {
                "subject": subject,
                "content": content,
                "personalization": personalization or {},
            },
        },
    }


def tag_node(node_id: str, *tag_ids: str, remove: bool = False) -> dict:
    return {
        "id": node_id,
        "type": "action",
        "data": {
            "type": "action",
            "actionType": "REMOVE_TAG" if remove else "ADD_TAG",
            "config": {"tagIds": list(tag_ids) or ["vip"]},
        },
    }


def wait_node(node_id: str, amount: int, unit: str = "minutes") -> dict:
    return {
        "id": node_id,
        "type": "action",
        "data": {
            "type": "action",
            "actionType": "WAIT",
            "config": {"delayMinutes": amount, "delayUnit": unit},
        },
    }


def has_tag_node(node_id: str, tag_id: str = "vip", has_tag: bool = True) -> dict:
    return {
        "id": node_id,
        "type": "condition",
        "data": {
            "type": "condition",
            "conditionType": "HAS_TAG",
            "config": {"tagId": tag_id, "hasTag": has_tag},
        },
    }


def tier_node(node_id: str, tier_id: str) -> dict:
    return {
        "id": node_id,
        "type": "condition",
        "data": {"type": "condition", "conditionType": "SUBSCRIPTION_TIER", "config": {"tierId": tier_id}},
    }


def field_node(node_id: str, field_name: str, operator: str, value: str) -> dict:
    return {
        "id": node_id,
        "type": "condition",
        "data": {
            "type": "condition",
            "conditionType": "CUSTOM_FIELD",
            "config": {"fieldName": field_name, "operator": operator, "value": value},
        },
    }


def edge(source: str, target: str, branch: Optional[str] = None, **extra: Any) -> dict:
    payload = {"id": f"e-{source}-{target}", "source": source, "target": target, **extra}
    if branch is not None:
        payload["branch"] = branch
    return payload


def definition(nodes: list[dict], edges: list[dict]) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate({"nodes": nodes, "edges": edges})


def chain(*nodes: dict) -> WorkflowDefinition:
    """Linear graph: each node connected to the next."""
    return definition(
        list(nodes),
        [edge(a["id"], b["id"]) for a, b in zip(nodes, nodes[1:])],
    )


def welcome_series() -> WorkflowDefinition:
    """trigger → email → wait 1 day → HAS_TAG(vip) → yes: email / no: tag"""
    return definition(
        [
            trigger_node(),
            email_node("welcome"),
            wait_node("pause", 1, "days"),
            has_tag_node("is-vip"),
            email_node("vip-offer", subject="A gift for you"),
            tag_node("nurture", "needs-nurture"),
        ],
        [
            edge("trigger", "welcome"),
            edge("welcome", "pause"),
            edge("pause", "is-vip"),
            edge("is-vip", "vip-offer", branch="true"),
            edge("is-vip", "nurture", branch="false"),
        ],
    )


# ── Fakes ─────────────────────────────────────────────────────────────────────

class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FailingSender:
    """EmailSender that rejects every message."""

    def __init__(self, transient: bool = True) -> None:
        self.attempts = 0
        self._transient = transient

    async def send(self, to, subject, html_body, *, idempotency_key=None) -> DeliveryResult:
        self.attempts += 1
        raise DeliveryError("sending service unavailable", transient=self._transient, status_code=503)


class RecordingCallback:
    """Collects ``(event, data)`` pairs fired by the engine."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    async def __call__(self, event: str, data: dict) -> None:
        self.events.append((event, data))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]
