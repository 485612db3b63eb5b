"""
Template substitution over ``{{namespace.field}}`` tokens.

Every function here is pure: no I/O, no clock reads unless a date is
omitted by the caller.  Only catalog tokens are ever substituted; anything
else between double braces is left byte-for-byte intact so unrelated
template syntax survives rendering.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any, Mapping, Optional

from cadence.types import Preview, PublicationContext, SubscriberContext, TemplateValidation

from .catalog import CATALOG_KEYS, date_variables, sample_variables

TOKEN_PATTERN = re.compile(r"\{\{[^}]+\}\}")


# ── Rendering ─────────────────────────────────────────────────────────────────


def render(template: Optional[str], variables: Mapping[str, Any]) -> str:
    """
    Substitute known tokens in *template* with values from *variables*.

    Keys in *variables* are full tokens (``"{{subscriber.name}}"``).  A token
    is replaced only when it is in the catalog AND has a non-None value;
    otherwise it is kept verbatim.  Substitution is single-pass, so values
    are never re-scanned for tokens.
    """
    if not template:
        return ""

    def _substitute(match: re.Match) -> str:  # type: ignore[type-arg]
        token = match.group(0)
        if token not in CATALOG_KEYS:
            return token
        value = variables.get(token)
        return token if value is None else str(value)

    return TOKEN_PATTERN.sub(_substitute, template)


def extract_variables(template: Optional[str]) -> list[str]:
    """Return tokens in order of first appearance, duplicates removed."""
    if not template:
        return []
    return list(dict.fromkeys(TOKEN_PATTERN.findall(template)))


def validate_template(
    template: Optional[str],
    variables: Optional[Mapping[str, Any]] = None,
) -> TemplateValidation:
    """
    Authoring-time feedback for a template.

    ``invalid_variables``: tokens that are not in the catalog.
    ``missing_variables``: catalog tokens used by the template that have no
    value in *variables* (sample data when omitted).
    """
    values = sample_variables() if variables is None else variables
    found = extract_variables(template)
    invalid = [t for t in found if t not in CATALOG_KEYS]
    missing = [t for t in found if t in CATALOG_KEYS and not values.get(t)]
    return TemplateValidation(
        is_valid=not invalid,
        invalid_variables=invalid,
        missing_variables=missing,
    )


def render_preview(
    subject: str,
    content: str,
    personalization: Optional[Mapping[str, str]] = None,
    today: Optional[date] = None,
) -> Preview:
    """Render subject/content against sample data overlaid with *personalization*."""
    values: dict[str, Any] = sample_variables(today)
    if personalization:
        values.update(personalization)
    return Preview(
        subject=render(subject, values),
        content=render(content, values),
        original_subject=subject,
        original_content=content,
    )


# ── Live variables ────────────────────────────────────────────────────────────


def build_variables(
    subscriber: Optional[SubscriberContext],
    publication: Optional[PublicationContext],
    context: Optional[Mapping[str, Any]] = None,
    today: Optional[date] = None,
) -> dict[str, str]:
    """
    Assemble token values for a live run.

    Event payload values (``payload.post.title`` etc.) are read first; live
    subscriber and publication data override them.  Tokens without a value
    are omitted so ``render`` leaves them in place.
    """
    values: dict[str, str] = {}

    payload = (context or {}).get("payload") or {}
    for token in CATALOG_KEYS:
        namespace, _, field = token[2:-2].partition(".")
        section = payload.get(namespace)
        if isinstance(section, Mapping) and section.get(field) is not None:
            values[token] = str(section[field])

    if subscriber is not None:
        first, last = subscriber.first_name, subscriber.last_name
        if subscriber.name and not (first or last):
            first, _, last = subscriber.name.partition(" ")
        full = subscriber.name or " ".join(p for p in (first, last) if p)
        _put(values, "{{subscriber.name}}", full)
        _put(values, "{{subscriber.email}}", subscriber.email)
        _put(values, "{{subscriber.firstName}}", first)
        _put(values, "{{subscriber.lastName}}", last)
        _put(values, "{{tier.name}}", subscriber.tier_name)

    if publication is not None:
        _put(values, "{{publication.name}}", publication.name)
        _put(values, "{{publication.url}}", publication.url)

    values.update(date_variables(today or date.today()))
    return values


def _put(values: dict[str, str], token: str, value: Optional[str]) -> None:
    if value:
        values[token] = value


# ── Editor helpers ────────────────────────────────────────────────────────────


def insert_variable(
    content: Optional[str],
    token: str,
    cursor: Optional[int] = None,
) -> tuple[str, int]:
    """Insert *token* at *cursor* (end of content when None); return (content, new_cursor)."""
    if not content:
        return token, len(token)
    position = len(content) if cursor is None else max(0, min(cursor, len(content)))
    updated = content[:position] + token + content[position:]
    return updated, position + len(token)


def format_variable_for_display(token: str) -> str:
    return token.replace("{", "").replace("}", "")
