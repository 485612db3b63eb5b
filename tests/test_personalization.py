"""Personalization: token catalog, rendering, validation and live variables."""

from datetime import date

from freezegun import freeze_time

from cadence.personalization import (
    CATALOG_KEYS,
    build_variables,
    extract_variables,
    format_variable_for_display,
    get_available_variables,
    get_variable,
    insert_variable,
    render,
    render_preview,
    validate_template,
)
from cadence.types import PublicationContext, SubscriberContext


# ── Catalog ─────────────────────────────────────────────────────────────────

def test_catalog_keys_are_unique_tokens():
    keys = [v.key for v in get_available_variables()]
    assert len(keys) == len(set(keys)) == len(CATALOG_KEYS)
    assert all(k.startswith("{{") and k.endswith("}}") for k in keys)


def test_get_variable():
    assert get_variable("{{publication.name}}").label == "Publication Name"
    assert get_variable("{{nope.nope}}") is None


# ── render ──────────────────────────────────────────────────────────────────

def test_render_substitutes_known_tokens():
    assert render("Hi {{subscriber.name}}", {"{{subscriber.name}}": "John"}) == "Hi John"


def test_render_is_idempotent():
    values = {"{{subscriber.name}}": "John"}
    once = render("Hi {{subscriber.name}}", values)
    assert render(once, values) == once == "Hi John"


def test_render_leaves_unknown_tokens_intact():
    template = "{{ unknown }} and {{custom.thing}}"
    assert render(template, {"{{custom.thing}}": "x"}) == template


def test_render_keeps_tokens_without_a_value():
    assert render("Hi {{subscriber.firstName}}!", {}) == "Hi {{subscriber.firstName}}!"


def test_render_is_single_pass():
    values = {"{{subscriber.name}}": "{{publication.name}}", "{{publication.name}}": "Weekly"}
    assert render("{{subscriber.name}}", values) == "{{publication.name}}"


def test_render_empty_template():
    assert render("", {"{{subscriber.name}}": "x"}) == ""
    assert render(None, {}) == ""


# ── extract / validate ──────────────────────────────────────────────────────

def test_extract_variables_order_and_dedupe():
    template = "Hello {{subscriber.name}}, welcome to {{publication.name}}. Bye {{subscriber.name}}"
    assert extract_variables(template) == ["{{subscriber.name}}", "{{publication.name}}"]


def test_validate_template_flags_unknown_tokens():
    result = validate_template("Hi {{subscriber.firstName}} from {{bogus.field}}")
    assert result.is_valid is False
    assert result.invalid_variables == ["{{bogus.field}}"]
    assert result.missing_variables == []


def test_validate_template_reports_missing_values():
    result = validate_template("Hi {{subscriber.firstName}}", variables={})
    assert result.is_valid is True
    assert result.missing_variables == ["{{subscriber.firstName}}"]


# ── Preview ─────────────────────────────────────────────────────────────────

def test_render_preview_uses_sample_data():
    preview = render_preview(
        "Hi {{subscriber.firstName}}",
        "Today is {{date.today}}",
        today=date(2026, 3, 2),
    )
    assert preview.subject == "Hi John"
    assert preview.content == "Today is March 2, 2026"
    assert preview.original_subject == "Hi {{subscriber.firstName}}"


def test_render_preview_personalization_overrides_samples():
    preview = render_preview("Hi {{subscriber.firstName}}", "", {"{{subscriber.firstName}}": "Ada"})
    assert preview.subject == "Hi Ada"


# ── Live variables ──────────────────────────────────────────────────────────

def test_build_variables_from_live_data():
    subscriber = SubscriberContext(subscriber_id="s1", name="Ada Lovelace", email="ada@example.com")
    publication = PublicationContext(publication_id="p1", name="The Weekly")
    values = build_variables(subscriber, publication, {}, date(2026, 3, 2))

    assert values["{{subscriber.firstName}}"] == "Ada"
    assert values["{{subscriber.lastName}}"] == "Lovelace"
    assert values["{{subscriber.name}}"] == "Ada Lovelace"
    assert values["{{publication.name}}"] == "The Weekly"
    assert values["{{date.year}}"] == "2026"
    assert "{{publication.url}}" not in values


def test_build_variables_reads_event_payload():
    context = {"payload": {"post": {"title": "Launch day", "url": "https://x/p/1"}}}
    values = build_variables(None, None, context, date(2026, 3, 2))
    assert values["{{post.title}}"] == "Launch day"
    assert values["{{post.url}}"] == "https://x/p/1"


def test_build_variables_full_name_from_parts():
    subscriber = SubscriberContext(subscriber_id="s1", first_name="Ada", last_name="Lovelace")
    values = build_variables(subscriber, None, None, date(2026, 3, 2))
    assert values["{{subscriber.name}}"] == "Ada Lovelace"


# ── Editor helpers ──────────────────────────────────────────────────────────

def test_insert_variable_at_cursor():
    content, cursor = insert_variable("Hello !", "{{subscriber.name}}", cursor=6)
    assert content == "Hello {{subscriber.name}}!"
    assert cursor == 6 + len("{{subscriber.name}}")


def test_insert_variable_into_empty_content():
    assert insert_variable("", "{{date.year}}") == ("{{date.year}}", len("{{date.year}}"))


def test_format_variable_for_display():
    assert format_variable_for_display("{{subscriber.name}}") == "subscriber.name"


@freeze_time("2026-12-31 23:30:00")
def test_date_tokens_default_to_today():
    preview = render_preview("{{date.today}}", "(c) {{date.year}}")
    assert preview.subject == "December 31, 2026"
    assert preview.content == "(c) 2026"
    assert build_variables(None, None)["{{date.year}}"] == "2026"
