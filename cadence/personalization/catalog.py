"""The fixed catalog of personalization tokens offered to the email editor."""

from datetime import date
from typing import Optional

from cadence.types import PersonalizationVariable


PERSONALIZATION_VARIABLES: tuple[PersonalizationVariable, ...] = (
    PersonalizationVariable(
        key="{{subscriber.name}}",
        label="Subscriber Name",
        description="Full name of the subscriber",
        example="John Doe",
    ),
    PersonalizationVariable(
        key="{{subscriber.email}}",
        label="Subscriber Email",
        description="Email address of the subscriber",
        example="john@example.com",
    ),
    PersonalizationVariable(
        key="{{subscriber.firstName}}",
        label="First Name",
        description="First name only",
        example="John",
    ),
    PersonalizationVariable(
        key="{{subscriber.lastName}}",
        label="Last Name",
        description="Last name only",
        example="Doe",
    ),
    PersonalizationVariable(
        key="{{publication.name}}",
        label="Publication Name",
        description="Name of the publication",
        example="My Newsletter",
    ),
    PersonalizationVariable(
        key="{{publication.url}}",
        label="Publication URL",
        description="URL of the publication",
        example="https://mynewsletter.com",
    ),
    PersonalizationVariable(
        key="{{post.title}}",
        label="Post Title",
        description="Title of the latest post (context-dependent)",
        example="How to Build Better Habits",
    ),
    PersonalizationVariable(
        key="{{post.url}}",
        label="Post URL",
        description="URL of the latest post (context-dependent)",
        example="https://mynewsletter.com/posts/how-to-build-better-habits",
    ),
    PersonalizationVariable(
        key="{{course.title}}",
        label="Course Title",
        description="Title of the course (context-dependent)",
        example="Complete Web Development Course",
    ),
    PersonalizationVariable(
        key="{{tier.name}}",
        label="Subscription Tier",
        description="Name of the subscription tier",
        example="Premium",
    ),
    PersonalizationVariable(
        key="{{date.today}}",
        label="Today's Date",
        description="Current date",
        example="January 15, 2025",
    ),
    PersonalizationVariable(
        key="{{date.year}}",
        label="Current Year",
        description="Current year",
        example="2025",
    ),
)

CATALOG_KEYS: frozenset[str] = frozenset(v.key for v in PERSONALIZATION_VARIABLES)

_BY_KEY = {v.key: v for v in PERSONALIZATION_VARIABLES}


def get_available_variables() -> tuple[PersonalizationVariable, ...]:
    return PERSONALIZATION_VARIABLES


def get_variable(key: str) -> Optional[PersonalizationVariable]:
    return _BY_KEY.get(key)


def format_date(day: date) -> str:
    """Long human date, e.g. "January 15, 2025"."""
    return f"{day:%B} {day.day}, {day.year}"


def date_variables(today: date) -> dict[str, str]:
    return {
        "{{date.today}}": format_date(today),
        "{{date.year}}": str(today.year),
    }


def sample_variables(today: Optional[date] = None) -> dict[str, str]:
    """Example values for every catalog token; dates computed for *today*."""
    values = {v.key: v.example for v in PERSONALIZATION_VARIABLES}
    values.update(date_variables(today or date.today()))
    return values
