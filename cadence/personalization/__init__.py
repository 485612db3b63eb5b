"""Personalization tokens: catalog and pure template rendering."""

from cadence.personalization.catalog import (
    CATALOG_KEYS,
    PERSONALIZATION_VARIABLES,
    get_available_variables,
    get_variable,
    sample_variables,
)
from cadence.personalization.engine import (
    build_variables,
    extract_variables,
    format_variable_for_display,
    insert_variable,
    render,
    render_preview,
    validate_template,
)

__all__ = [
    "CATALOG_KEYS",
    "PERSONALIZATION_VARIABLES",
    "get_available_variables",
    "get_variable",
    "sample_variables",
    "build_variables",
    "extract_variables",
    "format_variable_for_display",
    "insert_variable",
    "render",
    "render_preview",
    "validate_template",
]
