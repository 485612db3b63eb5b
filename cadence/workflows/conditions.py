"""Condition node evaluation against a subscriber's current state."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union, assert_never

from cadence.exceptions import ConditionEvaluationError
from cadence.types import (
    CustomFieldConfig,
    CustomFieldData,
    FieldOperator,
    HasTagData,
    SubscriberContext,
    TierData,
)

ConditionData = Union[HasTagData, TierData, CustomFieldData]


def evaluate_condition(data: ConditionData, subscriber: Optional[SubscriberContext]) -> bool:
    """
    Return the predicate result for *data*.

    Raises:
        ConditionEvaluationError: when the subscriber, tier or custom field
            the predicate needs is not available.
    """
    if subscriber is None:
        raise ConditionEvaluationError("Subscriber state is not available")

    if isinstance(data, HasTagData):
        present = data.config.tag_id in subscriber.tags
        return present == data.config.has_tag
    if isinstance(data, TierData):
        if subscriber.tier is None:
            raise ConditionEvaluationError(
                f"Subscriber '{subscriber.subscriber_id}' has no subscription tier"
            )
        return subscriber.tier == data.config.tier_id
    if isinstance(data, CustomFieldData):
        return _compare_field(data.config, subscriber)
    assert_never(data)


def _compare_field(cfg: CustomFieldConfig, subscriber: SubscriberContext) -> bool:
    if cfg.field_name not in subscriber.custom_fields or subscriber.custom_fields[cfg.field_name] is None:
        raise ConditionEvaluationError(
            f"Custom field '{cfg.field_name}' is not set",
            details={"subscriber_id": subscriber.subscriber_id},
        )
    actual = subscriber.custom_fields[cfg.field_name]

    if cfg.operator == FieldOperator.EQUALS:
        return _as_text(actual) == cfg.value
    if cfg.operator == FieldOperator.CONTAINS:
        if isinstance(actual, (list, tuple, set)):
            return cfg.value in {_as_text(v) for v in actual}
        return cfg.value in _as_text(actual)
    if cfg.operator in (FieldOperator.GREATER_THAN, FieldOperator.LESS_THAN):
        left, right = _ordered_pair(actual, cfg.value, cfg.field_name)
        return left > right if cfg.operator == FieldOperator.GREATER_THAN else left < right
    assert_never(cfg.operator)


def _as_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _ordered_pair(actual: Any, expected: str, field_name: str) -> tuple[Any, Any]:
    """Coerce both sides to numbers, else to ISO datetimes."""
    try:
        left, right = Decimal(str(actual)), Decimal(expected)
    except InvalidOperation:
        pass
    else:
        if left.is_nan() or right.is_nan():
            raise ConditionEvaluationError(
                f"Custom field '{field_name}' value {actual!r} is not comparable with {expected!r}"
            )
        return left, right
    try:
        left = actual if isinstance(actual, datetime) else datetime.fromisoformat(str(actual))
        right = datetime.fromisoformat(expected)
        if (left.tzinfo is None) != (right.tzinfo is None):
            left, right = left.replace(tzinfo=None), right.replace(tzinfo=None)
        return left, right
    except ValueError:
        raise ConditionEvaluationError(
            f"Custom field '{field_name}' value {actual!r} is not comparable with {expected!r}"
        ) from None
