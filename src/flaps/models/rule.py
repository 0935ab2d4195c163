"""Conditions and targeting rules."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from flaps.models.context import AttributeValue, coerce_attribute

FlagValue = bool | str


def check_flag_value(v: Any) -> Any:
    """Reject anything a flag cannot serve; ints are not coerced to bools."""
    if not isinstance(v, (bool, str)):
        raise ValueError(f"flag value must be a boolean or string, got {v!r}")
    return v


class Operator(StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    MATCHES_REGEX = "matches_regex"
    IS_SET = "is_set"
    IS_NOT_SET = "is_not_set"


# Negated operator -> positive form it is defined in terms of
NEGATIONS: dict[Operator, Operator] = {
    Operator.NOT_EQUALS: Operator.EQUALS,
    Operator.NOT_CONTAINS: Operator.CONTAINS,
    Operator.NOT_IN: Operator.IN,
}

NUMERIC_OPERATORS = frozenset({
    Operator.GREATER_THAN,
    Operator.LESS_THAN,
    Operator.GREATER_OR_EQUAL,
    Operator.LESS_OR_EQUAL,
})

PRESENCE_OPERATORS = frozenset({Operator.IS_SET, Operator.IS_NOT_SET})


class Condition(BaseModel):
    """attribute-operator-value test against one context attribute."""

    model_config = ConfigDict(frozen=True)

    attribute: str = Field(min_length=1)
    operator: Operator
    value: AttributeValue | None = None

    @field_validator("value", mode="before")
    @classmethod
    def normalize_value(cls, v: Any) -> Any:
        if v is None:
            return None
        coerced = coerce_attribute(v)
        if coerced is None:
            raise ValueError(f"unsupported condition value: {v!r}")
        return coerced

    # ── Convenience constructors ──

    @classmethod
    def equals(cls, attribute: str, value: Any) -> Condition:
        return cls(attribute=attribute, operator=Operator.EQUALS, value=value)

    @classmethod
    def not_equals(cls, attribute: str, value: Any) -> Condition:
        return cls(attribute=attribute, operator=Operator.NOT_EQUALS, value=value)

    @classmethod
    def in_list(cls, attribute: str, values: list[str]) -> Condition:
        return cls(attribute=attribute, operator=Operator.IN, value=values)

    @classmethod
    def ends_with(cls, attribute: str, suffix: str) -> Condition:
        return cls(attribute=attribute, operator=Operator.ENDS_WITH, value=suffix)

    @classmethod
    def is_set(cls, attribute: str) -> Condition:
        return cls(attribute=attribute, operator=Operator.IS_SET)


class TargetingRule(BaseModel):
    """Ordered, conditional override of a flag's value.

    All conditions and segment references must hold (AND). A rule with
    none of them matches every context.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    priority: int = 0
    conditions: tuple[Condition, ...] = ()
    segments: tuple[str, ...] = ()
    excluded_segments: tuple[str, ...] = ()
    rollout_percentage: int | None = Field(default=None, ge=0, le=100)
    value: FlagValue
    description: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def reject_non_flag_values(cls, v: Any) -> Any:
        return check_flag_value(v)

    @property
    def is_catch_all(self) -> bool:
        return not (self.conditions or self.segments or self.excluded_segments)

    def segment_keys(self) -> set[str]:
        return set(self.segments) | set(self.excluded_segments)
