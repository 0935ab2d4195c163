"""Evaluation context: the per-request input to flag evaluation.

An attribute value is one of ``bool``, ``float``, ``str`` or
``frozenset[str]``. Integers are normalized to floats so that ``3`` and
``3.0`` compare equal, and booleans are never treated as numbers.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from flaps.errors import InvalidAttributeError

AttributeValue = bool | float | str | frozenset[str]


def coerce_attribute(value: Any) -> AttributeValue | None:
    """Normalize a raw value into an AttributeValue, or None if it is not one."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        number = float(value)
        if math.isnan(number):
            return None
        return number
    if isinstance(value, str):
        return value
    if isinstance(value, (set, frozenset, list, tuple)):
        if all(isinstance(item, str) for item in value):
            return frozenset(value)
    return None


def normalize_attribute(name: str, value: Any) -> AttributeValue:
    coerced = coerce_attribute(value)
    if coerced is None:
        raise InvalidAttributeError(
            f"attribute {name!r} has unsupported value {value!r}",
            context={"attribute": name, "type": type(value).__name__},
        )
    return coerced


@dataclass(frozen=True)
class EvaluationContext:
    """Immutable entity id plus typed attributes.

    ``entity_id`` is the bucketing key for percentage rollouts. Attribute
    names are case-sensitive.
    """

    entity_id: str
    attributes: Mapping[str, AttributeValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.entity_id, str):
            raise InvalidAttributeError(
                f"entity_id must be a string, got {type(self.entity_id).__name__}",
                context={"attribute": "entity_id"},
            )
        normalized: dict[str, AttributeValue] = {}
        for name, value in dict(self.attributes).items():
            if not isinstance(name, str):
                raise InvalidAttributeError(
                    f"attribute names must be strings, got {name!r}",
                    context={"attribute": repr(name)},
                )
            normalized[name] = normalize_attribute(name, value)
        object.__setattr__(self, "attributes", MappingProxyType(normalized))

    @classmethod
    def from_pairs(
        cls,
        entity_id: str,
        pairs: Iterable[tuple[str, Any]] = (),
    ) -> EvaluationContext:
        """Build a context from (name, value) pairs. Later pairs win."""
        return cls(entity_id=entity_id, attributes=dict(pairs))

    def get(self, name: str, default: AttributeValue | None = None) -> AttributeValue | None:
        return self.attributes.get(name, default)

    def has(self, name: str) -> bool:
        return name in self.attributes

    def merge(self, other: EvaluationContext) -> EvaluationContext:
        """Return a new context with ``other`` layered on top.

        The other context's entity id wins unless it is empty.
        """
        attributes = dict(self.attributes)
        attributes.update(other.attributes)
        return EvaluationContext(
            entity_id=other.entity_id or self.entity_id,
            attributes=attributes,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "attributes": {
                name: sorted(value) if isinstance(value, frozenset) else value
                for name, value in self.attributes.items()
            },
        }


class ContextBuilder:
    """Fluent builder for EvaluationContext.

    Usage:
        ctx = (
            ContextBuilder("user-123")
            .country("FR")
            .attribute("beta_tester", True)
            .build()
        )
    """

    def __init__(self, entity_id: str = "") -> None:
        self._entity_id = entity_id
        self._attributes: dict[str, AttributeValue] = {}

    def entity_id(self, entity_id: str) -> ContextBuilder:
        self._entity_id = entity_id
        return self

    def attribute(self, name: str, value: Any) -> ContextBuilder:
        self._attributes[name] = normalize_attribute(name, value)
        return self

    def attributes(self, pairs: Iterable[tuple[str, Any]]) -> ContextBuilder:
        for name, value in pairs:
            self.attribute(name, value)
        return self

    def email(self, email: str) -> ContextBuilder:
        return self.attribute("email", email)

    def plan(self, plan: str) -> ContextBuilder:
        return self.attribute("plan", plan)

    def country(self, country: str) -> ContextBuilder:
        return self.attribute("country", country)

    def build(self) -> EvaluationContext:
        return EvaluationContext(entity_id=self._entity_id, attributes=self._attributes)
