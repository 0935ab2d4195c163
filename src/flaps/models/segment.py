"""Reusable segments of entities."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from flaps.models.rule import Condition


class SegmentRule(BaseModel):
    """Conjunction of conditions. Rules within a segment are OR'ed."""

    model_config = ConfigDict(frozen=True)

    conditions: tuple[Condition, ...] = ()


class Segment(BaseModel):
    """Named group defined by explicit lists and/or condition rules.

    Exclusion wins over inclusion and over rule-based membership.
    """

    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1)
    name: str = ""
    description: str = ""
    included: frozenset[str] = frozenset()
    excluded: frozenset[str] = frozenset()
    rules: tuple[SegmentRule, ...] = ()

    def is_included(self, entity_id: str) -> bool:
        return entity_id in self.included

    def is_excluded(self, entity_id: str) -> bool:
        return entity_id in self.excluded
