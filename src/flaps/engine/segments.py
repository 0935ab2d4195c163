"""Segment membership."""

from __future__ import annotations

from flaps.engine.conditions import evaluate_all
from flaps.models.context import EvaluationContext
from flaps.models.segment import Segment


def is_member(segment: Segment, context: EvaluationContext) -> bool:
    """Whether ``context`` belongs to ``segment``.

    Precedence, each step short-circuiting:
    1. excluded entity id -> False
    2. included entity id -> True
    3. any segment rule whose conditions all hold -> True
    4. otherwise False
    """
    if segment.is_excluded(context.entity_id):
        return False
    if segment.is_included(context.entity_id):
        return True
    return any(
        evaluate_all(rule.conditions, context)
        for rule in segment.rules
    )
