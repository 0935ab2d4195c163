"""Targeting rule matching: first structural match whose rollout passes wins."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import NamedTuple

from flaps.engine.bucketing import in_rollout, rule_scope
from flaps.engine.conditions import evaluate_all
from flaps.engine.segments import is_member
from flaps.models.context import EvaluationContext
from flaps.models.rule import TargetingRule
from flaps.models.segment import Segment

log = logging.getLogger(__name__)


class RuleMatch(NamedTuple):
    rule: TargetingRule
    in_rollout: bool | None  # None when the rule has no rollout


def _segments_hold(
    rule: TargetingRule,
    context: EvaluationContext,
    segments: Mapping[str, Segment],
) -> bool:
    for key in rule.segments:
        segment = segments.get(key)
        if segment is None or not is_member(segment, context):
            return False
    for key in rule.excluded_segments:
        segment = segments.get(key)
        if segment is None or is_member(segment, context):
            return False
    return True


def rule_matches(
    rule: TargetingRule,
    context: EvaluationContext,
    segments: Mapping[str, Segment],
) -> bool:
    """Structural match: every condition and segment reference holds."""
    return evaluate_all(rule.conditions, context) and _segments_hold(rule, context, segments)


def match_rules(
    flag_key: str,
    rules: Sequence[TargetingRule],
    context: EvaluationContext,
    segments: Mapping[str, Segment],
) -> RuleMatch | None:
    """Return the winning rule for ``context``, or None.

    ``rules`` must already be in ascending priority order, ties in
    definition order, as FlagEnvironmentState stores them. A rule that matches structurally but whose rollout check fails
    is skipped and evaluation moves on to the next rule.
    """
    for rule in rules:
        if not rule_matches(rule, context, segments):
            continue
        pct = rule.rollout_percentage
        if pct is None:
            return RuleMatch(rule, None)
        if in_rollout(rule_scope(flag_key, rule.id), context.entity_id, pct):
            return RuleMatch(rule, True)
        log.debug(
            "rules.rollout_skip flag=%s rule=%s pct=%d", flag_key, rule.id, pct
        )
    return None
