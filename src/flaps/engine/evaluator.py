"""Flag evaluation: a pure function of (snapshot, flag, environment, context).

Evaluation order, each step terminal:
1. Flag or its environment state missing -> caller fallback (flag_not_found)
2. Kill switch set -> off value (kill_switch)
3. Project a due scheduled change onto the state (read-side only)
4. Disabled -> off value (flag_disabled)
5. First matching targeting rule -> rule value (rule_match)
6. Flag-level rollout -> environment default if bucketed in
   (rollout_bucket), off value otherwise (default); no rollout configured
   -> environment default (default)
7. Whatever branch produced the value, it must conform to the flag's
   declared type, else the type's zero value is served (type_mismatch)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from flaps.engine.bucketing import in_rollout
from flaps.engine.rules import match_rules
from flaps.models.context import EvaluationContext
from flaps.models.decision import Decision, EvaluationReason
from flaps.models.environment import FlagEnvironmentState
from flaps.models.flag import Flag
from flaps.models.rule import FlagValue

if TYPE_CHECKING:
    from flaps.snapshot import Snapshot

log = logging.getLogger(__name__)


def _resolve(
    snapshot: Snapshot,
    flag: Flag,
    state: FlagEnvironmentState,
    context: EvaluationContext,
    now: datetime | None,
) -> Decision:
    key = flag.key
    version = snapshot.version

    if state.kill_switch:
        return Decision(key, flag.off_value, EvaluationReason.KILL_SWITCH, snapshot_version=version)

    if state.scheduled is not None:
        state = state.effective(now or datetime.now(UTC))

    if not state.enabled:
        return Decision(key, flag.off_value, EvaluationReason.FLAG_DISABLED, snapshot_version=version)

    match = match_rules(key, state.rules, context, snapshot.segments)
    if match is not None:
        return Decision(
            key,
            match.rule.value,
            EvaluationReason.RULE_MATCH,
            rule_id=match.rule.id,
            in_rollout=match.in_rollout,
            snapshot_version=version,
        )

    pct = state.rollout_percentage
    if pct is None:
        return Decision(key, state.default_value, EvaluationReason.DEFAULT, snapshot_version=version)
    if in_rollout(key, context.entity_id, pct):
        return Decision(
            key,
            state.default_value,
            EvaluationReason.ROLLOUT_BUCKET,
            in_rollout=True,
            snapshot_version=version,
        )
    return Decision(
        key,
        flag.off_value,
        EvaluationReason.DEFAULT,
        in_rollout=False,
        snapshot_version=version,
    )


def evaluate(
    snapshot: Snapshot | None,
    flag_key: str,
    environment: str,
    context: EvaluationContext,
    fallback: FlagValue = False,
    *,
    now: datetime | None = None,
) -> Decision:
    """Evaluate one flag. Never raises for missing flags or attributes.

    ``fallback`` is served only when the flag (or its state in
    ``environment``) is absent from the snapshot. ``now`` is the
    evaluation time used for scheduled changes; defaults to the current
    UTC time.
    """
    flag = snapshot.flag(flag_key) if snapshot is not None else None
    state = snapshot.state(flag_key, environment) if snapshot is not None else None
    if snapshot is None or flag is None or state is None:
        return Decision(
            flag_key,
            fallback,
            EvaluationReason.FLAG_NOT_FOUND,
            snapshot_version=snapshot.version if snapshot is not None else None,
        )

    decision = _resolve(snapshot, flag, state, context, now)
    if not flag.accepts(decision.value):
        log.warning(
            "evaluate.type_mismatch flag=%s env=%s type=%s value=%r reason=%s",
            flag_key,
            environment,
            flag.flag_type.value,
            decision.value,
            decision.reason.value,
        )
        return Decision(
            flag_key,
            flag.zero_value,
            EvaluationReason.TYPE_MISMATCH,
            snapshot_version=snapshot.version,
        )

    log.debug(
        "evaluate.decision flag=%s env=%s entity=%s reason=%s",
        flag_key,
        environment,
        context.entity_id,
        decision.reason.value,
    )
    return decision
