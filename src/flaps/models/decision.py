"""Evaluation output: the served value plus a diagnostic reason."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from flaps.models.rule import FlagValue


class EvaluationReason(StrEnum):
    KILL_SWITCH = "kill_switch"
    FLAG_DISABLED = "flag_disabled"
    RULE_MATCH = "rule_match"
    ROLLOUT_BUCKET = "rollout_bucket"
    DEFAULT = "default"
    FLAG_NOT_FOUND = "flag_not_found"
    TYPE_MISMATCH = "type_mismatch"


_NEVER_ENABLED = frozenset({
    EvaluationReason.KILL_SWITCH,
    EvaluationReason.FLAG_DISABLED,
    EvaluationReason.FLAG_NOT_FOUND,
    EvaluationReason.TYPE_MISMATCH,
})


@dataclass(frozen=True, slots=True)
class Decision:
    """Result of evaluating one flag for one context."""

    flag_key: str
    value: FlagValue
    reason: EvaluationReason
    rule_id: str | None = None
    in_rollout: bool | None = None
    snapshot_version: int | None = None

    @property
    def is_enabled(self) -> bool:
        """Whether the feature should be considered on.

        False for kill switch, disabled, missing and ill-typed flags, and
        for entities left out of a rollout, even when a string flag still
        serves a non-empty variant.
        """
        if self.reason in _NEVER_ENABLED or self.in_rollout is False:
            return False
        if isinstance(self.value, bool):
            return self.value
        return bool(self.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "flag_key": self.flag_key,
            "value": self.value,
            "reason": self.reason.value,
            "rule_id": self.rule_id,
            "in_rollout": self.in_rollout,
            "snapshot_version": self.snapshot_version,
        }
