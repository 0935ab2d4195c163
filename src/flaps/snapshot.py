"""Immutable, versioned configuration snapshot.

A snapshot is built in full by the sync layer, validated once here, and
then only ever read. Every configuration error the evaluator could
otherwise stumble on at request time (dangling segment references,
ill-typed values, unusable conditions) is rejected at construction.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field, model_validator

from flaps.engine.conditions import compile_pattern
from flaps.errors import (
    DanglingSegmentError,
    DuplicateKeyError,
    FlagTypeMismatchError,
    InvalidConditionError,
    InvalidFlagKeyError,
    SnapshotValidationError,
)
from flaps.models.environment import FlagEnvironmentState
from flaps.models.flag import Flag, FlagType, is_valid_flag_key
from flaps.models.rule import (
    NUMERIC_OPERATORS,
    PRESENCE_OPERATORS,
    Condition,
    Operator,
    TargetingRule,
)
from flaps.models.segment import Segment

log = logging.getLogger(__name__)

_STRING_OPERATORS = frozenset({
    Operator.CONTAINS,
    Operator.NOT_CONTAINS,
    Operator.STARTS_WITH,
    Operator.ENDS_WITH,
    Operator.MATCHES_REGEX,
})
_SET_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})


def validate_condition(condition: Condition, where: str) -> None:
    """Reject conditions that could never evaluate meaningfully."""
    op = condition.operator
    value = condition.value
    ctx = {"where": where, "attribute": condition.attribute, "operator": op.value}

    if op in PRESENCE_OPERATORS:
        return
    if value is None:
        raise InvalidConditionError(f"{where}: operator {op} needs a value", context=ctx)
    if op in NUMERIC_OPERATORS and not isinstance(value, float):
        raise InvalidConditionError(
            f"{where}: operator {op} needs a number, got {value!r}", context=ctx
        )
    if op in _SET_OPERATORS and not isinstance(value, frozenset):
        raise InvalidConditionError(
            f"{where}: operator {op} needs a list of strings, got {value!r}", context=ctx
        )
    if op in _STRING_OPERATORS and not isinstance(value, str):
        raise InvalidConditionError(
            f"{where}: operator {op} needs a string, got {value!r}", context=ctx
        )
    if op == Operator.MATCHES_REGEX:
        try:
            compile_pattern(value)  # type: ignore[arg-type]
        except re.error as exc:
            raise InvalidConditionError(
                f"{where}: invalid regex {value!r}: {exc}", context=ctx
            ) from exc


def _validate_rules(
    flag: Flag,
    environment: str,
    rules: Sequence[TargetingRule],
    segments: Mapping[str, Segment],
) -> None:
    seen: set[str] = set()
    for rule in rules:
        where = f"flag {flag.key!r} env {environment!r} rule {rule.id!r}"
        if rule.id in seen:
            raise DuplicateKeyError(
                f"{where}: duplicate rule id",
                context={"flag": flag.key, "environment": environment, "rule": rule.id},
            )
        seen.add(rule.id)
        for key in sorted(rule.segment_keys()):
            if key not in segments:
                raise DanglingSegmentError(
                    f"{where}: unknown segment {key!r}",
                    context={"flag": flag.key, "rule": rule.id, "segment": key},
                )
        for condition in rule.conditions:
            validate_condition(condition, where)


def _validate_state(
    flag: Flag,
    environment: str,
    state: FlagEnvironmentState,
    segments: Mapping[str, Segment],
) -> None:
    for value in state.all_values():
        if not flag.accepts(value):
            raise FlagTypeMismatchError(
                f"flag {flag.key!r} env {environment!r}: value {value!r} does not "
                f"conform to type {flag.flag_type.value}"
                + (f" with variants {list(flag.variants)}" if flag.variants else ""),
                context={"flag": flag.key, "environment": environment, "value": value},
            )
    _validate_rules(flag, environment, state.rules, segments)
    if state.scheduled is not None and state.scheduled.rules is not None:
        _validate_rules(flag, environment, state.scheduled.rules, segments)


def _validate_flag(flag: Flag) -> None:
    if not is_valid_flag_key(flag.key):
        raise InvalidFlagKeyError(
            f"invalid flag key {flag.key!r}: use letters, digits, '-' and '_'",
            context={"flag": flag.key},
        )
    if flag.flag_type == FlagType.BOOLEAN and flag.variants:
        raise FlagTypeMismatchError(
            f"boolean flag {flag.key!r} cannot declare variants",
            context={"flag": flag.key},
        )


class Snapshot(BaseModel):
    """All flags, per-environment states and segments at one version.

    The maps are read-only views once validated; nothing reachable from a
    snapshot can be changed in place.
    """

    model_config = ConfigDict(frozen=True)

    version: int = Field(ge=0)
    flags: Mapping[str, Flag] = Field(default_factory=dict)
    states: Mapping[tuple[str, str], FlagEnvironmentState] = Field(default_factory=dict)
    segments: Mapping[str, Segment] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def check_consistency(self) -> Snapshot:
        for key, flag in self.flags.items():
            if key != flag.key:
                raise SnapshotValidationError(
                    f"flag stored under {key!r} has key {flag.key!r}",
                    context={"flag": flag.key},
                )
            _validate_flag(flag)

        for key, segment in self.segments.items():
            if key != segment.key:
                raise SnapshotValidationError(
                    f"segment stored under {key!r} has key {segment.key!r}",
                    context={"segment": segment.key},
                )
            for rule in segment.rules:
                for condition in rule.conditions:
                    validate_condition(condition, f"segment {key!r}")

        for (flag_key, environment), state in self.states.items():
            flag = self.flags.get(flag_key)
            if flag is None:
                raise SnapshotValidationError(
                    f"state for unknown flag {flag_key!r} in env {environment!r}",
                    context={"flag": flag_key, "environment": environment},
                )
            _validate_state(flag, environment, state, self.segments)

        for name in ("flags", "states", "segments"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))
        return self

    @classmethod
    def build(
        cls,
        version: int,
        flags: Iterable[Flag] = (),
        states: Iterable[tuple[str, str, FlagEnvironmentState]] = (),
        segments: Iterable[Segment] = (),
    ) -> Snapshot:
        """Build from sequences, rejecting duplicate keys instead of overwriting."""
        flag_map: dict[str, Flag] = {}
        for flag in flags:
            if flag.key in flag_map:
                raise DuplicateKeyError(f"duplicate flag {flag.key!r}", context={"flag": flag.key})
            flag_map[flag.key] = flag

        state_map: dict[tuple[str, str], FlagEnvironmentState] = {}
        for flag_key, environment, state in states:
            if (flag_key, environment) in state_map:
                raise DuplicateKeyError(
                    f"duplicate state for flag {flag_key!r} in env {environment!r}",
                    context={"flag": flag_key, "environment": environment},
                )
            state_map[(flag_key, environment)] = state

        segment_map: dict[str, Segment] = {}
        for segment in segments:
            if segment.key in segment_map:
                raise DuplicateKeyError(
                    f"duplicate segment {segment.key!r}", context={"segment": segment.key}
                )
            segment_map[segment.key] = segment

        snapshot = cls(version=version, flags=flag_map, states=state_map, segments=segment_map)
        log.debug(
            "snapshot.built version=%d flags=%d states=%d segments=%d",
            version,
            len(flag_map),
            len(state_map),
            len(segment_map),
        )
        return snapshot

    def flag(self, key: str) -> Flag | None:
        return self.flags.get(key)

    def state(self, flag_key: str, environment: str) -> FlagEnvironmentState | None:
        return self.states.get((flag_key, environment))

    def environments(self) -> set[str]:
        return {env for _, env in self.states}

    def flag_keys(self, environment: str | None = None) -> list[str]:
        """Sorted flag keys, optionally only those configured in ``environment``."""
        if environment is None:
            return sorted(self.flags)
        return sorted(key for key, env in self.states if env == environment)

    def stats(self) -> dict[str, int]:
        return {
            "version": self.version,
            "flags": len(self.flags),
            "states": len(self.states),
            "segments": len(self.segments),
            "environments": len(self.environments()),
        }
