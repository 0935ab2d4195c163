"""Tests for snapshot construction and validation."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from flaps.errors import (
    DanglingSegmentError,
    DuplicateKeyError,
    FlagTypeMismatchError,
    InvalidConditionError,
    InvalidFlagKeyError,
    SnapshotValidationError,
)
from flaps.models.environment import FlagEnvironmentState, ScheduledChange
from flaps.models.flag import Flag, FlagType
from flaps.models.rule import Condition, Operator, TargetingRule
from flaps.models.segment import Segment, SegmentRule
from flaps.snapshot import Snapshot


def build(state: FlagEnvironmentState, flag: Flag | None = None, segments=()) -> Snapshot:
    flag = flag or Flag(key="f")
    return Snapshot.build(1, flags=[flag], states=[(flag.key, "prod", state)], segments=segments)


class TestAccessors:
    def test_lookup(self, snapshot):
        assert snapshot.flag("new-checkout").key == "new-checkout"
        assert snapshot.flag("nope") is None
        assert snapshot.state("new-checkout", "dev").rollout_percentage == 50
        assert snapshot.state("new-checkout", "prod") is None

    def test_flag_keys_sorted(self, snapshot):
        assert snapshot.flag_keys() == ["beta-banner", "checkout-variant", "new-checkout"]
        assert snapshot.flag_keys("dev") == snapshot.flag_keys()
        assert snapshot.flag_keys("prod") == []

    def test_stats(self, snapshot):
        assert snapshot.stats() == {
            "version": 1,
            "flags": 3,
            "states": 3,
            "segments": 1,
            "environments": 1,
        }

    def test_is_frozen(self, snapshot):
        with pytest.raises(ValidationError):
            snapshot.version = 2  # type: ignore[misc]

    def test_contents_cannot_be_mutated_in_place(self, snapshot, beta_segment):
        state = snapshot.state("checkout-variant", "dev")
        with pytest.raises(AttributeError):
            state.rules.append(TargetingRule(id="sneak", value="b"))  # type: ignore[attr-defined]
        with pytest.raises(AttributeError):
            state.rules[0].conditions.append(Condition.equals("country", "DE"))  # type: ignore[attr-defined]
        with pytest.raises(TypeError):
            snapshot.flags["extra"] = Flag(key="extra")  # type: ignore[index]
        with pytest.raises(TypeError):
            del snapshot.states[("new-checkout", "dev")]
        with pytest.raises(TypeError):
            snapshot.segments["beta"] = beta_segment  # type: ignore[index]

        assert [r.id for r in state.rules] == ["france"]
        assert snapshot.flag_keys("dev") == ["beta-banner", "checkout-variant", "new-checkout"]

    def test_rules_are_ordered_by_priority(self):
        state = FlagEnvironmentState(
            enabled=True,
            rules=[
                TargetingRule(id="c", priority=2, value=True),
                TargetingRule(id="a", priority=0, value=True),
                TargetingRule(id="b", priority=0, value=True),
            ],
        )
        assert [r.id for r in build(state).state("f", "prod").rules] == ["a", "b", "c"]


class TestReferences:
    def test_dangling_segment(self):
        state = FlagEnvironmentState(rules=[TargetingRule(id="r", segments=["ghost"], value=True)])
        with pytest.raises(DanglingSegmentError) as exc_info:
            build(state)
        assert exc_info.value.context["segment"] == "ghost"

    def test_dangling_excluded_segment(self):
        state = FlagEnvironmentState(
            rules=[TargetingRule(id="r", excluded_segments=["ghost"], value=True)]
        )
        with pytest.raises(DanglingSegmentError):
            build(state)

    def test_dangling_segment_in_scheduled_rules(self):
        state = FlagEnvironmentState(
            scheduled=ScheduledChange(
                effective_at=datetime(2030, 1, 1, tzinfo=UTC),
                rules=[TargetingRule(id="r", segments=["ghost"], value=True)],
            )
        )
        with pytest.raises(DanglingSegmentError):
            build(state)

    def test_known_segment_is_accepted(self, beta_segment):
        state = FlagEnvironmentState(rules=[TargetingRule(id="r", segments=["beta"], value=True)])
        assert build(state, segments=[beta_segment]).segments["beta"] == beta_segment

    def test_state_for_unknown_flag(self):
        with pytest.raises(SnapshotValidationError):
            Snapshot.build(1, states=[("ghost", "prod", FlagEnvironmentState())])


class TestTypes:
    def test_boolean_flag_with_string_default(self):
        with pytest.raises(FlagTypeMismatchError):
            build(FlagEnvironmentState(default_value="on"))

    def test_boolean_flag_with_string_rule_value(self):
        state = FlagEnvironmentState(rules=[TargetingRule(id="r", value="on")])
        with pytest.raises(FlagTypeMismatchError):
            build(state)

    def test_string_flag_value_outside_variants(self):
        flag = Flag(key="f", flag_type=FlagType.STRING, variants=("a", "b"))
        with pytest.raises(FlagTypeMismatchError):
            build(FlagEnvironmentState(default_value="c"), flag)

    def test_string_flag_scheduled_value_checked(self):
        flag = Flag(key="f", flag_type=FlagType.STRING, variants=("a", "b"))
        state = FlagEnvironmentState(
            default_value="a",
            scheduled=ScheduledChange(effective_at=datetime(2030, 1, 1, tzinfo=UTC), default_value=True),
        )
        with pytest.raises(FlagTypeMismatchError):
            build(state, flag)

    def test_boolean_flag_cannot_declare_variants(self):
        with pytest.raises(FlagTypeMismatchError):
            build(FlagEnvironmentState(), Flag(key="f", variants=("a",)))

    def test_integers_are_not_flag_values(self):
        with pytest.raises(ValidationError):
            FlagEnvironmentState(default_value=1)


class TestConditions:
    @pytest.mark.parametrize(
        ("operator", "value"),
        [
            (Operator.GREATER_THAN, "ten"),
            (Operator.IN, "FR"),
            (Operator.STARTS_WITH, 3),
            (Operator.EQUALS, None),
            (Operator.MATCHES_REGEX, "(unclosed"),
        ],
    )
    def test_unusable_condition_is_rejected(self, operator, value):
        condition = Condition(attribute="a", operator=operator, value=value)
        state = FlagEnvironmentState(rules=[TargetingRule(id="r", conditions=[condition], value=True)])
        with pytest.raises(InvalidConditionError):
            build(state)

    def test_segment_conditions_are_checked(self):
        segment = Segment(
            key="s",
            rules=[SegmentRule(conditions=[Condition(attribute="a", operator=Operator.LESS_THAN, value="x")])],
        )
        with pytest.raises(InvalidConditionError):
            Snapshot.build(1, segments=[segment])

    def test_presence_operators_need_no_value(self):
        condition = Condition(attribute="a", operator=Operator.IS_NOT_SET)
        state = FlagEnvironmentState(rules=[TargetingRule(id="r", conditions=[condition], value=True)])
        build(state)


class TestKeys:
    @pytest.mark.parametrize("key", ["", "has space", "dots.are.bad", "slash/no", "trailing\n"])
    def test_invalid_flag_key(self, key):
        with pytest.raises(InvalidFlagKeyError):
            Snapshot.build(1, flags=[Flag(key=key)])

    def test_valid_flag_keys(self):
        snap = Snapshot.build(1, flags=[Flag(key="new_checkout-v2"), Flag(key="A1")])
        assert snap.flag_keys() == ["A1", "new_checkout-v2"]

    def test_duplicate_flag(self):
        with pytest.raises(DuplicateKeyError):
            Snapshot.build(1, flags=[Flag(key="f"), Flag(key="f")])

    def test_duplicate_state(self):
        with pytest.raises(DuplicateKeyError):
            Snapshot.build(
                1,
                flags=[Flag(key="f")],
                states=[("f", "prod", FlagEnvironmentState()), ("f", "prod", FlagEnvironmentState())],
            )

    def test_duplicate_segment(self):
        with pytest.raises(DuplicateKeyError):
            Snapshot.build(1, segments=[Segment(key="s"), Segment(key="s")])

    def test_duplicate_rule_id(self):
        state = FlagEnvironmentState(
            rules=[TargetingRule(id="r", value=True), TargetingRule(id="r", value=False)]
        )
        with pytest.raises(DuplicateKeyError):
            build(state)

    def test_mismatched_map_key(self):
        with pytest.raises(SnapshotValidationError):
            Snapshot(version=1, flags={"a": Flag(key="b")})

    def test_errors_carry_codes(self):
        with pytest.raises(SnapshotValidationError) as exc_info:
            Snapshot.build(1, flags=[Flag(key="bad key")])
        payload = exc_info.value.to_dict()
        assert payload["code"] == "FLAPS_SNAPSHOT_INVALID_FLAG_KEY"
        assert payload["domain"] == "SNAPSHOT"
