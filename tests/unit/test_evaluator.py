"""Tests for the evaluation pipeline."""

from __future__ import annotations

from datetime import timedelta

from flaps.engine.bucketing import bucket
from flaps.engine.evaluator import evaluate
from flaps.models.context import EvaluationContext
from flaps.models.decision import EvaluationReason
from flaps.models.environment import FlagEnvironmentState, ScheduledChange
from flaps.models.flag import Flag, FlagType
from flaps.models.rule import Condition, TargetingRule
from flaps.snapshot import Snapshot


def single_flag(state: FlagEnvironmentState, flag: Flag | None = None, env: str = "prod") -> Snapshot:
    flag = flag or Flag(key="f")
    return Snapshot.build(7, flags=[flag], states=[(flag.key, env, state)])


class TestScenarios:
    def test_rollout_scenario_is_fixed_per_entity(self, snapshot, ctx):
        first = evaluate(snapshot, "new-checkout", "dev", ctx("user-123"))
        again = evaluate(snapshot, "new-checkout", "dev", ctx("user-123"))
        assert first == again
        assert first.value is (bucket("new-checkout", "user-123") < 50)

    def test_rollout_scenario_ratio(self, snapshot):
        on = sum(
            evaluate(snapshot, "new-checkout", "dev", EvaluationContext(f"user-{i}")).value
            for i in range(1000)
        )
        assert 450 <= on <= 550

    def test_rollout_reasons(self, snapshot):
        for i in range(50):
            entity = f"user-{i}"
            decision = evaluate(snapshot, "new-checkout", "dev", EvaluationContext(entity))
            if bucket("new-checkout", entity) < 50:
                assert decision.reason == EvaluationReason.ROLLOUT_BUCKET
                assert decision.value is True
                assert decision.in_rollout is True
            else:
                assert decision.reason == EvaluationReason.DEFAULT
                assert decision.value is False
                assert decision.in_rollout is False

    def test_string_rule_scenario(self, snapshot, ctx):
        fr = evaluate(snapshot, "checkout-variant", "dev", ctx(country="FR"))
        assert fr.value == "b"
        assert fr.reason == EvaluationReason.RULE_MATCH
        assert fr.rule_id == "france"

        de = evaluate(snapshot, "checkout-variant", "dev", ctx(country="DE"))
        assert de.value == "a"
        assert de.reason == EvaluationReason.DEFAULT
        assert de.rule_id is None

    def test_missing_flag_serves_fallback(self, snapshot, ctx):
        decision = evaluate(snapshot, "does-not-exist", "dev", ctx(), False)
        assert decision.value is False
        assert decision.reason == EvaluationReason.FLAG_NOT_FOUND

    def test_missing_environment_serves_fallback(self, snapshot, ctx):
        decision = evaluate(snapshot, "new-checkout", "prod", ctx(), "fallback")
        assert decision.value == "fallback"
        assert decision.reason == EvaluationReason.FLAG_NOT_FOUND
        assert decision.snapshot_version == 1

    def test_no_snapshot_serves_fallback(self, ctx):
        decision = evaluate(None, "anything", "dev", ctx(), True)
        assert decision.value is True
        assert decision.reason == EvaluationReason.FLAG_NOT_FOUND
        assert decision.snapshot_version is None

    def test_segment_targeting(self, snapshot, ctx):
        assert evaluate(snapshot, "beta-banner", "dev", ctx("user-vip")).value is True
        assert evaluate(snapshot, "beta-banner", "dev", ctx("x", beta_tester=True)).value is True
        assert evaluate(snapshot, "beta-banner", "dev", ctx("user-banned", beta_tester=True)).value is False


class TestKillSwitch:
    def test_wins_over_matching_rule(self, ctx):
        state = FlagEnvironmentState(
            enabled=True,
            kill_switch=True,
            default_value=True,
            rules=[TargetingRule(id="all", value=True)],
        )
        decision = evaluate(single_flag(state), "f", "prod", ctx())
        assert decision.value is False
        assert decision.reason == EvaluationReason.KILL_SWITCH
        assert not decision.is_enabled

    def test_wins_when_disabled(self, ctx):
        state = FlagEnvironmentState(enabled=False, kill_switch=True)
        assert evaluate(single_flag(state), "f", "prod", ctx()).reason == EvaluationReason.KILL_SWITCH

    def test_string_flag_serves_first_variant(self, ctx):
        flag = Flag(key="f", flag_type=FlagType.STRING, variants=("off", "on"))
        state = FlagEnvironmentState(enabled=True, kill_switch=True, default_value="on")
        assert evaluate(single_flag(state, flag), "f", "prod", ctx()).value == "off"

    def test_wins_over_due_schedule(self, ctx, now):
        state = FlagEnvironmentState(
            enabled=True,
            kill_switch=True,
            scheduled=ScheduledChange(effective_at=now - timedelta(hours=1), enabled=True),
        )
        decision = evaluate(single_flag(state), "f", "prod", ctx(), now=now)
        assert decision.reason == EvaluationReason.KILL_SWITCH


class TestDisabled:
    def test_serves_off_value(self, ctx):
        state = FlagEnvironmentState(
            enabled=False, default_value=True, rules=[TargetingRule(id="all", value=True)]
        )
        decision = evaluate(single_flag(state), "f", "prod", ctx())
        assert decision.value is False
        assert decision.reason == EvaluationReason.FLAG_DISABLED

    def test_string_flag_without_variants_serves_empty(self, ctx):
        flag = Flag(key="f", flag_type=FlagType.STRING)
        state = FlagEnvironmentState(enabled=False, default_value="x")
        assert evaluate(single_flag(state, flag), "f", "prod", ctx()).value == ""


class TestDefaults:
    def test_no_rollout_serves_environment_default(self, ctx):
        state = FlagEnvironmentState(enabled=True, default_value=True)
        decision = evaluate(single_flag(state), "f", "prod", ctx())
        assert decision.value is True
        assert decision.reason == EvaluationReason.DEFAULT
        assert decision.in_rollout is None
        assert decision.is_enabled

    def test_zero_rollout_excludes_everybody(self):
        state = FlagEnvironmentState(enabled=True, default_value=True, rollout_percentage=0)
        snap = single_flag(state)
        for i in range(100):
            decision = evaluate(snap, "f", "prod", EvaluationContext(f"u{i}"))
            assert decision.value is False
            assert not decision.is_enabled

    def test_full_rollout_includes_everybody(self):
        state = FlagEnvironmentState(enabled=True, default_value=True, rollout_percentage=100)
        snap = single_flag(state)
        for i in range(100):
            decision = evaluate(snap, "f", "prod", EvaluationContext(f"u{i}"))
            assert decision.reason == EvaluationReason.ROLLOUT_BUCKET


class TestScheduled:
    def _state(self, when):
        return FlagEnvironmentState(
            enabled=False,
            default_value=False,
            scheduled=ScheduledChange(
                effective_at=when,
                enabled=True,
                default_value=True,
                rules=[
                    TargetingRule(id="fr", conditions=[Condition.equals("country", "FR")], value=False)
                ],
            ),
        )

    def test_due_change_is_projected(self, ctx, now):
        snap = single_flag(self._state(now - timedelta(minutes=1)))
        assert evaluate(snap, "f", "prod", ctx(country="DE"), now=now).value is True
        fr = evaluate(snap, "f", "prod", ctx(country="FR"), now=now)
        assert fr.value is False
        assert fr.rule_id == "fr"

    def test_effective_at_boundary_is_inclusive(self, ctx, now):
        snap = single_flag(self._state(now))
        assert evaluate(snap, "f", "prod", ctx(), now=now).reason == EvaluationReason.DEFAULT

    def test_future_change_is_ignored(self, ctx, now):
        snap = single_flag(self._state(now + timedelta(minutes=1)))
        assert evaluate(snap, "f", "prod", ctx(), now=now).reason == EvaluationReason.FLAG_DISABLED

    def test_projection_does_not_mutate_snapshot(self, ctx, now):
        snap = single_flag(self._state(now - timedelta(minutes=1)))
        evaluate(snap, "f", "prod", ctx(), now=now)
        state = snap.state("f", "prod")
        assert state.enabled is False
        assert state.scheduled is not None


class TestTypeMismatch:
    def test_ill_typed_value_serves_zero_value(self, ctx):
        # model_construct skips validation, as an unvalidated sync layer might
        flag = Flag(key="f")
        state = FlagEnvironmentState.model_construct(
            enabled=True,
            kill_switch=False,
            default_value="on",
            rollout_percentage=None,
            rules=[],
            scheduled=None,
        )
        snap = Snapshot.model_construct(
            version=3, flags={"f": flag}, states={("f", "prod"): state}, segments={}
        )
        decision = evaluate(snap, "f", "prod", ctx())
        assert decision.value is False
        assert decision.reason == EvaluationReason.TYPE_MISMATCH
        assert decision.snapshot_version == 3

    def test_string_flag_never_serves_bool(self, ctx):
        flag = Flag(key="f", flag_type=FlagType.STRING, variants=("a", "b"))
        state = FlagEnvironmentState.model_construct(
            enabled=True,
            kill_switch=False,
            default_value=True,
            rollout_percentage=None,
            rules=[],
            scheduled=None,
        )
        snap = Snapshot.model_construct(
            version=1, flags={"f": flag}, states={("f", "prod"): state}, segments={}
        )
        decision = evaluate(snap, "f", "prod", ctx())
        assert decision.value == ""
        assert decision.reason == EvaluationReason.TYPE_MISMATCH


def test_idempotent(snapshot, ctx):
    context = ctx("user-42", country="FR", beta_tester=True)
    for key in snapshot.flag_keys():
        assert evaluate(snapshot, key, "dev", context) == evaluate(snapshot, key, "dev", context)
