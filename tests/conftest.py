from datetime import UTC, datetime

import pytest

from flaps.models.context import EvaluationContext
from flaps.models.environment import FlagEnvironmentState
from flaps.models.flag import Flag, FlagType
from flaps.models.rule import Condition, TargetingRule
from flaps.models.segment import Segment, SegmentRule
from flaps.runtime.engine import reset_engine
from flaps.snapshot import Snapshot

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def beta_segment() -> Segment:
    return Segment(
        key="beta",
        included=frozenset({"user-vip"}),
        excluded=frozenset({"user-banned"}),
        rules=[SegmentRule(conditions=[Condition.equals("beta_tester", True)])],
    )


@pytest.fixture
def snapshot(beta_segment) -> Snapshot:
    """Snapshot covering the documented end-to-end scenarios."""
    return Snapshot.build(
        1,
        flags=[
            Flag(key="new-checkout"),
            Flag(key="checkout-variant", flag_type=FlagType.STRING, variants=("a", "b")),
            Flag(key="beta-banner"),
        ],
        states=[
            (
                "new-checkout",
                "dev",
                FlagEnvironmentState(enabled=True, default_value=True, rollout_percentage=50),
            ),
            (
                "checkout-variant",
                "dev",
                FlagEnvironmentState(
                    enabled=True,
                    default_value="a",
                    rules=[
                        TargetingRule(
                            id="france",
                            conditions=[Condition.equals("country", "FR")],
                            value="b",
                        )
                    ],
                ),
            ),
            (
                "beta-banner",
                "dev",
                FlagEnvironmentState(
                    enabled=True,
                    default_value=False,
                    rules=[TargetingRule(id="beta", segments=["beta"], value=True)],
                ),
            ),
        ],
        segments=[beta_segment],
    )


@pytest.fixture
def ctx():
    def _make(entity_id: str = "user-123", **attributes) -> EvaluationContext:
        return EvaluationContext(entity_id=entity_id, attributes=attributes)

    return _make


@pytest.fixture(autouse=True)
def _reset_engine_singleton():
    yield
    reset_engine()
