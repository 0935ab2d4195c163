"""Benchmark harness for flag evaluation.

Builds a synthetic snapshot and evaluates it for N entities, reporting:
- Per-evaluation latency percentiles (p50, p95, p99)
- Latency percentiles per decision reason
- Memory usage (RSS before/after)
- Throughput (evaluations/sec)
- Observed rollout share against the configured percentage

Usage:
    .venv/bin/python benchmarks/evaluation_benchmark.py [--entities 10000] [--flags 20] [--json]
"""

from __future__ import annotations

import argparse
import json as _json
import resource
import statistics
import sys
import time
from typing import Any

# Ensure src/ is importable when running standalone
sys.path.insert(0, "src")

from flaps.models.context import EvaluationContext  # noqa: E402, I001
from flaps.models.environment import FlagEnvironmentState  # noqa: E402
from flaps.models.flag import Flag, FlagType  # noqa: E402
from flaps.models.rule import Condition, Operator, TargetingRule  # noqa: E402
from flaps.models.segment import Segment, SegmentRule  # noqa: E402
from flaps.runtime.engine import FlagEngine  # noqa: E402
from flaps.snapshot import Snapshot  # noqa: E402

ENVIRONMENT = "bench"
ROLLOUT_PERCENTAGE = 30
_COUNTRIES = ("FR", "DE", "US", "JP", "BR")
_PLANS = ("free", "pro", "enterprise")


# ---------------------------------------------------------------------------
# Synthetic configuration
# ---------------------------------------------------------------------------


def build_snapshot(flag_count: int = 20) -> Snapshot:
    """A snapshot mixing rule matches, segment targeting and flag rollouts."""
    segment = Segment(
        key="enterprise",
        rules=[SegmentRule(conditions=[Condition.equals("plan", "enterprise")])],
    )
    flags: list[Flag] = []
    states: list[tuple[str, str, FlagEnvironmentState]] = []
    for i in range(flag_count):
        key = f"bench-flag-{i}"
        if i % 4 == 3:
            flags.append(Flag(key=key, flag_type=FlagType.STRING, variants=("control", "treatment")))
            rules = [
                TargetingRule(
                    id="eu",
                    conditions=[Condition.in_list("country", ["FR", "DE"])],
                    rollout_percentage=50,
                    value="treatment",
                ),
            ]
            default: bool | str = "control"
        else:
            flags.append(Flag(key=key))
            rules = [
                TargetingRule(id="staff", conditions=[Condition.ends_with("email", "@corp.test")], value=True),
                TargetingRule(id="enterprise", priority=1, segments=["enterprise"], value=True),
                TargetingRule(
                    id="heavy",
                    priority=2,
                    conditions=[
                        Condition(attribute="sessions", operator=Operator.GREATER_THAN, value=50),
                        Condition(attribute="email", operator=Operator.MATCHES_REGEX, value=r"^[a-m]"),
                    ],
                    value=True,
                ),
            ]
            default = True
        states.append((
            key,
            ENVIRONMENT,
            FlagEnvironmentState(
                enabled=i % 10 != 9,
                kill_switch=i % 17 == 16,
                default_value=default,
                rollout_percentage=ROLLOUT_PERCENTAGE,
                rules=rules,
            ),
        ))
    return Snapshot.build(1, flags=flags, states=states, segments=[segment])


def make_context(i: int) -> EvaluationContext:
    return EvaluationContext(
        entity_id=f"entity-{i}",
        attributes={
            "email": f"{'abcdefghijklmnopqrstuvwxyz'[i % 26]}user{i}@example.test",
            "country": _COUNTRIES[i % len(_COUNTRIES)],
            "plan": _PLANS[i % len(_PLANS)],
            "sessions": i % 100,
        },
    )


# ---------------------------------------------------------------------------
# Percentile helper
# ---------------------------------------------------------------------------


def compute_percentiles(values: list[float]) -> dict[str, float]:
    """Compute p50, p95, p99 from a list of values."""
    if not values:
        return {"p50": 0.0, "p95": 0.0, "p99": 0.0}
    if len(values) < 2:
        v = values[0]
        return {"p50": v, "p95": v, "p99": v}
    # statistics.quantiles needs at least 2 values
    q = statistics.quantiles(values, n=100, method="inclusive")
    return {
        "p50": q[49],
        "p95": q[94],
        "p99": q[98],
    }


# ---------------------------------------------------------------------------
# Benchmark runner
# ---------------------------------------------------------------------------


def run_benchmark(entities: int = 10_000, flag_count: int = 20) -> dict[str, Any]:
    """Evaluate every flag for ``entities`` synthetic entities and collect metrics."""
    rss_before = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss

    engine = FlagEngine(build_snapshot(flag_count))
    keys = engine.snapshot.flag_keys(ENVIRONMENT) if engine.snapshot else []

    all_durations: list[float] = []
    by_reason: dict[str, list[float]] = {}
    rollout_decisions = 0
    rollout_in = 0

    for i in range(entities):
        ctx = make_context(i)
        for key in keys:
            t0 = time.perf_counter()
            decision = engine.evaluate(key, ENVIRONMENT, ctx)
            elapsed = time.perf_counter() - t0
            all_durations.append(elapsed)
            by_reason.setdefault(decision.reason.value, []).append(elapsed)
            if decision.rule_id is None and decision.in_rollout is not None:
                rollout_decisions += 1
                rollout_in += decision.in_rollout

    rss_after = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    total_time = sum(all_durations)

    return {
        "entities": entities,
        "flags": len(keys),
        "evaluations": len(all_durations),
        "total_time_s": round(total_time, 4),
        "throughput_evals_per_sec": round(len(all_durations) / total_time, 2) if total_time > 0 else 0,
        "duration_percentiles": compute_percentiles(all_durations),
        "reason_percentiles": {
            reason: compute_percentiles(values) for reason, values in by_reason.items()
        },
        "reason_counts": {reason: len(values) for reason, values in by_reason.items()},
        "rollout": {
            "configured_pct": ROLLOUT_PERCENTAGE,
            "observed_pct": round(100 * rollout_in / rollout_decisions, 2) if rollout_decisions else 0.0,
            "decisions": rollout_decisions,
        },
        "memory": {
            "rss_before": rss_before,
            "rss_after": rss_after,
            "rss_delta": rss_after - rss_before,
        },
    }


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _format_report(report: dict[str, Any]) -> str:
    """Format a benchmark report as human-readable text."""
    lines = [
        "=" * 60,
        "  Flag Evaluation Benchmark Report",
        "=" * 60,
        f"  Entities:        {report['entities']}",
        f"  Flags:           {report['flags']}",
        f"  Evaluations:     {report['evaluations']}",
        f"  Total time:      {report['total_time_s']:.4f}s",
        f"  Throughput:      {report['throughput_evals_per_sec']:.2f} evals/sec",
        "",
        "  Latency Percentiles:",
        f"    p50: {report['duration_percentiles']['p50'] * 1e6:.2f}us",
        f"    p95: {report['duration_percentiles']['p95'] * 1e6:.2f}us",
        f"    p99: {report['duration_percentiles']['p99'] * 1e6:.2f}us",
        "",
        "  Per-Reason Latency Percentiles:",
    ]
    for reason, pcts in sorted(report["reason_percentiles"].items()):
        count = report["reason_counts"][reason]
        lines.append(f"    {reason} ({count}):")
        lines.append(
            f"      p50={pcts['p50'] * 1e6:.2f}us  p95={pcts['p95'] * 1e6:.2f}us"
            f"  p99={pcts['p99'] * 1e6:.2f}us"
        )

    rollout = report["rollout"]
    lines.extend([
        "",
        "  Rollout:",
        f"    configured: {rollout['configured_pct']}%",
        f"    observed:   {rollout['observed_pct']}% of {rollout['decisions']} decisions",
        "",
        "  Memory:",
        f"    RSS before: {report['memory']['rss_before']}",
        f"    RSS after:  {report['memory']['rss_after']}",
        f"    RSS delta:  {report['memory']['rss_delta']}",
        "=" * 60,
    ])
    return "\n".join(lines)


def main() -> None:
    parser = argparse.ArgumentParser(description="Flag evaluation benchmark")
    parser.add_argument("--entities", type=int, default=10_000, help="Number of synthetic entities")
    parser.add_argument("--flags", type=int, default=20, help="Number of flags in the snapshot")
    parser.add_argument("--json", action="store_true", help="Output JSON instead of text")
    args = parser.parse_args()

    report = run_benchmark(args.entities, args.flags)

    if args.json:
        print(_json.dumps(report, indent=2))
    else:
        print(_format_report(report))


if __name__ == "__main__":
    main()
