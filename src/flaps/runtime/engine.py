"""Process-wide flag engine: the active snapshot slot plus typed entry points.

Readers capture the current snapshot reference once per evaluation and
run to completion against it, so a concurrent ``replace`` never produces
a torn read. Publishing is a single reference assignment guarded by a
writer lock that only serializes writers; readers never take it.
Superseded snapshots are reclaimed by the garbage collector once the
last in-flight evaluation drops its reference.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime

from flaps.engine.evaluator import evaluate
from flaps.errors import StaleSnapshotError
from flaps.models.context import EvaluationContext
from flaps.models.decision import Decision
from flaps.models.rule import FlagValue
from flaps.runtime.logging_config import ctx_snapshot_version
from flaps.snapshot import Snapshot

log = logging.getLogger(__name__)

DecisionListener = Callable[[Decision, EvaluationContext], None]


class FlagEngine:
    """Evaluates flags against the currently published snapshot.

    Usage:
        engine = FlagEngine()
        engine.load(snapshot)

        ctx = ContextBuilder("user-123").country("FR").build()
        if engine.evaluate_boolean("new-checkout", "prod", ctx, False):
            ...
    """

    def __init__(
        self,
        snapshot: Snapshot | None = None,
        *,
        reject_stale: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._snapshot: Snapshot | None = snapshot
        self._write_lock = threading.Lock()
        self._reject_stale = reject_stale
        self._clock = clock
        self._listeners: list[DecisionListener] = []

    # ── Snapshot slot ──

    @property
    def snapshot(self) -> Snapshot | None:
        return self._snapshot

    @property
    def version(self) -> int | None:
        snapshot = self._snapshot
        return snapshot.version if snapshot is not None else None

    def load(self, snapshot: Snapshot) -> None:
        """Publish the first snapshot; later calls behave like ``replace``."""
        self.replace(snapshot)

    def replace(self, snapshot: Snapshot) -> Snapshot | None:
        """Atomically publish ``snapshot``; returns the superseded one.

        Raises StaleSnapshotError when stale rejection is on and the new
        version does not exceed the active one.
        """
        with self._write_lock:
            previous = self._snapshot
            if (
                self._reject_stale
                and previous is not None
                and snapshot.version <= previous.version
            ):
                log.warning(
                    "engine.stale_snapshot active=%d offered=%d",
                    previous.version,
                    snapshot.version,
                )
                raise StaleSnapshotError(
                    f"snapshot version {snapshot.version} does not advance "
                    f"active version {previous.version}",
                    context={"active": previous.version, "offered": snapshot.version},
                )
            self._snapshot = snapshot

        log.info(
            "engine.snapshot_published version=%d previous=%s flags=%d segments=%d",
            snapshot.version,
            previous.version if previous is not None else None,
            len(snapshot.flags),
            len(snapshot.segments),
        )
        return previous

    # ── Listeners ──

    def add_listener(self, listener: DecisionListener) -> None:
        """Register a callback receiving every decision (e.g. an exposure logger)."""
        self._listeners.append(listener)

    def remove_listener(self, listener: DecisionListener) -> bool:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def _notify(self, decision: Decision, context: EvaluationContext) -> None:
        for listener in list(self._listeners):
            try:
                listener(decision, context)
            except Exception:
                log.exception(
                    "engine.listener_failed flag=%s listener=%r",
                    decision.flag_key,
                    listener,
                )

    # ── Evaluation ──

    def evaluate(
        self,
        flag_key: str,
        environment: str,
        context: EvaluationContext,
        fallback: FlagValue = False,
        *,
        now: datetime | None = None,
    ) -> Decision:
        """Full decision with reason, for diagnostics."""
        snapshot = self._snapshot  # one reference for the whole evaluation
        if now is None and self._clock is not None:
            now = self._clock()
        return self._decide(snapshot, flag_key, environment, context, fallback, now)

    def _decide(
        self,
        snapshot: Snapshot | None,
        flag_key: str,
        environment: str,
        context: EvaluationContext,
        fallback: FlagValue,
        now: datetime | None,
    ) -> Decision:
        token = ctx_snapshot_version.set(str(snapshot.version) if snapshot is not None else "")
        try:
            decision = evaluate(snapshot, flag_key, environment, context, fallback, now=now)
            if self._listeners:
                self._notify(decision, context)
        finally:
            ctx_snapshot_version.reset(token)
        return decision

    def evaluate_boolean(
        self,
        flag_key: str,
        environment: str,
        context: EvaluationContext,
        fallback: bool,
    ) -> bool:
        decision = self.evaluate(flag_key, environment, context, fallback)
        if isinstance(decision.value, bool):
            return decision.value
        log.debug("engine.not_boolean flag=%s value=%r", flag_key, decision.value)
        return fallback

    def evaluate_string(
        self,
        flag_key: str,
        environment: str,
        context: EvaluationContext,
        fallback: str,
    ) -> str:
        decision = self.evaluate(flag_key, environment, context, fallback)
        if isinstance(decision.value, str):
            return decision.value
        log.debug("engine.not_string flag=%s value=%r", flag_key, decision.value)
        return fallback

    def is_enabled(self, flag_key: str, environment: str, context: EvaluationContext) -> bool:
        return self.evaluate(flag_key, environment, context).is_enabled

    def evaluate_all(
        self,
        environment: str,
        context: EvaluationContext,
        *,
        now: datetime | None = None,
    ) -> dict[str, Decision]:
        """Evaluate every flag configured in ``environment``, independently."""
        snapshot = self._snapshot
        if snapshot is None:
            return {}
        if now is None and self._clock is not None:
            now = self._clock()
        return {
            key: self._decide(snapshot, key, environment, context, False, now)
            for key in snapshot.flag_keys(environment)
        }

    def stats(self) -> dict[str, object]:
        snapshot = self._snapshot
        return {
            "loaded": snapshot is not None,
            "version": snapshot.version if snapshot is not None else None,
            "flags": len(snapshot.flags) if snapshot is not None else 0,
            "listeners": len(self._listeners),
        }


# ── Singleton ──────────────────────────────────────────────────────────────

_engine: FlagEngine | None = None


def get_engine() -> FlagEngine:
    global _engine
    if _engine is None:
        _engine = FlagEngine()
    return _engine


def reset_engine() -> None:
    """Reset the engine (for testing)."""
    global _engine
    _engine = None
