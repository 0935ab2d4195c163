"""Per-environment flag state, including kill switch and scheduled changes."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from flaps.models.rule import FlagValue, TargetingRule, check_flag_value


def _as_utc(v: Any) -> Any:
    if isinstance(v, datetime) and v.tzinfo is None:
        return v.replace(tzinfo=UTC)
    return v


def _ordered(rules: tuple[TargetingRule, ...]) -> tuple[TargetingRule, ...]:
    # sorted() is stable: equal priorities keep definition order
    return tuple(sorted(rules, key=lambda r: r.priority))


class ScheduledChange(BaseModel):
    """A future state that takes effect once ``effective_at`` has passed.

    Unset fields keep the committed value.
    """

    model_config = ConfigDict(frozen=True)

    effective_at: datetime
    enabled: bool | None = None
    default_value: FlagValue | None = None
    rollout_percentage: int | None = Field(default=None, ge=0, le=100)
    rules: tuple[TargetingRule, ...] | None = None

    @field_validator("default_value", mode="before")
    @classmethod
    def check_default_value(cls, v: Any) -> Any:
        return v if v is None else check_flag_value(v)

    @field_validator("effective_at", mode="after")
    @classmethod
    def require_timezone(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("rules", mode="after")
    @classmethod
    def order_rules(
        cls, v: tuple[TargetingRule, ...] | None
    ) -> tuple[TargetingRule, ...] | None:
        return None if v is None else _ordered(v)

    def is_due(self, now: datetime) -> bool:
        return self.effective_at <= now


class FlagEnvironmentState(BaseModel):
    """State of one flag in one environment."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    kill_switch: bool = False
    kill_switch_activated_at: datetime | None = None
    default_value: FlagValue = False
    rollout_percentage: int | None = Field(default=None, ge=0, le=100)
    rules: tuple[TargetingRule, ...] = ()
    scheduled: ScheduledChange | None = None

    @field_validator("default_value", mode="before")
    @classmethod
    def check_default_value(cls, v: Any) -> Any:
        return check_flag_value(v)

    @field_validator("kill_switch_activated_at", mode="after")
    @classmethod
    def require_timezone(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)

    @field_validator("rules", mode="after")
    @classmethod
    def order_rules(cls, v: tuple[TargetingRule, ...]) -> tuple[TargetingRule, ...]:
        return _ordered(v)

    def effective(self, now: datetime) -> FlagEnvironmentState:
        """Project a due scheduled change onto this state.

        Read-side only: the returned copy has the change applied and no
        schedule; ``self`` is left untouched.
        """
        change = self.scheduled
        if change is None or not change.is_due(now):
            return self
        update: dict[str, Any] = {"scheduled": None}
        if change.enabled is not None:
            update["enabled"] = change.enabled
        if change.default_value is not None:
            update["default_value"] = change.default_value
        if change.rollout_percentage is not None:
            update["rollout_percentage"] = change.rollout_percentage
        if change.rules is not None:
            update["rules"] = change.rules
        return self.model_copy(update=update)

    def all_rules(self) -> list[TargetingRule]:
        """Committed rules plus any scheduled ones, for validation."""
        scheduled = self.scheduled.rules if self.scheduled and self.scheduled.rules else []
        return [*self.rules, *scheduled]

    def all_values(self) -> list[FlagValue]:
        values: list[FlagValue] = [self.default_value]
        if self.scheduled is not None and self.scheduled.default_value is not None:
            values.append(self.scheduled.default_value)
        values.extend(rule.value for rule in self.all_rules())
        return values
