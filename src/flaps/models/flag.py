"""Flag definitions and their declared value types."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from flaps.models.rule import FlagValue

_FLAG_KEY_RE = re.compile(r"[A-Za-z0-9_-]+")


def is_valid_flag_key(key: str) -> bool:
    return _FLAG_KEY_RE.fullmatch(key) is not None


class FlagType(StrEnum):
    BOOLEAN = "boolean"
    STRING = "string"


class Flag(BaseModel):
    """A flag key with its declared value type."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str
    flag_type: FlagType = Field(default=FlagType.BOOLEAN, alias="type")
    variants: tuple[str, ...] = ()
    name: str = ""
    description: str = ""
    tags: tuple[str, ...] = ()

    @field_validator("variants", mode="before")
    @classmethod
    def dedupe_variants(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple)):
            return tuple(dict.fromkeys(v))
        return v

    @property
    def off_value(self) -> FlagValue:
        """Value served by the kill switch and by a disabled flag."""
        if self.flag_type == FlagType.BOOLEAN:
            return False
        return self.variants[0] if self.variants else ""

    @property
    def zero_value(self) -> FlagValue:
        """Value served when configuration produced an ill-typed value."""
        return False if self.flag_type == FlagType.BOOLEAN else ""

    def accepts(self, value: Any) -> bool:
        """Whether ``value`` conforms to this flag's declared type."""
        if self.flag_type == FlagType.BOOLEAN:
            return isinstance(value, bool)
        if not isinstance(value, str):
            return False
        return not self.variants or value in self.variants
