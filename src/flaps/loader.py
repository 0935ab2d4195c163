"""Snapshot documents: decode JSON/TOML configuration into a Snapshot.

Document shape::

    {
      "version": 7,
      "flags": [
        {"key": "new-checkout", "type": "boolean",
         "environments": {"prod": {"enabled": true, "default_value": true,
                                   "rollout_percentage": 25, "rules": [...]}}}
      ],
      "segments": [{"key": "beta", "included": ["user-1"], "rules": [...]}]
    }

Field-level problems surface as SnapshotValidationError carrying the
pydantic error list; cross-reference problems surface as the specific
SnapshotValidationError subclasses raised by Snapshot.
"""

from __future__ import annotations

import json
import logging
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from flaps.errors import SnapshotValidationError
from flaps.models.environment import FlagEnvironmentState
from flaps.models.flag import Flag
from flaps.models.segment import Segment
from flaps.snapshot import Snapshot

log = logging.getLogger(__name__)


class FlagDocument(Flag):
    """A flag definition together with its state in every environment."""

    environments: dict[str, FlagEnvironmentState] = Field(default_factory=dict)

    def to_flag(self) -> Flag:
        return Flag.model_validate(self.model_dump(exclude={"environments"}))


class SnapshotDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: int = Field(ge=0)
    flags: list[FlagDocument] = Field(default_factory=list)
    segments: list[Segment] = Field(default_factory=list)


def parse_snapshot(data: Mapping[str, Any]) -> Snapshot:
    """Validate a decoded document and build the Snapshot it describes."""
    try:
        doc = SnapshotDocument.model_validate(data)
    except ValidationError as exc:
        raise SnapshotValidationError(
            f"invalid snapshot document: {exc.error_count()} error(s)",
            context={"errors": exc.errors(include_url=False)},
        ) from exc

    return Snapshot.build(
        doc.version,
        flags=[flag.to_flag() for flag in doc.flags],
        states=[
            (flag.key, environment, state)
            for flag in doc.flags
            for environment, state in flag.environments.items()
        ],
        segments=doc.segments,
    )


def load_snapshot_file(path: str | Path) -> Snapshot:
    """Read a ``.json`` or ``.toml`` snapshot document from disk."""
    file_path = Path(path)
    suffix = file_path.suffix.lower()
    try:
        if suffix == ".json":
            data = json.loads(file_path.read_text(encoding="utf-8"))
        elif suffix == ".toml":
            with file_path.open("rb") as f:
                data = tomllib.load(f)
        else:
            raise SnapshotValidationError(
                f"unsupported snapshot format {suffix or '(none)'!r}: use .json or .toml",
                context={"path": str(file_path)},
            )
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise SnapshotValidationError(
            f"{file_path}: {exc}", context={"path": str(file_path)}
        ) from exc

    if not isinstance(data, dict):
        raise SnapshotValidationError(
            f"{file_path}: top level must be an object", context={"path": str(file_path)}
        )

    snapshot = parse_snapshot(data)
    log.debug(
        "loader.snapshot_loaded path=%s version=%d flags=%d",
        file_path,
        snapshot.version,
        len(snapshot.flags),
    )
    return snapshot


def _dump_segment(segment: Segment) -> dict[str, Any]:
    data = segment.model_dump(mode="json", exclude_defaults=True)
    data["key"] = segment.key
    for field in ("included", "excluded"):
        if field in data:
            data[field] = sorted(data[field])
    return data


def dump_snapshot(snapshot: Snapshot) -> dict[str, Any]:
    """Inverse of parse_snapshot: a JSON-compatible document."""
    flags: list[dict[str, Any]] = []
    for key in snapshot.flag_keys():
        flag = snapshot.flags[key]
        entry = flag.model_dump(mode="json", by_alias=True)
        entry["environments"] = {
            environment: state.model_dump(mode="json", exclude_none=True)
            for (flag_key, environment), state in sorted(snapshot.states.items())
            if flag_key == key
        }
        flags.append(entry)

    return {
        "version": snapshot.version,
        "flags": flags,
        "segments": [_dump_segment(snapshot.segments[k]) for k in sorted(snapshot.segments)],
    }
