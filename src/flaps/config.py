"""Typed configuration models for flaps.

Provides Pydantic validation for config.toml, catching typos, wrong types,
and invalid values at startup rather than at evaluation time.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from flaps.errors import ConfigMissingError, ConfigValidationError

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.toml")


class RuntimeConfig(BaseModel):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False
    log_dir: str | None = None
    module_levels: dict[str, str] | None = None


class EngineConfig(BaseModel):
    default_environment: str = Field(default="production", min_length=1)
    snapshot_path: str | None = None
    reject_stale_snapshots: bool = True

    @field_validator("default_environment", mode="before")
    @classmethod
    def strip_environment(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v


class FlapsConfig(BaseModel):
    """Root configuration model for config.toml."""

    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)

    model_config = {"extra": "allow"}


def load_config(path: Path | None = None) -> FlapsConfig:
    """Load and validate config.toml, returning typed FlapsConfig.

    The path is ``path``, else ``$FLAPS_CONFIG``, else ``./config.toml``.
    A missing default file or missing sections are filled with defaults;
    an explicitly requested file that does not exist raises
    ConfigMissingError. ``$FLAPS_ENVIRONMENT`` overrides
    ``engine.default_environment``.
    """
    explicit = path or (Path(os.environ["FLAPS_CONFIG"]) if os.environ.get("FLAPS_CONFIG") else None)
    config_path = explicit or DEFAULT_CONFIG_PATH
    raw: dict[str, Any] = {}

    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigValidationError(
                f"{config_path}: {exc}", context={"path": str(config_path)}
            ) from exc
    elif explicit is not None:
        raise ConfigMissingError(
            f"config file not found: {config_path}", context={"path": str(config_path)}
        )

    env_override = os.environ.get("FLAPS_ENVIRONMENT")
    if env_override:
        raw.setdefault("engine", {})["default_environment"] = env_override

    try:
        config = FlapsConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigValidationError(
            f"{config_path}: {exc.error_count()} invalid value(s)",
            context={"path": str(config_path), "errors": exc.errors(include_url=False)},
        ) from exc

    log.debug(
        "config.loaded path=%s log_level=%s environment=%s snapshot=%s",
        config_path,
        config.runtime.log_level,
        config.engine.default_environment,
        config.engine.snapshot_path,
    )
    return config
