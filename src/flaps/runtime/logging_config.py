"""Centralized logging configuration for flaps.

Provides:
- Structured JSON formatter for production / machine parsing
- Human-readable formatter for development
- Evaluation context via contextvars (request_id, environment, snapshot_version)
- Rotating file handler for log persistence
- Hot-updatable log level without reconfiguring handlers
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from contextvars import ContextVar
from pathlib import Path
from typing import Any

# ── Context propagated across threads and async tasks ──────────────────────
ctx_request_id: ContextVar[str] = ContextVar("ctx_request_id", default="")
ctx_environment: ContextVar[str] = ContextVar("ctx_environment", default="")
ctx_snapshot_version: ContextVar[str] = ContextVar("ctx_snapshot_version", default="")

_CONTEXT_ATTRS = ("request_id", "environment", "snapshot_version")


class ContextFilter(logging.Filter):
    """Inject evaluation context vars into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = ctx_request_id.get("")  # type: ignore[attr-defined]
        record.environment = ctx_environment.get("")  # type: ignore[attr-defined]
        record.snapshot_version = ctx_snapshot_version.get("")  # type: ignore[attr-defined]
        return True


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter for production / log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for attr in _CONTEXT_ATTRS:
            val = getattr(record, attr, "")
            if val:
                entry[attr] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    """Human-readable formatter with optional context suffix."""

    def format(self, record: logging.LogRecord) -> str:
        ctx_parts: list[str] = []
        env = getattr(record, "environment", "")
        if env:
            ctx_parts.append(f"env={env}")
        ver = getattr(record, "snapshot_version", "")
        if ver:
            ctx_parts.append(f"v={ver}")
        req = getattr(record, "request_id", "")
        if req:
            ctx_parts.append(f"req={req[:12]}")

        base = super().format(record)
        if ctx_parts:
            return f"{base} [{' '.join(ctx_parts)}]"
        return base


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = False,
    log_dir: str | Path | None = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB per file
    backup_count: int = 5,
    module_levels: dict[str, str] | None = None,
) -> None:
    """Configure logging for the whole process.

    Args:
        level: Root log level (DEBUG, INFO, WARNING, ERROR).
        json_output: Use JSON formatter for console; else human-readable.
        log_dir: Directory for rotating log files. None = stderr only.
        max_bytes: Max bytes per log file before rotation.
        backup_count: Number of rotated backup files to keep.
        module_levels: Per-logger level overrides, e.g. {"flaps.engine": "DEBUG"}.
    """
    root = logging.getLogger()
    root.handlers.clear()

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root.setLevel(numeric_level)

    ctx_filter = ContextFilter()

    # ── Console handler ──
    if json_output:
        formatter: logging.Formatter = JSONFormatter(datefmt="%Y-%m-%dT%H:%M:%S")
    else:
        formatter = HumanFormatter(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ctx_filter)
    root.addHandler(console)

    # ── Rotating file handler (always JSON for machine parsing) ──
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path / "flaps.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
        file_handler.addFilter(ctx_filter)
        root.addHandler(file_handler)

    # ── Per-module overrides ──
    if module_levels:
        for mod, mod_level in module_levels.items():
            logging.getLogger(mod).setLevel(
                getattr(logging, mod_level.upper(), numeric_level)
            )


def configure_from_config(config: dict[str, Any], *, verbose: bool = False) -> None:
    """Configure logging from config.toml runtime settings.

    Args:
        config: Settings dict with optional 'runtime' section containing
                log_level, log_json, log_dir, module_levels.
        verbose: CLI --verbose flag overrides config level to DEBUG.
    """
    runtime = config.get("runtime", {})

    level = "DEBUG" if verbose else runtime.get("log_level", "INFO")

    configure_logging(
        level=level,
        json_output=runtime.get("log_json", False),
        log_dir=runtime.get("log_dir", None),
        module_levels=runtime.get("module_levels", None),
    )


def update_log_level(level: str) -> None:
    """Hot-update root log level without reconfiguring handlers."""
    numeric = getattr(logging, level.upper(), None)
    if numeric is not None:
        logging.getLogger().setLevel(numeric)
        logging.getLogger(__name__).info("Log level changed to %s", level)
