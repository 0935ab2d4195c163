"""Structured error taxonomy for flaps.

Every error carries a machine-readable code, domain and severity so that
the sync layer feeding snapshots can decide whether to keep serving the
previous configuration or page someone.

Error code format: FLAPS_<DOMAIN>_<ISSUE>
Domains: CONFIG, SNAPSHOT, CONTEXT, ENGINE
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class Severity(StrEnum):
    CRITICAL = "critical"  # process cannot serve flags
    ERROR = "error"  # operation rejected
    WARN = "warn"  # rejected but previous state still served


class ErrorDomain(StrEnum):
    CONFIG = "CONFIG"
    SNAPSHOT = "SNAPSHOT"
    CONTEXT = "CONTEXT"
    ENGINE = "ENGINE"


# ── Base exception ─────────────────────────────────────────────────────────


class FlapsError(Exception):
    """Base exception for all flaps errors."""

    code: str = "FLAPS_UNKNOWN"
    domain: ErrorDomain = ErrorDomain.ENGINE
    severity: Severity = Severity.ERROR

    def __init__(
        self,
        message: str = "",
        *,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.code
        self.context: dict[str, Any] = context or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "domain": self.domain.value,
            "severity": self.severity.value,
            "message": self.message,
            "context": self.context,
        }


# ── Config errors ──────────────────────────────────────────────────────────


class ConfigValidationError(FlapsError):
    code = "FLAPS_CONFIG_INVALID"
    domain = ErrorDomain.CONFIG
    severity = Severity.CRITICAL


class ConfigMissingError(FlapsError):
    code = "FLAPS_CONFIG_MISSING"
    domain = ErrorDomain.CONFIG
    severity = Severity.CRITICAL


# ── Snapshot errors ────────────────────────────────────────────────────────


class SnapshotValidationError(FlapsError):
    """A snapshot failed validation and must not be published."""

    code = "FLAPS_SNAPSHOT_INVALID"
    domain = ErrorDomain.SNAPSHOT
    severity = Severity.ERROR


class DanglingSegmentError(SnapshotValidationError):
    code = "FLAPS_SNAPSHOT_DANGLING_SEGMENT"


class FlagTypeMismatchError(SnapshotValidationError):
    code = "FLAPS_SNAPSHOT_TYPE_MISMATCH"


class InvalidConditionError(SnapshotValidationError):
    code = "FLAPS_SNAPSHOT_INVALID_CONDITION"


class DuplicateKeyError(SnapshotValidationError):
    code = "FLAPS_SNAPSHOT_DUPLICATE_KEY"


class InvalidFlagKeyError(SnapshotValidationError):
    code = "FLAPS_SNAPSHOT_INVALID_FLAG_KEY"


class StaleSnapshotError(FlapsError):
    """Raised when a snapshot does not advance the active version."""

    code = "FLAPS_SNAPSHOT_STALE"
    domain = ErrorDomain.SNAPSHOT
    severity = Severity.WARN


# ── Context errors ─────────────────────────────────────────────────────────


class InvalidAttributeError(FlapsError):
    code = "FLAPS_CONTEXT_INVALID_ATTRIBUTE"
    domain = ErrorDomain.CONTEXT
    severity = Severity.ERROR
