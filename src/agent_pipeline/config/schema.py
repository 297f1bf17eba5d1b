"""
agent-pipeline — config schema

File: src/agent_pipeline/config/schema.py

Purpose
- Declare built-in defaults for every runtime setting and validate loaded config
  into a normalized ``dict`` with structured, path-addressed issues.

Sections
- ``meta``: schema version.
- ``pipeline``: parallel execution switch, result-subject derivation, result
  grace period, default stage timeout for workflow files.
- ``observability``: log level/dir/stdout, lifecycle event history size.
- ``profiles``: named overlays over ``pipeline``/``observability``.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from agent_pipeline.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_RESULT_SUBJECT_SUFFIX,
    DEFAULT_STAGE_TIMEOUT_SECONDS,
)

_PROFILE_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-z][a-z0-9_-]*$")
_SUBJECT_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_-]+$")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("sequential", "debug")
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("observability", "log_dir"),)


class MetaConfig(TypedDict):
    schema_version: int


class PipelineConfig(TypedDict):
    parallel_execution: bool
    result_subject_suffix: str
    result_grace_seconds: float
    default_stage_timeout_seconds: float


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    log_dir: str
    log_to_stdout: bool
    event_history_limit: int


class ProfileOverlay(TypedDict, total=False):
    pipeline: dict[str, object]
    observability: dict[str, object]


class PipelineSettings(TypedDict):
    meta: MetaConfig
    pipeline: PipelineConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[PipelineSettings] = {
    "meta": {
        "schema_version": CONFIG_SCHEMA_VERSION,
    },
    "pipeline": {
        "parallel_execution": True,
        "result_subject_suffix": DEFAULT_RESULT_SUBJECT_SUFFIX,
        "result_grace_seconds": 0.0,
        "default_stage_timeout_seconds": DEFAULT_STAGE_TIMEOUT_SECONDS,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_stdout": False,
        "event_history_limit": 512,
    },
    "profiles": {
        "sequential": {
            "pipeline": {"parallel_execution": False},
        },
        "debug": {
            "observability": {"log_level": "DEBUG", "log_to_stdout": True},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result carrying the normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> dict[str, Any]:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(dict(DEFAULT_CONFIG))


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``."""

    merged = copy.deepcopy(dict(base))
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply the named profile overlay and re-validate the result."""

    materialized = copy.deepcopy(dict(config))
    selected = profile.strip() if isinstance(profile, str) else ""
    if not selected:
        return materialized

    profiles = materialized.get("profiles")
    overlay = profiles.get(selected) if isinstance(profiles, Mapping) else None
    if overlay is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )
    return assert_valid_config(merge_config(materialized, overlay))


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate ``config`` and collect every issue with a dotted path."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    allowed = {"meta", "pipeline", "observability", "profiles"}
    _reject_unknown_keys(root, allowed, "", issues)
    _require_keys(root, allowed, "", issues)

    out: dict[str, Any] = {}
    _section(root, key="meta", issues=issues, out=out, validator=_validate_meta)
    _section(root, key="pipeline", issues=issues, out=out, validator=_validate_pipeline)
    _section(root, key="observability", issues=issues, out=out, validator=_validate_observability)
    _section(root, key="profiles", issues=issues, out=out, validator=_validate_profiles)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=out, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def _section(
    payload: Mapping[str, object],
    *,
    key: str,
    issues: _IssueCollector,
    out: dict[str, Any],
    validator: Callable[..., dict[str, Any]],
) -> None:
    raw = payload.get(key)
    if raw is None:
        return
    section_obj = _as_object(raw, key, issues)
    if section_obj is None:
        return
    if validator is _validate_profiles:
        out[key] = validator(section_obj, key, issues)
    else:
        out[key] = validator(section_obj, key, issues, partial=False)


def _validate_meta(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    if not partial:
        _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        version_path = _join(path, "schema_version")
        parsed = _as_int(payload["schema_version"], version_path, issues, minimum=1)
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != CONFIG_SCHEMA_VERSION:
                issues.add(
                    _join(path, "schema_version"),
                    f"schema version {parsed} is not supported (expected {CONFIG_SCHEMA_VERSION})",
                )
    return out


def _validate_pipeline(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {
        "parallel_execution",
        "result_subject_suffix",
        "result_grace_seconds",
        "default_stage_timeout_seconds",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "parallel_execution" in payload:
        parsed_parallel = _as_bool(
            payload["parallel_execution"], _join(path, "parallel_execution"), issues
        )
        if parsed_parallel is not None:
            out["parallel_execution"] = parsed_parallel

    if "result_subject_suffix" in payload:
        suffix_path = _join(path, "result_subject_suffix")
        parsed_suffix = _as_str(payload["result_subject_suffix"], suffix_path, issues)
        if parsed_suffix is not None:
            if _SUBJECT_TOKEN_PATTERN.fullmatch(parsed_suffix):
                out["result_subject_suffix"] = parsed_suffix
            else:
                issues.add(suffix_path, "must be a single subject token ([A-Za-z0-9_-]+)")

    if "result_grace_seconds" in payload:
        parsed_grace = _as_float(
            payload["result_grace_seconds"],
            _join(path, "result_grace_seconds"),
            issues,
            minimum=0.0,
        )
        if parsed_grace is not None:
            out["result_grace_seconds"] = parsed_grace

    if "default_stage_timeout_seconds" in payload:
        timeout_path = _join(path, "default_stage_timeout_seconds")
        parsed_timeout = _as_float(payload["default_stage_timeout_seconds"], timeout_path, issues)
        if parsed_timeout is not None:
            if parsed_timeout > 0:
                out["default_stage_timeout_seconds"] = parsed_timeout
            else:
                issues.add(timeout_path, "must be > 0")
    return out


def _validate_observability(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"log_level", "log_dir", "log_to_stdout", "event_history_limit"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        raw_level = payload["log_level"]
        if isinstance(raw_level, str):
            raw_level = raw_level.strip().upper()
        parsed_level = _as_enum(
            raw_level, _join(path, "log_level"), issues, allowed_values=LOG_LEVELS
        )
        if parsed_level is not None:
            out["log_level"] = parsed_level

    if "log_dir" in payload:
        parsed_dir = _as_str(payload["log_dir"], _join(path, "log_dir"), issues)
        if parsed_dir is not None:
            if "\x00" in parsed_dir:
                issues.add(_join(path, "log_dir"), "must not contain NUL bytes")
            else:
                out["log_dir"] = parsed_dir

    if "log_to_stdout" in payload:
        parsed_stdout = _as_bool(payload["log_to_stdout"], _join(path, "log_to_stdout"), issues)
        if parsed_stdout is not None:
            out["log_to_stdout"] = parsed_stdout

    if "event_history_limit" in payload:
        parsed_limit = _as_int(
            payload["event_history_limit"],
            _join(path, "event_history_limit"),
            issues,
            minimum=1,
        )
        if parsed_limit is not None:
            out["event_history_limit"] = parsed_limit
    return out


def _validate_profiles(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    overlay_validators = {
        "pipeline": _validate_pipeline,
        "observability": _validate_observability,
    }
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join(path, profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        profile_obj = _as_object(payload[profile_name], profile_path, issues)
        if profile_obj is None:
            continue
        _reject_unknown_keys(profile_obj, set(overlay_validators), profile_path, issues)
        overlay: dict[str, Any] = {}
        for section, validator in overlay_validators.items():
            raw = profile_obj.get(section)
            if raw is None:
                continue
            section_path = _join(profile_path, section)
            section_obj = _as_object(raw, section_path, issues)
            if section_obj is not None:
                overlay[section] = validator(section_obj, section_path, issues, partial=True)
        out[profile_name] = overlay
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(allowed_values)
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        existing = target.get(key)
        if isinstance(value, Mapping):
            nested = copy.deepcopy(dict(existing)) if isinstance(existing, Mapping) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ObservabilityConfig",
    "PipelineConfig",
    "PipelineSettings",
    "ProfileOverlay",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "validate_config",
]
