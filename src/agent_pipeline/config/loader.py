"""
agent-pipeline — runtime config loader.

File: src/agent_pipeline/config/loader.py

Purpose
- Build the effective ``PipelineSettings`` from built-in defaults, a TOML file,
  a named profile, ``AGENT_PIPELINE_*`` environment variables and CLI overrides.

Normative behavior
- Precedence: CLI > env > profile > file > defaults; the result is validated
  after the file is merged and again after every override is applied.
- ``pipeline.toml`` in the working directory is read when present; an explicit
  ``config_path`` must exist.
- Only the ``pipeline`` and ``observability`` sections are reachable from the
  environment. Each variable is parsed by the type its ``TypedDict`` declares,
  so ``AGENT_PIPELINE_OBSERVABILITY_EVENT_HISTORY_LIMIT`` must hold an integer.
- ``observability.log_dir`` resolves against the directory holding the config
  file (the working directory when no file was read).
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal, get_origin, get_type_hints

from agent_pipeline.config.schema import (
    PATH_FIELDS,
    ObservabilityConfig,
    PipelineConfig,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "pipeline.toml"
ENV_PREFIX: Final[str] = "AGENT_PIPELINE_"
PROFILE_ENV_VAR: Final[str] = f"{ENV_PREFIX}PROFILE"

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def _parse_bool(raw: str, env_name: str) -> bool:
    word = raw.lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ConfigLoadError(f"{env_name} must be a boolean (true/false/1/0/yes/no/on/off)")


def _parse_int(raw: str, env_name: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigLoadError(f"{env_name} must be an integer") from exc


def _parse_float(raw: str, env_name: str) -> float:
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigLoadError(f"{env_name} must be a number") from exc


def _parse_str(raw: str, env_name: str) -> str:
    return raw


_PARSERS: Final[dict[object, Callable[[str, str], object]]] = {
    bool: _parse_bool,
    int: _parse_int,
    float: _parse_float,
    str: _parse_str,
}


@dataclass(frozen=True, slots=True)
class EnvBinding:
    """One environment variable bound to ``config[section][key]``."""

    section: str
    key: str
    parse: Callable[[str, str], object]

    @property
    def env_name(self) -> str:
        return f"{ENV_PREFIX}{self.section.upper()}_{self.key.upper()}"

    def read(self, environ: Mapping[str, str]) -> object | None:
        raw = environ.get(self.env_name)
        if raw is None:
            return None
        return self.parse(raw.strip(), self.env_name)


def _bindings_for(section: str, schema: type) -> tuple[EnvBinding, ...]:
    bindings: list[EnvBinding] = []
    for key, hint in get_type_hints(schema).items():
        # Literal-typed settings such as log_level arrive as text; validation
        # checks the allowed values.
        parse = _PARSERS[str] if get_origin(hint) is Literal else _PARSERS[hint]
        bindings.append(EnvBinding(section, key, parse))
    return tuple(bindings)


ENV_BINDINGS: Final[tuple[EnvBinding, ...]] = (
    *_bindings_for("pipeline", PipelineConfig),
    *_bindings_for("observability", ObservabilityConfig),
)


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with precedence CLI > env > profile > file > defaults.

    ``cli_overrides`` accepts dotted keys (``"pipeline.result_grace_seconds"``),
    whole sections (``{"observability": {...}}``) and ``"profile"``.
    """

    env = os.environ if environ is None else environ
    overrides = dict(cli_overrides or {})
    path = (
        Path.cwd() / DEFAULT_CONFIG_FILE
        if config_path is None
        else Path(config_path).expanduser()
    ).resolve()

    config = assert_valid_config(
        merge_config(default_config(), _read_toml(path, required=config_path is not None))
    )
    selected = _select_profile(profile, overrides, env)
    if selected is not None:
        config = apply_profile_overlay(config, selected)
    config = merge_config(config, env_overrides(env))
    config = merge_config(config, _cli_overlay(overrides))
    return normalize_paths(assert_valid_config(config), base_dir=path.parent)


def env_overrides(environ: Mapping[str, str]) -> dict[str, dict[str, object]]:
    """Collect ``{section: {key: value}}`` from every bound variable that is set."""

    overlay: dict[str, dict[str, object]] = {}
    for binding in ENV_BINDINGS:
        value = binding.read(environ)
        if value is not None:
            overlay.setdefault(binding.section, {})[binding.key] = value
    return overlay


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve every path setting against ``base_dir`` and expand ``~`` and ``$VARS``."""

    normalized = merge_config({}, config)
    for section, key in PATH_FIELDS:
        block = normalized.get(section)
        if not isinstance(block, dict) or not isinstance(block.get(key), str):
            continue
        target = Path(os.path.expandvars(block[key])).expanduser()
        if not target.is_absolute():
            target = base_dir / target
        block[key] = Path(os.path.normpath(target)).as_posix()
    return normalized


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(dict(config), sort_keys=True, indent=2, ensure_ascii=False)


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        if required:
            raise ConfigLoadError(f"config file not found: {path}") from exc
        return {}
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _select_profile(
    explicit: str | None, overrides: Mapping[str, object], environ: Mapping[str, str]
) -> str | None:
    if explicit is not None:
        chosen: object = explicit
    elif "profile" in overrides:
        chosen = overrides["profile"]
        if not isinstance(chosen, str):
            raise ConfigLoadError("cli override 'profile' must be a string")
    else:
        chosen = environ.get(PROFILE_ENV_VAR, "")
    return str(chosen).strip() or None


def _cli_overlay(overrides: Mapping[str, object]) -> dict[str, Any]:
    overlay: dict[str, Any] = {}
    for key, value in overrides.items():
        if key == "profile":
            continue
        parts = key.split(".")
        if not all(parts):
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        for part in reversed(parts[1:]):
            value = {part: value}
        overlay = merge_config(overlay, {parts[0]: value})
    return overlay


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_BINDINGS",
    "ENV_PREFIX",
    "EnvBinding",
    "PROFILE_ENV_VAR",
    "dump_effective_config",
    "env_overrides",
    "load_config",
    "normalize_paths",
]
