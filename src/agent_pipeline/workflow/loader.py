"""
agent-pipeline — workflow file loader

File: src/agent_pipeline/workflow/loader.py

Purpose
- Parse a workflow definition file into an ordered tuple of ``WorkflowStage``.

Format
- YAML (``.yaml``/``.yml``, read with ``yaml.safe_load``) or TOML (``.toml``).
- Root mapping with an optional ``schema_version`` and a ``stages`` list. Each
  stage entry has ``name``, ``agent``, ``topic`` and optional
  ``timeout_seconds``, ``retries``, ``on_success``, ``on_failure``,
  ``conditional`` and ``result_topic``.
- A stage without ``timeout_seconds`` gets the configured default timeout.

Every problem is reported as ``WorkflowLoadError`` naming the file and the
offending ``stages[i].field`` path.
"""

from __future__ import annotations

import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

import yaml

from agent_pipeline.constants import DEFAULT_STAGE_TIMEOUT_SECONDS, WORKFLOW_SCHEMA_VERSION
from agent_pipeline.domain.models import StageAction, WorkflowStage

YAML_SUFFIXES: Final[frozenset[str]] = frozenset({".yaml", ".yml"})
TOML_SUFFIXES: Final[frozenset[str]] = frozenset({".toml"})

_STAGE_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "name",
        "agent",
        "topic",
        "timeout_seconds",
        "retries",
        "on_success",
        "on_failure",
        "conditional",
        "result_topic",
    }
)


class WorkflowLoadError(ValueError):
    """Raised when a workflow file cannot be read or describes invalid stages."""


def load_workflow(
    path: str | Path,
    *,
    default_timeout_seconds: float = DEFAULT_STAGE_TIMEOUT_SECONDS,
) -> tuple[WorkflowStage, ...]:
    """Read ``path`` and return its stages in file order."""

    workflow_path = Path(path).expanduser()
    suffix = workflow_path.suffix.lower()
    if suffix in YAML_SUFFIXES:
        payload = _load_yaml(workflow_path)
    elif suffix in TOML_SUFFIXES:
        payload = _load_toml(workflow_path)
    else:
        raise WorkflowLoadError(
            f"unsupported workflow file type {suffix or '<none>'!r}: {workflow_path}"
        )
    return parse_workflow(
        payload, source=str(workflow_path), default_timeout_seconds=default_timeout_seconds
    )


def parse_workflow(
    payload: object,
    *,
    source: str = "<workflow>",
    default_timeout_seconds: float = DEFAULT_STAGE_TIMEOUT_SECONDS,
) -> tuple[WorkflowStage, ...]:
    """Validate an already-decoded workflow document."""

    if not isinstance(payload, Mapping):
        raise WorkflowLoadError(f"{source}: workflow root must be a mapping")

    unknown = sorted(str(key) for key in payload if key not in {"schema_version", "stages"})
    if unknown:
        raise WorkflowLoadError(f"{source}: unknown top-level field(s): {', '.join(unknown)}")

    version = payload.get("schema_version", WORKFLOW_SCHEMA_VERSION)
    if version != WORKFLOW_SCHEMA_VERSION:
        raise WorkflowLoadError(
            f"{source}: schema_version {version!r} is not supported "
            f"(expected {WORKFLOW_SCHEMA_VERSION})"
        )

    raw_stages = payload.get("stages")
    if not isinstance(raw_stages, list):
        raise WorkflowLoadError(f"{source}: 'stages' must be a list")

    stages: list[WorkflowStage] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_stages):
        stage = _parse_stage(raw, f"{source}: stages[{index}]", default_timeout_seconds)
        if stage.name in seen:
            raise WorkflowLoadError(
                f"{source}: stages[{index}]: duplicate stage name {stage.name!r}"
            )
        seen.add(stage.name)
        stages.append(stage)
    return tuple(stages)


def _parse_stage(raw: object, where: str, default_timeout_seconds: float) -> WorkflowStage:
    if not isinstance(raw, Mapping):
        raise WorkflowLoadError(f"{where}: stage entry must be a mapping")
    unknown = sorted(str(key) for key in raw if key not in _STAGE_FIELDS)
    if unknown:
        raise WorkflowLoadError(f"{where}: unknown field(s): {', '.join(unknown)}")
    for required in ("name", "agent", "topic"):
        if required not in raw:
            raise WorkflowLoadError(f"{where}.{required}: missing required field")

    try:
        return WorkflowStage(
            name=raw["name"],
            agent=raw["agent"],
            topic_template=raw["topic"],
            timeout=raw.get("timeout_seconds", default_timeout_seconds),
            retries=raw.get("retries", 0),
            on_success=StageAction(raw.get("on_success", StageAction.NEXT.value)),
            on_failure=StageAction(raw.get("on_failure", StageAction.BLOCK.value)),
            conditional=raw.get("conditional"),
            result_topic_template=raw.get("result_topic"),
        )
    except ValueError as exc:
        raise WorkflowLoadError(f"{where}: {exc}") from exc


def _load_yaml(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise WorkflowLoadError(f"invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise WorkflowLoadError(f"unable to read workflow file {path}: {exc}") from exc


def _load_toml(path: Path) -> Any:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise WorkflowLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise WorkflowLoadError(f"unable to read workflow file {path}: {exc}") from exc


__all__ = ["WorkflowLoadError", "load_workflow", "parse_workflow"]
