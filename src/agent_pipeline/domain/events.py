"""Lifecycle event definitions published while a pipeline run advances."""

from __future__ import annotations

import json
import math
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_JSON_DEPTH: Final[int] = 16
EVENT_ID_PREFIX: Final[str] = "evt"


class PipelineEventType(StrEnum):
    """Lifecycle events emitted by the pipeline runner."""

    WORKFLOW_STARTED = "workflow.started"
    WORKFLOW_COMPLETED = "workflow.completed"
    WORKFLOW_FAILED = "workflow.failed"
    WORKFLOW_PERFORMANCE = "workflow.performance"

    GROUP_STARTED = "group.started"
    GROUP_SKIPPED = "group.skipped"
    GROUP_COMPLETED = "group.completed"
    GROUP_FAILED = "group.failed"

    STAGE_FAILED = "stage.failed"
    BUILD_FAILED = "build.failed"


def generate_event_id() -> str:
    return f"{EVENT_ID_PREFIX}-{uuid.uuid4().hex}"


@dataclass(slots=True)
class PipelineEvent:
    """Serializable event envelope; ``request_id`` correlates events of one run."""

    event_type: PipelineEventType
    request_id: str | None
    payload: dict[str, JSONValue]
    event_id: str = field(default_factory=generate_event_id)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def __post_init__(self) -> None:
        self.event_type = PipelineEventType(self.event_type)
        if self.timestamp.tzinfo is None:
            raise ValueError("PipelineEvent.timestamp must be timezone-aware")
        self.timestamp = self.timestamp.astimezone(UTC)
        self.payload = as_json_object(self.payload, "PipelineEvent.payload")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "request_id": self.request_id,
            "payload": self.payload,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    if not isinstance(value, Mapping):
        raise ValueError(f"{path}: expected object, got {type(value).__name__}")
    return {str(key): _as_json_value(item, f"{path}.{key}") for key, item in value.items()}


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        raise ValueError(f"{path}: nesting exceeds {_MAX_JSON_DEPTH} levels")
    if isinstance(value, str):
        return str(value)
    if value is None or isinstance(value, bool | int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{path}: non-finite float is not JSON-serializable")
        return value
    if isinstance(value, Mapping):
        return {
            str(key): _as_json_value(item, f"{path}.{key}", depth=depth + 1)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple | set | frozenset):
        items = sorted(value) if isinstance(value, set | frozenset) else value
        return [
            _as_json_value(item, f"{path}[{index}]", depth=depth + 1)
            for index, item in enumerate(items)
        ]
    raise ValueError(f"{path}: unsupported type {type(value).__name__}")


__all__ = [
    "EVENT_ID_PREFIX",
    "JSONScalar",
    "JSONValue",
    "PipelineEvent",
    "PipelineEventType",
    "as_json_object",
    "generate_event_id",
]
