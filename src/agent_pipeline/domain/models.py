"""
agent-pipeline — core data model

File: src/agent_pipeline/domain/models.py

Purpose
- Immutable value types shared by planning, execution, and the runner:
  WorkflowStage, StageGroup, DependencyGraph, StageResult, GroupResult,
  BuildVerificationResult, TimeSavingsResult.

Contracts
- Validation happens in ``__post_init__`` and raises ``ValueError``; nothing is
  mutated after construction.
- Worker payloads enter through ``StageResult.from_payload``: every
  ``needs_<worker>`` key becomes an explicit boolean flag, every other unknown
  key is preserved in ``extras``.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Final

from agent_pipeline.constants import DEFAULT_RESULT_SUBJECT_SUFFIX, REQUEST_ID_PLACEHOLDER
from agent_pipeline.domain.errors import BuildVerificationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_pipeline.domain.errors import StageError

_FLAG_KEY_RE: Final[re.Pattern[str]] = re.compile(r"^needs_[a-z0-9_]+$")
_TRUTHY_STRINGS: Final[frozenset[str]] = frozenset({"1", "true", "yes", "y", "on"})
_TEST_RESULT_KEYS: Final[tuple[str, ...]] = ("test_result", "testResult")
_DURATION_KEYS: Final[tuple[str, ...]] = ("duration_seconds", "durationSeconds")


class StageAction(StrEnum):
    """Symbolic next-action tags consumed by a caller-side state machine."""

    NEXT = "next"
    DECISION = "decision"
    BLOCK = "block"
    NOTIFY = "notify"
    COMPLETE = "complete"
    RETRY = "retry"


class StageStatus(StrEnum):
    """Status reported by a worker for one stage attempt."""

    COMPLETE = "COMPLETE"
    PARTIAL = "PARTIAL"
    BLOCKED = "BLOCKED"
    FAILED = "FAILED"


class QAVerdict(StrEnum):
    """Verdict reported by QA workers alongside a completed stage."""

    PASS = "PASS"
    FAIL = "FAIL"


def render_subject(template: str, request_id: str) -> str:
    """Substitute ``request_id`` into every ``{requestId}`` placeholder of ``template``."""

    if not isinstance(request_id, str) or not request_id.strip():
        raise ValueError("request_id must be a non-empty string")
    return template.replace(REQUEST_ID_PLACEHOLDER, request_id.strip())


def coerce_flag(value: object) -> bool:
    """Interpret a worker-supplied flag value as a boolean."""

    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, int | float):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_STRINGS
    return bool(value)


@dataclass(frozen=True, slots=True)
class WorkflowStage:
    """One unit of work bound to a worker agent and a message-bus subject."""

    name: str
    agent: str
    topic_template: str
    timeout: float
    retries: int = 0
    on_success: StageAction = StageAction.NEXT
    on_failure: StageAction = StageAction.BLOCK
    conditional: str | None = None
    result_topic_template: str | None = None

    def __post_init__(self) -> None:
        _require_text(self.name, "name")
        _require_text(self.agent, "agent")
        _require_template(self.topic_template, "topic_template")
        if self.result_topic_template is not None:
            _require_template(self.result_topic_template, "result_topic_template")
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, int | float):
            raise ValueError("timeout must be a number of seconds")
        if not math.isfinite(self.timeout) or self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if isinstance(self.retries, bool) or not isinstance(self.retries, int):
            raise ValueError("retries must be an integer")
        if self.retries < 0:
            raise ValueError("retries must be >= 0")
        if self.conditional is not None:
            _require_text(self.conditional, "conditional")
        object.__setattr__(self, "timeout", float(self.timeout))
        object.__setattr__(self, "on_success", StageAction(self.on_success))
        object.__setattr__(self, "on_failure", StageAction(self.on_failure))

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def render_topic(self, request_id: str) -> str:
        return render_subject(self.topic_template, request_id)

    def render_result_topic(
        self,
        request_id: str,
        *,
        suffix: str = DEFAULT_RESULT_SUBJECT_SUFFIX,
    ) -> str:
        """Subject the worker replies on for ``request_id``."""

        if self.result_topic_template is not None:
            return render_subject(self.result_topic_template, request_id)
        return f"{self.render_topic(request_id)}.{suffix}"

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "agent": self.agent,
            "topic_template": self.topic_template,
            "timeout_seconds": self.timeout,
            "retries": self.retries,
            "on_success": self.on_success.value,
            "on_failure": self.on_failure.value,
            "conditional": self.conditional,
            "result_topic_template": self.result_topic_template,
        }


@dataclass(frozen=True, slots=True)
class StageGroup:
    """A node of the execution chain: one or more stages sharing a position."""

    id: int
    name: str
    stages: tuple[WorkflowStage, ...]
    stage_indices: tuple[int, ...]
    depends_on: frozenset[int] = frozenset()
    conditional: bool = False
    verify_builds: bool = False
    block_on_test_failure: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.id, bool) or not isinstance(self.id, int) or self.id < 0:
            raise ValueError("group id must be a non-negative integer")
        _require_text(self.name, "group name")
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(self, "stage_indices", tuple(self.stage_indices))
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))
        if not self.stages:
            raise ValueError(f"group {self.name!r} must contain at least one stage")
        if len(self.stages) != len(self.stage_indices):
            raise ValueError("stages and stage_indices must have the same length")
        if len(set(self.stage_indices)) != len(self.stage_indices):
            raise ValueError("stage_indices must be unique")
        if self.id in self.depends_on:
            raise ValueError(f"group {self.id} cannot depend on itself")

    @property
    def parallel(self) -> bool:
        return len(self.stages) > 1

    @property
    def conditional_flags(self) -> tuple[str, ...]:
        """Flag names gating this group, in stage order without duplicates."""

        flags: list[str] = []
        for stage in self.stages:
            if stage.conditional is not None and stage.conditional not in flags:
                flags.append(stage.conditional)
        return tuple(flags)

    def members(self) -> tuple[tuple[int, WorkflowStage], ...]:
        return tuple(zip(self.stage_indices, self.stages, strict=True))

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "parallel": self.parallel,
            "conditional": self.conditional,
            "depends_on": sorted(self.depends_on),
            "stage_indices": list(self.stage_indices),
            "stages": [stage.name for stage in self.stages],
            "agents": [stage.agent for stage in self.stages],
        }


@dataclass(frozen=True, slots=True)
class DependencyGraph:
    """All groups of one graph build plus their execution order."""

    groups: tuple[StageGroup, ...] = ()
    execution_order: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "groups", tuple(self.groups))
        object.__setattr__(self, "execution_order", tuple(self.execution_order))
        ids = [group.id for group in self.groups]
        if len(set(ids)) != len(ids):
            raise ValueError("group ids must be unique")
        if len(self.execution_order) != len(self.groups):
            raise ValueError("execution_order must list every group exactly once")
        if set(self.execution_order) != set(ids):
            raise ValueError("execution_order must be a permutation of the group ids")

    def __len__(self) -> int:
        return len(self.groups)

    def group(self, group_id: int) -> StageGroup:
        for group in self.groups:
            if group.id == group_id:
                return group
        raise KeyError(group_id)

    def ordered_groups(self) -> tuple[StageGroup, ...]:
        return tuple(self.group(group_id) for group_id in self.execution_order)

    def group_named(self, name: str) -> StageGroup | None:
        for group in self.groups:
            if group.name == name:
                return group
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "groups": [group.to_dict() for group in self.ordered_groups()],
            "execution_order": list(self.execution_order),
        }


@dataclass(frozen=True, slots=True)
class StageResult:
    """Result a worker produced for one stage."""

    status: StageStatus
    summary: str = ""
    flags: Mapping[str, bool] = field(default_factory=dict)
    test_result: QAVerdict | None = None
    duration: float | None = None
    extras: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", StageStatus(self.status))
        if not isinstance(self.summary, str):
            raise ValueError("summary must be a string")
        normalized_flags: dict[str, bool] = {}
        for name, value in dict(self.flags).items():
            if not _FLAG_KEY_RE.match(name):
                raise ValueError(f"flag name {name!r} must look like 'needs_<worker>'")
            normalized_flags[name] = coerce_flag(value)
        object.__setattr__(self, "flags", normalized_flags)
        if self.test_result is not None:
            object.__setattr__(self, "test_result", QAVerdict(str(self.test_result).upper()))
        if self.duration is not None:
            if isinstance(self.duration, bool) or not isinstance(self.duration, int | float):
                raise ValueError("duration must be a number of seconds")
            if not math.isfinite(self.duration) or self.duration < 0:
                raise ValueError("duration must be >= 0")
            object.__setattr__(self, "duration", float(self.duration))
        object.__setattr__(self, "extras", dict(self.extras))

    @property
    def is_complete(self) -> bool:
        return self.status is StageStatus.COMPLETE

    @property
    def tests_failed(self) -> bool:
        return self.test_result is QAVerdict.FAIL

    def flag(self, name: str) -> bool:
        """Value of flag ``name``; unknown keys in ``extras`` are consulted too."""

        if name in self.flags:
            return self.flags[name]
        if name in self.extras:
            return coerce_flag(self.extras[name])
        return False

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> StageResult:
        """Build a result from a decoded worker reply."""

        if not isinstance(payload, Mapping):
            raise ValueError(f"stage result must be an object, got {type(payload).__name__}")
        raw_status = payload.get("status")
        if not isinstance(raw_status, str):
            raise ValueError("stage result is missing a string 'status'")
        try:
            status = StageStatus(raw_status.strip().upper())
        except ValueError as exc:
            raise ValueError(f"unknown stage status {raw_status!r}") from exc

        summary = payload.get("summary", "")
        if summary is None:
            summary = ""
        if not isinstance(summary, str):
            raise ValueError("stage result 'summary' must be a string")

        flags: dict[str, bool] = {}
        extras: dict[str, object] = {}
        test_result: QAVerdict | None = None
        duration: float | None = None
        for key, value in payload.items():
            if key in {"status", "summary"}:
                continue
            if key in _TEST_RESULT_KEYS:
                if value is not None:
                    try:
                        test_result = QAVerdict(str(value).strip().upper())
                    except ValueError as exc:
                        raise ValueError(f"unknown test verdict {value!r}") from exc
                continue
            if key in _DURATION_KEYS:
                if value is not None:
                    if isinstance(value, bool) or not isinstance(value, int | float):
                        raise ValueError("stage result duration must be a number")
                    duration = float(value)
                continue
            if _FLAG_KEY_RE.match(key):
                flags[key] = coerce_flag(value)
                continue
            extras[key] = value

        return cls(
            status=status,
            summary=summary,
            flags=flags,
            test_result=test_result,
            duration=duration,
            extras=extras,
        )

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"status": self.status.value, "summary": self.summary}
        data.update(self.flags)
        if self.test_result is not None:
            data["test_result"] = self.test_result.value
        if self.duration is not None:
            data["duration_seconds"] = self.duration
        for key, value in self.extras.items():
            data.setdefault(key, value)
        return data


@dataclass(frozen=True, slots=True)
class GroupResult:
    """Outcome of executing one group: duration plus per-stage results."""

    group_id: int
    group_name: str
    duration: float
    results: Mapping[int, StageResult] = field(default_factory=dict)
    failures: Mapping[int, StageError] = field(default_factory=dict)
    stage_durations: Mapping[int, float] = field(default_factory=dict)
    attempts: Mapping[int, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.duration, bool) or not isinstance(self.duration, int | float):
            raise ValueError("duration must be a number of seconds")
        if self.duration < 0:
            raise ValueError("duration must be >= 0")
        object.__setattr__(self, "duration", float(self.duration))
        object.__setattr__(self, "results", dict(self.results))
        object.__setattr__(self, "failures", dict(self.failures))
        object.__setattr__(self, "stage_durations", dict(self.stage_durations))
        object.__setattr__(self, "attempts", dict(self.attempts))
        overlap = set(self.results) & set(self.failures)
        if overlap:
            raise ValueError(f"stage indices {sorted(overlap)} cannot both succeed and fail")

    @property
    def success(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, object]:
        return {
            "group_id": self.group_id,
            "group_name": self.group_name,
            "duration_seconds": round(self.duration, 6),
            "success": self.success,
            "results": {
                str(index): result.to_dict() for index, result in sorted(self.results.items())
            },
            "failures": {
                str(index): {"error": type(error).__name__, "message": str(error)}
                for index, error in sorted(self.failures.items())
            },
            "attempts": {str(index): count for index, count in sorted(self.attempts.items())},
        }


@dataclass(frozen=True, slots=True)
class BuildFailure:
    """One agent whose build verification failed."""

    agent: str
    errors: str


@dataclass(frozen=True, slots=True)
class BuildVerificationResult:
    """Aggregate build verification outcome; failures are never downgraded."""

    success: bool
    failures: tuple[BuildFailure, ...] = ()
    verified_agents: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "failures", tuple(self.failures))
        object.__setattr__(self, "verified_agents", tuple(self.verified_agents))
        if self.success and self.failures:
            raise ValueError("a successful verification cannot carry failures")
        if not self.success and not self.failures:
            raise ValueError("a failed verification must list at least one failure")

    @classmethod
    def from_failures(
        cls,
        failures: Sequence[BuildFailure],
        *,
        verified_agents: Sequence[str] = (),
    ) -> BuildVerificationResult:
        return cls(
            success=not failures,
            failures=tuple(failures),
            verified_agents=tuple(verified_agents),
        )

    def raise_for_failures(self) -> None:
        if not self.success:
            raise BuildVerificationError(self)

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "verified_agents": list(self.verified_agents),
            "failures": [{"agent": item.agent, "errors": item.errors} for item in self.failures],
        }


@dataclass(frozen=True, slots=True)
class TimeSavingsResult:
    """Estimated sequential duration versus observed duration for one run."""

    sequential_time: float
    parallel_time: float
    estimated: bool = False

    @property
    def time_saved(self) -> float:
        return self.sequential_time - self.parallel_time

    @property
    def percentage_saved(self) -> float:
        if self.sequential_time <= 0:
            return 0.0
        return self.time_saved / self.sequential_time * 100.0

    def to_dict(self) -> dict[str, object]:
        return {
            "sequential_time": round(self.sequential_time, 6),
            "parallel_time": round(self.parallel_time, 6),
            "time_saved": round(self.time_saved, 6),
            "percentage_saved": round(self.percentage_saved, 2),
            "estimated": self.estimated,
        }


def _require_text(value: object, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} must be a non-empty string")
    return value


def _require_template(value: object, label: str) -> None:
    if REQUEST_ID_PLACEHOLDER not in _require_text(value, label):
        raise ValueError(f"{label} {value!r} must contain the {REQUEST_ID_PLACEHOLDER} placeholder")


__all__ = [
    "BuildFailure",
    "BuildVerificationResult",
    "DependencyGraph",
    "GroupResult",
    "StageAction",
    "StageGroup",
    "StageResult",
    "StageStatus",
    "QAVerdict",
    "TimeSavingsResult",
    "WorkflowStage",
    "coerce_flag",
    "render_subject",
]
