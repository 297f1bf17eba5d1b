"""Typed error taxonomy for planning, dispatch, and verification failures.

Every failure a caller may need to act on has its own type so that the
``on_failure`` action of the failing stage can be applied without parsing
messages: transport, timeout, semantic, and build verification failures are
all distinguishable by ``isinstance``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from agent_pipeline.control_plane.runner import PipelineRunResult
    from agent_pipeline.domain.models import (
        BuildVerificationResult,
        GroupResult,
        StageGroup,
        StageResult,
        WorkflowStage,
    )


class PipelineError(RuntimeError):
    """Base class for every error raised by the pipeline packages.

    ``partial_run`` is populated by the runner before the error leaves it, so
    results collected before the failure stay available for diagnostics.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.partial_run: PipelineRunResult | None = None


class GroupingError(PipelineError, ValueError):
    """Raised when a stage list or rule table cannot be grouped."""


class UnmatchedStageError(GroupingError):
    """Raised when one or more stages match no grouping rule."""

    def __init__(self, stage_names: Sequence[str]) -> None:
        self.stage_names = tuple(stage_names)
        joined = ", ".join(repr(name) for name in self.stage_names)
        super().__init__(f"no grouping rule matches stage(s): {joined}")


class GraphOrderError(PipelineError):
    """Raised when a group depends on a group that was not discovered before it."""

    def __init__(self, group_id: int, missing: Sequence[int]) -> None:
        self.group_id = group_id
        self.missing = tuple(missing)
        super().__init__(
            f"group {group_id} depends on undiscovered group(s) {list(self.missing)}"
        )


class TransportError(PipelineError):
    """Message bus unreachable or a publish/await was rejected. Never retried."""

    def __init__(self, message: str, *, subject: str | None = None) -> None:
        super().__init__(message)
        self.subject = subject


class StageError(PipelineError):
    """Base class for a stage that ultimately failed after exhausting retries."""

    def __init__(
        self,
        message: str,
        *,
        stage: WorkflowStage,
        stage_index: int,
        attempts: int,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.stage_index = stage_index
        self.attempts = attempts

    @property
    def on_failure(self) -> str:
        return self.stage.on_failure.value


class StageTimeoutError(StageError):
    """No result arrived within the stage timeout."""

    def __init__(
        self,
        *,
        stage: WorkflowStage,
        stage_index: int,
        attempts: int,
        timeout_seconds: float,
    ) -> None:
        super().__init__(
            f"stage {stage.name!r} ({stage.agent}) timed out after {timeout_seconds:g}s"
            f" on attempt {attempts}",
            stage=stage,
            stage_index=stage_index,
            attempts=attempts,
        )
        self.timeout_seconds = timeout_seconds


class StageFailedError(StageError):
    """The worker replied with a non-``COMPLETE`` status or an unreadable payload."""

    def __init__(
        self,
        *,
        stage: WorkflowStage,
        stage_index: int,
        attempts: int,
        reason: str,
        result: StageResult | None = None,
    ) -> None:
        super().__init__(
            f"stage {stage.name!r} ({stage.agent}) failed on attempt {attempts}: {reason}",
            stage=stage,
            stage_index=stage_index,
            attempts=attempts,
        )
        self.reason = reason
        self.result = result


class StageTestsFailedError(StageFailedError):
    """A QA stage completed but reported a failing test verdict."""


class GroupFailedError(PipelineError):
    """A group finished with at least one stage that ultimately failed."""

    def __init__(self, group: StageGroup, group_result: GroupResult) -> None:
        self.group = group
        self.group_result = group_result
        names = ", ".join(repr(error.stage.name) for error in group_result.failures.values())
        super().__init__(f"group {group.id} ({group.name}) failed: {names}")

    @property
    def stage_errors(self) -> tuple[StageError, ...]:
        failures = self.group_result.failures
        return tuple(failures[index] for index in sorted(failures))


class BuildVerificationError(PipelineError):
    """Build verification reported at least one failing agent."""

    def __init__(self, result: BuildVerificationResult) -> None:
        self.result = result
        agents = ", ".join(failure.agent for failure in result.failures)
        super().__init__(f"build verification failed for: {agents}")


__all__ = [
    "BuildVerificationError",
    "GraphOrderError",
    "GroupFailedError",
    "GroupingError",
    "PipelineError",
    "StageError",
    "StageFailedError",
    "StageTestsFailedError",
    "StageTimeoutError",
    "TransportError",
    "UnmatchedStageError",
]
