"""Domain types shared by planning, execution, and the runner."""

from __future__ import annotations

from agent_pipeline.domain.errors import (
    BuildVerificationError,
    GraphOrderError,
    GroupFailedError,
    GroupingError,
    PipelineError,
    StageError,
    StageFailedError,
    StageTestsFailedError,
    StageTimeoutError,
    TransportError,
    UnmatchedStageError,
)
from agent_pipeline.domain.events import PipelineEvent, PipelineEventType
from agent_pipeline.domain.models import (
    BuildFailure,
    BuildVerificationResult,
    DependencyGraph,
    GroupResult,
    QAVerdict,
    StageAction,
    StageGroup,
    StageResult,
    StageStatus,
    TimeSavingsResult,
    WorkflowStage,
    coerce_flag,
    render_subject,
)

__all__ = [
    "BuildFailure",
    "BuildVerificationError",
    "BuildVerificationResult",
    "DependencyGraph",
    "GraphOrderError",
    "GroupFailedError",
    "GroupResult",
    "GroupingError",
    "PipelineError",
    "PipelineEvent",
    "PipelineEventType",
    "QAVerdict",
    "StageAction",
    "StageError",
    "StageFailedError",
    "StageGroup",
    "StageResult",
    "StageStatus",
    "StageTestsFailedError",
    "StageTimeoutError",
    "TimeSavingsResult",
    "TransportError",
    "UnmatchedStageError",
    "WorkflowStage",
    "coerce_flag",
    "render_subject",
]
