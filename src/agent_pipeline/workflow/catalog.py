"""Built-in workflow definitions."""

from __future__ import annotations

from typing import Final

from agent_pipeline.domain.models import StageAction, WorkflowStage

STANDARD_FEATURE_WORKFLOW: Final[tuple[WorkflowStage, ...]] = (
    WorkflowStage(
        name="Research",
        agent="cynthia",
        topic_template="features.research.{requestId}",
        timeout=2700,
    ),
    WorkflowStage(
        name="Critique",
        agent="sylvia",
        topic_template="features.critique.{requestId}",
        timeout=1800,
        on_success=StageAction.DECISION,
    ),
    WorkflowStage(
        name="Backend Implementation",
        agent="roy",
        topic_template="features.backend.{requestId}",
        timeout=3600,
        retries=1,
        on_failure=StageAction.NOTIFY,
    ),
    WorkflowStage(
        name="Frontend Implementation",
        agent="jen",
        topic_template="features.frontend.{requestId}",
        timeout=3600,
        retries=1,
        on_failure=StageAction.NOTIFY,
    ),
    WorkflowStage(
        name="Backend QA",
        agent="billy",
        topic_template="features.qa-backend.{requestId}",
        timeout=2700,
    ),
    WorkflowStage(
        name="Frontend QA",
        agent="liz",
        topic_template="features.qa-frontend.{requestId}",
        timeout=2700,
    ),
    WorkflowStage(
        name="Performance Testing",
        agent="todd",
        topic_template="features.qa-performance.{requestId}",
        timeout=3600,
        conditional="needs_todd",
    ),
    WorkflowStage(
        name="Security Testing",
        agent="vic",
        topic_template="features.qa-security.{requestId}",
        timeout=3600,
        conditional="needs_vic",
    ),
    WorkflowStage(
        name="Statistics",
        agent="priya",
        topic_template="features.statistics.{requestId}",
        timeout=5400,
        on_failure=StageAction.NOTIFY,
    ),
    WorkflowStage(
        name="DevOps Deployment",
        agent="berry",
        topic_template="features.devops.{requestId}",
        timeout=900,
    ),
    WorkflowStage(
        name="Documentation Update",
        agent="tim",
        topic_template="features.documentation.{requestId}",
        timeout=1800,
        on_success=StageAction.COMPLETE,
        on_failure=StageAction.NOTIFY,
    ),
)

BUILTIN_WORKFLOWS: Final[dict[str, tuple[WorkflowStage, ...]]] = {
    "standard": STANDARD_FEATURE_WORKFLOW,
}


def builtin_workflow(name: str) -> tuple[WorkflowStage, ...]:
    try:
        return BUILTIN_WORKFLOWS[name]
    except KeyError:
        known = ", ".join(sorted(BUILTIN_WORKFLOWS))
        raise KeyError(f"unknown built-in workflow {name!r}; known: {known}") from None


__all__ = ["BUILTIN_WORKFLOWS", "STANDARD_FEATURE_WORKFLOW", "builtin_workflow"]
