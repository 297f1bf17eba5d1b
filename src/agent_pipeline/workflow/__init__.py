"""Workflow definitions: the built-in catalog and the workflow file loader."""

from agent_pipeline.workflow.catalog import (
    BUILTIN_WORKFLOWS,
    STANDARD_FEATURE_WORKFLOW,
    builtin_workflow,
)
from agent_pipeline.workflow.loader import WorkflowLoadError, load_workflow, parse_workflow

__all__ = [
    "BUILTIN_WORKFLOWS",
    "STANDARD_FEATURE_WORKFLOW",
    "WorkflowLoadError",
    "builtin_workflow",
    "load_workflow",
    "parse_workflow",
]
