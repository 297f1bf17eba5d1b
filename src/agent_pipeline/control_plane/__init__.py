"""Control plane: the run loop that advances a request through its groups."""

from __future__ import annotations

from agent_pipeline.control_plane.runner import PipelineRunner, PipelineRunResult, RunStatus

__all__ = ["PipelineRunResult", "PipelineRunner", "RunStatus"]
