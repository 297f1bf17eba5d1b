"""Execution: group fan-out, build verification, and run timing."""

from __future__ import annotations

from agent_pipeline.execution.executor import ParallelGroupExecutor
from agent_pipeline.execution.savings import calculate_time_savings
from agent_pipeline.execution.verification import BuildVerifier, verify_parallel_builds

__all__ = [
    "BuildVerifier",
    "ParallelGroupExecutor",
    "calculate_time_savings",
    "verify_parallel_builds",
]
