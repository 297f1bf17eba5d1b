"""
agent-pipeline — time savings calculator

File: src/agent_pipeline/execution/savings.py

Purpose
- Compare the observed duration of a run with an estimate of how long the same
  stages would have taken one at a time.

Estimation rule
- ``parallel_time`` is measured: the sum of every executed group's duration.
- ``sequential_time`` is an estimate. A non-parallel group contributes its own
  duration. A parallel group contributes the sum of its member stages' measured
  durations when every member has one, and never less than the group's own
  duration. Without per-stage durations it contributes its duration once per
  member stage, and the result is flagged ``estimated``.
- Groups with no result (skipped or never reached) contribute nothing.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, TypeAlias

from agent_pipeline.domain.models import GroupResult, TimeSavingsResult

if TYPE_CHECKING:
    from agent_pipeline.domain.models import DependencyGraph, StageGroup

GroupTiming: TypeAlias = GroupResult | float | int


def calculate_time_savings(
    graph: DependencyGraph,
    group_results: Mapping[int, GroupTiming],
) -> TimeSavingsResult:
    sequential = 0.0
    parallel = 0.0
    estimated = False
    for group in graph.ordered_groups():
        timing = group_results.get(group.id)
        if timing is None:
            continue
        duration = _group_duration(group.id, timing)
        parallel += duration
        if not group.parallel:
            sequential += duration
            continue
        stage_total = _summed_stage_durations(group, timing)
        if stage_total is None:
            sequential += duration * len(group.stages)
            estimated = True
        else:
            sequential += max(stage_total, duration)
    return TimeSavingsResult(
        sequential_time=sequential,
        parallel_time=parallel,
        estimated=estimated,
    )


def _group_duration(group_id: int, timing: GroupTiming) -> float:
    if isinstance(timing, GroupResult):
        return timing.duration
    if isinstance(timing, bool) or not isinstance(timing, int | float):
        raise TypeError(
            f"timing for group {group_id} must be a GroupResult or a duration,"
            f" got {type(timing).__name__}"
        )
    if timing < 0:
        raise ValueError(f"duration for group {group_id} must be >= 0")
    return float(timing)


def _summed_stage_durations(group: StageGroup, timing: GroupTiming) -> float | None:
    if not isinstance(timing, GroupResult):
        return None
    durations = timing.stage_durations
    if any(index not in durations for index in group.stage_indices):
        return None
    return sum(durations[index] for index in group.stage_indices)


__all__ = ["GroupTiming", "calculate_time_savings"]
