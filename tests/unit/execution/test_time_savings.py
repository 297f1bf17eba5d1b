"""Unit tests for the sequential-versus-parallel time savings estimate."""

from __future__ import annotations

import pytest

from agent_pipeline.domain.models import GroupResult
from agent_pipeline.execution.savings import calculate_time_savings
from agent_pipeline.planning.grouping import build_dependency_graph
from agent_pipeline.workflow import STANDARD_FEATURE_WORKFLOW

_GRAPH = build_dependency_graph(STANDARD_FEATURE_WORKFLOW)


def test_plain_durations_estimate_parallel_groups_per_member() -> None:
    savings = calculate_time_savings(_GRAPH, {0: 10.0, 1: 5.0, 2: 20.0})

    assert savings.parallel_time == pytest.approx(35.0)
    assert savings.sequential_time == pytest.approx(55.0)
    assert savings.time_saved == pytest.approx(20.0)
    assert savings.estimated is True


def test_measured_stage_durations_replace_the_estimate() -> None:
    implementation = GroupResult(
        group_id=2,
        group_name="Implementation",
        duration=20.0,
        stage_durations={2: 20.0, 3: 12.0},
    )

    savings = calculate_time_savings(_GRAPH, {0: 10.0, 2: implementation})

    assert savings.parallel_time == pytest.approx(30.0)
    assert savings.sequential_time == pytest.approx(42.0)
    assert savings.estimated is False
    assert savings.percentage_saved == pytest.approx(12.0 / 42.0 * 100.0)


def test_stage_sum_never_undercuts_the_group_duration() -> None:
    qa = GroupResult(group_id=3, group_name="QA", duration=9.0, stage_durations={4: 2.0, 5: 3.0})

    savings = calculate_time_savings(_GRAPH, {3: qa})

    assert savings.sequential_time == pytest.approx(9.0)
    assert savings.time_saved == pytest.approx(0.0)


def test_partial_stage_durations_fall_back_to_the_estimate() -> None:
    qa = GroupResult(group_id=3, group_name="QA", duration=4.0, stage_durations={4: 4.0})

    savings = calculate_time_savings(_GRAPH, {3: qa})

    assert savings.sequential_time == pytest.approx(8.0)
    assert savings.estimated is True


def test_skipped_groups_contribute_nothing() -> None:
    savings = calculate_time_savings(_GRAPH, {})

    assert savings.sequential_time == 0.0
    assert savings.parallel_time == 0.0
    assert savings.percentage_saved == 0.0
    assert savings.to_dict()["estimated"] is False


@pytest.mark.parametrize(
    ("timing", "error"),
    [(-1.0, ValueError), ("3", TypeError), (True, TypeError)],
)
def test_invalid_timings_are_rejected(timing: object, error: type[Exception]) -> None:
    with pytest.raises(error):
        calculate_time_savings(_GRAPH, {0: timing})  # type: ignore[dict-item]
