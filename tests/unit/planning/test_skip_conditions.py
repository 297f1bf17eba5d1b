"""Unit tests for conditional group skip evaluation."""

from __future__ import annotations

import pytest

from agent_pipeline.domain.models import (
    GroupResult,
    StageGroup,
    StageResult,
    StageStatus,
    WorkflowStage,
)
from agent_pipeline.planning.conditions import requested_flags, should_skip_group


def _stage(name: str, agent: str, conditional: str | None = None) -> WorkflowStage:
    return WorkflowStage(
        name=name,
        agent=agent,
        topic_template=f"features.{agent}.{{requestId}}",
        timeout=60,
        conditional=conditional,
    )


CONDITIONAL_GROUP = StageGroup(
    id=4,
    name="Conditional Testing",
    stages=(
        _stage("Performance Testing", "todd", "needs_todd"),
        _stage("Security Testing", "vic", "needs_vic"),
    ),
    stage_indices=(6, 7),
    depends_on=frozenset({3}),
    conditional=True,
)


def _group_result(group_id: int, **flags: object) -> GroupResult:
    return GroupResult(
        group_id=group_id,
        group_name=f"group-{group_id}",
        duration=1.0,
        results={group_id: StageResult(status=StageStatus.COMPLETE, flags=flags)},
    )


def test_non_conditional_groups_never_skip() -> None:
    group = StageGroup(
        id=0, name="Research", stages=(_stage("Research", "cynthia"),), stage_indices=(0,)
    )

    assert should_skip_group(group, {}) is False


def test_conditional_group_skips_when_nobody_asked() -> None:
    upstream = {0: _group_result(0), 1: _group_result(1, needs_other=True)}

    assert should_skip_group(CONDITIONAL_GROUP, upstream) is True


def test_any_member_flag_anywhere_upstream_runs_the_group() -> None:
    upstream = {0: _group_result(0, needs_vic=True), 3: _group_result(3)}

    assert should_skip_group(CONDITIONAL_GROUP, upstream) is False


def test_falsy_flag_values_do_not_trigger() -> None:
    upstream = {0: _group_result(0, needs_todd=False, needs_vic=0)}

    assert should_skip_group(CONDITIONAL_GROUP, upstream) is True


def test_raw_mappings_and_stage_results_are_accepted() -> None:
    assert should_skip_group(CONDITIONAL_GROUP, {2: {"needs_todd": "true"}}) is False
    assert (
        should_skip_group(
            CONDITIONAL_GROUP, {2: StageResult(status=StageStatus.COMPLETE, flags={"needs_vic": 1})}
        )
        is False
    )


def test_unknown_upstream_values_raise_type_error() -> None:
    with pytest.raises(TypeError, match="GroupResult"):
        should_skip_group(CONDITIONAL_GROUP, {0: 42})  # type: ignore[dict-item]


def test_requested_flags_collects_truthy_needs_flags_only() -> None:
    upstream = {
        0: _group_result(0, needs_todd=True, needs_vic=False),
        1: {"needs_billy": "yes", "other": True},
    }

    assert requested_flags(upstream) == frozenset({"needs_todd", "needs_billy"})
