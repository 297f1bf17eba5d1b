"""Unit tests for workflow stage, group, and result models."""

from __future__ import annotations

import pytest

from agent_pipeline.domain.errors import BuildVerificationError, StageTimeoutError
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


def _stage(name: str = "Research", agent: str = "cynthia", **overrides: object) -> WorkflowStage:
    fields: dict[str, object] = {
        "name": name,
        "agent": agent,
        "topic_template": f"features.{agent}.{{requestId}}",
        "timeout": 30,
    }
    fields.update(overrides)
    return WorkflowStage(**fields)  # type: ignore[arg-type]


def test_render_subject_substitutes_every_placeholder() -> None:
    assert render_subject("a.{requestId}.b.{requestId}", "REQ-1") == "a.REQ-1.b.REQ-1"


def test_render_subject_rejects_blank_request_id() -> None:
    with pytest.raises(ValueError, match="request_id"):
        render_subject("a.{requestId}", "  ")


def test_workflow_stage_normalizes_and_renders_topics() -> None:
    stage = _stage(timeout=45, retries=2, on_success="decision")

    assert stage.timeout == 45.0
    assert stage.max_attempts == 3
    assert stage.on_success is StageAction.DECISION
    assert stage.on_failure is StageAction.BLOCK
    assert stage.render_topic("REQ-7") == "features.cynthia.REQ-7"
    assert stage.render_result_topic("REQ-7") == "features.cynthia.REQ-7.result"
    assert stage.render_result_topic("REQ-7", suffix="done") == "features.cynthia.REQ-7.done"


def test_workflow_stage_prefers_explicit_result_topic() -> None:
    stage = _stage(result_topic_template="replies.{requestId}.research")

    assert stage.render_result_topic("REQ-7") == "replies.REQ-7.research"


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"topic_template": "features.research"}, "placeholder"),
        ({"timeout": 0}, "timeout"),
        ({"timeout": True}, "timeout"),
        ({"retries": -1}, "retries"),
        ({"name": " "}, "name"),
        ({"on_failure": "explode"}, "explode"),
    ],
)
def test_workflow_stage_rejects_invalid_fields(overrides: dict[str, object], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        _stage(**overrides)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (True, True),
        (False, False),
        (None, False),
        (1, True),
        (0, False),
        ("true", True),
        ("YES", True),
        ("false", False),
        ("", False),
        (float("nan"), False),
    ],
)
def test_coerce_flag(value: object, expected: bool) -> None:
    assert coerce_flag(value) is expected


def test_stage_result_from_payload_splits_flags_verdict_and_extras() -> None:
    result = StageResult.from_payload(
        {
            "status": "complete",
            "summary": "done",
            "needs_todd": "yes",
            "testResult": "fail",
            "durationSeconds": 12,
            "artifact": "report.md",
        }
    )

    assert result.status is StageStatus.COMPLETE
    assert result.is_complete
    assert result.flags == {"needs_todd": True}
    assert result.test_result is QAVerdict.FAIL
    assert result.tests_failed
    assert result.duration == 12.0
    assert result.extras == {"artifact": "report.md"}
    assert result.flag("needs_todd") is True
    assert result.flag("needs_vic") is False


def test_stage_result_flag_falls_back_to_extras() -> None:
    result = StageResult(status=StageStatus.COMPLETE, extras={"needsReview": "true"})

    assert result.flag("needsReview") is True


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"status": 3},
        {"status": "DONE"},
        {"status": "COMPLETE", "summary": 5},
        {"status": "COMPLETE", "test_result": "MAYBE"},
        {"status": "COMPLETE", "duration_seconds": "fast"},
    ],
)
def test_stage_result_from_payload_rejects_malformed_replies(payload: dict[str, object]) -> None:
    with pytest.raises(ValueError):
        StageResult.from_payload(payload)


def test_stage_result_rejects_non_needs_flag_names() -> None:
    with pytest.raises(ValueError, match="needs_"):
        StageResult(status=StageStatus.COMPLETE, flags={"todd": True})


def test_stage_result_to_dict_round_trips_reply_fields() -> None:
    payload = {"status": "PARTIAL", "summary": "half", "needs_vic": True, "note": "x"}

    assert StageResult.from_payload(payload).to_dict() == payload


def test_stage_group_exposes_parallelism_and_conditional_flags() -> None:
    todd = _stage("Performance Testing", "todd", conditional="needs_todd")
    vic = _stage("Security Testing", "vic", conditional="needs_vic")
    group = StageGroup(
        id=4,
        name="Conditional Testing",
        stages=(todd, vic),
        stage_indices=(6, 7),
        depends_on=frozenset({3}),
        conditional=True,
    )

    assert group.parallel
    assert group.conditional_flags == ("needs_todd", "needs_vic")
    assert group.members() == ((6, todd), (7, vic))
    assert group.to_dict()["agents"] == ["todd", "vic"]


def test_stage_group_rejects_self_dependency_and_mismatched_indices() -> None:
    with pytest.raises(ValueError, match="itself"):
        StageGroup(id=1, name="x", stages=(_stage(),), stage_indices=(0,), depends_on={1})
    with pytest.raises(ValueError, match="same length"):
        StageGroup(id=1, name="x", stages=(_stage(),), stage_indices=(0, 1))
    with pytest.raises(ValueError, match="at least one stage"):
        StageGroup(id=1, name="x", stages=(), stage_indices=())


def test_dependency_graph_requires_a_permutation_of_group_ids() -> None:
    first = StageGroup(id=0, name="Research", stages=(_stage(),), stage_indices=(0,))
    second = StageGroup(
        id=1,
        name="Critique",
        stages=(_stage("Critique", "sylvia"),),
        stage_indices=(1,),
        depends_on={0},
    )

    graph = DependencyGraph(groups=(first, second), execution_order=(0, 1))
    assert len(graph) == 2
    assert graph.group(1) is second
    assert graph.group_named("Critique") is second
    assert graph.group_named("Missing") is None
    assert [group.id for group in graph.ordered_groups()] == [0, 1]
    with pytest.raises(KeyError):
        graph.group(9)

    with pytest.raises(ValueError, match="permutation"):
        DependencyGraph(groups=(first, second), execution_order=(0, 0))
    with pytest.raises(ValueError, match="exactly once"):
        DependencyGraph(groups=(first, second), execution_order=(0,))


def test_group_result_success_and_overlap_rules() -> None:
    stage = _stage()
    ok = StageResult(status=StageStatus.COMPLETE)
    timeout = StageTimeoutError(stage=stage, stage_index=1, attempts=1, timeout_seconds=2)

    result = GroupResult(
        group_id=0, group_name="g", duration=1, results={0: ok}, failures={1: timeout}
    )
    assert not result.success
    assert result.to_dict()["failures"] == {
        "1": {"error": "StageTimeoutError", "message": str(timeout)}
    }

    with pytest.raises(ValueError, match="both succeed and fail"):
        GroupResult(group_id=0, group_name="g", duration=1, results={1: ok}, failures={1: timeout})
    with pytest.raises(ValueError, match="duration"):
        GroupResult(group_id=0, group_name="g", duration=-1)


def test_build_verification_result_never_downgrades_failures() -> None:
    failure = BuildFailure(agent="roy", errors="tsc exited 2")
    result = BuildVerificationResult.from_failures([failure], verified_agents=["roy", "jen"])

    assert not result.success
    with pytest.raises(BuildVerificationError, match="roy"):
        result.raise_for_failures()
    with pytest.raises(ValueError):
        BuildVerificationResult(success=True, failures=(failure,))
    with pytest.raises(ValueError):
        BuildVerificationResult(success=False)

    BuildVerificationResult.from_failures([]).raise_for_failures()


def test_time_savings_percentages() -> None:
    savings = TimeSavingsResult(sequential_time=200.0, parallel_time=150.0)

    assert savings.time_saved == 50.0
    assert savings.percentage_saved == 25.0
    assert TimeSavingsResult(sequential_time=0.0, parallel_time=0.0).percentage_saved == 0.0
    assert savings.to_dict()["percentage_saved"] == 25.0
