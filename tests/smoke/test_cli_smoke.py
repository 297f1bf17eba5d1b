"""
agent-pipeline — CLI smoke tests

File: tests/smoke/test_cli_smoke.py

Purpose
- Drive the console entrypoint end to end: plan, simulate and config, with the
  in-memory bus standing in for real workers.
"""

from __future__ import annotations

import importlib
import json
from pathlib import Path

import pytest

from agent_pipeline.main import ExitCode, cli_entrypoint

pytestmark = pytest.mark.smoke


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("AGENT_PIPELINE_PROFILE", "NO_COLOR", "FORCE_COLOR"):
        monkeypatch.delenv(name, raising=False)


def test_planning_package_imports_with_the_default_policy() -> None:
    planning = importlib.import_module("agent_pipeline.planning")

    assert planning.DEFAULT_GROUPING_POLICY.rules == planning.DEFAULT_GROUP_RULES
    assert len(planning.DEFAULT_GROUPING_POLICY.build([])) == 0


def _json_output(capsys: pytest.CaptureFixture[str]) -> dict[str, object]:
    return json.loads(capsys.readouterr().out)


def test_plan_json_lists_the_standard_groups(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["plan", "--json"]) == ExitCode.SUCCESS

    payload = _json_output(capsys)
    assert payload["command"] == "plan"
    assert payload["stage_count"] == 11
    graph = payload["graph"]
    assert graph["execution_order"] == [0, 1, 2, 3, 4, 5, 6, 7]
    assert graph["groups"][2]["agents"] == ["roy", "jen"]
    assert graph["groups"][4]["conditional"] is True


def test_plan_text_renders_a_table(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["plan", "--no-color", "--verbose"]) == ExitCode.SUCCESS

    out = capsys.readouterr().out
    assert out.startswith("Workflow: 11 stage(s) in 8 group(s)")
    assert "parallel (conditional)" in out
    assert "[2] Backend Implementation -> roy" in out


def test_plan_reads_a_workflow_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    workflow = tmp_path / "flow.yaml"
    workflow.write_text(
        "stages:\n"
        "  - name: Research\n"
        "    agent: cynthia\n"
        "    topic: features.research.{requestId}\n",
        encoding="utf-8",
    )

    assert cli_entrypoint(["plan", str(workflow), "--json"]) == ExitCode.SUCCESS
    assert _json_output(capsys)["stage_count"] == 1


def test_simulate_runs_the_pipeline_and_writes_run_logs(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    exit_code = cli_entrypoint(
        ["simulate", "--json", "--request-id", "REQ-SMOKE", "--flag", "todd"]
    )

    assert exit_code == ExitCode.SUCCESS
    payload = _json_output(capsys)
    assert payload["ok"] is True
    run = payload["run"]
    assert run["status"] == "completed"
    assert run["skipped_groups"] == []
    assert run["build_verifications"]["2"]["success"] is True
    assert (tmp_path / "logs" / "REQ-SMOKE" / "pipeline.jsonl").is_file()


def test_simulate_reports_failed_stages(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = cli_entrypoint(["simulate", "--json", "--fail-agent", "jen"])

    assert exit_code == ExitCode.PIPELINE_FAILED
    payload = _json_output(capsys)
    assert payload["ok"] is False
    assert payload["run"]["status"] == "failed"
    assert payload["run"]["groups"]["2"]["attempts"] == {"2": 1, "3": 2}


def test_simulate_text_output_reports_build_failures(
    capsys: pytest.CaptureFixture[str],
) -> None:
    exit_code = cli_entrypoint(["simulate", "--no-color", "--fail-build", "roy"])

    assert exit_code == ExitCode.PIPELINE_FAILED
    out = capsys.readouterr().out
    assert "Build failures:" in out
    assert "roy: simulated build failure for roy" in out
    assert "Pipeline failed:" in out


def test_config_json_shows_the_active_profile(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["config", "--json", "--profile", "sequential"]) == ExitCode.SUCCESS

    payload = _json_output(capsys)
    assert payload["active_profile"] == "sequential"
    assert payload["config"]["pipeline"]["parallel_execution"] is False


def test_config_file_is_picked_up_from_the_working_directory(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / "pipeline.toml").write_text(
        "[pipeline]\nresult_subject_suffix = \"reply\"\n", encoding="utf-8"
    )

    assert cli_entrypoint(["config", "--json"]) == ExitCode.SUCCESS
    assert _json_output(capsys)["config"]["pipeline"]["result_subject_suffix"] == "reply"


@pytest.mark.parametrize(
    "argv",
    [
        ["plan", "missing.yaml"],
        ["config", "--profile", "turbo"],
        ["config", "--config", "absent.toml"],
        ["simulate", "--stage-delay", "-1"],
        ["simulate", "--fail-stage", "Frontend Implementation"],
        ["launch"],
    ],
)
def test_usage_and_config_errors_exit_with_config_error(argv: list[str]) -> None:
    assert cli_entrypoint(argv) == ExitCode.CONFIG_ERROR
