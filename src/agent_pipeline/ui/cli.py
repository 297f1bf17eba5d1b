"""Command-line interface router for agent-pipeline."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Final

from agent_pipeline.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from agent_pipeline.constants import DEFAULT_STAGE_TIMEOUT_SECONDS
from agent_pipeline.control_plane import PipelineRunner, PipelineRunResult
from agent_pipeline.domain.errors import GroupingError, PipelineError, TransportError
from agent_pipeline.domain.models import DependencyGraph, WorkflowStage
from agent_pipeline.observability.logging import setup_logging
from agent_pipeline.planning import DEFAULT_GROUPING_POLICY
from agent_pipeline.transport import InMemoryMessageBus, SimulatedWorkers
from agent_pipeline.ui.render import CLIRenderer, create_renderer
from agent_pipeline.workflow import STANDARD_FEATURE_WORKFLOW, WorkflowLoadError, load_workflow

DEFAULT_REQUEST_ID: Final[str] = "REQ-SIMULATED-1"


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="agent-pipeline",
        description=(
            "agent-pipeline — staged multi-agent workflow orchestrator.\n\n"
            "Common workflows:\n"
            "  agent-pipeline plan                 Show the standard workflow's groups\n"
            "  agent-pipeline plan flow.yaml       Group a workflow file\n"
            "  agent-pipeline simulate             Run the workflow against simulated workers\n"
            "  agent-pipeline config               Print the effective configuration\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to pipeline TOML config (default: ./pipeline.toml if present).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help="Optional config profile overlay name.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # plan ----------------------------------------------------------------
    plan_parser = subparsers.add_parser(
        "plan",
        parents=[common],
        help="Group a workflow into its dependency graph",
        description="Print the stage groups and execution order of a workflow.",
    )
    plan_parser.add_argument(
        "workflow",
        nargs="?",
        default=None,
        help="Workflow file (.yaml/.yml/.toml); defaults to the built-in standard workflow",
    )
    plan_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    plan_parser.set_defaults(handler=_cmd_plan)

    # simulate ------------------------------------------------------------
    simulate_parser = subparsers.add_parser(
        "simulate",
        parents=[common],
        help="Run a workflow against simulated in-memory workers",
        description=(
            "Execute a workflow end to end on the in-memory message bus, with simulated\n"
            "workers answering every stage."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    simulate_parser.add_argument(
        "workflow",
        nargs="?",
        default=None,
        help="Workflow file (.yaml/.yml/.toml); defaults to the built-in standard workflow",
    )
    simulate_parser.add_argument(
        "--request-id", default=DEFAULT_REQUEST_ID, help="Request identifier for the run"
    )
    simulate_parser.add_argument(
        "--flag",
        dest="flags",
        action="append",
        default=[],
        metavar="NAME",
        help="Set a needs_* flag in every worker reply (repeatable)",
    )
    simulate_parser.add_argument(
        "--fail-build",
        dest="fail_builds",
        action="append",
        default=[],
        metavar="AGENT",
        help="Make build verification fail for AGENT (repeatable)",
    )
    simulate_parser.add_argument(
        "--fail-agent",
        dest="fail_agents",
        action="append",
        default=[],
        metavar="AGENT",
        help="Make AGENT reply FAILED on every attempt (repeatable)",
    )
    simulate_parser.add_argument(
        "--stage-delay",
        type=float,
        default=0.0,
        metavar="SECONDS",
        help="Simulated work time per stage (default: 0)",
    )
    simulate_parser.add_argument(
        "--json", action="store_true", help="Emit deterministic JSON output"
    )
    simulate_parser.set_defaults(handler=_cmd_simulate)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective configuration",
        description="Print the configuration after defaults, file, profile, env and CLI.",
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_plan(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    stages = _load_stages(args, config)
    graph = _build_graph(stages)

    if _flag(args, "json"):
        _emit_json({"command": "plan", "stage_count": len(stages), "graph": graph.to_dict()})
        return 0

    renderer = _get_renderer(args)
    renderer.heading(f"Workflow: {len(stages)} stage(s) in {len(graph)} group(s)")
    _render_graph(renderer, graph)
    return 0


def _cmd_simulate(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    stages = _load_stages(args, config)
    graph = _build_graph(stages)
    request_id = _require_str(getattr(args, "request_id", None), "request_id")

    delay = float(getattr(args, "stage_delay", 0.0))
    if delay < 0:
        raise CLIError("--stage-delay must be >= 0", exit_code=2)
    try:
        workers = SimulatedWorkers(
            default_delay=delay,
            flags={name: True for name in _normalize_flags(getattr(args, "flags", []))},
            failing_agents=frozenset(getattr(args, "fail_agents", [])),
        )
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    failing_builds = frozenset(getattr(args, "fail_builds", []))

    observability = config.get("observability", {})
    handle = setup_logging(
        observability if isinstance(observability, Mapping) else None,
        request_id=request_id,
    )
    try:
        run, error = asyncio.run(
            _simulate(config, graph, request_id, workers=workers, failing_builds=failing_builds)
        )
    finally:
        handle.shutdown()

    if isinstance(error, TransportError):
        raise CLIError(f"transport failure: {error}", exit_code=3)

    if _flag(args, "json"):
        _emit_json(
            {
                "command": "simulate",
                "ok": error is None,
                "error": None if error is None else str(error),
                "run": None if run is None else run.to_dict(),
            }
        )
        return 0 if error is None else 1

    renderer = _get_renderer(args)
    renderer.heading(f"Request {request_id}")
    if run is not None:
        _render_run(renderer, run)
    if error is not None:
        renderer.section("Pipeline failed:")
        renderer.fail(str(error))
        return 1
    renderer.section("Pipeline complete.")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    profile = _optional_str(getattr(args, "profile", None))

    if _flag(args, "json"):
        _emit_json({"command": "config", "active_profile": profile, "config": config})
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Active profile", profile or "(default)")
    renderer.text(dump_effective_config(config))
    return 0


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------


async def _simulate(
    config: Mapping[str, object],
    graph: DependencyGraph,
    request_id: str,
    *,
    workers: SimulatedWorkers,
    failing_builds: frozenset[str],
) -> tuple[PipelineRunResult | None, PipelineError | None]:
    bus = InMemoryMessageBus(responder=workers)
    runner = PipelineRunner.from_config(bus, config)

    def verify_build(agent: str) -> dict[str, object]:
        if agent in failing_builds:
            return {"success": False, "errors": f"simulated build failure for {agent}"}
        return {"success": True}

    try:
        run = await runner.run(graph, request_id, verify_build=verify_build)
    except PipelineError as exc:
        return exc.partial_run, exc
    finally:
        await bus.aclose()
    return run, None


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _render_graph(renderer: CLIRenderer, graph: DependencyGraph) -> None:
    rows: list[list[str]] = []
    for group in graph.ordered_groups():
        mode = "parallel" if group.parallel else "sequential"
        if group.conditional:
            mode += " (conditional)"
        depends = ",".join(str(item) for item in sorted(group.depends_on)) or "-"
        stage_names = ", ".join(stage.name for stage in group.stages)
        rows.append([str(group.id), group.name, mode, depends, stage_names])
    renderer.table(["ID", "Group", "Mode", "After", "Stages"], rows, title="Groups:")
    if renderer.verbose:
        renderer.section("Stages:")
        for group in graph.ordered_groups():
            for stage_index, stage in group.members():
                renderer.text(
                    f"  [{stage_index}] {stage.name} -> {stage.agent} on {stage.topic_template}"
                    f" (timeout {stage.timeout:g}s, retries {stage.retries})"
                )


def _render_run(renderer: CLIRenderer, run: PipelineRunResult) -> None:
    renderer.section("Groups:")
    for group in run.graph.ordered_groups():
        result = run.group_results.get(group.id)
        if group.id in run.skipped_groups:
            renderer.skip(f"{group.name}")
        elif result is None:
            continue
        elif result.success:
            renderer.ok(f"{group.name} ({result.duration:.3f}s)")
        else:
            renderer.fail(f"{group.name} ({result.duration:.3f}s)")
        if renderer.verbose and result is not None:
            for stage_index, stage in group.members():
                attempts = result.attempts.get(stage_index, 0)
                state = "complete" if stage_index in result.results else "failed"
                renderer.text(f"      {stage.name}: {state} after {attempts} attempt(s)")

    failed_builds = [
        failure
        for verification in run.build_verifications.values()
        for failure in verification.failures
    ]
    if failed_builds:
        renderer.section("Build failures:")
        renderer.items([f"{failure.agent}: {failure.errors}" for failure in failed_builds])

    if run.time_savings is not None:
        savings = run.time_savings
        renderer.section("Performance:")
        renderer.kv("  sequential estimate", f"{savings.sequential_time:.3f}s")
        renderer.kv("  parallel actual", f"{savings.parallel_time:.3f}s")
        renderer.kv("  saved", f"{savings.time_saved:.3f}s ({savings.percentage_saved:.1f}%)")
        if savings.estimated:
            renderer.warning("stage durations missing; sequential time is estimated")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, object]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))

    try:
        loaded = load_config(config_path, profile=profile)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    return {key: value for key, value in loaded.items()}


def _load_stages(
    args: argparse.Namespace, config: Mapping[str, object]
) -> tuple[WorkflowStage, ...]:
    workflow_path = _optional_str(getattr(args, "workflow", None))
    if workflow_path is None:
        return STANDARD_FEATURE_WORKFLOW

    pipeline = config.get("pipeline", {})
    default_timeout = DEFAULT_STAGE_TIMEOUT_SECONDS
    if isinstance(pipeline, Mapping):
        raw_timeout = pipeline.get("default_stage_timeout_seconds", default_timeout)
        if isinstance(raw_timeout, int | float):
            default_timeout = float(raw_timeout)
    try:
        return load_workflow(workflow_path, default_timeout_seconds=default_timeout)
    except WorkflowLoadError as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _build_graph(stages: Sequence[WorkflowStage]) -> DependencyGraph:
    try:
        return DEFAULT_GROUPING_POLICY.build(stages)
    except GroupingError as exc:
        raise CLIError(f"cannot group workflow: {exc}", exit_code=2) from exc


def _normalize_flags(raw_flags: Sequence[str]) -> list[str]:
    flags: list[str] = []
    for raw in raw_flags:
        name = raw.strip()
        if not name.startswith("needs_"):
            name = f"needs_{name}"
        flags.append(name)
    return flags


def _require_str(value: object, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise CLIError(f"{label} must be a non-empty string", exit_code=2)
    return value.strip()


def _optional_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    parsed = value.strip()
    return parsed or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
