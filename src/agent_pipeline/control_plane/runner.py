"""
agent-pipeline — pipeline runner

File: src/agent_pipeline/control_plane/runner.py

Purpose
- Drive one request through a workflow: build the dependency graph once, walk
  ``execution_order`` group by group, skip conditional groups nobody asked for,
  execute the rest, verify implementation builds, and report time savings.

Normative behavior
- Groups run strictly one after another; the run-scoped result map is written
  once per group by this loop only.
- Any fatal failure (transport, failed group, failing QA verdict, failed build
  verification) stops advancement. The raised error carries the partial run as
  ``partial_run``.
- Lifecycle events are published on the ``EventBus`` as the run advances.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from agent_pipeline.domain.errors import (
    BuildVerificationError,
    GroupFailedError,
    PipelineError,
    StageTestsFailedError,
)
from agent_pipeline.domain.events import PipelineEventType
from agent_pipeline.domain.models import DependencyGraph
from agent_pipeline.execution.executor import ParallelGroupExecutor, empty_context
from agent_pipeline.execution.savings import calculate_time_savings
from agent_pipeline.execution.verification import BuildVerifier
from agent_pipeline.observability.events import EventBus
from agent_pipeline.observability.logging import correlation_scope
from agent_pipeline.planning.conditions import requested_flags, should_skip_group
from agent_pipeline.planning.grouping import DEFAULT_GROUPING_POLICY

if TYPE_CHECKING:
    from agent_pipeline.domain.models import (
        BuildVerificationResult,
        GroupResult,
        StageGroup,
        StageResult,
        TimeSavingsResult,
        WorkflowStage,
    )
    from agent_pipeline.execution.executor import Clock, ContextGetter
    from agent_pipeline.execution.verification import VerifyCallback
    from agent_pipeline.planning.grouping import GroupingPolicy
    from agent_pipeline.transport.base import MessageBus

logger = logging.getLogger(__name__)


class RunStatus(StrEnum):
    """Terminal status of a pipeline run."""

    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class PipelineRunResult:
    """Everything one run produced, complete or partial."""

    request_id: str
    graph: DependencyGraph
    status: RunStatus
    group_results: Mapping[int, GroupResult] = field(default_factory=dict)
    skipped_groups: tuple[int, ...] = ()
    build_verifications: Mapping[int, BuildVerificationResult] = field(default_factory=dict)
    time_savings: TimeSavingsResult | None = None
    duration: float = 0.0

    @property
    def stage_results(self) -> dict[int, StageResult]:
        """Results of every completed stage keyed by position in the stage list."""

        merged: dict[int, StageResult] = {}
        for group_id in self.graph.execution_order:
            group_result = self.group_results.get(group_id)
            if group_result is not None:
                merged.update(group_result.results)
        return dict(sorted(merged.items()))

    @property
    def completed_groups(self) -> tuple[int, ...]:
        return tuple(
            group_id
            for group_id in self.graph.execution_order
            if group_id in self.group_results and self.group_results[group_id].success
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "request_id": self.request_id,
            "status": self.status.value,
            "duration_seconds": round(self.duration, 6),
            "execution_order": list(self.graph.execution_order),
            "skipped_groups": list(self.skipped_groups),
            "groups": {
                str(group_id): result.to_dict()
                for group_id, result in sorted(self.group_results.items())
            },
            "build_verifications": {
                str(group_id): result.to_dict()
                for group_id, result in sorted(self.build_verifications.items())
            },
            "time_savings": None if self.time_savings is None else self.time_savings.to_dict(),
        }


@dataclass(slots=True)
class _RunState:
    request_id: str
    graph: DependencyGraph
    started: float
    group_results: dict[int, GroupResult] = field(default_factory=dict)
    skipped_groups: list[int] = field(default_factory=list)
    build_verifications: dict[int, BuildVerificationResult] = field(default_factory=dict)

    def snapshot(
        self,
        status: RunStatus,
        *,
        finished: float,
        time_savings: TimeSavingsResult | None = None,
    ) -> PipelineRunResult:
        return PipelineRunResult(
            request_id=self.request_id,
            graph=self.graph,
            status=status,
            group_results=dict(self.group_results),
            skipped_groups=tuple(self.skipped_groups),
            build_verifications=dict(self.build_verifications),
            time_savings=time_savings,
            duration=max(finished - self.started, 0.0),
        )


class PipelineRunner:
    """Sequential outer loop over the groups of a workflow."""

    def __init__(
        self,
        bus: MessageBus,
        *,
        policy: GroupingPolicy = DEFAULT_GROUPING_POLICY,
        executor: ParallelGroupExecutor | None = None,
        events: EventBus | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._policy = policy
        self._executor = (
            executor if executor is not None else ParallelGroupExecutor(bus, clock=clock)
        )
        self._events = events if events is not None else EventBus()
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        bus: MessageBus,
        config: Mapping[str, object],
        *,
        policy: GroupingPolicy = DEFAULT_GROUPING_POLICY,
        events: EventBus | None = None,
    ) -> PipelineRunner:
        observability = config.get("observability", {})
        if events is None and isinstance(observability, Mapping):
            events = EventBus(buffer_size=int(observability.get("event_history_limit", 512)))
        return cls(
            bus,
            policy=policy,
            executor=ParallelGroupExecutor.from_config(bus, config),
            events=events,
        )

    @property
    def events(self) -> EventBus:
        return self._events

    def plan(self, stages: Sequence[WorkflowStage]) -> DependencyGraph:
        return self._policy.build(stages)

    async def run(
        self,
        stages: Sequence[WorkflowStage] | DependencyGraph,
        request_id: str,
        *,
        context_getter: ContextGetter = empty_context,
        verify_build: VerifyCallback | None = None,
    ) -> PipelineRunResult:
        """Execute every group for ``request_id`` and return the completed run.

        ``stages`` may be the flat stage list or a graph built earlier with
        :meth:`plan`. When ``verify_build`` is given it runs right after each
        build-verified group.
        """

        graph = stages if isinstance(stages, DependencyGraph) else self.plan(stages)
        state = _RunState(request_id=request_id, graph=graph, started=self._clock())
        verifier = BuildVerifier.from_graph(graph)

        with correlation_scope(request_id=request_id):
            await self._emit(
                PipelineEventType.WORKFLOW_STARTED,
                request_id,
                groups=len(graph.groups),
                execution_order=list(graph.execution_order),
                parallel_execution=self._executor.parallel,
            )
            try:
                for group in graph.ordered_groups():
                    await self._run_group(group, state, context_getter, verifier, verify_build)
            except PipelineError as exc:
                exc.partial_run = state.snapshot(RunStatus.FAILED, finished=self._clock())
                logger.error("workflow %s failed: %s", request_id, exc)
                await self._emit(
                    PipelineEventType.WORKFLOW_FAILED,
                    request_id,
                    error=type(exc).__name__,
                    message=str(exc),
                )
                raise

            savings = calculate_time_savings(graph, state.group_results)
            await self._emit(
                PipelineEventType.WORKFLOW_PERFORMANCE,
                request_id,
                **savings.to_dict(),
            )
            run = state.snapshot(RunStatus.COMPLETED, finished=self._clock(), time_savings=savings)
            logger.info(
                "workflow %s complete in %.3fs (saved %.1f%%)",
                request_id,
                run.duration,
                savings.percentage_saved,
            )
            await self._emit(
                PipelineEventType.WORKFLOW_COMPLETED,
                request_id,
                duration_seconds=run.duration,
                completed_groups=list(run.completed_groups),
                skipped_groups=list(run.skipped_groups),
            )
            return run

    async def _run_group(
        self,
        group: StageGroup,
        state: _RunState,
        context_getter: ContextGetter,
        verifier: BuildVerifier,
        verify_build: VerifyCallback | None,
    ) -> None:
        request_id = state.request_id
        if should_skip_group(group, state.group_results):
            logger.info("skipping conditional group %s", group.name)
            state.skipped_groups.append(group.id)
            await self._emit(
                PipelineEventType.GROUP_SKIPPED,
                request_id,
                group_id=group.id,
                group=group.name,
                flags=list(group.conditional_flags),
                requested=sorted(requested_flags(state.group_results)),
            )
            return

        await self._emit(
            PipelineEventType.GROUP_STARTED,
            request_id,
            group_id=group.id,
            group=group.name,
            parallel=group.parallel,
            stages=[stage.name for stage in group.stages],
        )
        group_result = await self._executor.execute_group(group, request_id, context_getter)
        state.group_results[group.id] = group_result

        if not group_result.success:
            for error in group_result.failures.values():
                await self._emit(
                    PipelineEventType.STAGE_FAILED,
                    request_id,
                    group_id=group.id,
                    stage=error.stage.name,
                    agent=error.stage.agent,
                    error=type(error).__name__,
                    message=str(error),
                    attempts=error.attempts,
                    on_failure=error.on_failure,
                )
            await self._emit(
                PipelineEventType.GROUP_FAILED,
                request_id,
                group_id=group.id,
                group=group.name,
                failed_stages=sorted(group_result.failures),
            )
            raise GroupFailedError(group, group_result)

        if group.block_on_test_failure:
            _raise_for_test_failures(group, group_result)

        if group.verify_builds and verify_build is not None:
            verification = await verifier.verify(group_result.results, verify_build)
            state.build_verifications[group.id] = verification
            if not verification.success:
                for failure in verification.failures:
                    await self._emit(
                        PipelineEventType.BUILD_FAILED,
                        request_id,
                        group_id=group.id,
                        agent=failure.agent,
                        errors=failure.errors,
                    )
                raise BuildVerificationError(verification)

        await self._emit(
            PipelineEventType.GROUP_COMPLETED,
            request_id,
            group_id=group.id,
            group=group.name,
            duration_seconds=group_result.duration,
            stages_completed=len(group_result.results),
        )

    async def _emit(
        self,
        event_type: PipelineEventType,
        request_id: str,
        **payload: object,
    ) -> None:
        await self._events.emit_async(event_type, payload, request_id=request_id)


def _raise_for_test_failures(group: StageGroup, group_result: GroupResult) -> None:
    for stage_index, stage in group.members():
        result = group_result.results.get(stage_index)
        if result is not None and result.tests_failed:
            raise StageTestsFailedError(
                stage=stage,
                stage_index=stage_index,
                attempts=group_result.attempts.get(stage_index, 1),
                reason="tests reported FAIL",
                result=result,
            )


__all__ = ["PipelineRunResult", "PipelineRunner", "RunStatus"]
