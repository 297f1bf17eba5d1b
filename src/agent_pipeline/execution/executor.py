"""
agent-pipeline — parallel group executor

File: src/agent_pipeline/execution/executor.py

Purpose
- Execute one ``StageGroup``: dispatch every member stage over the message bus,
  collect the workers' results, and report a ``GroupResult``.

Normative behavior
- Every stage of the group is published before any result is awaited.
- Results are awaited concurrently, each bounded by its stage timeout plus the
  configured grace period.
- Transport failures (publish or await) raise ``TransportError`` at once; sibling
  awaits are cancelled and nothing is retried.
- Timeouts and non-``COMPLETE`` or unreadable replies re-dispatch the stage up to
  ``stage.retries`` times; a stage that still fails lands in
  ``GroupResult.failures`` while sibling successes stay in ``GroupResult.results``.
- A reply echoing an earlier attempt number is dropped; the current attempt keeps
  waiting for its own reply within what is left of its deadline.
- With parallel execution disabled, stages are dispatched and awaited one at a
  time and the group stops at the first stage that ultimately fails.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeAlias

from agent_pipeline.constants import (
    DEFAULT_RESULT_SUBJECT_SUFFIX,
    DISPATCH_SCHEMA_VERSION,
    STAGE_STARTED_EVENT,
)
from agent_pipeline.domain.errors import (
    StageError,
    StageFailedError,
    StageTimeoutError,
    TransportError,
)
from agent_pipeline.domain.events import as_json_object
from agent_pipeline.domain.models import GroupResult, StageResult
from agent_pipeline.observability.logging import correlation_scope
from agent_pipeline.transport.base import encode_message
from agent_pipeline.utils.concurrency import gather_fail_fast, run_with_timeout

if TYPE_CHECKING:
    from agent_pipeline.domain.models import StageGroup, WorkflowStage
    from agent_pipeline.transport.base import MessageBus

logger = logging.getLogger(__name__)

Clock: TypeAlias = Callable[[], float]
ContextGetter: TypeAlias = Callable[[int], Mapping[str, object]]


@dataclass(frozen=True, slots=True)
class _StageOutcome:
    stage_index: int
    attempts: int
    duration: float
    result: StageResult | None = None
    failure: StageError | None = None


def empty_context(stage_index: int) -> Mapping[str, object]:
    return {}


class ParallelGroupExecutor:
    """Fan a group out over a message bus and fan the results back in."""

    def __init__(
        self,
        bus: MessageBus,
        *,
        parallel: bool = True,
        result_grace_seconds: float = 0.0,
        result_subject_suffix: str = DEFAULT_RESULT_SUBJECT_SUFFIX,
        clock: Clock = time.monotonic,
    ) -> None:
        if result_grace_seconds < 0:
            raise ValueError("result_grace_seconds must be >= 0")
        if not result_subject_suffix or not result_subject_suffix.strip():
            raise ValueError("result_subject_suffix must be non-empty")
        self._bus = bus
        self._parallel = parallel
        self._grace = float(result_grace_seconds)
        self._suffix = result_subject_suffix.strip()
        self._clock = clock

    @classmethod
    def from_config(cls, bus: MessageBus, config: Mapping[str, object]) -> ParallelGroupExecutor:
        """Build an executor from the ``[pipeline]`` section of a validated config."""

        section = config.get("pipeline", {})
        if not isinstance(section, Mapping):
            raise ValueError("config 'pipeline' section must be a table")
        return cls(
            bus,
            parallel=bool(section.get("parallel_execution", True)),
            result_grace_seconds=float(section.get("result_grace_seconds", 0.0)),
            result_subject_suffix=str(
                section.get("result_subject_suffix", DEFAULT_RESULT_SUBJECT_SUFFIX)
            ),
        )

    @property
    def parallel(self) -> bool:
        return self._parallel

    async def execute_group(
        self,
        group: StageGroup,
        request_id: str,
        context_getter: ContextGetter = empty_context,
    ) -> GroupResult:
        """Run every stage of ``group`` for ``request_id``.

        Raises ``TransportError`` when the bus fails; every other failure is
        reported through ``GroupResult.failures``.
        """

        started = self._clock()
        with correlation_scope(request_id=request_id, group=group.name, group_id=group.id):
            logger.info(
                "executing group %s (%d stage(s), %s)",
                group.name,
                len(group.stages),
                "parallel" if self._parallel and group.parallel else "sequential",
            )
            if self._parallel:
                outcomes = await self._execute_fan_out(group, request_id, context_getter)
            else:
                outcomes = await self._execute_one_by_one(group, request_id, context_getter)
            duration = self._clock() - started

        results: dict[int, StageResult] = {}
        failures: dict[int, StageError] = {}
        for outcome in outcomes:
            if outcome.failure is not None:
                failures[outcome.stage_index] = outcome.failure
            elif outcome.result is not None:
                results[outcome.stage_index] = outcome.result

        return GroupResult(
            group_id=group.id,
            group_name=group.name,
            duration=max(duration, 0.0),
            results=results,
            failures=failures,
            stage_durations={outcome.stage_index: outcome.duration for outcome in outcomes},
            attempts={outcome.stage_index: outcome.attempts for outcome in outcomes},
        )

    async def _execute_fan_out(
        self,
        group: StageGroup,
        request_id: str,
        context_getter: ContextGetter,
    ) -> list[_StageOutcome]:
        dispatched_at: dict[int, float] = {}
        for stage_index, stage in group.members():
            await self._dispatch(group, stage, stage_index, request_id, context_getter, attempt=1)
            dispatched_at[stage_index] = self._clock()

        return await gather_fail_fast(
            self._collect(
                group, stage, stage_index, request_id, context_getter, dispatched_at[stage_index]
            )
            for stage_index, stage in group.members()
        )

    async def _execute_one_by_one(
        self,
        group: StageGroup,
        request_id: str,
        context_getter: ContextGetter,
    ) -> list[_StageOutcome]:
        outcomes: list[_StageOutcome] = []
        for stage_index, stage in group.members():
            await self._dispatch(group, stage, stage_index, request_id, context_getter, attempt=1)
            outcome = await self._collect(
                group, stage, stage_index, request_id, context_getter, self._clock()
            )
            outcomes.append(outcome)
            if outcome.failure is not None:
                break
        return outcomes

    async def _collect(
        self,
        group: StageGroup,
        stage: WorkflowStage,
        stage_index: int,
        request_id: str,
        context_getter: ContextGetter,
        dispatched_at: float,
    ) -> _StageOutcome:
        result_subject = stage.render_result_topic(request_id, suffix=self._suffix)
        deadline = stage.timeout + self._grace
        attempt = 1
        with correlation_scope(stage=stage.name, agent=stage.agent):
            while True:
                failure: StageError
                try:
                    payload = await self._await_reply(stage, result_subject, attempt, deadline)
                except TimeoutError:
                    failure = StageTimeoutError(
                        stage=stage,
                        stage_index=stage_index,
                        attempts=attempt,
                        timeout_seconds=deadline,
                    )
                except TransportError:
                    raise
                except Exception as exc:
                    raise TransportError(
                        f"awaiting {result_subject!r} failed: {exc}", subject=result_subject
                    ) from exc
                else:
                    try:
                        result = StageResult.from_payload(payload)
                    except ValueError as exc:
                        failure = StageFailedError(
                            stage=stage,
                            stage_index=stage_index,
                            attempts=attempt,
                            reason=f"malformed result: {exc}",
                        )
                    else:
                        if result.is_complete:
                            logger.info(
                                "stage %s complete after %d attempt(s)", stage.name, attempt
                            )
                            return _StageOutcome(
                                stage_index=stage_index,
                                attempts=attempt,
                                duration=self._clock() - dispatched_at,
                                result=result,
                            )
                        failure = StageFailedError(
                            stage=stage,
                            stage_index=stage_index,
                            attempts=attempt,
                            reason=f"worker reported {result.status.value}"
                            + (f": {result.summary}" if result.summary else ""),
                            result=result,
                        )

                if attempt > stage.retries:
                    logger.warning("stage %s failed: %s", stage.name, failure)
                    return _StageOutcome(
                        stage_index=stage_index,
                        attempts=attempt,
                        duration=self._clock() - dispatched_at,
                        failure=failure,
                    )

                attempt += 1
                logger.info(
                    "retrying stage %s (attempt %d of %d): %s",
                    stage.name,
                    attempt,
                    stage.max_attempts,
                    failure,
                )
                await self._dispatch(
                    group, stage, stage_index, request_id, context_getter, attempt=attempt
                )

    async def _await_reply(
        self, stage: WorkflowStage, result_subject: str, attempt: int, deadline: float
    ) -> Mapping[str, object]:
        """Await the reply to ``attempt``, dropping late replies to earlier attempts.

        A reply without an integer ``attempt`` field is taken as current.
        """

        expires_at = time.monotonic() + deadline
        remaining = deadline
        while True:
            payload = await run_with_timeout(
                self._bus.await_result(result_subject, remaining), remaining
            )
            echoed = payload.get("attempt") if isinstance(payload, Mapping) else None
            if not isinstance(echoed, int) or isinstance(echoed, bool) or echoed == attempt:
                return payload
            logger.info(
                "dropping reply to attempt %d of stage %s while awaiting attempt %d",
                echoed,
                stage.name,
                attempt,
            )
            remaining = expires_at - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"no reply to attempt {attempt} within {deadline:g} seconds")

    async def _dispatch(
        self,
        group: StageGroup,
        stage: WorkflowStage,
        stage_index: int,
        request_id: str,
        context_getter: ContextGetter,
        *,
        attempt: int,
    ) -> None:
        subject = stage.render_topic(request_id)
        message = {
            "eventType": STAGE_STARTED_EVENT,
            "schemaVersion": DISPATCH_SCHEMA_VERSION,
            "requestId": request_id,
            "group": group.name,
            "stage": stage.name,
            "stageIndex": stage_index,
            "agent": stage.agent,
            "attempt": attempt,
            "subject": subject,
            "resultSubject": stage.render_result_topic(request_id, suffix=self._suffix),
            "context": as_json_object(context_getter(stage_index), "context"),
            "timeoutSeconds": stage.timeout,
            "timestamp": datetime.now(tz=UTC).isoformat().replace("+00:00", "Z"),
        }
        payload = encode_message(message)
        try:
            await self._bus.publish(subject, payload)
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(f"publish to {subject!r} failed: {exc}", subject=subject) from exc
        logger.debug("dispatched %s to %s (attempt %d)", stage.name, subject, attempt)


__all__ = ["Clock", "ContextGetter", "ParallelGroupExecutor", "empty_context"]
