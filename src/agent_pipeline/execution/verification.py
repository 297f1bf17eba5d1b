"""Build verification of implementation stage outputs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, TypeAlias

from agent_pipeline.domain.models import BuildFailure, BuildVerificationResult
from agent_pipeline.utils.concurrency import maybe_await

if TYPE_CHECKING:
    from agent_pipeline.domain.models import DependencyGraph

logger = logging.getLogger(__name__)

VerifyOutcome: TypeAlias = Mapping[str, object] | object
VerifyCallback: TypeAlias = Callable[[str], Awaitable[VerifyOutcome] | VerifyOutcome]


class BuildVerifier:
    """Run a caller-supplied build check once per implementation agent.

    ``build_agents`` maps the stage index of every build-producing stage to the
    agent that produced it. Only agents whose stage index is present in the
    results handed to :meth:`verify` are checked; absent stages are skipped,
    not failed.
    """

    __slots__ = ("_build_agents",)

    def __init__(self, build_agents: Mapping[int, str]) -> None:
        for index, agent in build_agents.items():
            if not isinstance(agent, str) or not agent.strip():
                raise ValueError(f"build agent for stage {index} must be a non-empty string")
        self._build_agents = dict(sorted(build_agents.items()))

    @classmethod
    def from_graph(cls, graph: DependencyGraph) -> BuildVerifier:
        """Verify every stage of the graph's build-verified groups."""

        build_agents: dict[int, str] = {}
        for group in graph.ordered_groups():
            if group.verify_builds:
                for stage_index, stage in group.members():
                    build_agents[stage_index] = stage.agent
        return cls(build_agents)

    @property
    def build_agents(self) -> dict[int, str]:
        return dict(self._build_agents)

    async def verify(
        self,
        results: Mapping[int, object],
        verify: VerifyCallback,
    ) -> BuildVerificationResult:
        agents: list[str] = []
        for stage_index, agent in self._build_agents.items():
            if stage_index in results and agent not in agents:
                agents.append(agent)
        if not agents:
            return BuildVerificationResult(success=True)

        outcomes = await asyncio.gather(*(_verify_agent(agent, verify) for agent in agents))
        failures = [failure for failure in outcomes if failure is not None]
        for failure in failures:
            logger.error("build verification failed for %s: %s", failure.agent, failure.errors)
        return BuildVerificationResult.from_failures(failures, verified_agents=agents)


async def verify_parallel_builds(
    results: Mapping[int, object],
    verify: VerifyCallback,
    *,
    build_agents: Mapping[int, str],
) -> BuildVerificationResult:
    """Verify the builds of every agent in ``build_agents`` present in ``results``."""

    return await BuildVerifier(build_agents).verify(results, verify)


async def _verify_agent(agent: str, verify: VerifyCallback) -> BuildFailure | None:
    try:
        outcome = await maybe_await(verify(agent))
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        return BuildFailure(agent=agent, errors=f"{type(exc).__name__}: {exc}")

    success, errors = _read_outcome(outcome)
    if success:
        return None
    return BuildFailure(agent=agent, errors=errors or "build verification failed")


def _read_outcome(outcome: object) -> tuple[bool, str]:
    if isinstance(outcome, Mapping):
        raw_success = outcome.get("success")
        raw_errors = outcome.get("errors", "")
    else:
        raw_success = getattr(outcome, "success", None)
        raw_errors = getattr(outcome, "errors", "")
    if not isinstance(raw_success, bool):
        return False, f"verification callback returned no boolean 'success' ({outcome!r})"
    if raw_errors is None:
        raw_errors = ""
    if isinstance(raw_errors, list | tuple):
        raw_errors = "\n".join(str(item) for item in raw_errors)
    return raw_success, str(raw_errors)


__all__ = ["BuildVerifier", "VerifyCallback", "verify_parallel_builds"]
