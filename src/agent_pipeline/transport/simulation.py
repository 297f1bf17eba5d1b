"""Simulated workers that answer dispatch messages on an in-memory bus."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field

from agent_pipeline.domain.models import StageStatus


@dataclass(slots=True)
class SimulatedWorkers:
    """Responder answering each dispatch after a per-agent delay.

    ``flags`` are merged into every reply, ``replies`` overrides fields for a
    single agent, ``failing_agents`` reply ``FAILED`` and ``silent_agents``
    never reply at all.
    """

    default_delay: float = 0.0
    delays: Mapping[str, float] = field(default_factory=dict)
    flags: Mapping[str, object] = field(default_factory=dict)
    replies: Mapping[str, Mapping[str, object]] = field(default_factory=dict)
    failing_agents: frozenset[str] = frozenset()
    silent_agents: frozenset[str] = frozenset()
    calls: list[tuple[str, str, int]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.default_delay < 0:
            raise ValueError("default_delay must be >= 0")
        for agent, delay in self.delays.items():
            if delay < 0:
                raise ValueError(f"delay for {agent!r} must be >= 0")
        self.failing_agents = frozenset(self.failing_agents)
        self.silent_agents = frozenset(self.silent_agents)

    async def __call__(self, subject: str, message: dict[str, object]) -> dict[str, object] | None:
        agent = str(message.get("agent", ""))
        attempt = message.get("attempt", 1)
        self.calls.append((agent, subject, attempt if isinstance(attempt, int) else 1))
        if agent in self.silent_agents:
            return None

        delay = self.delays.get(agent, self.default_delay)
        if delay > 0:
            await asyncio.sleep(delay)

        status = StageStatus.FAILED if agent in self.failing_agents else StageStatus.COMPLETE
        reply: dict[str, object] = {
            "status": status.value,
            "summary": f"{agent} finished {message.get('stage', subject)}",
            "duration_seconds": delay,
        }
        if isinstance(attempt, int):
            reply["attempt"] = attempt
        reply.update(self.flags)
        reply.update(self.replies.get(agent, {}))
        return reply

    def calls_for(self, agent: str) -> int:
        return sum(1 for called_agent, _, _ in self.calls if called_agent == agent)


__all__ = ["SimulatedWorkers"]
