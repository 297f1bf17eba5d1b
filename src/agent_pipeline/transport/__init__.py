"""Message bus contract plus the in-memory reference bus."""

from __future__ import annotations

from agent_pipeline.transport.base import MessageBus, decode_message, encode_message
from agent_pipeline.transport.memory import InMemoryMessageBus, PublishedMessage
from agent_pipeline.transport.simulation import SimulatedWorkers

__all__ = [
    "InMemoryMessageBus",
    "MessageBus",
    "PublishedMessage",
    "SimulatedWorkers",
    "decode_message",
    "encode_message",
]
