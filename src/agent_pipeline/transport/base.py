"""
agent-pipeline — message bus contract

File: src/agent_pipeline/transport/base.py

Purpose
- Define the committed interface between the orchestrator and its message bus:
  ``publish`` dispatches a stage, ``await_result`` blocks until the worker's
  reply arrives on a subject.

Contract
- ``publish`` raises ``TransportError`` when the bus is unreachable or rejects
  the message. It does not wait for worker acknowledgement.
- ``await_result`` returns the decoded reply object, raises ``TimeoutError``
  when ``timeout_seconds`` expires and ``TransportError`` on transport failure.
- Messages are UTF-8 JSON objects on the wire.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Protocol, runtime_checkable


@runtime_checkable
class MessageBus(Protocol):
    """Transport used to dispatch stages and collect their results."""

    async def publish(self, subject: str, payload: bytes) -> None: ...

    async def await_result(self, subject: str, timeout_seconds: float) -> Mapping[str, object]: ...


def encode_message(message: Mapping[str, object]) -> bytes:
    """Serialize a message object to the wire format."""

    if not isinstance(message, Mapping):
        raise ValueError(f"message must be an object, got {type(message).__name__}")
    return json.dumps(dict(message), sort_keys=True, separators=(",", ":")).encode("utf-8")


def decode_message(raw: bytes | str | Mapping[str, object]) -> dict[str, object]:
    """Parse a wire message into a plain ``dict``; raise ``ValueError`` when unreadable."""

    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValueError(f"message is not valid UTF-8: {exc}") from exc
    if not isinstance(raw, str):
        raise ValueError(f"unsupported message type {type(raw).__name__}")
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"message is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("message JSON root must be an object")
    return parsed


__all__ = ["MessageBus", "decode_message", "encode_message"]
