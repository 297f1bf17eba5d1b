"""In-process lifecycle event bus with bounded replay history."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Final

from agent_pipeline.domain.events import PipelineEvent, PipelineEventType

logger = logging.getLogger(__name__)

Subscriber = Callable[[PipelineEvent], object]

_DEFAULT_ERROR_BUFFER: Final[int] = 1024


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting the publisher."""

    event_id: str
    event_type: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: PipelineEventType | None
    callback: Subscriber


class EventBus:
    """Event bus with sync and async subscribers and deterministic replay.

    A failing subscriber never breaks the pipeline: its exception is logged and
    recorded as a :class:`DispatchError`, and the remaining subscribers still run.
    """

    def __init__(self, *, buffer_size: int = 512) -> None:
        if isinstance(buffer_size, bool) or not isinstance(buffer_size, int):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")
        self._buffer = deque[PipelineEvent](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._lock = threading.RLock()

    def subscribe(self, event_type: str | PipelineEventType | None, callback: Subscriber) -> int:
        """Subscribe to one event type, or to every event when ``event_type`` is ``None``."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = None if event_type is None else PipelineEventType(event_type)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(token, normalized, callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    async def publish_async(self, event: PipelineEvent) -> tuple[DispatchError, ...]:
        """Record ``event`` and deliver it to matching subscribers in subscription order."""

        if not isinstance(event, PipelineEvent):
            raise ValueError(f"expected PipelineEvent, got {type(event).__name__}")
        with self._lock:
            self._buffer.append(event)
            subscriptions = tuple(self._subscriptions.values())

        errors: list[DispatchError] = []
        for subscription in subscriptions:
            if subscription.event_type is not None and subscription.event_type != event.event_type:
                continue
            try:
                outcome = subscription.callback(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                target = _callback_name(subscription.callback)
                logger.warning(
                    "event subscriber %s failed on %s: %s", target, event.event_type.value, exc
                )
                errors.append(
                    DispatchError(
                        event_id=event.event_id,
                        event_type=event.event_type.value,
                        target=target,
                        error_type=type(exc).__name__,
                        message=str(exc),
                    )
                )

        if errors:
            with self._lock:
                self._dispatch_errors.extend(errors)
        return tuple(errors)

    async def emit_async(
        self,
        event_type: str | PipelineEventType,
        payload: Mapping[str, object],
        *,
        request_id: str | None = None,
    ) -> PipelineEvent:
        """Build an event from ``payload`` and publish it."""

        event = PipelineEvent(
            event_type=PipelineEventType(event_type),
            request_id=request_id,
            payload=dict(payload),
        )
        await self.publish_async(event)
        return event

    def replay(
        self,
        *,
        event_type: str | PipelineEventType | None = None,
        request_id: str | None = None,
        limit: int | None = None,
    ) -> tuple[PipelineEvent, ...]:
        """Buffered events in publish order, optionally filtered."""

        type_filter = None if event_type is None else PipelineEventType(event_type)
        with self._lock:
            events = tuple(self._buffer)
        filtered = [
            event
            for event in events
            if (type_filter is None or event.event_type == type_filter)
            and (request_id is None or event.request_id == request_id)
        ]
        if limit is not None:
            if limit <= 0:
                return ()
            filtered = filtered[-limit:]
        return tuple(filtered)

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        with self._lock:
            return tuple(self._dispatch_errors)


def _callback_name(callback: object) -> str:
    name = getattr(callback, "__qualname__", None) or getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return type(callback).__name__


__all__ = ["DispatchError", "EventBus", "Subscriber"]
