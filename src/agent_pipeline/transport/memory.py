"""In-memory message bus used by tests and the ``simulate`` command."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TypeAlias

from agent_pipeline.domain.errors import TransportError
from agent_pipeline.transport.base import decode_message, encode_message
from agent_pipeline.utils.concurrency import maybe_await

logger = logging.getLogger(__name__)

Reply: TypeAlias = Mapping[str, object] | None
Responder: TypeAlias = Callable[[str, dict[str, object]], Awaitable[Reply] | Reply]


@dataclass(frozen=True, slots=True)
class PublishedMessage:
    """One message accepted by the bus, in publish order."""

    subject: str
    payload: bytes

    def decoded(self) -> dict[str, object]:
        return decode_message(self.payload)


class InMemoryMessageBus:
    """Mailbox-per-subject bus with an optional responder standing in for workers.

    Replies delivered before anyone awaits them are buffered on their subject.
    When a responder is installed, every publish is handed to it and a non-``None``
    reply is delivered to the message's ``resultSubject``.
    """

    def __init__(self, *, responder: Responder | None = None) -> None:
        self._responder = responder
        self._mailboxes: dict[str, asyncio.Queue[dict[str, object]]] = {}
        self._published: list[PublishedMessage] = []
        self._rejected_prefixes: set[str] = set()
        self._responder_tasks: set[asyncio.Task[None]] = set()
        self._responder_errors: list[BaseException] = []
        self._connected = True
        self._disconnected = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def published(self) -> tuple[PublishedMessage, ...]:
        return tuple(self._published)

    @property
    def responder_errors(self) -> tuple[BaseException, ...]:
        return tuple(self._responder_errors)

    def published_to(self, subject: str) -> tuple[dict[str, object], ...]:
        return tuple(item.decoded() for item in self._published if item.subject == subject)

    def connect(self) -> None:
        self._connected = True
        self._disconnected = asyncio.Event()

    def disconnect(self) -> None:
        """Drop the connection; pending and future operations raise ``TransportError``."""

        self._connected = False
        self._disconnected.set()

    def reject(self, subject_prefix: str) -> None:
        """Make publishes to subjects starting with ``subject_prefix`` fail."""

        self._rejected_prefixes.add(subject_prefix)

    async def publish(self, subject: str, payload: bytes) -> None:
        if not isinstance(payload, bytes):
            raise TypeError(f"payload must be bytes, got {type(payload).__name__}")
        if not self._connected:
            raise TransportError(
                f"message bus is disconnected; cannot publish to {subject!r}", subject=subject
            )
        if any(subject.startswith(prefix) for prefix in self._rejected_prefixes):
            raise TransportError(f"publish to {subject!r} was rejected", subject=subject)

        self._published.append(PublishedMessage(subject=subject, payload=payload))
        if self._responder is not None:
            task = asyncio.get_running_loop().create_task(self._respond(subject, payload))
            self._responder_tasks.add(task)
            task.add_done_callback(self._responder_tasks.discard)

    async def await_result(self, subject: str, timeout_seconds: float) -> Mapping[str, object]:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if not self._connected:
            raise TransportError(
                f"message bus is disconnected; cannot await {subject!r}", subject=subject
            )

        mailbox = self._mailbox(subject)
        get_task = asyncio.ensure_future(mailbox.get())
        drop_task = asyncio.ensure_future(self._disconnected.wait())
        try:
            done, _ = await asyncio.wait(
                {get_task, drop_task},
                timeout=timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (get_task, drop_task):
                if not task.done():
                    task.cancel()

        if get_task in done:
            return get_task.result()
        if drop_task in done:
            raise TransportError(
                f"message bus disconnected while awaiting {subject!r}", subject=subject
            )
        raise TimeoutError(f"no result on {subject!r} within {timeout_seconds:g}s")

    def deliver(self, subject: str, message: Mapping[str, object] | bytes) -> None:
        """Place a reply on ``subject`` as a worker would."""

        self._mailbox(subject).put_nowait(decode_message(message))

    async def aclose(self) -> None:
        tasks = tuple(self._responder_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _respond(self, subject: str, payload: bytes) -> None:
        assert self._responder is not None
        message = decode_message(payload)
        try:
            reply = await maybe_await(self._responder(subject, message))
        except Exception as exc:
            logger.exception("responder failed for %s", subject)
            self._responder_errors.append(exc)
            return
        if reply is None:
            return
        result_subject = message.get("resultSubject")
        if not isinstance(result_subject, str) or not result_subject:
            self._responder_errors.append(
                ValueError(f"message on {subject!r} carries no resultSubject")
            )
            return
        self.deliver(result_subject, reply)

    def _mailbox(self, subject: str) -> asyncio.Queue[dict[str, object]]:
        mailbox = self._mailboxes.get(subject)
        if mailbox is None:
            mailbox = asyncio.Queue()
            self._mailboxes[subject] = mailbox
        return mailbox


__all__ = ["InMemoryMessageBus", "PublishedMessage", "Responder"]
