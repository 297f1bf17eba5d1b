"""JSON-lines run logs for the ``agent_pipeline`` logger hierarchy.

One run writes ``<log_dir>/<request_id>/pipeline.jsonl``. Emitting code only
puts records on a bounded queue, so logging from the event loop never waits on
disk; a ``QueueListener`` thread formats and writes them. Records that do not
fit on the queue are counted and dropped.

Every line carries ``timestamp``, ``level``, ``logger``, ``message`` and
``request_id``, plus whatever :func:`correlation_scope` has bound (``group``,
``stage``, ``agent``, ...) on the emitting task. Non-standard ``extra=`` values
are nested under ``fields``.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import queue
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path, PurePath
from typing import Final

from agent_pipeline.constants import DEFAULT_LOG_DIR, DEFAULT_LOGGER_NAME

LOG_FILENAME: Final[str] = "pipeline.jsonl"
DEFAULT_QUEUE_SIZE: Final[int] = 4096

_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "asctime", "taskName", "correlation"}

_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "agent_pipeline_correlation", default={}
)

_active_lock = threading.Lock()
_active: RunLogHandle | None = None


def parse_log_level(value: int | str) -> int:
    """Numeric level for ``value``; names are case-insensitive."""

    if isinstance(value, bool) or not isinstance(value, int | str):
        raise ValueError(f"level must be int or str, got {type(value).__name__}")
    if isinstance(value, int):
        return value
    level = logging.getLevelNamesMapping().get(value.strip().upper())
    if level is None:
        raise ValueError(f"unsupported logging level {value!r}")
    return level


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Where and how one run is logged."""

    request_id: str
    base_log_dir: Path | str = Path(DEFAULT_LOG_DIR)
    logger_name: str = DEFAULT_LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = DEFAULT_QUEUE_SIZE
    log_filename: str = LOG_FILENAME
    log_to_stdout: bool = False

    def __post_init__(self) -> None:
        for label in ("request_id", "logger_name", "log_filename"):
            value = getattr(self, label)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{label} must be a non-empty string")
            object.__setattr__(self, label, value.strip())
        if Path(self.log_filename).name != self.log_filename:
            raise ValueError("log_filename must not include path separators")
        if isinstance(self.queue_size, bool) or not isinstance(self.queue_size, int):
            raise ValueError("queue_size must be an integer")
        if self.queue_size <= 0:
            raise ValueError("queue_size must be > 0")
        object.__setattr__(self, "level", parse_log_level(self.level))

    @classmethod
    def from_observability(
        cls,
        section: Mapping[str, object] | None,
        *,
        request_id: str,
        log_dir: Path | str | None = None,
        logger_name: str = DEFAULT_LOGGER_NAME,
    ) -> LoggingConfig:
        """Build from an ``[observability]`` config section; ``log_dir`` wins over it."""

        section = section or {}
        base = log_dir if log_dir is not None else section.get("log_dir", DEFAULT_LOG_DIR)
        level = section.get("log_level", "INFO")
        return cls(
            request_id=request_id,
            base_log_dir=base if isinstance(base, Path | str) else Path(DEFAULT_LOG_DIR),
            logger_name=logger_name,
            level=level if isinstance(level, int | str) else "INFO",
            log_to_stdout=bool(section.get("log_to_stdout", False)),
        )

    @property
    def log_path(self) -> Path:
        return Path(self.base_log_dir) / self.request_id / self.log_filename


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Snapshots the caller's correlation fields; drops records when the queue is full."""

    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        record.correlation = dict(_correlation.get())
        return super().prepare(record)

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            # Called under the handler lock.
            self.dropped += 1


class JsonLinesFormatter(logging.Formatter):
    def __init__(self, request_id: str) -> None:
        super().__init__()
        self._request_id = request_id

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": self._request_id,
        }
        line.update(getattr(record, "correlation", {}))
        fields = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }
        if fields:
            line["fields"] = fields
        if record.exc_info:
            line["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            line["stack"] = record.stack_info
        return json.dumps(line, sort_keys=True, separators=(",", ":"), default=_json_default)


def _json_default(value: object) -> object:
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, set | frozenset):
        return sorted(value, key=repr)
    if isinstance(value, PurePath):
        return value.as_posix()
    return repr(value)


class RunLogHandle:
    """The live logging setup of one run; :meth:`shutdown` is idempotent."""

    def __init__(
        self,
        config: LoggingConfig,
        logger: logging.Logger,
        queue_handler: _DroppingQueueHandler,
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.config = config
        self.logger = logger
        self._queue_handler = queue_handler
        self._listener = listener
        self._lock = threading.Lock()
        self._closed = False

    @property
    def request_id(self) -> str:
        return self.config.request_id

    @property
    def log_path(self) -> Path:
        return self.config.log_path

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        """Drain queued records to the sinks, then detach and close them."""

        with self._lock:
            if self._closed:
                return
            self.logger.removeHandler(self._queue_handler)
            # The listener's stop sentinel needs a free slot.
            log_queue = self._queue_handler.queue
            deadline = time.monotonic() + max(timeout_seconds, 0.0)
            while log_queue.full() and time.monotonic() < deadline:
                time.sleep(0.01)
            self._listener.stop()
            self.logger.propagate = True
            self._queue_handler.close()
            for sink in self._listener.handlers:
                sink.close()
            self._closed = True


def setup_structured_logging(config: LoggingConfig) -> RunLogHandle:
    """Route ``config.logger_name`` to the run's JSON-lines file, replacing any earlier run."""

    global _active
    shutdown_logging()

    config.log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = JsonLinesFormatter(config.request_id)
    sinks: list[logging.Handler] = [logging.FileHandler(config.log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setFormatter(formatter)
        sink.setLevel(config.level)

    logger = logging.getLogger(config.logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(config.level)
    logger.propagate = False

    log_queue: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _DroppingQueueHandler(log_queue)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)

    handle = RunLogHandle(config, logger, queue_handler, listener)
    with _active_lock:
        _active = handle
    return handle


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    request_id: str,
    log_dir: Path | str | None = None,
    logger_name: str = DEFAULT_LOGGER_NAME,
) -> RunLogHandle:
    return setup_structured_logging(
        LoggingConfig.from_observability(
            observability_config,
            request_id=request_id,
            log_dir=log_dir,
            logger_name=logger_name,
        )
    )


def shutdown_logging(handle: RunLogHandle | None = None, *, timeout_seconds: float = 2.0) -> None:
    """Shut ``handle`` down, or the active run's handle when none is given."""

    global _active
    with _active_lock:
        target = handle if handle is not None else _active
        if target is _active:
            _active = None
    if target is not None:
        target.shutdown(timeout_seconds=timeout_seconds)


def get_active_logging_handle() -> RunLogHandle | None:
    with _active_lock:
        return _active


def get_correlation_context() -> dict[str, str]:
    return dict(_correlation.get())


@contextmanager
def correlation_scope(**fields: object) -> Iterator[None]:
    """Bind correlation fields for every record logged inside the scope.

    ``None`` unbinds a field set by an outer scope; other values are stringified.
    """

    bound = dict(_correlation.get())
    for key, value in fields.items():
        if value is None:
            bound.pop(key, None)
            continue
        text = str(value).strip()
        if not text:
            raise ValueError(f"correlation field {key!r} must not be empty")
        bound[key] = text
    token = _correlation.set(bound)
    try:
        yield
    finally:
        _correlation.reset(token)


atexit.register(shutdown_logging)


__all__ = [
    "DEFAULT_QUEUE_SIZE",
    "JsonLinesFormatter",
    "LOG_FILENAME",
    "LoggingConfig",
    "RunLogHandle",
    "correlation_scope",
    "get_active_logging_handle",
    "get_correlation_context",
    "parse_log_level",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
