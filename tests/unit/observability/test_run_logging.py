"""Unit tests for queue-backed structured run logging."""

from __future__ import annotations

import json
import logging
import logging.handlers
from datetime import UTC, datetime
from pathlib import PurePosixPath
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from agent_pipeline.observability.logging import (
    LoggingConfig,
    correlation_scope,
    get_active_logging_handle,
    get_correlation_context,
    parse_log_level,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"agent_pipeline.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_records_carry_request_id_and_scoped_correlation(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(request_id="REQ-7", base_log_dir=tmp_path, logger_name=logger_name)
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(group="Implementation", group_id=2):
        with correlation_scope(stage="Backend Implementation", agent="roy"):
            logger.info("dispatched", extra={"attempt_count": 1, "subjects": ("a", "b")})
        logger.warning("group done")

    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "REQ-7" / "pipeline.jsonl"
    first, second = _read_json_lines(handle.log_path)
    assert first["request_id"] == "REQ-7"
    assert first["group_id"] == "2"
    assert first["stage"] == "Backend Implementation"
    assert first["agent"] == "roy"
    assert first["fields"] == {"attempt_count": 1, "subjects": ["a", "b"]}
    assert first["timestamp"].endswith("Z")
    assert second["level"] == "WARNING"
    assert "stage" not in second
    assert second["group"] == "Implementation"


def test_correlation_scope_restores_outer_state() -> None:
    with correlation_scope(request_id="REQ-1", stage="Research"):
        with correlation_scope(stage=None):
            assert get_correlation_context() == {"request_id": "REQ-1"}
        assert get_correlation_context()["stage"] == "Research"
    assert get_correlation_context() == {}


def test_blank_correlation_values_are_rejected() -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        with correlation_scope(stage="  "):
            pass


def test_setup_logging_reads_the_observability_section(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_logging(
        {"log_level": "WARNING", "log_dir": str(tmp_path), "log_to_stdout": False},
        request_id="REQ-wrapper",
        logger_name=logger_name,
    )
    logger = logging.getLogger(logger_name)

    logger.info("filtered out")
    logger.error("kept")
    shutdown_logging()

    lines = _read_json_lines(tmp_path / "REQ-wrapper" / "pipeline.jsonl")
    assert [line["message"] for line in lines] == ["kept"]
    assert handle.is_shutdown
    assert get_active_logging_handle() is None


def test_shutdown_drains_the_queue_and_restores_propagation(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(request_id="REQ-flush", base_log_dir=tmp_path, logger_name=logger_name)
    )
    logger = logging.getLogger(logger_name)
    assert any(isinstance(h, logging.handlers.QueueHandler) for h in logger.handlers)
    assert logger.propagate is False

    for index in range(250):
        logger.info("message %s", index)
    shutdown_logging(handle)

    assert handle.dropped_records == 0
    assert len(_read_json_lines(handle.log_path)) == 250
    assert logger.handlers == []
    assert logger.propagate is True


def test_new_setup_replaces_the_active_handle(tmp_path: Path) -> None:
    first = setup_structured_logging(
        LoggingConfig(request_id="REQ-a", base_log_dir=tmp_path, logger_name=_logger_name())
    )
    second = setup_structured_logging(
        LoggingConfig(request_id="REQ-b", base_log_dir=tmp_path, logger_name=_logger_name())
    )

    assert first.is_shutdown
    assert get_active_logging_handle() is second


@pytest.mark.parametrize(
    ("config", "message"),
    [
        ({"request_id": " "}, "request_id"),
        ({"request_id": "REQ", "log_filename": "a/b.jsonl"}, "path separators"),
        ({"request_id": "REQ", "queue_size": 0}, "queue_size"),
        ({"request_id": "REQ", "level": "LOUD"}, "unsupported logging level"),
    ],
)
def test_invalid_logging_config(tmp_path: Path, config: dict[str, object], message: str) -> None:
    with pytest.raises(ValueError, match=message):
        setup_structured_logging(
            LoggingConfig(base_log_dir=tmp_path, **config)  # type: ignore[arg-type]
        )


def test_parse_log_level() -> None:
    assert parse_log_level(" debug ") == logging.DEBUG
    assert parse_log_level(logging.ERROR) == logging.ERROR
    with pytest.raises(ValueError):
        parse_log_level(True)


def test_config_from_observability_section_prefers_an_explicit_log_dir(tmp_path: Path) -> None:
    config = LoggingConfig.from_observability(
        {"log_level": "debug", "log_dir": "ignored", "log_to_stdout": True},
        request_id=" REQ-9 ",
        log_dir=tmp_path,
    )

    assert config.request_id == "REQ-9"
    assert config.level == logging.DEBUG
    assert config.log_to_stdout is True
    assert config.log_path == tmp_path / "REQ-9" / "pipeline.jsonl"


def test_extra_values_without_a_json_form_are_still_written(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(request_id="REQ-extra", base_log_dir=tmp_path, logger_name=logger_name)
    )

    logging.getLogger(logger_name).info(
        "built",
        extra={
            "agents": {"jen", "roy"},
            "artifact": PurePosixPath("out/report.md"),
            "finished": datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
            "_private": "hidden",
        },
    )
    shutdown_logging(handle)

    (line,) = _read_json_lines(handle.log_path)
    assert line["fields"] == {
        "agents": ["jen", "roy"],
        "artifact": "out/report.md",
        "finished": "2026-01-02T03:04:05Z",
    }
