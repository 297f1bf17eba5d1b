"""Unit tests for lifecycle event envelopes."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from agent_pipeline.domain.events import PipelineEvent, PipelineEventType, as_json_object
from agent_pipeline.domain.models import StageAction


def test_event_serializes_deterministically_in_utc() -> None:
    event = PipelineEvent(
        event_type="group.skipped",
        request_id="REQ-1",
        payload={"group": "Conditional Testing", "flags": ("needs_todd",)},
        event_id="evt-fixed",
        timestamp=datetime(2026, 1, 2, 5, 0, tzinfo=timezone(timedelta(hours=2))),
    )

    assert event.event_type is PipelineEventType.GROUP_SKIPPED
    decoded = json.loads(event.to_json())
    assert decoded == {
        "event_id": "evt-fixed",
        "event_type": "group.skipped",
        "timestamp": "2026-01-02T03:00:00Z",
        "request_id": "REQ-1",
        "payload": {"group": "Conditional Testing", "flags": ["needs_todd"]},
    }


def test_event_ids_are_unique_and_prefixed() -> None:
    first = PipelineEvent(PipelineEventType.WORKFLOW_STARTED, "REQ-1", {})
    second = PipelineEvent(PipelineEventType.WORKFLOW_STARTED, "REQ-1", {})

    assert first.event_id.startswith("evt-")
    assert first.event_id != second.event_id


def test_event_rejects_naive_timestamps() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        PipelineEvent(PipelineEventType.WORKFLOW_STARTED, None, {}, timestamp=datetime(2026, 1, 1))


def test_as_json_object_normalizes_enums_and_sets() -> None:
    payload = as_json_object(
        {"action": StageAction.BLOCK, "agents": {"roy", "jen"}, "nested": {"n": 1.5}}, "payload"
    )

    assert payload == {"action": "block", "agents": ["jen", "roy"], "nested": {"n": 1.5}}
    assert type(payload["action"]) is str


@pytest.mark.parametrize("value", [float("inf"), object(), b"raw"])
def test_as_json_object_rejects_unserializable_values(value: object) -> None:
    with pytest.raises(ValueError, match="payload.bad"):
        as_json_object({"bad": value}, "payload")
