"""Unit tests for the rich-backed CLI renderer."""

from __future__ import annotations

import io

from rich.console import Console

from agent_pipeline.ui.render import CLIRenderer


def _renderer(
    *, terminal: bool, no_color: bool = False, width: int = 80
) -> tuple[CLIRenderer, io.StringIO]:
    buffer = io.StringIO()
    console = Console(
        file=buffer,
        force_terminal=terminal,
        color_system="standard" if terminal else None,
        no_color=no_color,
        width=width,
        markup=False,
        emoji=False,
        highlight=False,
        soft_wrap=True,
    )
    return CLIRenderer(console=console), buffer


def test_status_markers_are_plain_text_off_a_terminal() -> None:
    renderer, buffer = _renderer(terminal=False)

    renderer.ok("Research (0.010s)")
    renderer.fail("Implementation (0.020s)")
    renderer.skip("Conditional Testing")
    renderer.warning("stage durations missing")

    assert buffer.getvalue().splitlines() == [
        "  OK  Research (0.010s)",
        "  FAIL  Implementation (0.020s)",
        "  SKIP  Conditional Testing",
        "  Warning: stage durations missing",
    ]
    assert "\x1b" not in buffer.getvalue()


def test_status_markers_are_styled_on_a_terminal() -> None:
    renderer, buffer = _renderer(terminal=True)

    renderer.fail("Implementation")

    raw = buffer.getvalue()
    assert "\x1b[" in raw
    assert "FAIL" in raw
    assert "Implementation" in raw


def test_no_color_drops_colors_on_a_terminal() -> None:
    renderer, buffer = _renderer(terminal=True, no_color=True)

    renderer.ok("Research")

    raw = buffer.getvalue()
    assert "32m" not in raw
    assert ";32" not in raw
    assert "OK" in raw


def test_bracketed_stage_text_prints_verbatim() -> None:
    renderer, buffer = _renderer(terminal=False, width=20)

    renderer.text("  [2] Backend Implementation -> roy on features.backend.{requestId}")

    assert buffer.getvalue() == (
        "  [2] Backend Implementation -> roy on features.backend.{requestId}\n"
    )


def test_narrow_table_keeps_mode_cells_on_one_line() -> None:
    renderer, buffer = _renderer(terminal=False, width=90)

    renderer.table(
        ["ID", "Group", "Mode", "After", "Stages"],
        [
            ["2", "Implementation", "parallel", "1", "Backend Implementation, Frontend"],
            ["4", "Conditional Testing", "parallel (conditional)", "3", "Performance, Security"],
        ],
        title="Groups:",
    )

    out = buffer.getvalue()
    assert "Groups:" in out
    assert "parallel (conditional)" in out
    assert "Conditional Testing" in out


def test_empty_table_prints_nothing() -> None:
    renderer, buffer = _renderer(terminal=False)

    renderer.table(["ID"], [], title="Groups:")

    assert buffer.getvalue() == ""
