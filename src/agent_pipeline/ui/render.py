"""Terminal output for the agent-pipeline CLI, built on rich.

File: src/agent_pipeline/ui/render.py

Purpose
- Print plan tables, run summaries and status markers through one rich Console.
- Keep output plain when stdout is not a terminal, NO_COLOR is set or --no-color is passed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from collections.abc import Sequence

STATUS_STYLES: Final[dict[str, str]] = {
    "OK": "bold green",
    "FAIL": "bold red",
    "SKIP": "yellow",
    "Warning": "yellow",
}


def build_console(*, no_color: bool = False) -> Console:
    """Console that never wraps or interprets markup in pipeline text.

    Stage names such as ``[2] Backend Implementation`` must print verbatim, so
    markup, emoji and highlighting are all off.
    """

    return Console(
        no_color=no_color,
        markup=False,
        emoji=False,
        highlight=False,
        soft_wrap=True,
    )


class CLIRenderer:
    """Writes CLI output through a rich Console."""

    def __init__(
        self,
        *,
        verbose: bool = False,
        no_color: bool = False,
        console: Console | None = None,
    ) -> None:
        self.verbose = verbose
        self.console = console if console is not None else build_console(no_color=no_color)

    def heading(self, text: str) -> None:
        self.console.print(Text(text, style="bold"))

    def text(self, line: str) -> None:
        self.console.print(line)

    def kv(self, key: str, value: object) -> None:
        self.console.print(f"{key}: {value}")

    def section(self, title: str) -> None:
        self.console.print()
        self.console.print(Text(title, style="bold"))

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self.console.print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print rows as a borderless table.

        Only the last column may wrap on a narrow terminal; every other column
        keeps its cells on one line.
        """

        if not rows:
            return
        if title:
            self.section(title)
        grid = Table(box=box.SIMPLE_HEAD, show_edge=False, pad_edge=False, padding=(0, 2, 0, 0))
        last = len(headers) - 1
        for position, header in enumerate(headers):
            grid.add_column(header, no_wrap=position != last)
        for row in rows:
            cells = [str(cell) for cell in row[: len(headers)]]
            cells.extend("" for _ in range(len(headers) - len(cells)))
            grid.add_row(*cells)
        self.console.print(grid)

    def status(self, marker: str, label: str) -> None:
        """Print ``  MARKER  label`` with the marker styled by its meaning."""

        line = Text("  ")
        line.append(marker, style=STATUS_STYLES.get(marker, ""))
        line.append(f"  {label}")
        self.console.print(line)

    def ok(self, label: str) -> None:
        self.status("OK", label)

    def fail(self, label: str) -> None:
        self.status("FAIL", label)

    def skip(self, label: str) -> None:
        self.status("SKIP", label)

    def warning(self, text: str) -> None:
        line = Text("  ")
        line.append("Warning", style=STATUS_STYLES["Warning"])
        line.append(f": {text}")
        self.console.print(line)


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(verbose=verbose, no_color=no_color)


__all__ = ["STATUS_STYLES", "CLIRenderer", "build_console", "create_renderer"]
