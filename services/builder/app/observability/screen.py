"""In-place terminal rendering for live progress."""
from __future__ import annotations

from rich.console import Console, Group
from rich.live import Live
from rich.text import Text


class ScreenLine:
    """One block of the live region; assigning ``content`` schedules a redraw."""

    def __init__(self, screen: "Screen") -> None:
        self._screen = screen
        self._content: Text = Text()

    @property
    def content(self) -> Text:
        return self._content

    @content.setter
    def content(self, value: str | Text) -> None:
        self._content = value if isinstance(value, Text) else Text(value)
        self._screen.refresh()


class Screen:
    """Owns the console for the lifetime of a run.

    While it runs, other components never write to stdout directly: they ask
    for a line with :meth:`create_line` and assign its content.
    """

    def __init__(self, console: Console | None = None, render_interval: float = 0.2) -> None:
        self.console = console or Console()
        self._lines: list[ScreenLine] = []
        self._live = Live(
            self._renderable(),
            console=self.console,
            refresh_per_second=max(1.0, 1 / render_interval),
            auto_refresh=True,
            redirect_stdout=False,
            redirect_stderr=False,
        )
        self._started = False

    def _renderable(self) -> Group:
        return Group(*(line.content for line in self._lines))

    def create_line(self) -> ScreenLine:
        line = ScreenLine(self)
        self._lines.append(line)
        self.refresh()
        return line

    def refresh(self) -> None:
        self._live.update(self._renderable(), refresh=False)

    def start(self) -> None:
        if not self._started:
            self._live.start()
            self._started = True

    def destroy(self) -> None:
        if self._started:
            self._live.update(self._renderable(), refresh=True)
            self._live.stop()
            self._started = False

    def __enter__(self) -> "Screen":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.destroy()


__all__ = ["Screen", "ScreenLine"]
