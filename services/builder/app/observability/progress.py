"""Live build progress drawn on a :class:`Screen`."""
from __future__ import annotations

from rich.text import Text

from ..domain.limiter import ConcurrencyLimiter
from ..domain.scheduler import BuildPlan, BuildScheduler
from ..domain.types import BuildStatus
from .screen import Screen

_STYLES = {
    BuildStatus.succeeded: "grey50",
    BuildStatus.skipped: "grey50",
    BuildStatus.failed: "bright_red",
    BuildStatus.failed_upstream: "red",
    BuildStatus.running: "cyan",
}

_GAP = "  "


class BuildProgress:
    """Status line plus a grid of package names colored by build status."""

    def __init__(self, screen: Screen, scheduler: BuildScheduler, plan: BuildPlan, width: int | None = None) -> None:
        self._screen = screen
        self._scheduler = scheduler
        self._statuses: dict[str, BuildStatus] = {}
        self._packages = [
            name
            for name in plan.order
            if name not in plan.skippable or (scheduler.revalidate and name in plan.relevant_changes)
        ]
        self._total = max(1, len(self._packages))
        self._width = width
        self._unsubscribe: list = []

        separator = screen.create_line()
        separator.content = "=" * (width or screen.console.width or 40)
        self._status_line = screen.create_line()
        self._grid_line = screen.create_line()

        self._unsubscribe.append(scheduler.limiter.subscribe(self._on_done))
        self._unsubscribe.append(scheduler.subscribe(self._on_status))
        self._render_status(scheduler.limiter)
        self._render_grid()

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()

    def _on_done(self, limiter: ConcurrencyLimiter) -> None:
        self._render_status(limiter)

    def _on_status(self, name: str, status: BuildStatus) -> None:
        self._statuses[name] = status
        self._render_grid()

    def status_text(self, limiter: ConcurrencyLimiter) -> str:
        current = max(0, limiter.executed - limiter.running)
        concurrency = "unbounded" if limiter.max_concurrency == float("inf") else int(limiter.max_concurrency)
        return f"{current / self._total * 100:.2f}% ({current} / {self._total})  concurrency: {concurrency}"

    def _render_status(self, limiter: ConcurrencyLimiter) -> None:
        self._status_line.content = self.status_text(limiter)

    def _render_grid(self) -> None:
        if not self._packages:
            self._grid_line.content = ""
            return
        cell = max(len(name) for name in self._packages)
        width = self._width or self._screen.console.width or 100
        columns = max(1, width // (cell + len(_GAP)))
        grid = Text()
        for index, name in enumerate(self._packages):
            if index and index % columns == 0:
                grid.append("\n")
            elif index:
                grid.append(_GAP)
            grid.append(name.ljust(cell), style=_STYLES.get(self._statuses.get(name, BuildStatus.pending), ""))
        self._grid_line.content = grid


__all__ = ["BuildProgress"]
