"""Error taxonomy for workspace builds."""
from __future__ import annotations

from typing import Iterable


class BuilderError(Exception):
    """Base class for every error raised by the builder."""


class ConfigurationError(BuilderError):
    """Workspace is misconfigured; the run is aborted before any build starts."""


class CyclicDependencyError(ConfigurationError):
    def __init__(self, remaining: Iterable[str]) -> None:
        self.remaining = sorted(remaining)
        super().__init__(f"Dependency cycle detected among packages: {', '.join(self.remaining)}")


class BuildCommandError(BuilderError):
    """A package's build command exited with a non-zero code."""

    def __init__(self, command: str, exit_code: int, stdout: str = "", stderr: str = "") -> None:
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        detail = stderr.strip() or stdout.strip()
        message = f"`{command}` exited with code {exit_code}"
        super().__init__(f"{message}\n{detail}" if detail else message)


class UpstreamFailureError(BuilderError):
    """Raised in place of a build when a dependency failed."""

    def __init__(self, failed_dependencies: Iterable[str]) -> None:
        self.failed_dependencies = sorted(failed_dependencies)
        super().__init__(f"failed due to failures of upstream {', '.join(self.failed_dependencies)}")


__all__ = [
    "BuildCommandError",
    "BuilderError",
    "ConfigurationError",
    "CyclicDependencyError",
    "UpstreamFailureError",
]
