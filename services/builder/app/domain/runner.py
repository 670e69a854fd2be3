"""Shell command execution for package scripts."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

import structlog

from .errors import BuildCommandError

logger = structlog.get_logger(__name__)


@dataclass
class CommandResult:
    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


CommandRunner = Callable[[str, Path], Awaitable[CommandResult]]


async def run_command(command: str, cwd: Path) -> CommandResult:
    """Run ``command`` through the shell in ``cwd`` and capture its output."""
    start = time.perf_counter()
    proc = await asyncio.create_subprocess_shell(
        command,
        cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    duration_ms = int((time.perf_counter() - start) * 1000)
    result = CommandResult(
        command=command,
        exit_code=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
        duration_ms=duration_ms,
    )
    logger.debug("runner.command_finished", command=command, cwd=str(cwd), exit_code=result.exit_code, duration_ms=duration_ms)
    return result


def check_result(result: CommandResult) -> CommandResult:
    if not result.ok:
        raise BuildCommandError(result.command, result.exit_code, stdout=result.stdout, stderr=result.stderr)
    return result


__all__ = ["CommandResult", "CommandRunner", "check_result", "run_command"]
