"""Glob matching for the build-relevant surface of a package."""
from __future__ import annotations

from pathlib import PurePosixPath
from typing import Callable, Iterable

from pathspec import PathSpec

from .errors import ConfigurationError
from .hasher import Inclusion

# Never part of a package's build surface, whatever its ``files`` list says.
ALWAYS_IGNORED_GLOBS: tuple[str, ...] = (
    ".git",
    "CVS",
    ".svn",
    ".hg",
    ".lock-wscript",
    ".wafpickle-N",
    ".*.swp",
    ".DS_Store",
    "._*",
    "npm-debug.log",
    ".npmrc",
    "node_modules",
    "config.gypi",
    "*.orig",
)

MATCH_EVERYTHING = "*"


def compile_globs(patterns: Iterable[str]) -> PathSpec:
    lines = list(patterns)
    try:
        return PathSpec.from_lines("gitwildmatch", lines)
    except ValueError as exc:
        raise ConfigurationError(f"invalid glob in {lines!r}: {exc}") from exc


def create_files_matcher(
    files: Iterable[str],
    ignored: Iterable[str] = ALWAYS_IGNORED_GLOBS,
) -> Callable[[PurePosixPath, bool], Inclusion]:
    """Build a predicate over package-relative paths.

    Ignored paths are excluded, allow-listed paths are included along with their
    whole subtree, anything else is descended into (directories) or left out (files).
    An empty allow-list matches everything.
    """
    allow = sorted(set(files)) or [MATCH_EVERYTHING]
    allow_spec = compile_globs(allow)
    ignore_spec = compile_globs(ignored)

    def match(relative: PurePosixPath, is_dir: bool) -> Inclusion:
        candidate = relative.as_posix() + ("/" if is_dir else "")
        if ignore_spec.match_file(candidate):
            return Inclusion.EXCLUDE
        if allow_spec.match_file(candidate):
            return Inclusion.INCLUDE
        return Inclusion.DESCEND

    return match


__all__ = ["ALWAYS_IGNORED_GLOBS", "MATCH_EVERYTHING", "compile_globs", "create_files_matcher"]
