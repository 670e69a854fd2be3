"""Domain-level dataclasses for workspace builds."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping


class BuildStatus(enum.Enum):
    pending = "pending"
    waiting = "waiting"
    skipped = "skipped"
    running = "running"
    failed_upstream = "failed-upstream"
    failed = "failed"
    succeeded = "succeeded"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({BuildStatus.skipped, BuildStatus.failed_upstream, BuildStatus.failed, BuildStatus.succeeded})


@dataclass(frozen=True)
class Package:
    name: str
    path: Path
    manifest_path: Path
    manifest_name: str
    version: str
    deps: frozenset[str] = frozenset()
    files: frozenset[str] = frozenset()
    scripts: Mapping[str, str] = field(default_factory=dict)
    private: bool = False

    def has_script(self, script: str) -> bool:
        return bool(self.scripts.get(script))


@dataclass(frozen=True)
class PackageFingerprints:
    source: str
    build: str
    manifest: str


@dataclass
class RunResult:
    """Aggregate outcome of one orchestration run."""

    order: list[str] = field(default_factory=list)
    succeeded: set[str] = field(default_factory=set)
    skipped: set[str] = field(default_factory=set)
    failed: set[str] = field(default_factory=set)
    upstream_failed: set[str] = field(default_factory=set)
    errors: dict[str, BaseException] = field(default_factory=dict)
    statuses: dict[str, BuildStatus] = field(default_factory=dict)
    fingerprints: dict[str, PackageFingerprints] = field(default_factory=dict)
    cache_hits: dict[str, bool] = field(default_factory=dict)
    executed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


__all__ = ["BuildStatus", "Package", "PackageFingerprints", "RunResult"]
