"""Per-package fingerprint records persisted as JSON files."""
from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import structlog
from pydantic import BaseModel, ValidationError

from ..domain.types import PackageFingerprints

logger = structlog.get_logger(__name__)


class CacheEntry(BaseModel):
    source_fingerprint: str
    build_fingerprint: str
    manifest_fingerprint: str

    @classmethod
    def from_fingerprints(cls, fingerprints: PackageFingerprints) -> "CacheEntry":
        return cls(
            source_fingerprint=fingerprints.source,
            build_fingerprint=fingerprints.build,
            manifest_fingerprint=fingerprints.manifest,
        )


@dataclass(frozen=True)
class CacheLoaded:
    entry: CacheEntry


@dataclass(frozen=True)
class CacheAbsent:
    pass


@dataclass(frozen=True)
class CacheCorrupt:
    path: Path
    reason: str


CacheLoad = Union[CacheLoaded, CacheAbsent, CacheCorrupt]


def is_cache_hit(stored: CacheEntry | None, fresh: PackageFingerprints | None, include_manifest: bool) -> bool:
    if stored is None or fresh is None:
        return False
    return (
        stored.source_fingerprint == fresh.source
        and stored.build_fingerprint == fresh.build
        and (not include_manifest or stored.manifest_fingerprint == fresh.manifest)
    )


class CacheStore:
    """Stores one JSON record per package under ``cache_dir``."""

    def __init__(self, cache_dir: Path) -> None:
        self.cache_dir = cache_dir

    def path_for(self, package_name: str) -> Path:
        return self.cache_dir / f"{package_name}.json"

    def load(self, package_name: str) -> CacheLoad:
        path = self.path_for(package_name)
        try:
            payload = path.read_bytes()
        except FileNotFoundError:
            return CacheAbsent()
        try:
            return CacheLoaded(CacheEntry.model_validate_json(payload))
        except ValidationError as exc:
            return CacheCorrupt(path=path, reason=str(exc))

    def read(self, package_name: str) -> CacheEntry | None:
        loaded = self.load(package_name)
        if isinstance(loaded, CacheCorrupt):
            logger.warning("cache.corrupt_record", package=package_name, path=str(loaded.path), reason=loaded.reason)
            return None
        if isinstance(loaded, CacheLoaded):
            return loaded.entry
        return None

    def write(self, package_name: str, entry: CacheEntry) -> Path:
        """Atomically replace the package's record."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(package_name)
        payload = json.dumps(entry.model_dump(), indent=2, sort_keys=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{package_name}.", suffix=".tmp", dir=self.cache_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return path

    def invalidate(self, package_name: str) -> None:
        self.path_for(package_name).unlink(missing_ok=True)


__all__ = [
    "CacheAbsent",
    "CacheCorrupt",
    "CacheEntry",
    "CacheLoad",
    "CacheLoaded",
    "CacheStore",
    "is_cache_hit",
]
