"""Staleness fingerprints of a package: source tree, build surface and manifest."""
from __future__ import annotations

import asyncio
from pathlib import Path, PurePosixPath
from typing import Sequence

import structlog

from ..persistence.cache_store import CacheEntry, CacheStore
from .globs import create_files_matcher
from .hasher import Inclusion, Predicate, fingerprint_file, fingerprint_tree
from .memo import MemoCache
from .types import Package, PackageFingerprints

logger = structlog.get_logger(__name__)


class Fingerprinter:
    def __init__(self, source_folder_names: Sequence[str] = ("src", "components")) -> None:
        self.source_folder_names = tuple(source_folder_names)
        self._matchers: MemoCache[frozenset[str], Predicate] = MemoCache()

    def source_dir(self, package: Package) -> Path | None:
        for folder in self.source_folder_names:
            candidate = package.path / folder
            if candidate.exists():
                return candidate
        return None

    def build_predicate(self, package: Package) -> Predicate:
        if not package.files:
            logger.debug("fingerprints.no_files_field", package=package.name)
        matcher = self._matchers.get_or_compute(package.files, create_files_matcher)
        manifest = PurePosixPath(package.manifest_path.name)

        def predicate(relative: PurePosixPath, is_dir: bool) -> Inclusion:
            if relative == manifest and not is_dir:
                return Inclusion.EXCLUDE
            return matcher(relative, is_dir)

        return predicate

    async def compute(self, package: Package) -> PackageFingerprints | None:
        """Fingerprint the package off the event loop; ``None`` if it has no source folder."""
        source_dir = self.source_dir(package)
        if source_dir is None:
            return None
        predicate = self.build_predicate(package)
        source, build, manifest = await asyncio.gather(
            asyncio.to_thread(fingerprint_tree, source_dir),
            asyncio.to_thread(fingerprint_tree, package.path, predicate),
            asyncio.to_thread(fingerprint_file, package.manifest_path),
        )
        return PackageFingerprints(source=source.digest, build=build.digest, manifest=manifest)


async def update_package_cache(
    package: Package,
    fingerprinter: Fingerprinter,
    cache_store: CacheStore,
) -> PackageFingerprints | None:
    """Record the package's current fingerprints; ``None`` when it cannot be cached."""
    fingerprints = await fingerprinter.compute(package)
    if fingerprints is None:
        return None
    await asyncio.to_thread(cache_store.write, package.name, CacheEntry.from_fingerprints(fingerprints))
    return fingerprints


__all__ = ["Fingerprinter", "update_package_cache"]
