"""Content fingerprints for files and directory trees."""
from __future__ import annotations

import enum
import hashlib
import json
import os
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Mapping

import structlog

logger = structlog.get_logger(__name__)

_CHUNK_SIZE = 1 << 16


class Inclusion(enum.Enum):
    EXCLUDE = "exclude"
    # Files are hashed; directories are hashed with their whole subtree, unfiltered.
    INCLUDE = "include"
    # Files are left out; directories are recursed into with the same predicate.
    DESCEND = "descend"


Predicate = Callable[[PurePosixPath, bool], Inclusion]


@dataclass
class FolderHash:
    name: str
    digest: str
    children: list["FolderHash"] = field(default_factory=list)


def md5(data: bytes) -> str:
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


def hash_mapping(mapping: Mapping[str, str]) -> str:
    """Digest of the canonical JSON of a name -> digest mapping; insertion order is irrelevant."""
    payload = json.dumps(dict(mapping), sort_keys=True, separators=(",", ":"))
    return md5(payload.encode("utf-8"))


def fingerprint_file(path: Path) -> str:
    hasher = hashlib.md5(usedforsecurity=False)
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def fingerprint_tree(root: Path, predicate: Predicate | None = None) -> FolderHash:
    """Fingerprint ``root`` recursively.

    The predicate receives paths relative to ``root``. Directories left without any
    matching descendant are dropped from their parent's input, so adding or
    emptying an ignored directory never changes the result.
    """
    return _hash_directory(root, PurePosixPath("."), root.name or ".", predicate)


def _hash_directory(
    directory: Path,
    relative: PurePosixPath,
    name: str,
    predicate: Predicate | None,
) -> FolderHash:
    children: list[FolderHash] = []
    with os.scandir(directory) as entries:
        names = sorted(entry.name for entry in entries)
    for child_name in names:
        child = _hash_entry(directory / child_name, relative / child_name, child_name, predicate)
        if child is not None:
            children.append(child)
    return FolderHash(
        name=name,
        digest=hash_mapping({child.name: child.digest for child in children}),
        children=children,
    )


def _hash_entry(
    path: Path,
    relative: PurePosixPath,
    name: str,
    predicate: Predicate | None,
) -> FolderHash | None:
    try:
        is_dir = path.is_dir()
        if not is_dir and not path.exists():
            raise FileNotFoundError(path)
        decision = predicate(relative, is_dir) if predicate is not None else Inclusion.INCLUDE
        if decision is Inclusion.EXCLUDE:
            return None
        if is_dir:
            nested = predicate if decision is Inclusion.DESCEND else None
            result = _hash_directory(path, relative, name, nested)
            return result if result.children else None
        if decision is Inclusion.DESCEND:
            return None
        return FolderHash(name=name, digest=fingerprint_file(path))
    except FileNotFoundError:
        logger.warning("hasher.path_vanished", path=str(path))
        return None


__all__ = ["FolderHash", "Inclusion", "Predicate", "fingerprint_file", "fingerprint_tree", "hash_mapping", "md5"]
