"""Package manifest loading and workspace discovery."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError
from .memo import MemoCache
from .types import Package

logger = structlog.get_logger(__name__)

DEPENDENCY_KEYS = ("dependencies", "devDependencies", "peerDependencies")


class Manifest(BaseModel):
    name: str = ""
    version: str = "0.0.0"
    private: bool = False
    files: list[str] | None = None
    scripts: dict[str, str] = Field(default_factory=dict)
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict, alias="devDependencies")
    peer_dependencies: dict[str, str] = Field(default_factory=dict, alias="peerDependencies")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def dependency_names(self) -> list[str]:
        merged = {**self.dependencies, **self.dev_dependencies, **self.peer_dependencies}
        return list(merged)


def scoped_dependencies(manifest: Manifest, scope: str) -> frozenset[str]:
    prefix = f"{scope}/"
    return frozenset(name[len(prefix):] for name in manifest.dependency_names() if name.startswith(prefix))


def read_manifest(path: Path) -> Manifest:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"manifest {path} is not found") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"manifest {path} is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"manifest {path} must contain a JSON object")
    try:
        return Manifest.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"manifest {path} is invalid: {exc}") from exc


@dataclass
class Workspace:
    root: Path
    scope: str
    packages: dict[str, Package] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.packages

    def __iter__(self):
        return iter(self.packages.values())

    def __len__(self) -> int:
        return len(self.packages)

    def get(self, name: str) -> Package:
        try:
            return self.packages[name]
        except KeyError as exc:
            raise ConfigurationError(f"package {name!r} doesn't exist in {self.root}") from exc

    def dependency_map(self) -> dict[str, set[str]]:
        """Forward edges; every referenced package must have been discovered."""
        edges: dict[str, set[str]] = {}
        for package in self.packages.values():
            missing = sorted(dep for dep in package.deps if dep not in self.packages)
            if missing:
                raise ConfigurationError(
                    f"package {package.name!r} depends on {', '.join(missing)} "
                    f"but no manifest was found under {self.root}"
                )
            edges[package.name] = set(package.deps)
        return edges


class PackageRegistry:
    """Reads package manifests below a packages directory."""

    def __init__(self, packages_dir: Path, scope: str, manifest_name: str = "package.json") -> None:
        self.packages_dir = packages_dir
        self.scope = scope
        self.manifest_name = manifest_name
        self._manifests: MemoCache[Path, Manifest] = MemoCache()

    def manifest(self, path: Path) -> Manifest:
        return self._manifests.get_or_compute(path, read_manifest)

    def invalidate(self, path: Path | None = None) -> None:
        self._manifests.invalidate(path)

    def load_package(self, directory: Path) -> Package:
        manifest_path = directory / self.manifest_name
        manifest = self.manifest(manifest_path)
        return Package(
            name=directory.name,
            path=directory,
            manifest_path=manifest_path,
            manifest_name=manifest.name,
            version=manifest.version,
            deps=scoped_dependencies(manifest, self.scope),
            files=frozenset(manifest.files or ()),
            scripts=dict(manifest.scripts),
            private=manifest.private,
        )

    def scan(self) -> Workspace:
        if not self.packages_dir.is_dir():
            raise ConfigurationError(f"packages directory {self.packages_dir} does not exist")
        workspace = Workspace(root=self.packages_dir, scope=self.scope)
        for entry in sorted(self.packages_dir.iterdir(), key=lambda p: p.name):
            if entry.name.startswith(".") or not entry.is_dir():
                continue
            if not (entry / self.manifest_name).is_file():
                logger.info(
                    "registry.manifest_missing",
                    path=f"{self.packages_dir.name}/{entry.name}/{self.manifest_name}",
                )
                continue
            workspace.packages[entry.name] = self.load_package(entry)
        return workspace


def scan_workspace(packages_dir: Path, scope: str, manifest_name: str = "package.json") -> Workspace:
    return PackageRegistry(packages_dir, scope, manifest_name).scan()


__all__ = [
    "DEPENDENCY_KEYS",
    "Manifest",
    "PackageRegistry",
    "Workspace",
    "read_manifest",
    "scan_workspace",
    "scoped_dependencies",
]
