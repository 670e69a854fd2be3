"""Detect scoped imports that a package uses but its manifest does not declare."""
from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Iterable, Sequence

import structlog

from .registry import DEPENDENCY_KEYS, Workspace
from .types import Package

logger = structlog.get_logger(__name__)

SOURCE_SUFFIXES = (".ts", ".tsx", ".js", ".jsx")

_IMPORT_FROM = re.compile(r"""from\s+['"]([^./\\'"][^'"]*)['"]""")


def iter_source_files(roots: Iterable[Path], suffixes: Sequence[str] = SOURCE_SUFFIXES) -> Iterable[Path]:
    for root in roots:
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = [name for name in dirnames if name != "node_modules"]
            for filename in sorted(filenames):
                if filename.endswith(tuple(suffixes)):
                    yield Path(dirpath) / filename


def imported_modules(paths: Iterable[Path]) -> set[str]:
    modules: set[str] = set()
    for path in paths:
        try:
            code = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            logger.warning("explicit_deps.file_vanished", path=str(path))
            continue
        modules.update(_IMPORT_FROM.findall(code))
    return modules


def scoped_imports(package: Package, scope: str, source_folder_names: Sequence[str]) -> set[str]:
    pattern = re.compile(rf"^{re.escape(scope)}/([^/]+?)(/.*)?$", re.IGNORECASE)
    roots = [package.path / folder for folder in source_folder_names if (package.path / folder).is_dir()]
    names: set[str] = set()
    for module in imported_modules(iter_source_files(roots)):
        match = pattern.match(module)
        if match and match.group(1) != package.name:
            names.add(match.group(1))
    return names


def find_undeclared_dependencies(
    workspace: Workspace,
    source_folder_names: Sequence[str] = ("src", "components"),
) -> dict[str, set[str]]:
    """Map package name -> workspace packages imported from source but missing from its manifest."""
    undeclared: dict[str, set[str]] = {}
    for package in workspace:
        used = scoped_imports(package, workspace.scope, source_folder_names)
        missing = {name for name in used - package.deps if name in workspace}
        unknown = used - package.deps - missing
        if unknown:
            logger.warning("explicit_deps.unknown_import", package=package.name, imports=sorted(unknown))
        if missing:
            undeclared[package.name] = missing
    return undeclared


def declare_dependencies(workspace: Workspace, undeclared: dict[str, set[str]]) -> list[Path]:
    """Write missing dependencies into manifests; private packages go to devDependencies."""
    written: list[Path] = []
    for name, missing in sorted(undeclared.items()):
        package = workspace.get(name)
        raw = json.loads(package.manifest_path.read_text(encoding="utf-8"))
        for dep_name in sorted(missing):
            dep = workspace.get(dep_name)
            key = "devDependencies" if dep.private else "dependencies"
            raw.setdefault(key, {})[f"{workspace.scope}/{dep_name}"] = f"^{dep.version}"
        for key in DEPENDENCY_KEYS:
            if isinstance(raw.get(key), dict):
                raw[key] = dict(sorted(raw[key].items()))
        package.manifest_path.write_text(json.dumps(raw, indent=2) + "\n", encoding="utf-8")
        logger.info("explicit_deps.manifest_updated", package=name, added=sorted(missing))
        written.append(package.manifest_path)
    return written


__all__ = [
    "SOURCE_SUFFIXES",
    "declare_dependencies",
    "find_undeclared_dependencies",
    "imported_modules",
    "iter_source_files",
    "scoped_imports",
]
