"""Dependency graph algorithms over package name -> dependency names maps."""
from __future__ import annotations

from typing import AbstractSet, Iterable, Iterator, Mapping

from .errors import CyclicDependencyError

DependencyMap = Mapping[str, AbstractSet[str]]


def clone_dependency_map(edges: DependencyMap) -> dict[str, set[str]]:
    return {name: set(deps) for name, deps in edges.items()}


def reverse_edges(edges: DependencyMap) -> dict[str, set[str]]:
    """Map each package to the packages that depend on it."""
    reverse: dict[str, set[str]] = {}
    for name, deps in edges.items():
        for dep in deps:
            reverse.setdefault(dep, set()).add(name)
    return reverse


def topological_order(edges: DependencyMap) -> Iterator[str]:
    """Yield package names so that every package follows its dependencies.

    Each pass yields every package whose dependencies are all resolved, in the
    insertion order of ``edges``. Dependencies that are not keys of ``edges`` count
    as resolved. Raises :class:`CyclicDependencyError` once a pass makes no progress.
    """
    remaining = clone_dependency_map(edges)
    for deps in remaining.values():
        deps.intersection_update(remaining.keys())
    while remaining:
        ready = [name for name, deps in remaining.items() if not deps]
        if not ready:
            raise CyclicDependencyError(remaining)
        for name in ready:
            del remaining[name]
        for deps in remaining.values():
            deps.difference_update(ready)
        yield from ready


def collect_transitive_deps(edges: DependencyMap, roots: Iterable[str]) -> set[str]:
    """Return ``roots`` plus everything they depend on, directly or not."""
    result: set[str] = set()
    stack = list(roots)
    while stack:
        name = stack.pop()
        if name in result:
            continue
        result.add(name)
        stack.extend(dep for dep in edges.get(name, ()) if dep not in result)
    return result


def collect_reverse_impact(edges: DependencyMap, changed: Iterable[str]) -> dict[str, set[str]]:
    """Collect every package affected by a change to any of ``changed``.

    The result maps each affected package (the changed ones included) to its
    dependencies, pruned to the affected set. Names missing from ``edges`` are ignored.
    """
    reverse = reverse_edges(edges)
    picked: dict[str, set[str]] = {}
    stack = [name for name in changed]
    while stack:
        name = stack.pop()
        if name in picked or name not in edges:
            continue
        picked[name] = set(edges[name])
        stack.extend(reverse.get(name, ()))
    for deps in picked.values():
        deps.intersection_update(picked.keys())
    return picked


__all__ = [
    "DependencyMap",
    "clone_dependency_map",
    "collect_reverse_impact",
    "collect_transitive_deps",
    "reverse_edges",
    "topological_order",
]
