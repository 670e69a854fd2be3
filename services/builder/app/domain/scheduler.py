"""Dependency-ordered, cache-aware build orchestration."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable, Iterable

import structlog
from opentelemetry import trace

from ..config import DEFAULT_CONCURRENCY
from ..persistence.cache_store import CacheStore, is_cache_hit
from .errors import ConfigurationError, UpstreamFailureError
from .fingerprints import Fingerprinter, update_package_cache
from .graph import collect_reverse_impact, collect_transitive_deps, topological_order
from .limiter import ConcurrencyLimiter
from .registry import Workspace
from .runner import CommandRunner, check_result, run_command
from .types import BuildStatus, Package, PackageFingerprints, RunResult

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

StatusObserver = Callable[[str, BuildStatus], None]


@dataclass
class BuildPlan:
    order: list[str]
    skippable: set[str] = field(default_factory=set)
    fingerprints: dict[str, PackageFingerprints] = field(default_factory=dict)
    cache_hits: dict[str, bool] = field(default_factory=dict)
    relevant_changes: dict[str, set[str]] = field(default_factory=dict)

    @property
    def changed(self) -> list[str]:
        return [name for name in self.order if name not in self.skippable]


class BuildScheduler:
    """Build every package after its dependencies, skipping the ones whose cache is warm.

    A failed package fails all of its dependents without running them; unrelated
    branches keep going so that one run reports every failure.
    """

    def __init__(
        self,
        workspace: Workspace,
        cache_store: CacheStore,
        fingerprinter: Fingerprinter,
        *,
        concurrency: float = DEFAULT_CONCURRENCY,
        force: bool = False,
        include_manifest: bool = False,
        revalidate: bool = False,
        script_runner: str = "yarn",
        build_script: str = "build",
        revalidate_script: str = "tsc",
        targets: Iterable[str] | None = None,
        command_runner: CommandRunner = run_command,
    ) -> None:
        self.workspace = workspace
        self.cache_store = cache_store
        self.fingerprinter = fingerprinter
        self.force = force
        self.include_manifest = include_manifest
        self.revalidate = revalidate
        self.script_runner = script_runner
        self.build_script = build_script
        self.revalidate_script = revalidate_script
        self.targets = set(targets) if targets else None
        self.limiter = ConcurrencyLimiter(concurrency)
        self._command_runner = command_runner
        self._observers: list[StatusObserver] = []
        self.edges = workspace.dependency_map()

    def subscribe(self, observer: StatusObserver) -> Callable[[], None]:
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def build_order(self) -> list[str]:
        order = list(topological_order(self.edges))
        if self.targets is not None:
            unknown = sorted(self.targets - self.edges.keys())
            if unknown:
                raise ConfigurationError(f"unknown packages requested: {', '.join(unknown)}")
            selected = collect_transitive_deps(self.edges, self.targets)
            order = [name for name in order if name in selected]
        return [name for name in order if self.workspace.get(name).has_script(self.build_script)]

    async def plan(self) -> BuildPlan:
        plan = BuildPlan(order=self.build_order())
        packages = [self.workspace.get(name) for name in plan.order]
        for package in packages:
            # Bad ``files`` globs abort the run here, before any command starts.
            self.fingerprinter.build_predicate(package)
        if not self.force:
            computed = await asyncio.gather(*(self.fingerprinter.compute(package) for package in packages))
            for package, fingerprints in zip(packages, computed):
                if fingerprints is not None:
                    plan.fingerprints[package.name] = fingerprints
                hit = is_cache_hit(self.cache_store.read(package.name), fingerprints, self.include_manifest)
                plan.cache_hits[package.name] = hit
                if hit:
                    plan.skippable.add(package.name)
        plan.relevant_changes = collect_reverse_impact(self.edges, plan.changed)
        return plan

    async def run(self, plan: BuildPlan | None = None) -> RunResult:
        if plan is None:
            plan = await self.plan()
        result = RunResult(
            order=list(plan.order),
            fingerprints=dict(plan.fingerprints),
            cache_hits=dict(plan.cache_hits),
        )
        loop = asyncio.get_running_loop()
        signals: dict[str, asyncio.Future[None]] = {name: loop.create_future() for name in plan.order}
        for name in plan.order:
            self._set_status(result, name, BuildStatus.pending)

        await asyncio.gather(*(self._settle(name, plan, signals, result) for name in plan.order))
        # Every signal has been awaited or settled; collect them so failures are retrieved.
        await asyncio.gather(*signals.values(), return_exceptions=True)

        logger.info(
            "scheduler.run_finished",
            succeeded=len(result.succeeded),
            skipped=len(result.skipped),
            failed=len(result.failed),
            upstream_failed=len(result.upstream_failed),
        )
        return result

    async def _settle(
        self,
        name: str,
        plan: BuildPlan,
        signals: dict[str, asyncio.Future[None]],
        result: RunResult,
    ) -> None:
        signal = signals[name]
        try:
            await self._build_package(self.workspace.get(name), plan, signals, result)
        except UpstreamFailureError as exc:
            result.upstream_failed.add(name)
            result.errors[name] = exc
            self._set_status(result, name, BuildStatus.failed_upstream)
            logger.warning("scheduler.upstream_failed", package=name, upstream=exc.failed_dependencies)
            signal.set_exception(exc)
        except Exception as exc:
            result.failed.add(name)
            result.errors[name] = exc
            self._set_status(result, name, BuildStatus.failed)
            logger.error("scheduler.build_failed", package=name, error=str(exc))
            signal.set_exception(exc)
        else:
            signal.set_result(None)

    async def _build_package(
        self,
        package: Package,
        plan: BuildPlan,
        signals: dict[str, asyncio.Future[None]],
        result: RunResult,
    ) -> None:
        name = package.name
        deps = sorted(dep for dep in package.deps if dep in signals)
        if deps:
            self._set_status(result, name, BuildStatus.waiting)
            outcomes = await asyncio.gather(*(signals[dep] for dep in deps), return_exceptions=True)
            failed = [dep for dep, outcome in zip(deps, outcomes) if isinstance(outcome, BaseException)]
            if failed:
                raise UpstreamFailureError(failed)

        script = self.build_script
        if name in plan.skippable:
            if not (self.revalidate and name in plan.relevant_changes):
                logger.info("scheduler.cache_hit", package=name)
                self._mark_skipped(result, name)
                return
            if not package.has_script(self.revalidate_script):
                logger.warning("scheduler.revalidate_script_missing", package=name, script=self.revalidate_script)
                self._mark_skipped(result, name)
                return
            script = self.revalidate_script

        await self.limiter.run(lambda: self._run_script(package, script, result))
        await self._update_cache(package, result)
        result.succeeded.add(name)
        self._set_status(result, name, BuildStatus.succeeded)

    async def _run_script(self, package: Package, script: str, result: RunResult) -> None:
        command = f"{self.script_runner} {script}"
        result.executed.append(package.name)
        self._set_status(result, package.name, BuildStatus.running)
        with tracer.start_as_current_span(
            "builder.package",
            attributes={"builder.package": package.name, "builder.command": command},
        ) as span:
            logger.info("scheduler.command_started", package=package.name, command=command, cwd=str(package.path))
            outcome = await self._command_runner(command, package.path)
            span.set_attribute("builder.exit_code", outcome.exit_code)
            check_result(outcome)
        logger.info("scheduler.command_finished", package=package.name, seconds=round(outcome.duration_ms / 1000, 1))

    async def _update_cache(self, package: Package, result: RunResult) -> None:
        try:
            fingerprints = await update_package_cache(package, self.fingerprinter, self.cache_store)
        except OSError as exc:
            logger.warning("scheduler.cache_write_failed", package=package.name, error=str(exc))
            return
        if fingerprints is None:
            logger.warning("scheduler.cache_unavailable", package=package.name)
            return
        result.fingerprints[package.name] = fingerprints

    def _mark_skipped(self, result: RunResult, name: str) -> None:
        result.skipped.add(name)
        self._set_status(result, name, BuildStatus.skipped)

    def _set_status(self, result: RunResult, name: str, status: BuildStatus) -> None:
        result.statuses[name] = status
        for observer in list(self._observers):
            try:
                observer(name, status)
            except Exception:
                logger.exception("scheduler.observer_failed", package=name, status=status.value)


__all__ = ["BuildPlan", "BuildScheduler", "StatusObserver"]
