"""Command-line entrypoint for workspace builds."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.text import Text

from .config import BuilderSettings, get_settings
from .domain.errors import BuilderError
from .domain.explicit_deps import declare_dependencies, find_undeclared_dependencies
from .domain.fingerprints import Fingerprinter, update_package_cache
from .domain.graph import collect_reverse_impact, topological_order
from .domain.registry import PackageRegistry, Workspace, scan_workspace
from .domain.report import build_run_report
from .domain.scheduler import BuildScheduler
from .domain.types import RunResult
from .observability.logging_config import configure_logging
from .observability.otel import configure_telemetry
from .observability.progress import BuildProgress
from .observability.screen import Screen
from .persistence.cache_store import CacheStore

RootOption = typer.Option(None, "--root", "-r", help="Monorepo root (defaults to BUILDER_WORKSPACE__ROOT or cwd)")


def _load_settings(root: Path | None) -> BuilderSettings:
    settings = get_settings()
    if root is not None:
        workspace = settings.workspace.model_copy(update={"root": root})
        settings = settings.model_copy(update={"workspace": workspace})
    configure_logging(settings)
    return settings


def _scan(settings: BuilderSettings) -> Workspace:
    return scan_workspace(settings.workspace.packages_path, settings.workspace.scope, settings.workspace.manifest_name)


def _fail(console: Console, error: BuilderError) -> typer.Exit:
    console.print(Text(str(error), style="red"))
    return typer.Exit(code=1)


def _print_failures(console: Console, result: RunResult) -> None:
    console.print(Text("The following packages failed to build:", style="red"))
    for name, error in result.errors.items():
        console.print()
        console.print(Text(f"[{name}]", style="white on red"))
        console.print()
        console.print(Text(str(error)))
    console.print()


async def _run_build(
    scheduler: BuildScheduler,
    console: Console,
    settings: BuilderSettings,
    show_progress: bool,
) -> RunResult:
    plan = await scheduler.plan()
    if not show_progress or len(plan.skippable) == len(plan.order):
        return await scheduler.run(plan)
    with Screen(console, render_interval=settings.scheduler.render_interval) as screen:
        progress = BuildProgress(screen, scheduler, plan)
        try:
            return await scheduler.run(plan)
        finally:
            progress.close()


def create_app() -> typer.Typer:
    app = typer.Typer(
        name="workspace-build",
        help="Build monorepo packages in dependency order, skipping the ones whose sources did not change.",
        add_completion=False,
        no_args_is_help=True,
    )

    @app.command()
    def build(
        concurrent: int | None = typer.Option(
            None,
            "--concurrent",
            "-c",
            help="How many builds are allowed to run simultaneously. Non-positive value is treated as unbounded",
        ),
        force: bool = typer.Option(False, "--force", "-f", help="Ignore the cache"),
        include_manifest: bool = typer.Option(
            False,
            "--include-manifest",
            "-p",
            help="Take the manifest into consideration; its changes trigger a build",
        ),
        revalidate: bool = typer.Option(
            False,
            "--revalidate",
            "-t",
            help="Run the revalidation script for unchanged packages that depend on changed ones",
        ),
        package: list[str] | None = typer.Option(
            None,
            "--package",
            "-P",
            help="Only build this package and its dependencies (repeatable)",
        ),
        progress: bool = typer.Option(True, "--progress/--no-progress", help="Render live progress"),
        output_json: bool = typer.Option(False, "--json", help="Print the run report as JSON"),
        root: Path | None = RootOption,
    ) -> None:
        """Build every package with a build script in topological order."""
        console = Console()
        settings = _load_settings(root)
        configure_telemetry(settings)
        tuning = settings.scheduler
        try:
            workspace = _scan(settings)
            scheduler = BuildScheduler(
                workspace,
                CacheStore(settings.workspace.cache_path),
                Fingerprinter(settings.workspace.source_folder_names),
                concurrency=tuning.concurrency if concurrent is None else concurrent,
                force=force,
                include_manifest=include_manifest or tuning.include_manifest,
                revalidate=revalidate,
                script_runner=tuning.script_runner,
                build_script=tuning.build_script,
                revalidate_script=tuning.revalidate_script,
                targets=package or None,
            )
            order = scheduler.build_order()
        except BuilderError as exc:
            raise _fail(console, exc) from exc

        if not order:
            console.print("Nothing to build.")
            return

        if not output_json:
            console.print(Text("Packages will be built in following order:", style="cyan"))
            console.print()
            for name in order:
                console.print(f"  {name}")
            console.print()

        try:
            result = asyncio.run(_run_build(scheduler, console, settings, progress and not output_json))
        except BuilderError as exc:
            raise _fail(console, exc) from exc

        if output_json:
            console.print_json(json.dumps(build_run_report(result)))
        elif result.errors:
            _print_failures(console, result)
        if not result.ok:
            raise typer.Exit(code=1)

    @app.command()
    def order(root: Path | None = RootOption) -> None:
        """Print every package in build order."""
        console = Console()
        settings = _load_settings(root)
        try:
            for name in topological_order(_scan(settings).dependency_map()):
                console.print(name)
        except BuilderError as exc:
            raise _fail(console, exc) from exc

    @app.command()
    def affected(
        changed: list[str] = typer.Argument(..., help="Packages whose sources changed"),
        root: Path | None = RootOption,
    ) -> None:
        """Print the packages impacted by a change, with their pruned dependencies."""
        console = Console()
        settings = _load_settings(root)
        try:
            impact = collect_reverse_impact(_scan(settings).dependency_map(), changed)
        except BuilderError as exc:
            raise _fail(console, exc) from exc
        console.print_json(json.dumps({name: sorted(deps) for name, deps in impact.items()}))

    @app.command("update-cache")
    def update_cache(
        name: str = typer.Argument(..., help="Package directory name"),
        root: Path | None = RootOption,
    ) -> None:
        """Record the current fingerprints of one package as its last successful build."""
        console = Console()
        settings = _load_settings(root)
        package_dir = settings.workspace.packages_path / name
        if not package_dir.exists():
            raise _fail(console, BuilderError(f"package {name!r} doesn't exist"))
        try:
            registry = PackageRegistry(
                settings.workspace.packages_path,
                settings.workspace.scope,
                settings.workspace.manifest_name,
            )
            package = registry.load_package(package_dir)
        except BuilderError as exc:
            raise _fail(console, exc) from exc
        fingerprints = asyncio.run(
            update_package_cache(
                package,
                Fingerprinter(settings.workspace.source_folder_names),
                CacheStore(settings.workspace.cache_path),
            )
        )
        if fingerprints is None:
            console.print(Text(f"[{name}] unable to cache", style="yellow"))
            raise typer.Exit(code=1)
        console.print(Text(f"[{name}] cache updated", style="green"))

    @app.command("explicit-deps")
    def explicit_deps(
        write: bool = typer.Option(False, "--write", "-w", help="Declare the missing dependencies in manifests"),
        root: Path | None = RootOption,
    ) -> None:
        """Find scoped imports that manifests do not declare."""
        console = Console()
        settings = _load_settings(root)
        try:
            workspace = _scan(settings)
            undeclared = find_undeclared_dependencies(workspace, settings.workspace.source_folder_names)
        except BuilderError as exc:
            raise _fail(console, exc) from exc
        for name, missing in sorted(undeclared.items()):
            console.print(f"{name}: {', '.join(sorted(missing))}")
        if write:
            declare_dependencies(workspace, undeclared)
        elif undeclared:
            raise typer.Exit(code=1)

    return app


app = create_app()


__all__ = ["app", "create_app"]
