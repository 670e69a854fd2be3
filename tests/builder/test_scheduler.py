import asyncio
from pathlib import Path

import pytest

from services.builder.app.domain.errors import (
    BuildCommandError,
    ConfigurationError,
    CyclicDependencyError,
    UpstreamFailureError,
)
from services.builder.app.domain.fingerprints import Fingerprinter
from services.builder.app.domain.registry import PackageRegistry
from services.builder.app.domain.report import build_run_report
from services.builder.app.domain.runner import CommandResult, check_result, run_command
from services.builder.app.domain.scheduler import BuildScheduler
from services.builder.app.domain.types import BuildStatus
from services.builder.app.persistence.cache_store import CacheStore

from conftest import write_package


class FakeRunner:
    """Records invocations and fails the packages listed in ``failing``."""

    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.calls: list[tuple[str, str]] = []
        self.active = 0
        self.peak = 0

    async def __call__(self, command: str, cwd: Path) -> CommandResult:
        self.calls.append((cwd.name, command))
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0)
        self.active -= 1
        if cwd.name in self.failing:
            return CommandResult(command=command, exit_code=2, stdout="", stderr=f"{cwd.name} broke", duration_ms=1)
        dist = cwd / "dist"
        dist.mkdir(exist_ok=True)
        (dist / "index.js").write_text(f"built {cwd.name}", encoding="utf-8")
        return CommandResult(command=command, exit_code=0, stdout="ok", stderr="", duration_ms=1)

    @property
    def packages(self) -> list[str]:
        return [name for name, _ in self.calls]


def _scheduler(packages_dir: Path, cache_dir: Path, runner: FakeRunner, **kwargs) -> BuildScheduler:
    workspace = PackageRegistry(packages_dir, "@arkie").scan()
    return BuildScheduler(
        workspace,
        CacheStore(cache_dir),
        Fingerprinter(),
        command_runner=runner,
        **kwargs,
    )


@pytest.fixture
def abc_workspace(packages_dir):
    write_package(packages_dir, "a")
    write_package(packages_dir, "b", deps=("a",))
    write_package(packages_dir, "c", deps=("a",))
    return packages_dir


@pytest.mark.asyncio
async def test_cold_cache_builds_everything_in_dependency_order(abc_workspace, tmp_path):
    runner = FakeRunner()
    scheduler = _scheduler(abc_workspace, tmp_path / "cache", runner, concurrency=1)

    result = await scheduler.run()

    assert result.ok
    assert len(runner.calls) == 3
    assert runner.packages[0] == "a"
    assert set(runner.packages[1:]) == {"b", "c"}
    assert all(command == "yarn build" for _, command in runner.calls)
    assert runner.peak == 1
    assert result.succeeded == {"a", "b", "c"}
    assert result.skipped == set()
    assert result.cache_hits == {"a": False, "b": False, "c": False}
    assert set(result.fingerprints) == {"a", "b", "c"}
    assert all(status is BuildStatus.succeeded for status in result.statuses.values())
    assert sorted(p.name for p in (tmp_path / "cache").iterdir()) == ["a.json", "b.json", "c.json"]


@pytest.mark.asyncio
async def test_warm_cache_skips_everything(abc_workspace, tmp_path):
    await _scheduler(abc_workspace, tmp_path / "cache", FakeRunner()).run()

    runner = FakeRunner()
    result = await _scheduler(abc_workspace, tmp_path / "cache", runner).run()

    assert result.ok
    assert runner.calls == []
    assert result.skipped == {"a", "b", "c"}
    assert result.succeeded == set()
    assert result.cache_hits == {"a": True, "b": True, "c": True}
    assert all(status is BuildStatus.skipped for status in result.statuses.values())


@pytest.mark.asyncio
async def test_changed_file_rebuilds_only_that_package(abc_workspace, tmp_path):
    await _scheduler(abc_workspace, tmp_path / "cache", FakeRunner()).run()
    (abc_workspace / "b" / "src" / "index.ts").write_text("export const name = 'b2'\n", encoding="utf-8")

    runner = FakeRunner()
    result = await _scheduler(abc_workspace, tmp_path / "cache", runner).run()

    assert runner.packages == ["b"]
    assert result.skipped == {"a", "c"}
    assert result.succeeded == {"b"}


@pytest.mark.asyncio
async def test_force_ignores_cache(abc_workspace, tmp_path):
    await _scheduler(abc_workspace, tmp_path / "cache", FakeRunner()).run()

    runner = FakeRunner()
    result = await _scheduler(abc_workspace, tmp_path / "cache", runner, force=True).run()

    assert sorted(runner.packages) == ["a", "b", "c"]
    assert result.cache_hits == {}


@pytest.mark.asyncio
async def test_manifest_change_only_counts_when_included(abc_workspace, tmp_path):
    await _scheduler(abc_workspace, tmp_path / "cache", FakeRunner()).run()
    manifest = abc_workspace / "c" / "package.json"
    manifest.write_text(manifest.read_text(encoding="utf-8").replace("1.0.0", "1.0.1", 1), encoding="utf-8")

    runner = FakeRunner()
    await _scheduler(abc_workspace, tmp_path / "cache", runner).run()
    assert runner.calls == []

    runner = FakeRunner()
    await _scheduler(abc_workspace, tmp_path / "cache", runner, include_manifest=True).run()
    assert runner.packages == ["c"]


@pytest.mark.asyncio
async def test_failure_propagates_downstream_without_running_dependents(packages_dir, tmp_path):
    write_package(packages_dir, "a")
    write_package(packages_dir, "b", deps=("a",))
    write_package(packages_dir, "c", deps=("b",))
    write_package(packages_dir, "d")
    runner = FakeRunner(failing={"a"})

    result = await _scheduler(packages_dir, tmp_path / "cache", runner).run()

    assert not result.ok
    assert sorted(runner.packages) == ["a", "d"]
    assert result.failed == {"a"}
    assert result.upstream_failed == {"b", "c"}
    assert result.succeeded == {"d"}
    assert result.statuses["a"] is BuildStatus.failed
    assert result.statuses["b"] is BuildStatus.failed_upstream
    assert result.statuses["c"] is BuildStatus.failed_upstream
    assert all(status.terminal for status in result.statuses.values())
    assert isinstance(result.errors["a"], BuildCommandError)
    assert result.errors["a"].exit_code == 2
    assert "a broke" in str(result.errors["a"])
    assert isinstance(result.errors["b"], UpstreamFailureError)
    assert result.errors["b"].failed_dependencies == ["a"]
    assert result.errors["c"].failed_dependencies == ["b"]
    assert not (tmp_path / "cache" / "a.json").exists()
    assert (tmp_path / "cache" / "d.json").exists()

    report = build_run_report(result)
    assert set(report["failures"]) == {"a"}
    assert set(report["upstreamFailures"]) == {"b", "c"}
    assert report["failures"]["a"]["exitCode"] == 2


@pytest.mark.asyncio
async def test_cached_package_with_failed_upstream_is_not_skipped(abc_workspace, tmp_path):
    await _scheduler(abc_workspace, tmp_path / "cache", FakeRunner()).run()
    (abc_workspace / "a" / "src" / "index.ts").write_text("broken", encoding="utf-8")

    runner = FakeRunner(failing={"a"})
    result = await _scheduler(abc_workspace, tmp_path / "cache", runner).run()

    assert runner.packages == ["a"]
    assert result.upstream_failed == {"b", "c"}
    assert result.skipped == set()


@pytest.mark.asyncio
async def test_runner_exception_is_captured(abc_workspace, tmp_path):
    async def exploding(command: str, cwd: Path) -> CommandResult:
        raise OSError("spawn failed")

    workspace = PackageRegistry(abc_workspace, "@arkie").scan()
    scheduler = BuildScheduler(workspace, CacheStore(tmp_path / "cache"), Fingerprinter(), command_runner=exploding)

    result = await scheduler.run()

    assert result.failed == {"a"}
    assert result.upstream_failed == {"b", "c"}
    assert isinstance(result.errors["a"], OSError)


@pytest.mark.asyncio
async def test_concurrency_limit_is_respected(packages_dir, tmp_path):
    for name in ("p1", "p2", "p3", "p4", "p5"):
        write_package(packages_dir, name)
    runner = FakeRunner()

    result = await _scheduler(packages_dir, tmp_path / "cache", runner, concurrency=2).run()

    assert result.ok
    assert runner.peak == 2
    assert len(runner.calls) == 5


@pytest.mark.asyncio
async def test_revalidate_runs_lighter_script_for_impacted_cached_packages(packages_dir, tmp_path):
    write_package(packages_dir, "a")
    write_package(packages_dir, "b", deps=("a",), scripts={"build": "tsc -p .", "tsc": "tsc --noEmit"})
    write_package(packages_dir, "c", deps=("a",))
    write_package(packages_dir, "d")
    await _scheduler(packages_dir, tmp_path / "cache", FakeRunner()).run()
    (packages_dir / "a" / "src" / "index.ts").write_text("changed", encoding="utf-8")

    runner = FakeRunner()
    result = await _scheduler(packages_dir, tmp_path / "cache", runner, revalidate=True).run()

    assert runner.calls[0] == ("a", "yarn build")
    assert ("b", "yarn tsc") in runner.calls
    assert len(runner.calls) == 2
    assert result.succeeded == {"a", "b"}
    # c has no revalidation script, d is unrelated to the change.
    assert result.skipped == {"c", "d"}


@pytest.mark.asyncio
async def test_packages_without_build_script_are_not_scheduled(packages_dir, tmp_path):
    write_package(packages_dir, "types", scripts={})
    write_package(packages_dir, "app", deps=("types",))
    runner = FakeRunner()

    result = await _scheduler(packages_dir, tmp_path / "cache", runner).run()

    assert result.order == ["app"]
    assert runner.packages == ["app"]


@pytest.mark.asyncio
async def test_targets_limit_build_to_dependency_closure(packages_dir, tmp_path):
    write_package(packages_dir, "a")
    write_package(packages_dir, "b", deps=("a",))
    write_package(packages_dir, "c")
    runner = FakeRunner()

    result = await _scheduler(packages_dir, tmp_path / "cache", runner, targets=["b"]).run()

    assert result.order == ["a", "b"]
    assert runner.packages == ["a", "b"]


def test_unknown_target_is_a_configuration_error(abc_workspace, tmp_path):
    scheduler = _scheduler(abc_workspace, tmp_path / "cache", FakeRunner(), targets=["zzz"])
    with pytest.raises(ConfigurationError):
        scheduler.build_order()


def test_missing_dependency_manifest_is_fatal(packages_dir, tmp_path):
    write_package(packages_dir, "app", deps=("ghost",))
    with pytest.raises(ConfigurationError, match="ghost"):
        _scheduler(packages_dir, tmp_path / "cache", FakeRunner())


def test_cycle_is_reported_before_any_build(packages_dir, tmp_path):
    write_package(packages_dir, "a", deps=("b",))
    write_package(packages_dir, "b", deps=("a",))
    runner = FakeRunner()
    scheduler = _scheduler(packages_dir, tmp_path / "cache", runner)

    with pytest.raises(CyclicDependencyError):
        asyncio.run(scheduler.run())
    assert runner.calls == []


@pytest.mark.asyncio
async def test_status_observers_see_transitions(abc_workspace, tmp_path):
    runner = FakeRunner()
    scheduler = _scheduler(abc_workspace, tmp_path / "cache", runner, concurrency=1)
    seen: list[tuple[str, BuildStatus]] = []
    scheduler.subscribe(lambda name, status: seen.append((name, status)))

    await scheduler.run()

    b_states = [status for name, status in seen if name == "b"]
    assert b_states == [BuildStatus.pending, BuildStatus.waiting, BuildStatus.running, BuildStatus.succeeded]
    a_states = [status for name, status in seen if name == "a"]
    assert a_states == [BuildStatus.pending, BuildStatus.running, BuildStatus.succeeded]


@pytest.mark.asyncio
async def test_corrupt_cache_record_forces_build(abc_workspace, tmp_path):
    await _scheduler(abc_workspace, tmp_path / "cache", FakeRunner()).run()
    (tmp_path / "cache" / "b.json").write_text("garbage", encoding="utf-8")

    runner = FakeRunner()
    await _scheduler(abc_workspace, tmp_path / "cache", runner).run()

    assert runner.packages == ["b"]


@pytest.mark.asyncio
@pytest.mark.parametrize("sources", [None, {"lib/index.js": "x"}], ids=["with-src", "without-src"])
@pytest.mark.parametrize("force", [True, False])
async def test_invalid_files_glob_aborts_before_any_build(packages_dir, tmp_path, sources, force):
    write_package(packages_dir, "a", files=["dist\\"], sources=sources)
    write_package(packages_dir, "b")
    runner = FakeRunner()
    scheduler = _scheduler(packages_dir, tmp_path / "cache", runner, force=force)

    with pytest.raises(ConfigurationError, match="invalid glob"):
        await scheduler.run()
    assert runner.calls == []
    assert not (tmp_path / "cache").exists()


@pytest.mark.asyncio
async def test_cache_write_failure_does_not_fail_the_build(abc_workspace, tmp_path, monkeypatch):
    def unwritable(self, package_name, entry):
        raise OSError("disk full")

    monkeypatch.setattr(CacheStore, "write", unwritable)
    result = await _scheduler(abc_workspace, tmp_path / "cache", FakeRunner()).run()

    assert result.ok
    assert result.succeeded == {"a", "b", "c"}
    assert result.failed == set()
    monkeypatch.undo()

    runner = FakeRunner()
    rerun = await _scheduler(abc_workspace, tmp_path / "cache", runner).run()

    assert rerun.cache_hits == {"a": False, "b": False, "c": False}
    assert sorted(runner.packages) == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_run_command_captures_exit_code_and_output(tmp_path):
    result = await run_command("echo built; echo oops >&2; exit 3", tmp_path)

    assert result.exit_code == 3
    assert not result.ok
    assert result.stdout.strip() == "built"
    assert result.stderr.strip() == "oops"
    with pytest.raises(BuildCommandError) as excinfo:
        check_result(result)
    assert excinfo.value.exit_code == 3
    assert "oops" in str(excinfo.value)


@pytest.mark.asyncio
async def test_run_command_runs_in_package_directory(tmp_path):
    result = check_result(await run_command("pwd", tmp_path))
    assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()
