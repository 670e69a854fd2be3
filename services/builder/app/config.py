"""Application configuration using Pydantic settings."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONCURRENCY = 2


class WorkspaceSettings(BaseModel):
    root: Path = Field(default_factory=Path.cwd, description="Monorepo root directory")
    packages_dir: str = "packages"
    scope: str = Field(default="@arkie", description="Reserved scope prefix of internal packages")
    manifest_name: str = "package.json"
    source_folder_names: tuple[str, ...] = ("src", "components")
    cache_dir: Path | None = Field(
        default=None,
        description="Directory holding per-package cache records (defaults to <root>/.build-all-cache)",
    )

    @property
    def packages_path(self) -> Path:
        return self.root / self.packages_dir

    @property
    def cache_path(self) -> Path:
        return self.cache_dir if self.cache_dir is not None else self.root / ".build-all-cache"


class SchedulerSettings(BaseModel):
    concurrency: int = Field(
        default=DEFAULT_CONCURRENCY,
        description="Builds allowed to run simultaneously; non-positive means unbounded",
    )
    script_runner: str = "yarn"
    build_script: str = "build"
    revalidate_script: str = "tsc"
    include_manifest: bool = False
    render_interval: float = Field(default=0.2, gt=0)


class ObservabilitySettings(BaseModel):
    otel_service_name: str = "workspace-builder"
    otel_exporter_otlp_endpoint: str | None = None
    log_level: str = "INFO"
    json_logs: bool = False


class BuilderSettings(BaseSettings):
    workspace: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    scheduler: SchedulerSettings = SchedulerSettings()
    observability: ObservabilitySettings = ObservabilitySettings()
    environment: Literal["dev", "ci"] | str = "dev"

    model_config = SettingsConfigDict(env_nested_delimiter="__", env_prefix="BUILDER_", case_sensitive=False)


@lru_cache(maxsize=1)
def get_settings(**kwargs: Any) -> BuilderSettings:
    """Return cached settings instance."""
    return BuilderSettings(**kwargs)


__all__ = ["BuilderSettings", "DEFAULT_CONCURRENCY", "get_settings"]
