import json
from pathlib import Path

import pytest


def write_package(
    packages_dir: Path,
    name: str,
    deps: tuple[str, ...] = (),
    scripts: dict | None = None,
    files: list[str] | None = None,
    sources: dict[str, str] | None = None,
    private: bool = False,
    version: str = "1.0.0",
) -> Path:
    package_dir = packages_dir / name
    package_dir.mkdir(parents=True, exist_ok=True)
    manifest = {
        "name": f"@arkie/{name}",
        "version": version,
        "private": private,
        "scripts": {"build": "tsc -p ."} if scripts is None else scripts,
        "dependencies": {f"@arkie/{dep}": "^1.0.0" for dep in deps},
        "devDependencies": {"typescript": "^5.0.0"},
    }
    if files is not None:
        manifest["files"] = files
    (package_dir / "package.json").write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    for relative, content in (sources if sources is not None else {"src/index.ts": f"export const name = '{name}'\n"}).items():
        target = package_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    return package_dir


@pytest.fixture
def packages_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "packages"
    directory.mkdir()
    return directory
