"""Run reporting helpers."""
from __future__ import annotations

from collections import Counter

from .errors import BuildCommandError, UpstreamFailureError
from .types import RunResult


def describe_error(error: BaseException) -> dict:
    if isinstance(error, UpstreamFailureError):
        return {"kind": "upstream", "upstream": error.failed_dependencies, "message": str(error)}
    if isinstance(error, BuildCommandError):
        return {
            "kind": "command",
            "command": error.command,
            "exitCode": error.exit_code,
            "stderr": error.stderr,
            "message": str(error),
        }
    return {"kind": "error", "type": type(error).__name__, "message": str(error)}


def build_run_report(result: RunResult) -> dict:
    statuses = Counter(status.value for status in result.statuses.values())
    return {
        "ok": result.ok,
        "order": list(result.order),
        "summary": {
            "planned": len(result.order),
            "executed": len(result.executed),
            "succeeded": len(result.succeeded),
            "skipped": len(result.skipped),
            "failed": len(result.failed),
            "upstreamFailed": len(result.upstream_failed),
            "statuses": dict(statuses),
        },
        "cache": {
            name: {
                "hit": hit,
                "fingerprints": (
                    {
                        "source": result.fingerprints[name].source,
                        "build": result.fingerprints[name].build,
                        "manifest": result.fingerprints[name].manifest,
                    }
                    if name in result.fingerprints
                    else None
                ),
            }
            for name, hit in result.cache_hits.items()
        },
        "failures": {
            name: describe_error(error)
            for name, error in result.errors.items()
            if name in result.failed
        },
        "upstreamFailures": {
            name: describe_error(error)
            for name, error in result.errors.items()
            if name in result.upstream_failed
        },
    }


__all__ = ["build_run_report", "describe_error"]
