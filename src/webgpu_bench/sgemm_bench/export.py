from __future__ import annotations

import json
import math
import platform
import subprocess
from importlib import resources
from pathlib import Path
from typing import Any

from jsonschema import Draft202012Validator

from .runner import BenchmarkReport, RunSample, ShapeFailure, ShapeRecord
from .verification import VERIFICATION_MODE

SCHEMA_VERSION = "0.1.0"


def _default_results_schema() -> dict[str, Any]:
    text = (resources.files(__package__) / "contracts" / "results.schema.json").read_text()
    return json.loads(text)


def validate_results_schema(results: dict[str, Any], *, schema_path: Path | None = None) -> None:
    schema = _default_results_schema() if schema_path is None else json.loads(schema_path.read_text())
    Draft202012Validator(schema).validate(results)


def git_info(repo_root: Path) -> dict[str, Any]:
    def _run(cmd: list[str]) -> str:
        out = subprocess.check_output(cmd, cwd=repo_root, stderr=subprocess.DEVNULL)
        return out.decode().strip()

    try:
        branch = _run(["git", "rev-parse", "--abbrev-ref", "HEAD"])
        commit = _run(["git", "rev-parse", "HEAD"])
        dirty = bool(_run(["git", "status", "--porcelain=v1"]))
        return {"branch": branch, "commit": commit, "dirty": dirty}
    except (OSError, subprocess.CalledProcessError):
        return {"branch": "unknown", "commit": "unknown", "dirty": False}


def _json_float(v: float) -> float | None:
    # NaN/inf are not valid JSON.
    return v if math.isfinite(v) else None


def record_to_dict(rec: ShapeRecord) -> dict[str, Any]:
    if isinstance(rec, ShapeFailure):
        return {
            "status": "error",
            "shape": rec.shape.to_dict(),
            "launch_params": None if rec.launch_params is None else rec.launch_params.to_dict(),
            "error": {
                "kind": rec.error,
                "message": rec.message,
                "phase": rec.phase,
                "completed_runs": rec.completed_runs,
            },
        }

    assert isinstance(rec, RunSample)
    return {
        "status": "ok",
        "shape": rec.shape.to_dict(),
        "launch_params": rec.launch_params.to_dict(),
        "timing": {
            "average_time_ms": rec.average_time_ms,
            "runs": rec.runs,
            "timings_ms": list(rec.timings_ms),
        },
        "flop_count": rec.shape.flop_count,
        "flops": rec.flops,
        "sample_values": [_json_float(v) for v in rec.sample_values],
        "verification": {"status": rec.verification, "mode": VERIFICATION_MODE, "warning": rec.warning},
    }


def _failure_reason(report: BenchmarkReport) -> str:
    reasons: list[str] = []
    if report.failures:
        reasons.append(f"{len(report.failures)} shape(s) failed with device errors")
    if report.validation_failures:
        reasons.append(f"{len(report.validation_failures)} shape(s) failed verification")
    return "; ".join(reasons)


def report_to_results(
    report: BenchmarkReport,
    *,
    adapter: dict[str, Any] | None = None,
    git: dict[str, Any] | None = None,
) -> dict[str, Any]:
    run_obj: dict[str, Any] = {
        "run_id": report.started_at.replace(":", "-"),
        "started_at": report.started_at,
        "finished_at": report.finished_at,
        "status": report.status,
        "failure_reason": _failure_reason(report),
        "environment": {
            "platform": {"os": platform.system().lower(), "arch": platform.machine().lower()},
            "python": platform.python_version(),
            "adapter": adapter,
        },
        "settings": report.settings.to_dict(),
        "kernel": report.kernel.to_dict(),
    }
    if git is not None:
        run_obj["git"] = git

    out = {
        "schema_version": SCHEMA_VERSION,
        "run": run_obj,
        "records": [record_to_dict(r) for r in report.records],
    }
    validate_results_schema(out)
    return out


def write_results(path: Path, results: dict[str, Any]) -> None:
    path.write_text(json.dumps(results, indent=2, sort_keys=True) + "\n")


def load_results(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text())
