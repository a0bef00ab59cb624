from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

from .config import BenchSettings, Shape
from .device import PowerPreference, describe_adapter, open_device_context, request_adapter
from .errors import SgemmBenchError
from .executor import SgemmExecutor
from .export import git_info, report_to_results, write_results
from .kernel import load_kernel
from .report import report_run, write_artifacts_readme
from .runner import run_sweep

logger = logging.getLogger(__name__)


def find_repo_root() -> Path:
    """Nearest ancestor holding `pyproject.toml`, else the working directory."""
    start = Path(__file__).resolve()
    for parent in start.parents:
        if (parent / "pyproject.toml").is_file():
            return parent
    return Path.cwd()


def run(
    *,
    out_dir: Path,
    kernel_id: str,
    shapes: list[Shape],
    settings: BenchSettings,
    power_preference: PowerPreference,
) -> int:
    """Run the sweep and write results.json, report.md and README.md.

    Returns 0 when every shape passed, 1 when any shape failed or failed
    verification, 2 on a setup failure that prevented the sweep.
    """
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        print(f"Failed to create output dir: {e}", file=sys.stderr)
        return 2

    try:
        kernel = load_kernel(kernel_id)
        with open_device_context(power_preference) as ctx:
            adapter = describe_adapter(ctx.adapter)
            report = run_sweep(SgemmExecutor(ctx), kernel, shapes, settings)
    except SgemmBenchError as e:
        print(f"{e.kind}: {e}", file=sys.stderr)
        return 2

    results = report_to_results(report, adapter=adapter, git=git_info(find_repo_root()))
    write_results(out_dir / "results.json", results)
    report_run(out_dir=out_dir)
    write_artifacts_readme(out_dir)
    logger.info("Wrote %s", out_dir / "results.json")

    return 0 if results["run"]["status"] == "pass" else 1


def probe(*, out: Path | None, power_preference: PowerPreference) -> int:
    try:
        adapter = request_adapter(power_preference)
    except SgemmBenchError as e:
        print(f"{e.kind}: {e}", file=sys.stderr)
        return 2

    text = json.dumps(describe_adapter(adapter), indent=2, sort_keys=True)
    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text + "\n")
    print(text)
    return 0
