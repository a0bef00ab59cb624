from __future__ import annotations

from pathlib import Path
from typing import Any

from mdutils.mdutils import MdUtils  # type: ignore[import-untyped]

from .export import load_results


def _format_float(v: float | None, digits: int = 3) -> str:
    if v is None:
        return "NA"
    return f"{v:.{digits}f}"


def _format_samples(values: list[float | None]) -> str:
    return ", ".join("NA" if v is None else f"{v:.4g}" for v in values)


def _format_pair(obj: dict[str, Any] | None, x: str, y: str) -> str:
    if not obj:
        return "NA"
    return f"{obj.get(x)}x{obj.get(y)}"


def generate_report(results: dict[str, Any]) -> str:
    run = results.get("run", {})
    records = list(results.get("records", []))
    settings = run.get("settings", {})
    kernel = run.get("kernel", {})
    adapter = (run.get("environment", {}) or {}).get("adapter") or {}
    adapter_info = adapter.get("info", {}) if isinstance(adapter, dict) else {}

    lines: list[str] = []
    lines.append("# WebGPU SGEMM Benchmark Report")
    lines.append("")
    lines.append(f"- Status: `{run.get('status', '')}`")
    if run.get("failure_reason"):
        lines.append(f"- Failure reason: {run['failure_reason']}")
    lines.append(f"- Started: `{run.get('started_at', '')}`  Finished: `{run.get('finished_at', '')}`")
    lines.append(f"- Adapter: `{adapter_info.get('description') or adapter_info.get('device') or 'unknown'}`")
    wg = kernel.get("workgroup_size") or []
    lines.append(f"- Kernel: `{kernel.get('name', '')}` (workgroup {'x'.join(str(v) for v in wg) or 'NA'})")
    lines.append(
        f"- Settings: alpha={settings.get('alpha')}, runs={settings.get('runs')}, "
        f"warmup={settings.get('warmup_runs')}, sample_len={settings.get('sample_len')}, seed={settings.get('seed')}"
    )
    lines.append("")

    lines.append("## Results")
    lines.append("")
    header = ["M", "N", "K", "workgroup", "dispatch", "avg_ms", "GFLOP/s", "samples", "verify"]
    lines.append("| " + " | ".join(header) + " |")
    lines.append("|" + "|".join(["---"] * len(header)) + "|")
    for r in records:
        s = r.get("shape", {})
        lp = r.get("launch_params")
        if r.get("status") == "ok":
            timing = r.get("timing", {})
            row = [
                _format_float(timing.get("average_time_ms")),
                _format_float(r.get("flops"), 2),
                _format_samples(r.get("sample_values", [])),
                r.get("verification", {}).get("status", "NA"),
            ]
        else:
            row = ["NA", "NA", "NA", f"error ({r.get('error', {}).get('kind', 'unknown')})"]
        lines.append(
            "| "
            + " | ".join(
                [
                    str(s.get("m")),
                    str(s.get("n")),
                    str(s.get("k")),
                    _format_pair(lp, "workgroup_size_x", "workgroup_size_y"),
                    _format_pair(lp, "dispatch_x", "dispatch_y"),
                    *row,
                ]
            )
            + " |"
        )
    lines.append("")

    failed = [r for r in records if r.get("status") == "error"]
    warned = [r for r in records if r.get("status") == "ok" and r.get("verification", {}).get("warning")]
    if failed or warned:
        lines.append("## Failures and Warnings")
        lines.append("")
        for r in failed:
            err = r.get("error", {})
            shape = r.get("shape", {})
            lines.append(
                f"- `{shape.get('m')}x{shape.get('n')}x{shape.get('k')}`: {err.get('kind')} during "
                f"{err.get('phase')} after {err.get('completed_runs')} run(s): {err.get('message')}"
            )
        for r in warned:
            shape = r.get("shape", {})
            lines.append(f"- `{shape.get('m')}x{shape.get('n')}x{shape.get('k')}`: {r['verification']['warning']}")
        lines.append("")

    lines.append("## Column Definitions")
    lines.append("")
    lines.append("- `M,N,K`: GEMM dimensions for `C[M,N] = alpha * A[M,K] @ B[K,N]`.")
    lines.append("- `workgroup`: Workgroup size declared by the kernel source (`@workgroup_size`).")
    lines.append("- `dispatch`: Workgroup grid `ceil(M/wx) x ceil(N/wy)`.")
    lines.append("- `avg_ms`: Mean wall-clock time of one full run (upload, dispatch, readback) over the timed runs.")
    lines.append("- `GFLOP/s`: `2*M*N*K / avg_time`, in units of 1e9 operations per second.")
    lines.append("- `samples`: First output values of the last timed run.")
    lines.append("- `verify`: `pass` if any sampled value is non-zero; `error (...)` if the shape hit a device error.")
    lines.append("")

    return "\n".join(lines)


def write_artifacts_readme(out_dir: Path) -> Path:
    md = MdUtils(file_name=str(out_dir / "README"), title="WebGPU SGEMM Benchmark Run")
    md.new_paragraph("This directory contains the outputs of one SGEMM benchmark sweep.")
    md.new_header(level=1, title="Outputs")
    md.new_list(
        [
            "`results.json`: normalized per-shape records (schema-validated)",
            "`report.md`: human-readable summary table",
        ]
    )
    md.new_header(level=1, title="Regenerate")
    md.new_paragraph(f"`python -m webgpu_bench.sgemm_bench report --out-dir {out_dir}`")
    md.create_md_file()
    return out_dir / "README.md"


def report_run(*, out_dir: Path) -> int:
    results_path = out_dir / "results.json"
    if not results_path.exists():
        raise FileNotFoundError(f"Missing results.json at {results_path}")

    results = load_results(results_path)
    (out_dir / "report.md").write_text(generate_report(results) + "\n")
    return 0
