from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import cast

from . import workflow
from .config import DEFAULT_KERNEL, DEFAULT_SHAPE_SET, SHAPE_SETS, BenchSettings, Shape, iter_shapes
from .device import PowerPreference
from .report import report_run

KERNEL_ENV = "WEBGPU_BENCH_SGEMM_KERNEL"


def _abs_path(p: str) -> Path:
    return Path(p).expanduser().resolve()


def _shape(v: str) -> Shape:
    try:
        return Shape.from_axis_value(v)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webgpu_bench.sgemm_bench",
        description="SGEMM compute-kernel benchmark on WebGPU (wgpu).",
    )
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Run the shape sweep and write results.json + report.md.")
    run.add_argument("--out-dir", type=_abs_path, required=True)
    run.add_argument(
        "--kernel",
        default=None,
        help=f"Bundled kernel name or WGSL path (default: ${KERNEL_ENV} or {DEFAULT_KERNEL!r}).",
    )
    run.add_argument("--shape-set", default=DEFAULT_SHAPE_SET, choices=sorted(SHAPE_SETS))
    run.add_argument(
        "--shape",
        type=_shape,
        action="append",
        default=None,
        help="Explicit MxNxK shape; repeatable. Overrides --shape-set.",
    )
    run.add_argument("--alpha", type=float, default=1.0)
    run.add_argument("--runs", type=int, default=30)
    run.add_argument("--sample-len", type=int, default=4)
    run.add_argument("--seed", type=int, default=12345)
    run.add_argument("--power-preference", default="high-performance", choices=["high-performance", "low-power"])

    report = sub.add_parser("report", help="Regenerate report.md from results.json (no benchmark run).")
    report.add_argument("--out-dir", type=_abs_path, required=True)

    probe = sub.add_parser("probe", help="Print WebGPU adapter info, features and limits.")
    probe.add_argument("--out", type=_abs_path, default=None, help="Also write the JSON to this path.")
    probe.add_argument("--power-preference", default="high-performance", choices=["high-performance", "low-power"])

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, ns.log_level), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if ns.cmd == "run":
        try:
            settings = BenchSettings(alpha=ns.alpha, runs=ns.runs, sample_len=ns.sample_len, seed=ns.seed)
        except ValueError as e:
            parser.error(str(e))
        shapes = list(ns.shape) if ns.shape else list(iter_shapes(ns.shape_set))
        return workflow.run(
            out_dir=ns.out_dir,
            kernel_id=ns.kernel or os.environ.get(KERNEL_ENV) or DEFAULT_KERNEL,
            shapes=shapes,
            settings=settings,
            power_preference=cast(PowerPreference, ns.power_preference),
        )
    if ns.cmd == "report":
        return report_run(out_dir=ns.out_dir)
    if ns.cmd == "probe":
        return workflow.probe(out=ns.out, power_preference=cast(PowerPreference, ns.power_preference))

    raise AssertionError(f"Unhandled cmd: {ns.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
