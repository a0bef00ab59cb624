from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Literal, Protocol

import attrs
import numpy as np

from . import rng
from .config import BenchSettings, Shape
from .dispatch import LaunchParams, plan
from .errors import AllocationFailed, SgemmBenchError
from .kernel import KernelDescriptor
from .verification import VerificationStatus, validate, validation_warning

logger = logging.getLogger(__name__)

Phase = Literal["idle", "warmup", "measuring", "aggregated"]
Clock = Callable[[], float]


class ShapeExecutor(Protocol):
    def prepare(self, kernel: KernelDescriptor) -> object: ...

    def check_shape(self, shape: Shape) -> None: ...

    def run(
        self,
        *,
        shape: Shape,
        alpha: float,
        a: np.ndarray,
        b: np.ndarray,
        kernel: KernelDescriptor,
        launch: LaunchParams,
    ) -> tuple[np.ndarray, LaunchParams]: ...


@attrs.define(frozen=True, slots=True)
class RunSample:
    shape: Shape
    launch_params: LaunchParams
    average_time_ms: float
    flops: float
    sample_values: tuple[float, ...]
    timings_ms: tuple[float, ...]
    verification: VerificationStatus
    warning: str | None = None

    @property
    def runs(self) -> int:
        return len(self.timings_ms)


@attrs.define(frozen=True, slots=True)
class ShapeFailure:
    shape: Shape
    error: str
    message: str
    phase: Phase
    completed_runs: int
    launch_params: LaunchParams | None = None


ShapeRecord = RunSample | ShapeFailure


@attrs.define(frozen=True, slots=True)
class BenchmarkReport:
    records: tuple[ShapeRecord, ...]
    settings: BenchSettings
    kernel: KernelDescriptor
    started_at: str
    finished_at: str

    @property
    def failures(self) -> list[ShapeFailure]:
        return [r for r in self.records if isinstance(r, ShapeFailure)]

    @property
    def validation_failures(self) -> list[RunSample]:
        return [r for r in self.records if isinstance(r, RunSample) and r.verification == "fail"]

    @property
    def status(self) -> Literal["pass", "fail"]:
        return "fail" if self.failures or self.validation_failures else "pass"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def compute_flops(shape: Shape, average_time_ms: float) -> float:
    """GFLOP/s for one C = alpha*A*B; 0.0 when the clock could not resolve the run."""
    if average_time_ms <= 0:
        return 0.0
    return (shape.flop_count * 1000) / average_time_ms / 1e9


def bench_shape(
    executor: ShapeExecutor,
    shape: Shape,
    kernel: KernelDescriptor,
    settings: BenchSettings,
    *,
    clock: Clock = time.perf_counter,
) -> ShapeRecord:
    """Warmup then `settings.runs` timed runs of one shape; never raises for device errors."""
    phase: Phase = "idle"
    completed = 0
    launch: LaunchParams | None = None
    try:
        launch = plan(shape, kernel.workgroup_size)
    except ValueError as e:
        logger.warning("Shape %s skipped: %s", shape.to_axis_value(), e)
        return ShapeFailure(shape=shape, error="InvalidLaunch", message=str(e), phase=phase, completed_runs=0)

    logger.info(
        "Shape %s: dispatch=(%d, %d) workgroup=(%d, %d)",
        shape.to_axis_value(),
        launch.dispatch_x,
        launch.dispatch_y,
        launch.workgroup_size_x,
        launch.workgroup_size_y,
    )

    timings_ms: list[float] = []
    last: np.ndarray | None = None
    try:
        executor.check_shape(shape)
        try:
            a, b = rng.operands(shape, settings.seed)
        except MemoryError as e:
            raise AllocationFailed(f"host operands for {shape.to_axis_value()}: {e}") from e

        phase = "warmup"
        for _ in range(settings.warmup_runs):
            executor.run(shape=shape, alpha=settings.alpha, a=a, b=b, kernel=kernel, launch=launch)

        phase = "measuring"
        for i in range(settings.runs):
            t0 = clock()
            values, launch = executor.run(shape=shape, alpha=settings.alpha, a=a, b=b, kernel=kernel, launch=launch)
            elapsed_ms = (clock() - t0) * 1e3
            timings_ms.append(elapsed_ms)
            # Only the final run's output is kept.
            last = values
            completed = i + 1
            logger.debug("Shape %s run %d/%d: %.3f ms", shape.to_axis_value(), completed, settings.runs, elapsed_ms)
    except SgemmBenchError as e:
        if e.sweep_fatal:
            raise
        logger.warning("Shape %s failed during %s after %d run(s): %s: %s", shape.to_axis_value(), phase, completed, e.kind, e)
        return ShapeFailure(
            shape=shape, error=e.kind, message=str(e), phase=phase, completed_runs=completed, launch_params=launch
        )

    phase = "aggregated"
    average_time_ms = sum(timings_ms) / settings.runs
    flops = compute_flops(shape, average_time_ms)
    sample = tuple(float(v) for v in (last[: settings.sample_len] if last is not None else ()))
    verification = validate(sample)
    warning = None
    if verification == "fail":
        warning = validation_warning(sample)
        logger.warning("Shape %s: %s", shape.to_axis_value(), warning)

    logger.info("Shape %s: avg %.3f ms, %.2f GFLOP/s, verify=%s", shape.to_axis_value(), average_time_ms, flops, verification)
    return RunSample(
        shape=shape,
        launch_params=launch,
        average_time_ms=average_time_ms,
        flops=flops,
        sample_values=sample,
        timings_ms=tuple(timings_ms),
        verification=verification,
        warning=warning,
    )


def run_sweep(
    executor: ShapeExecutor,
    kernel: KernelDescriptor,
    shapes: Iterable[Shape],
    settings: BenchSettings,
    *,
    clock: Clock = time.perf_counter,
) -> BenchmarkReport:
    """Benchmark shapes strictly in order; one record per shape."""
    started_at = _utc_now_iso()
    # Compile once up front; a broken kernel aborts before any shape runs.
    executor.prepare(kernel)

    records: list[ShapeRecord] = []
    for shape in shapes:
        records.append(bench_shape(executor, shape, kernel, settings, clock=clock))

    return BenchmarkReport(
        records=tuple(records),
        settings=settings,
        kernel=kernel,
        started_at=started_at,
        finished_at=_utc_now_iso(),
    )
