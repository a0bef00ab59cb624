"""WebGPU device context and per-run buffer management.

`open_device_context` owns the adapter/device for a whole sweep. `run_buffers` scopes
the five buffers of one SGEMM run: everything created inside it is destroyed when the
block exits, including when allocation itself fails halfway.
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from typing import Any, Literal

import attrs
import numpy as np
import wgpu

from .config import Shape
from .errors import AdapterUnavailable, AllocationFailed, DeviceOutOfMemory

logger = logging.getLogger(__name__)

PowerPreference = Literal["high-performance", "low-power"]

FLOAT32_BYTES = 4
# offset 0=m, 4=n, 8=k (u32), 12=alpha (f32), little-endian.
PARAMS_FORMAT = "<IIIf"
PARAMS_SIZE = struct.calcsize(PARAMS_FORMAT)

# COPY_SRC on operands lets the host read them back to check the transfer path.
OPERAND_USAGE = wgpu.BufferUsage.STORAGE | wgpu.BufferUsage.COPY_DST | wgpu.BufferUsage.COPY_SRC
RESULT_USAGE = wgpu.BufferUsage.STORAGE | wgpu.BufferUsage.COPY_SRC
READBACK_USAGE = wgpu.BufferUsage.MAP_READ | wgpu.BufferUsage.COPY_DST
PARAMS_USAGE = wgpu.BufferUsage.UNIFORM | wgpu.BufferUsage.COPY_DST

_SIZE_LIMITS = ("max-buffer-size", "max-storage-buffer-binding-size")


@attrs.define(slots=True)
class DeviceContext:
    device: Any
    adapter: Any = None
    closed: bool = False

    @property
    def limits(self) -> dict[str, int]:
        return dict(getattr(self.device, "limits", {}) or {})

    @property
    def max_buffer_size(self) -> int | None:
        v = self.limits.get("max-buffer-size")
        return int(v) if v is not None else None

    @property
    def max_storage_binding_size(self) -> int | None:
        v = self.limits.get("max-storage-buffer-binding-size")
        return int(v) if v is not None else None

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.device.destroy()


@attrs.define(frozen=True, slots=True)
class RunBuffers:
    a: Any
    b: Any
    result: Any
    readback: Any
    params: Any
    result_nbytes: int


def describe_adapter(adapter: Any) -> dict[str, Any]:
    """Adapter identity, features and limits as plain JSON-able data."""
    info = getattr(adapter, "info", None) or {}
    return {
        "info": {str(k): str(v) for k, v in dict(info).items()},
        "features": sorted(str(f) for f in (getattr(adapter, "features", None) or ())),
        "limits": {str(k): int(v) for k, v in dict(getattr(adapter, "limits", None) or {}).items()},
    }


def request_adapter(power_preference: PowerPreference = "high-performance") -> Any:
    try:
        adapter = wgpu.gpu.request_adapter_sync(power_preference=power_preference)
    except RuntimeError as e:
        raise AdapterUnavailable(f"No WebGPU adapter available: {e}") from e
    if adapter is None:
        raise AdapterUnavailable("No WebGPU adapter available")
    return adapter


@contextmanager
def open_device_context(power_preference: PowerPreference = "high-performance") -> Iterator[DeviceContext]:
    """Create the device once for a sweep; destroy it on exit."""
    adapter = request_adapter(power_preference)
    # Large shapes need more than the WebGPU default 128 MiB binding size.
    adapter_limits = dict(adapter.limits)
    required_limits = {k: adapter_limits[k] for k in _SIZE_LIMITS if k in adapter_limits}
    try:
        device = adapter.request_device_sync(required_limits=required_limits, label="sgemm-bench")
    except (wgpu.GPUError, RuntimeError) as e:
        raise AdapterUnavailable(f"Failed to create WebGPU device: {e}") from e
    ctx = DeviceContext(device=device, adapter=adapter)
    logger.info("Opened WebGPU device: %s", describe_adapter(adapter)["info"].get("description", "unknown"))
    try:
        yield ctx
    finally:
        ctx.close()


def pack_params(shape: Shape, alpha: float) -> bytes:
    return struct.pack(PARAMS_FORMAT, shape.m, shape.n, shape.k, alpha)


def _as_operand(values: np.ndarray, expected_len: int, name: str) -> np.ndarray:
    arr = np.ascontiguousarray(values, dtype=np.float32).reshape(-1)
    if arr.size != expected_len:
        raise ValueError(f"operand {name} has {arr.size} values, expected {expected_len}")
    return arr


def _check_size(ctx: DeviceContext, nbytes: int, label: str, *, storage: bool) -> None:
    limit = ctx.max_buffer_size
    if limit is not None and nbytes > limit:
        raise DeviceOutOfMemory(f"{label}: {nbytes} bytes exceeds max-buffer-size={limit}")
    binding_limit = ctx.max_storage_binding_size
    if storage and binding_limit is not None and nbytes > binding_limit:
        raise DeviceOutOfMemory(f"{label}: {nbytes} bytes exceeds max-storage-buffer-binding-size={binding_limit}")


def check_shape_fits(ctx: DeviceContext, shape: Shape) -> None:
    """Raise DeviceOutOfMemory if any storage buffer of `shape` exceeds the device limits."""
    _check_size(ctx, shape.m * shape.k * FLOAT32_BYTES, "sgemm.a", storage=True)
    _check_size(ctx, shape.k * shape.n * FLOAT32_BYTES, "sgemm.b", storage=True)
    _check_size(ctx, shape.m * shape.n * FLOAT32_BYTES, "sgemm.result", storage=True)


def _create_buffer(ctx: DeviceContext, stack: ExitStack, *, size: int, usage: int, label: str, storage: bool) -> Any:
    _check_size(ctx, size, label, storage=storage)
    try:
        buf = ctx.device.create_buffer(size=size, usage=usage, label=label)
    except wgpu.GPUOutOfMemoryError as e:
        raise DeviceOutOfMemory(f"{label}: {e}") from e
    except (wgpu.GPUError, RuntimeError) as e:
        raise AllocationFailed(f"{label}: {e}") from e
    stack.callback(buf.destroy)
    return buf


@contextmanager
def run_buffers(ctx: DeviceContext, shape: Shape, alpha: float, a: np.ndarray, b: np.ndarray) -> Iterator[RunBuffers]:
    """Allocate and populate one run's buffers; destroy all of them on exit."""
    a32 = _as_operand(a, shape.m * shape.k, "a")
    b32 = _as_operand(b, shape.k * shape.n, "b")
    result_nbytes = shape.m * shape.n * FLOAT32_BYTES

    with ExitStack() as stack:
        bufs = RunBuffers(
            a=_create_buffer(ctx, stack, size=a32.nbytes, usage=OPERAND_USAGE, label="sgemm.a", storage=True),
            b=_create_buffer(ctx, stack, size=b32.nbytes, usage=OPERAND_USAGE, label="sgemm.b", storage=True),
            result=_create_buffer(ctx, stack, size=result_nbytes, usage=RESULT_USAGE, label="sgemm.result", storage=True),
            readback=_create_buffer(
                ctx, stack, size=result_nbytes, usage=READBACK_USAGE, label="sgemm.readback", storage=False
            ),
            params=_create_buffer(ctx, stack, size=PARAMS_SIZE, usage=PARAMS_USAGE, label="sgemm.params", storage=False),
            result_nbytes=result_nbytes,
        )
        try:
            ctx.device.queue.write_buffer(bufs.a, 0, a32)
            ctx.device.queue.write_buffer(bufs.b, 0, b32)
            ctx.device.queue.write_buffer(bufs.params, 0, pack_params(shape, alpha))
        except (wgpu.GPUError, RuntimeError) as e:
            raise AllocationFailed(f"host->device write failed: {e}") from e
        yield bufs


def read_buffer_bytes(ctx: DeviceContext, buffer: Any) -> bytes:
    """Copy a COPY_SRC buffer back to the host (transfer-path check, not the benchmark path)."""
    return bytes(ctx.device.queue.read_buffer(buffer))
