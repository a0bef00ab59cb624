from __future__ import annotations

import logging
from typing import Any

import attrs
import numpy as np
import wgpu

from .config import Shape
from .device import DeviceContext, RunBuffers, check_shape_fits, run_buffers
from .dispatch import LaunchParams
from .errors import DeviceLost, KernelCompilationFailed, ReadbackFailed
from .kernel import KernelDescriptor

logger = logging.getLogger(__name__)

_BINDING_TYPES = {
    "read-only-storage": wgpu.BufferBindingType.read_only_storage,
    "storage": wgpu.BufferBindingType.storage,
    "uniform": wgpu.BufferBindingType.uniform,
}


@attrs.define(frozen=True, slots=True)
class CompiledKernel:
    pipeline: Any
    bind_group_layout: Any


@attrs.define(slots=True)
class SgemmExecutor:
    """Runs one SGEMM end to end: populate, bind, dispatch, read back, release.

    Compiled pipelines are cached per kernel source and shared across runs; buffers
    are never shared (see `device.run_buffers`).
    """

    ctx: DeviceContext
    _pipelines: dict[str, CompiledKernel] = attrs.field(factory=dict, init=False)

    def prepare(self, kernel: KernelDescriptor) -> CompiledKernel:
        cached = self._pipelines.get(kernel.sha256)
        if cached is not None:
            return cached

        device = self.ctx.device
        try:
            module = device.create_shader_module(code=kernel.source, label=f"{kernel.name}.wgsl")
            bgl = device.create_bind_group_layout(
                entries=[
                    {
                        "binding": slot.binding,
                        "visibility": wgpu.ShaderStage.COMPUTE,
                        "buffer": {"type": _BINDING_TYPES[slot.kind]},
                    }
                    for slot in kernel.binding_layout
                ]
            )
            layout = device.create_pipeline_layout(bind_group_layouts=[bgl])
            pipeline = device.create_compute_pipeline(
                layout=layout,
                compute={"module": module, "entry_point": kernel.entry_point},
                label=kernel.name,
            )
        except (wgpu.GPUError, RuntimeError) as e:
            raise KernelCompilationFailed(f"Failed to build pipeline for kernel {kernel.name!r}: {e}") from e

        compiled = CompiledKernel(pipeline=pipeline, bind_group_layout=bgl)
        self._pipelines[kernel.sha256] = compiled
        logger.debug("Compiled kernel %s (%s)", kernel.name, kernel.sha256[:12])
        return compiled

    def _bind_group(self, compiled: CompiledKernel, kernel: KernelDescriptor, bufs: RunBuffers) -> Any:
        by_name = {"a": bufs.a, "b": bufs.b, "result": bufs.result, "params": bufs.params}
        return self.ctx.device.create_bind_group(
            layout=compiled.bind_group_layout,
            entries=[
                {"binding": slot.binding, "resource": {"buffer": by_name[slot.name], "offset": 0, "size": by_name[slot.name].size}}
                for slot in kernel.binding_layout
            ],
        )

    def _encode_and_submit(self, compiled: CompiledKernel, bind_group: Any, bufs: RunBuffers, launch: LaunchParams) -> None:
        device = self.ctx.device
        encoder = device.create_command_encoder()
        compute_pass = encoder.begin_compute_pass()
        compute_pass.set_pipeline(compiled.pipeline)
        compute_pass.set_bind_group(0, bind_group)
        compute_pass.dispatch_workgroups(launch.dispatch_x, launch.dispatch_y, 1)
        compute_pass.end()
        encoder.copy_buffer_to_buffer(bufs.result, 0, bufs.readback, 0, bufs.result_nbytes)
        device.queue.submit([encoder.finish()])
        # The readback must not be mapped before the copy has retired.
        device.queue.on_submitted_work_done_sync()

    def _read_result(self, bufs: RunBuffers, count: int) -> np.ndarray:
        readback = bufs.readback
        try:
            readback.map_sync(wgpu.MapMode.READ)
        except (wgpu.GPUError, RuntimeError) as e:
            raise ReadbackFailed(f"map of readback buffer rejected: {e}") from e
        try:
            data = readback.read_mapped()
            return np.frombuffer(data, dtype=np.float32, count=count).copy()
        except (wgpu.GPUError, RuntimeError, ValueError) as e:
            raise ReadbackFailed(f"copy-out of mapped readback failed: {e}") from e
        finally:
            try:
                readback.unmap()
            except (wgpu.GPUError, RuntimeError) as e:
                raise ReadbackFailed(f"unmap of readback buffer failed: {e}") from e

    def check_shape(self, shape: Shape) -> None:
        check_shape_fits(self.ctx, shape)

    def run(
        self,
        *,
        shape: Shape,
        alpha: float,
        a: np.ndarray,
        b: np.ndarray,
        kernel: KernelDescriptor,
        launch: LaunchParams,
    ) -> tuple[np.ndarray, LaunchParams]:
        compiled = self.prepare(kernel)
        with run_buffers(self.ctx, shape, alpha, a, b) as bufs:
            try:
                bind_group = self._bind_group(compiled, kernel, bufs)
                self._encode_and_submit(compiled, bind_group, bufs, launch)
            except (wgpu.GPUError, RuntimeError) as e:
                raise DeviceLost(f"dispatch of {shape.to_axis_value()} failed: {e}") from e
            values = self._read_result(bufs, shape.m * shape.n)
        return values, launch
