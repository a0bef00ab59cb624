from __future__ import annotations

import struct
from types import SimpleNamespace
from typing import Any

import numpy as np
import pytest
import wgpu

from webgpu_bench.sgemm_bench.device import DeviceContext
from webgpu_bench.sgemm_bench.kernel import extract_workgroup_size


class FakeBuffer:
    def __init__(self, device: "FakeDevice", *, size: int, usage: int, label: str) -> None:
        self.device = device
        self.size = size
        self.usage = usage
        self.label = label
        self.data = bytearray(size)
        self.destroyed = False
        self.map_state = "unmapped"

    def destroy(self) -> None:
        self.destroyed = True
        self.device.live.discard(self)

    def map_sync(self, mode: int, offset: int | None = None, size: int | None = None) -> None:
        if self.device.fail_map:
            raise RuntimeError("map rejected")
        assert self.usage & wgpu.BufferUsage.MAP_READ, "mapping a non-mappable buffer"
        assert not self.device.queue.pending, "mapped while submitted work is outstanding"
        self.map_state = "mapped"

    def read_mapped(self, buffer_offset: int | None = None, size: int | None = None, *, copy: bool = True) -> memoryview:
        assert self.map_state == "mapped"
        return memoryview(bytes(self.data))

    def unmap(self) -> None:
        if self.device.fail_unmap:
            raise RuntimeError("device lost during unmap")
        self.map_state = "unmapped"


class FakeQueue:
    def __init__(self, device: "FakeDevice") -> None:
        self.device = device
        self.pending = False
        self.submits = 0

    def write_buffer(self, buffer: FakeBuffer, buffer_offset: int, data: Any) -> None:
        if self.device.fail_write:
            raise RuntimeError("queue write rejected")
        raw = data.tobytes() if hasattr(data, "tobytes") else bytes(data)
        buffer.data[buffer_offset : buffer_offset + len(raw)] = raw

    def read_buffer(self, buffer: FakeBuffer, buffer_offset: int = 0, size: int | None = None) -> memoryview:
        end = buffer.size if size is None else buffer_offset + size
        return memoryview(bytes(buffer.data[buffer_offset:end]))

    def submit(self, command_buffers: list[Any]) -> None:
        self.submits += 1
        if self.device.lose_on_submit is not None and self.submits >= self.device.lose_on_submit:
            raise RuntimeError("device lost")
        for cb in command_buffers:
            for cmd in cb.commands:
                self.device.execute(cmd)
        self.pending = True

    def on_submitted_work_done_sync(self) -> None:
        self.pending = False


class FakePass:
    def __init__(self, encoder: "FakeEncoder") -> None:
        self.encoder = encoder
        self.pipeline: Any = None
        self.bind_group: Any = None

    def set_pipeline(self, pipeline: Any) -> None:
        self.pipeline = pipeline

    def set_bind_group(self, index: int, bind_group: Any) -> None:
        assert index == 0
        self.bind_group = bind_group

    def dispatch_workgroups(self, x: int, y: int = 1, z: int = 1) -> None:
        self.encoder.commands.append(("dispatch", self.pipeline, self.bind_group, x, y))

    def end(self) -> None:
        pass


class FakeEncoder:
    def __init__(self) -> None:
        self.commands: list[tuple] = []

    def begin_compute_pass(self) -> FakePass:
        return FakePass(self)

    def copy_buffer_to_buffer(self, src: FakeBuffer, src_offset: int, dst: FakeBuffer, dst_offset: int, size: int) -> None:
        self.commands.append(("copy", src, src_offset, dst, dst_offset, size))

    def finish(self) -> SimpleNamespace:
        return SimpleNamespace(commands=list(self.commands))


class FakeDevice:
    """In-memory stand-in for a wgpu device that runs the SGEMM binding contract with numpy."""

    def __init__(self) -> None:
        self.limits = {"max-buffer-size": 1 << 30, "max-storage-buffer-binding-size": 1 << 30}
        self.queue = FakeQueue(self)
        self.live: set[FakeBuffer] = set()
        self.created: list[FakeBuffer] = []
        self.fail_create_at: int | None = None
        self.lose_on_submit: int | None = None
        self.fail_create_invalid_at: int | None = None
        self.fail_write = False
        self.fail_map = False
        self.fail_unmap = False
        self.skip_dispatch = False
        self.compile_error = False
        self.pipelines_built = 0
        self.destroyed = False

    def create_buffer(self, *, size: int, usage: int, label: str = "") -> FakeBuffer:
        if self.fail_create_at is not None and len(self.created) + 1 == self.fail_create_at:
            raise wgpu.GPUOutOfMemoryError("out of memory")
        if self.fail_create_invalid_at is not None and len(self.created) + 1 == self.fail_create_invalid_at:
            raise wgpu.GPUValidationError("invalid buffer descriptor")
        buf = FakeBuffer(self, size=size, usage=usage, label=label)
        self.created.append(buf)
        self.live.add(buf)
        return buf

    def create_shader_module(self, *, code: str, label: str = "") -> SimpleNamespace:
        return SimpleNamespace(code=code)

    def create_bind_group_layout(self, *, entries: list[dict]) -> SimpleNamespace:
        return SimpleNamespace(entries=entries)

    def create_pipeline_layout(self, *, bind_group_layouts: list[Any]) -> SimpleNamespace:
        return SimpleNamespace(bind_group_layouts=bind_group_layouts)

    def create_compute_pipeline(self, *, layout: Any, compute: dict, label: str = "") -> SimpleNamespace:
        if self.compile_error:
            raise wgpu.GPUValidationError("shader compilation failed")
        self.pipelines_built += 1
        return SimpleNamespace(layout=layout, module=compute["module"], entry_point=compute["entry_point"])

    def create_bind_group(self, *, layout: Any, entries: list[dict]) -> SimpleNamespace:
        return SimpleNamespace(buffers={e["binding"]: e["resource"]["buffer"] for e in entries})

    def create_command_encoder(self) -> FakeEncoder:
        return FakeEncoder()

    def destroy(self) -> None:
        self.destroyed = True

    def execute(self, cmd: tuple) -> None:
        if cmd[0] == "copy":
            _, src, so, dst, do, size = cmd
            dst.data[do : do + size] = src.data[so : so + size]
            return

        _, pipeline, bind_group, gx, gy = cmd
        if self.skip_dispatch:
            return
        bufs = bind_group.buffers
        m, n, k, alpha = struct.unpack("<IIIf", bytes(bufs[3].data[:16]))
        a = np.frombuffer(bytes(bufs[0].data), dtype=np.float32).reshape(m, k)
        b = np.frombuffer(bytes(bufs[1].data), dtype=np.float32).reshape(k, n)
        wx, wy = extract_workgroup_size(pipeline.module.code)
        rows, cols = min(m, gx * wx), min(n, gy * wy)
        out = np.frombuffer(bufs[2].data, dtype=np.float32).reshape(m, n)
        out[:rows, :cols] = (a[:rows] @ b[:, :cols]) * np.float32(alpha)


@pytest.fixture
def fake_device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
def fake_ctx(fake_device: FakeDevice) -> DeviceContext:
    return DeviceContext(device=fake_device)
