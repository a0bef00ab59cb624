from __future__ import annotations

import attrs

from .config import Shape

# WebGPU default for maxComputeWorkgroupsPerDimension.
MAX_WORKGROUPS_PER_DIM = 65535


@attrs.define(frozen=True, slots=True)
class LaunchParams:
    dispatch_x: int
    dispatch_y: int
    workgroup_size_x: int
    workgroup_size_y: int

    def to_dict(self) -> dict[str, int]:
        return {
            "dispatch_x": self.dispatch_x,
            "dispatch_y": self.dispatch_y,
            "workgroup_size_x": self.workgroup_size_x,
            "workgroup_size_y": self.workgroup_size_y,
        }


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def plan(shape: Shape, workgroup_size: tuple[int, int], *, max_workgroups: int = MAX_WORKGROUPS_PER_DIM) -> LaunchParams:
    """Cover rows of C with x and columns with y; no device calls."""
    wx, wy = workgroup_size
    if wx <= 0 or wy <= 0:
        raise ValueError(f"workgroup size must be positive, got {workgroup_size}")

    dx = _ceil_div(shape.m, wx)
    dy = _ceil_div(shape.n, wy)
    if dx > max_workgroups or dy > max_workgroups:
        raise ValueError(
            f"dispatch ({dx}, {dy}) for shape {shape.to_axis_value()} exceeds maximum ({max_workgroups}) per dimension"
        )
    return LaunchParams(dispatch_x=dx, dispatch_y=dy, workgroup_size_x=wx, workgroup_size_y=wy)
