from __future__ import annotations

import hashlib
import re
from importlib import resources
from pathlib import Path
from typing import Literal

import attrs

from .errors import ResourceNotFound

BindingKind = Literal["read-only-storage", "storage", "uniform"]

DEFAULT_WORKGROUP_SIZE: tuple[int, int] = (16, 8)
ENTRY_POINT = "main"
KERNEL_SUFFIX = ".wgsl"

# Optional third component is accepted and ignored (the grid is 2-D).
_WORKGROUP_SIZE_RE = re.compile(r"@workgroup_size\s*\(\s*(\d+)\s*,\s*(\d+)\s*(?:,\s*\d+\s*)?,?\s*\)")


@attrs.define(frozen=True, slots=True)
class BindingSpec:
    binding: int
    kind: BindingKind
    name: str


# Contract between harness and kernel source; params layout lives in device.pack_params.
BINDING_LAYOUT: tuple[BindingSpec, ...] = (
    BindingSpec(binding=0, kind="read-only-storage", name="a"),
    BindingSpec(binding=1, kind="read-only-storage", name="b"),
    BindingSpec(binding=2, kind="storage", name="result"),
    BindingSpec(binding=3, kind="uniform", name="params"),
)


@attrs.define(frozen=True, slots=True)
class KernelDescriptor:
    name: str
    source: str
    workgroup_size: tuple[int, int]
    binding_layout: tuple[BindingSpec, ...] = BINDING_LAYOUT
    entry_point: str = ENTRY_POINT

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.source.encode()).hexdigest()

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "entry_point": self.entry_point,
            "workgroup_size": list(self.workgroup_size),
            "sha256": self.sha256,
        }


def bundled_kernel_names() -> list[str]:
    root = resources.files(__package__) / "kernels"
    return sorted(p.name[: -len(KERNEL_SUFFIX)] for p in root.iterdir() if p.name.endswith(KERNEL_SUFFIX))


def load_kernel_source(identifier: str) -> str:
    """Resolve a bundled kernel name or a filesystem path to WGSL text."""
    if Path(identifier).name == identifier:
        bundled = resources.files(__package__) / "kernels" / f"{identifier}{KERNEL_SUFFIX}"
        if bundled.is_file():
            return bundled.read_text()

    p = Path(identifier).expanduser()
    if p.is_file():
        try:
            return p.read_text()
        except OSError as e:
            raise ResourceNotFound(f"Failed to read kernel source {p}: {e}") from e

    raise ResourceNotFound(
        f"Kernel source not found: {identifier!r} (not a file; bundled kernels: {bundled_kernel_names()})"
    )


def extract_workgroup_size(source: str) -> tuple[int, int]:
    """Return the declared (x, y) workgroup size, or DEFAULT_WORKGROUP_SIZE."""
    m = _WORKGROUP_SIZE_RE.search(source)
    if m is None:
        return DEFAULT_WORKGROUP_SIZE
    x, y = int(m.group(1)), int(m.group(2))
    if x <= 0 or y <= 0:
        return DEFAULT_WORKGROUP_SIZE
    return x, y


def kernel_from_source(source: str, *, name: str = "inline") -> KernelDescriptor:
    return KernelDescriptor(name=name, source=source, workgroup_size=extract_workgroup_size(source))


def load_kernel(identifier: str) -> KernelDescriptor:
    source = load_kernel_source(identifier)
    return kernel_from_source(source, name=Path(identifier).stem)
