from __future__ import annotations

from pathlib import Path

import pytest

from webgpu_bench.sgemm_bench.errors import ResourceNotFound
from webgpu_bench.sgemm_bench.kernel import (
    BINDING_LAYOUT,
    DEFAULT_WORKGROUP_SIZE,
    bundled_kernel_names,
    extract_workgroup_size,
    load_kernel,
    load_kernel_source,
)


@pytest.mark.parametrize(
    "source,expected",
    [
        ("@compute @workgroup_size(8, 8)\nfn main() {}", (8, 8)),
        ("@compute @workgroup_size( 32 ,4 )\nfn main() {}", (32, 4)),
        ("@compute @workgroup_size(16, 2, 1)\nfn main() {}", (16, 2)),
        ("@compute @workgroup_size(16, 4,)\nfn main() {}", (16, 4)),
    ],
)
def test_extract_workgroup_size_declared(source: str, expected: tuple[int, int]) -> None:
    assert extract_workgroup_size(source) == expected


@pytest.mark.parametrize(
    "source",
    [
        "fn main() {}",
        "@compute @workgroup_size(64)\nfn main() {}",
        "@compute @workgroup_size(WG_X, 8)\nfn main() {}",
        "@compute @workgroup_size(0, 8)\nfn main() {}",
        "",
    ],
)
def test_extract_workgroup_size_falls_back_to_default(source: str) -> None:
    assert extract_workgroup_size(source) == DEFAULT_WORKGROUP_SIZE == (16, 8)


def test_bundled_kernel_loads_into_descriptor() -> None:
    assert "sgemm_tiled4" in bundled_kernel_names()
    k = load_kernel("sgemm_tiled4")
    assert k.name == "sgemm_tiled4"
    assert k.workgroup_size == (8, 8)
    assert k.entry_point == "main"
    assert k.binding_layout == BINDING_LAYOUT
    assert [b.binding for b in k.binding_layout] == [0, 1, 2, 3]
    assert "fn main" in k.source
    assert len(k.sha256) == 64


def test_load_kernel_from_path(tmp_path: Path) -> None:
    p = tmp_path / "custom.wgsl"
    p.write_text("@compute @workgroup_size(4, 2)\nfn main() {}\n")
    k = load_kernel(str(p))
    assert k.name == "custom"
    assert k.workgroup_size == (4, 2)


def test_load_kernel_source_missing_raises(tmp_path: Path) -> None:
    with pytest.raises(ResourceNotFound):
        load_kernel_source(str(tmp_path / "nope.wgsl"))
    with pytest.raises(ResourceNotFound):
        load_kernel_source("no_such_bundled_kernel")
