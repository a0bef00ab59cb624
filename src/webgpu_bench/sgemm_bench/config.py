from __future__ import annotations

from collections.abc import Iterable

import attrs

U32_MAX = 0xFFFFFFFF


def _positive_u32(instance: object, attribute: attrs.Attribute, value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{attribute.name} must be an int, got {value!r}")
    if value <= 0:
        raise ValueError(f"{attribute.name} must be positive, got {value}")
    if value > U32_MAX:
        raise ValueError(f"{attribute.name}={value} does not fit the u32 parameter block")


@attrs.define(frozen=True, slots=True)
class Shape:
    m: int = attrs.field(validator=_positive_u32)
    n: int = attrs.field(validator=_positive_u32)
    k: int = attrs.field(validator=_positive_u32)

    @property
    def flop_count(self) -> int:
        return 2 * self.m * self.n * self.k

    def to_axis_value(self) -> str:
        return f"{self.m}x{self.n}x{self.k}"

    def to_dict(self) -> dict[str, int]:
        return {"m": self.m, "n": self.n, "k": self.k}

    @staticmethod
    def from_axis_value(v: str) -> "Shape":
        parts = v.lower().split("x")
        if len(parts) != 3:
            raise ValueError(f"Invalid shape axis value: {v!r}")
        m_s, n_s, k_s = parts
        return Shape(m=int(m_s), n=int(n_s), k=int(k_s))


@attrs.define(frozen=True, slots=True)
class BenchSettings:
    alpha: float = 1.0
    runs: int = attrs.field(default=30, validator=attrs.validators.ge(1))
    sample_len: int = attrs.field(default=4, validator=attrs.validators.ge(1))
    seed: int = 12345
    warmup_runs: int = attrs.field(default=1, validator=attrs.validators.ge(0))

    def to_dict(self) -> dict[str, float | int]:
        return {
            "alpha": self.alpha,
            "runs": self.runs,
            "sample_len": self.sample_len,
            "seed": self.seed,
            "warmup_runs": self.warmup_runs,
        }


# The largest reference shape occasionally reads back all zeros on some
# drivers; it stays in the set and is reported through verification.
SHAPE_SETS: dict[str, list[Shape]] = {
    "reference": [
        Shape(64, 64, 64),
        Shape(256, 256, 256),
        Shape(1024, 1024, 1024),
        Shape(4096, 4096, 4096),
        Shape(4096, 4096, 8000),
    ],
    # Minimal sets intended for fast smoke runs (CI/local sanity).
    "smoke": [Shape(64, 64, 64)],
    "small": [Shape(64, 64, 64), Shape(256, 256, 256)],
    # Edges not divisible by the workgroup size or the 4-wide inner loop.
    "nonsquare": [Shape(100, 37, 13), Shape(257, 129, 1023), Shape(1000, 64, 4097)],
}

DEFAULT_SHAPE_SET = "reference"
DEFAULT_KERNEL = "sgemm_tiled4"


def iter_shapes(shape_set: str) -> Iterable[Shape]:
    if shape_set not in SHAPE_SETS:
        raise KeyError(f"Unknown shape_set={shape_set!r}. Known: {sorted(SHAPE_SETS)}")
    yield from SHAPE_SETS[shape_set]
