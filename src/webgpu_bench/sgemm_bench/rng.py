"""Deterministic operand fill (Lehmer / MINSTD linear congruential generator).

``x[i+1] = (x[i] * 48271) mod (2**31 - 1)`` mapped to ``0.01 + 0.99 * x / (2**31 - 1)``.
The state never reaches 0, so no value is ever 0.0.
"""

from __future__ import annotations

from collections.abc import Iterator
from functools import lru_cache

import numpy as np

from .config import Shape

MODULUS = 2147483647
MULTIPLIER = 48271
LOW = 0.01
SPAN = 0.99

_BLOCK = 1 << 16
_FLOAT32_BELOW_ONE = np.nextafter(np.float32(1.0), np.float32(0.0))


@lru_cache(maxsize=1)
def _block_powers() -> np.ndarray:
    """Return ``MULTIPLIER**j mod MODULUS`` for j = 1.._BLOCK as int64."""
    out = np.empty(_BLOCK, dtype=np.int64)
    p = 1
    for j in range(_BLOCK):
        p = (p * MULTIPLIER) % MODULUS
        out[j] = p
    out.setflags(write=False)
    return out


def _normalize_seed(seed: int) -> int:
    x = int(seed) % MODULUS
    return x if x != 0 else 1


def _iter_state_blocks(length: int, seed: int) -> Iterator[tuple[int, np.ndarray]]:
    pows = _block_powers()
    x = _normalize_seed(seed)
    # Products stay below 2**62, so int64 arithmetic is exact.
    for start in range(0, length, _BLOCK):
        count = min(_BLOCK, length - start)
        block = (x * pows[:count]) % MODULUS
        yield start, block
        x = int(block[-1])


def lcg_states(length: int, seed: int) -> np.ndarray:
    """Return the raw states ``x[1]..x[length]`` (int64)."""
    if length < 0:
        raise ValueError(f"length must be >= 0, got {length}")
    out = np.empty(length, dtype=np.int64)
    for start, block in _iter_state_blocks(length, seed):
        out[start : start + block.size] = block
    return out


def generate(length: int, seed: int) -> np.ndarray:
    if length < 0:
        raise ValueError(f"length must be >= 0, got {length}")
    out = np.empty(length, dtype=np.float32)
    for start, block in _iter_state_blocks(length, seed):
        out[start : start + block.size] = LOW + SPAN * (block / MODULUS)
    # 1 - 0.99/MODULUS rounds up to 1.0 in float32.
    np.minimum(out, _FLOAT32_BELOW_ONE, out=out)
    return out


def operands(shape: Shape, seed: int) -> tuple[np.ndarray, np.ndarray]:
    """Draw A (m*k) then B (k*n) from a single stream."""
    size_a = shape.m * shape.k
    stream = generate(size_a + shape.k * shape.n, seed)
    return stream[:size_a], stream[size_a:]
