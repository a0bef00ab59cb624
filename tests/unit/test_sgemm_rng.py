from __future__ import annotations

import numpy as np
import pytest

from webgpu_bench.sgemm_bench import rng
from webgpu_bench.sgemm_bench.config import Shape


def test_generate_is_deterministic_for_fixed_seed() -> None:
    a = rng.generate(1000, 12345)
    b = rng.generate(1000, 12345)
    assert a.dtype == np.float32
    assert np.array_equal(a, b)
    assert not np.array_equal(a, rng.generate(1000, 54321))


@pytest.mark.parametrize("length", [0, 1, 7, 70_000])
def test_generate_values_in_range(length: int) -> None:
    v = rng.generate(length, 12345)
    assert v.shape == (length,)
    if length:
        assert (v >= np.float32(0.01)).all()
        assert (v < np.float32(1.0)).all()
        assert (v != 0).all()


def test_generate_matches_scalar_recurrence_across_block_boundary() -> None:
    length = (1 << 16) + 5
    x = 12345
    expected_tail = []
    for i in range(length):
        x = (x * 48271) % 2147483647
        if i >= length - 10:
            expected_tail.append(x)
    states = rng.lcg_states(length, 12345)
    assert states[-10:].tolist() == expected_tail
    assert states[0] == (12345 * 48271) % 2147483647


def test_zero_seed_does_not_collapse_to_fixed_point() -> None:
    v = rng.generate(16, 0)
    assert len(set(v.tolist())) > 1
    assert np.array_equal(v, rng.generate(16, 2147483647))


def test_top_of_range_is_clamped_below_one() -> None:
    # The state just below the modulus maps to 1 - 0.99/M, which rounds to 1.0 in float32.
    v = rng.generate(1, 2147483646 * pow(48271, -1, 2147483647))
    assert v[0] < np.float32(1.0)


def test_negative_length_rejected() -> None:
    with pytest.raises(ValueError):
        rng.generate(-1, 1)


def test_operands_split_single_stream() -> None:
    shape = Shape(3, 5, 4)
    a, b = rng.operands(shape, 12345)
    stream = rng.generate(3 * 4 + 4 * 5, 12345)
    assert a.size == 12 and b.size == 20
    assert np.array_equal(np.concatenate([a, b]), stream)
