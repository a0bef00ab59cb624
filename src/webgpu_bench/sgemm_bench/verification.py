from __future__ import annotations

from collections.abc import Sequence
from typing import Literal

from .errors import ValidationFailed

VerificationStatus = Literal["pass", "fail"]

VERIFICATION_MODE = "nonzero_sample"


def validate(sample_values: Sequence[float]) -> VerificationStatus:
    """Pass when any sampled output is non-zero.

    Positive operands with alpha=1.0 cannot legitimately produce an all-zero sample,
    so all zeros means the kernel did not run or the dispatch missed the region.
    """
    return "pass" if any(v != 0 for v in sample_values) else "fail"


def validation_warning(sample_values: Sequence[float]) -> str:
    return f"{ValidationFailed.kind}: all {len(sample_values)} sampled output value(s) are zero"
