"""Error taxonomy for the SGEMM benchmark.

Each error carries a stable ``kind`` string that is written into shape records.
Sweep-fatal errors (`ResourceNotFound`, `KernelCompilationFailed`, `AdapterUnavailable`)
propagate out of the sweep; the others are caught at the shape boundary.
"""

from __future__ import annotations


class SgemmBenchError(Exception):
    kind = "SgemmBenchError"
    sweep_fatal = False


class ResourceNotFound(SgemmBenchError):
    kind = "ResourceNotFound"
    sweep_fatal = True


class KernelCompilationFailed(SgemmBenchError):
    kind = "KernelCompilationFailed"
    sweep_fatal = True


class AllocationFailed(SgemmBenchError):
    kind = "AllocationFailed"


class DeviceOutOfMemory(AllocationFailed):
    kind = "DeviceOutOfMemory"


class DeviceLost(SgemmBenchError):
    kind = "DeviceLost"


class ReadbackFailed(SgemmBenchError):
    kind = "ReadbackFailed"


class AdapterUnavailable(SgemmBenchError):
    kind = "AdapterUnavailable"
    sweep_fatal = True


# Not raised by the loop: its kind prefixes the warning attached to a record
# whose sample is all zeros.
class ValidationFailed(SgemmBenchError):
    kind = "ValidationFailed"
