"""WebGPU SGEMM benchmark.

Runs a WGSL matrix-multiply kernel through wgpu over a fixed set of shapes, times a
warmup plus N runs per shape, checks the output for the all-zero failure signature,
and writes a schema-validated results.json with a Markdown report.
"""

from __future__ import annotations
