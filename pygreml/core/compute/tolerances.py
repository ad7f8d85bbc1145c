"""
Tolerance tiers for numerical validation.

Defines precision expectations for the different likelihood evaluators:
- CPU FP64 (reference): LAPACK Cholesky through scipy
- GPU FP64 (CUDA): same expectations as CPU
- GPU FP32 (MPS): relaxed for single-precision arithmetic

Used by the test suite to compare backends against the CPU reference.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ToleranceTier:
    """Tolerance specification for numerical comparison."""
    rtol: float
    atol: float
    name: str
    description: str


CPU_FP64 = ToleranceTier(
    rtol=1e-10,
    atol=1e-12,
    name='cpu_fp64',
    description='CPU double precision reference',
)

GPU_FP64 = ToleranceTier(
    rtol=1e-8,
    atol=1e-10,
    name='gpu_fp64',
    description='GPU double precision, matches CPU reference',
)

# log|V| sums n log-pivots, so float32 loses digits roughly in log10(n)
GPU_FP32 = ToleranceTier(
    rtol=1e-3,
    atol=1e-3,
    name='gpu_fp32',
    description='GPU single precision, statistically equivalent',
)


def select_tolerance(backend_name: str) -> ToleranceTier:
    """Select appropriate tolerance tier for a given backend name."""
    if 'gpu' in backend_name:
        if 'fp64' in backend_name:
            return GPU_FP64
        return GPU_FP32
    return CPU_FP64
