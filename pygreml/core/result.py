"""
Generic result container for pygreml computations.

The Result class is the envelope every fit is returned in. It carries the
domain-specific parameter payload next to structured metadata so that
timing, diagnostics and warnings are handled the same way everywhere.

Design decisions:
    - Generic over parameter payload P
    - info dict for flexible metadata (converged, iterations, diagnostics)
    - timing is optional (don't burden unit tests)
    - Immutable (frozen=True): a fitted model is a read-only record
"""

from dataclasses import dataclass, field
from typing import TypeVar, Generic, Any

P = TypeVar('P')  # Parameter payload type


@dataclass(frozen=True)
class Result(Generic[P]):
    """
    Immutable result envelope for a fitted model.

    Type Parameters:
        P: The domain-specific parameter payload type

    Attributes:
        params: Domain-specific parameters (coefficients, variance weights, ...)
        info: Structured metadata (method, convergence, diagnostics)
        timing: Execution timing breakdown, or None if not measured
        backend_name: Identifier of the backend that produced this result
        warnings: Non-fatal issues encountered during computation

    Examples:
        >>> Result(
        ...     params=GREMLParams(...),
        ...     info={'method': 'REML', 'converged': True, 'n_iter': 12},
        ...     timing={'total_seconds': 0.5, 'optimization': 0.45},
        ...     backend_name='cpu_cholesky'
        ... )
    """
    params: P
    info: dict[str, Any]
    timing: dict[str, float] | None
    backend_name: str
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def has_warning(self, substring: str) -> bool:
        """Check if any warning contains the given substring."""
        return any(substring in w for w in self.warnings)
