"""
Covariance assembly: V = sum_i delta_i * R_i.

The workspace owns a single n x n buffer that is allocated once and
overwritten on every likelihood evaluation. Only the upper triangle
(row <= column) is written; the factorization downstream is asked for
an upper Cholesky factor and never reads the lower triangle.

The buffer is Fortran-ordered so that (a) each column of the upper
triangle is a contiguous slice and (b) LAPACK can factor it in place.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from pygreml.core.exceptions import DimensionError, ValidationError
from pygreml.varcomp._relationship import Relationship, RelationshipKind


def _accumulate_dense(C: NDArray, alpha: float, B: NDArray) -> None:
    # C[j, i] += alpha * B[j, i] for j <= i, one column at a time
    for i in range(C.shape[1]):
        C[:i + 1, i] += alpha * B[:i + 1, i]


def _accumulate_diagonal(C: NDArray, alpha: float, d: NDArray) -> None:
    idx = np.arange(C.shape[0])
    C[idx, idx] += alpha * d


class CovarianceWorkspace:
    """Reusable upper-triangular accumulator for V.

    Attributes:
        n: Matrix dimension.
        buffer: (n, n) Fortran-ordered float64 array. Valid in its upper
            triangle after assemble(); may be overwritten in place by a
            factorization afterwards.
    """

    def __init__(self, n: int):
        if n < 1:
            raise DimensionError(f"workspace size must be positive, got {n}")
        self.n = n
        self.buffer = np.zeros((n, n), dtype=np.float64, order='F')

    def reset(self) -> None:
        self.buffer.fill(0.0)

    def accumulate(self, alpha: float, relationship: Relationship) -> NDArray:
        """Add alpha * R to the upper triangle of the buffer, in place.

        This is the single dispatch point over relationship kinds: dense
        matrices walk the full upper triangle, diagonal matrices touch
        only the n diagonal positions.
        """
        if relationship.n != self.n:
            raise DimensionError(
                f"relationship has n={relationship.n}, workspace has n={self.n}"
            )

        alpha = float(alpha)
        if alpha == 0.0:
            return self.buffer

        kind = relationship.kind
        if kind is RelationshipKind.DENSE:
            _accumulate_dense(self.buffer, alpha, relationship.matrix)
        elif kind is RelationshipKind.DIAGONAL:
            _accumulate_diagonal(self.buffer, alpha, relationship.values)
        else:
            raise ValidationError(f"unsupported relationship kind: {kind!r}")
        return self.buffer

    def assemble(
        self,
        delta: ArrayLike,
        relationships: Sequence[Relationship],
    ) -> NDArray:
        """Overwrite the buffer with sum_i delta_i * R_i (upper triangle).

        Returns:
            The workspace buffer itself (same object on every call).
        """
        delta = np.asarray(delta, dtype=np.float64)
        if delta.shape != (len(relationships),):
            raise DimensionError(
                f"delta has shape {delta.shape}, expected "
                f"({len(relationships)},) to match the relationship matrices"
            )

        self.reset()
        for alpha, rel in zip(delta, relationships):
            self.accumulate(alpha, rel)
        return self.buffer

    def upper(self) -> NDArray:
        """Copy of the buffer's upper triangle (zeros below the diagonal)."""
        return np.triu(self.buffer)
