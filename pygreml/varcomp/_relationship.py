"""
Relationship-matrix representations.

Each variance component R_i is stored in one of two closed forms:

    DenseRelationship      full symmetric n x n matrix (e.g. a GRM)
    DiagonalRelationship   the n diagonal entries only (e.g. the identity
                           for the residual, or per-observation weights)

The representation is an explicit tag (RelationshipKind) rather than a
property inferred from the values, so the assembler and the inner
product below can dispatch on it once instead of scanning matrices.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Union

import numpy as np
from numpy.typing import NDArray
from scipy import sparse

from pygreml.core.exceptions import DimensionError, ValidationError
from pygreml.core.validation import check_array, check_square


class RelationshipKind(Enum):
    """Storage kind of a relationship matrix."""
    DENSE = 'dense'
    DIAGONAL = 'diagonal'


@dataclass(frozen=True, eq=False)
class DenseRelationship:
    """Dense symmetric relationship matrix.

    The matrix is copied into Fortran order and made read-only, so a
    relationship can be shared by several models without being mutated
    and columns of its upper triangle are contiguous.

    Attributes:
        matrix: (n, n) float64 array.
    """
    matrix: NDArray
    kind: ClassVar[RelationshipKind] = RelationshipKind.DENSE

    def __post_init__(self):
        m = np.array(check_array(self.matrix, 'relationship'), order='F')
        check_square(m, 'relationship')
        m.setflags(write=False)
        object.__setattr__(self, 'matrix', m)

    @property
    def n(self) -> int:
        return self.matrix.shape[0]

    def diagonal(self) -> NDArray:
        return np.diagonal(self.matrix)

    def to_dense(self) -> NDArray:
        return np.array(self.matrix)

    def quadratic_form(self, v: NDArray) -> float:
        """v' R v."""
        return float(v @ (self.matrix @ v))

    def __repr__(self) -> str:
        return f"DenseRelationship(n={self.n})"


@dataclass(frozen=True, eq=False)
class DiagonalRelationship:
    """Diagonal relationship matrix stored as its n diagonal entries.

    Attributes:
        values: (n,) float64 array of diagonal entries.
    """
    values: NDArray
    kind: ClassVar[RelationshipKind] = RelationshipKind.DIAGONAL

    def __post_init__(self):
        v = np.array(check_array(self.values, 'relationship diagonal'))
        if v.ndim != 1:
            raise DimensionError(
                f"relationship diagonal: expected 1D array, got shape {v.shape}"
            )
        v.setflags(write=False)
        object.__setattr__(self, 'values', v)

    @classmethod
    def identity(cls, n: int) -> DiagonalRelationship:
        """The n x n identity, the usual residual component."""
        return cls(np.ones(n, dtype=np.float64))

    @property
    def n(self) -> int:
        return self.values.shape[0]

    def diagonal(self) -> NDArray:
        return self.values

    def to_dense(self) -> NDArray:
        return np.diag(self.values)

    def quadratic_form(self, v: NDArray) -> float:
        """v' R v."""
        return float(np.dot(self.values, v * v))

    def __repr__(self) -> str:
        return f"DiagonalRelationship(n={self.n})"


Relationship = Union[DenseRelationship, DiagonalRelationship]


def as_relationship(obj: Any) -> Relationship:
    """Normalize a user-supplied matrix into a relationship representation.

    Accepted inputs:
        - DenseRelationship / DiagonalRelationship: returned unchanged
        - scipy.sparse matrix or array: diagonal if it has no off-diagonal
          nonzeros, otherwise densified
        - 1-D array-like: the diagonal of a diagonal matrix
        - 2-D array-like (ndarray, DataFrame): a dense matrix

    Raises:
        DimensionError: If the input is not 1-D or 2-D.
    """
    if isinstance(obj, (DenseRelationship, DiagonalRelationship)):
        return obj

    if sparse.issparse(obj):
        if obj.shape[0] != obj.shape[1]:
            raise DimensionError(
                f"relationship: expected a square matrix, got shape {obj.shape}"
            )
        diag = obj.diagonal()
        off_diagonal = sparse.csr_matrix(obj) - sparse.diags(diag)
        if off_diagonal.count_nonzero() == 0:
            return DiagonalRelationship(diag)
        return DenseRelationship(obj.toarray())

    arr = check_array(obj, 'relationship')
    if arr.ndim == 1:
        return DiagonalRelationship(arr)
    if arr.ndim == 2:
        return DenseRelationship(arr)
    raise DimensionError(
        f"relationship: expected 1D (diagonal) or 2D array, got {arr.ndim}D"
    )


def _operand(x: Any) -> tuple[RelationshipKind, NDArray]:
    if isinstance(x, DiagonalRelationship):
        return RelationshipKind.DIAGONAL, x.values
    if isinstance(x, DenseRelationship):
        return RelationshipKind.DENSE, x.matrix
    arr = np.asarray(x, dtype=np.float64)
    if arr.ndim == 1:
        return RelationshipKind.DIAGONAL, arr
    if arr.ndim == 2:
        return RelationshipKind.DENSE, arr
    raise ValidationError(f"cannot take inner product of a {arr.ndim}D array")


def relationship_dot(a: Any, b: Any) -> float:
    """Frobenius inner product sum_jk A[j,k] * B[j,k] of two symmetric matrices.

    Plain arrays are accepted as operands (2-D dense, 1-D diagonal). When
    either side is diagonal only the diagonal of the other is touched,
    so dense . diagonal costs O(n) instead of O(n^2). The operands are
    put in a canonical order first, making the result bitwise symmetric:
    relationship_dot(A, B) == relationship_dot(B, A).

    Used for traces tr(M R_i) of symmetric M in the likelihood score.
    """
    kind_a, data_a = _operand(a)
    kind_b, data_b = _operand(b)

    if data_a.shape[0] != data_b.shape[0]:
        raise DimensionError(
            f"inner product of relationships with n={data_a.shape[0]} "
            f"and n={data_b.shape[0]}"
        )

    if kind_a is RelationshipKind.DIAGONAL and kind_b is RelationshipKind.DENSE:
        kind_a, data_a, kind_b, data_b = kind_b, data_b, kind_a, data_a

    if kind_b is RelationshipKind.DIAGONAL:
        if kind_a is RelationshipKind.DIAGONAL:
            return float(np.dot(data_a, data_b))
        return float(np.dot(np.diagonal(data_a), data_b))

    return float(np.vdot(data_a, data_b))
