"""
Input validators.

Fail fast, fail loud: each validator checks one property, names the
offending parameter in its message and never repairs its input. The only
conversion performed is check_array's cast of numeric array-likes to
float64.
"""

from typing import Any

import numpy as np
from numpy.typing import ArrayLike, NDArray

from pygreml.core.exceptions import (
    DimensionError,
    SingularMatrixError,
    ValidationError,
)

FloatArray = NDArray[np.floating[Any]]


def check_array(array: ArrayLike, name: str) -> FloatArray:
    """
    Convert an array-like (pandas objects included) to a float64 ndarray.

    Raises:
        ValidationError: If the input is not numeric (object or string
            dtype after conversion).
    """
    if hasattr(array, 'to_numpy'):
        array = array.to_numpy()

    try:
        result = np.asarray(array)
    except (ValueError, TypeError) as e:
        raise ValidationError(f"{name}: cannot convert to array: {e}") from e

    if result.dtype == object:
        raise ValidationError(
            f"{name}: converted to object dtype, indicating mixed types or non-numeric data"
        )
    if not np.issubdtype(result.dtype, np.number):
        raise ValidationError(f"{name}: non-numeric dtype {result.dtype}, expected numeric data")

    return result.astype(np.float64, copy=False)


def check_finite(array: FloatArray, name: str) -> None:
    """Raises ValidationError if array holds NaN or Inf."""
    finite = np.isfinite(array)
    if not finite.all():
        n_nan = int(np.isnan(array).sum())
        n_inf = int((~finite).sum()) - n_nan
        raise ValidationError(f"{name}: contains non-finite values ({n_nan} NaN, {n_inf} Inf)")


def check_ndim(array: FloatArray, ndim: int, name: str) -> None:
    """Raises DimensionError unless array.ndim == ndim."""
    if array.ndim != ndim:
        raise DimensionError(
            f"{name}: expected {ndim}D array, got {array.ndim}D with shape {array.shape}"
        )


def check_1d(array: FloatArray, name: str) -> None:
    check_ndim(array, 1, name)


def check_2d(array: FloatArray, name: str) -> None:
    check_ndim(array, 2, name)


def check_square(array: FloatArray, name: str) -> None:
    """Raises DimensionError unless array is an n x n matrix."""
    check_2d(array, name)
    if array.shape[0] != array.shape[1]:
        raise DimensionError(f"{name}: expected a square matrix, got shape {array.shape}")


def check_consistent_length(*arrays: FloatArray, names: tuple[str, ...]) -> None:
    """
    Verify all arrays share their first dimension.

    Raises:
        ValueError: If names and arrays differ in number (caller bug).
        DimensionError: If the lengths differ.
    """
    if len(arrays) != len(names):
        raise ValueError(
            f"Number of arrays ({len(arrays)}) must match number of names ({len(names)})"
        )
    lengths = [a.shape[0] for a in arrays]
    if len(set(lengths)) > 1:
        details = ", ".join(f"{n}={k}" for n, k in zip(names, lengths))
        raise DimensionError(f"Inconsistent lengths: {details}")


def check_min_samples(array: FloatArray, min_samples: int, name: str) -> None:
    """Raises ValidationError if array has fewer than min_samples rows."""
    if array.shape[0] < min_samples:
        raise ValidationError(
            f"{name}: requires at least {min_samples} samples, got {array.shape[0]}"
        )


def check_symmetric(
    array: FloatArray,
    name: str,
    rtol: float = 1e-8,
    atol: float = 1e-10,
) -> None:
    """
    Verify a square matrix equals its transpose up to rounding.

    atol is relative to the largest absolute entry, so the check does not
    depend on the scale of the matrix.

    Raises:
        ValidationError: If |A - A'| exceeds the tolerance anywhere.
    """
    scale = max(float(np.abs(array).max()), 1.0) if array.size else 1.0
    if not np.allclose(array, array.T, rtol=rtol, atol=atol * scale):
        asym = float(np.abs(array - array.T).max())
        raise ValidationError(f"{name}: matrix is not symmetric (max |A - A'| = {asym:.3e})")


def check_column_rank(X: FloatArray, name: str) -> None:
    """
    Verify X has full column rank.

    With a rank-deficient X the matrix X'V^-1 X is singular for every V
    and the restricted likelihood is undefined.

    Raises:
        SingularMatrixError: If rank(X) < number of columns.
    """
    p = X.shape[1]
    rank = int(np.linalg.matrix_rank(X))
    if rank < p:
        raise SingularMatrixError(
            f"{name}: rank-deficient (rank={rank}, expected={p}). "
            f"This indicates perfect multicollinearity.",
            matrix_name=name,
            rank=rank,
            expected_rank=p,
        )
