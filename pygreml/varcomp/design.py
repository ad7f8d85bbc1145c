"""
GREMLDesign: validated data for a variance-component model.

Wraps the response y, the fixed-effect design X and the ordered
relationship matrices R_1..R_q. Immutable after construction: the arrays
are copied and flagged read-only, so one design (or one relationship
matrix) can safely be shared by several models.

Construction:
    GREMLDesign.build(y, X, [K, I])
    GREMLDesign.from_dataframe(df, 'y', ['x', 'z'], [K, I])
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray

from pygreml.core.exceptions import DimensionError, ValidationError
from pygreml.core.validation import (
    check_1d,
    check_2d,
    check_array,
    check_column_rank,
    check_consistent_length,
    check_finite,
    check_min_samples,
    check_symmetric,
)
from pygreml.varcomp._relationship import (
    Relationship,
    RelationshipKind,
    as_relationship,
)


@dataclass(frozen=True)
class GREMLDesign:
    """Validated design for a variance-component model.

    Attributes:
        y: Response vector (n,).
        X: Fixed effects design matrix (n, p), full column rank.
        relationships: Relationship matrices R_1..R_q, each n x n.
        coefficient_names: Names of the p columns of X.
        component_names: Names of the q relationship matrices.
    """
    y: NDArray
    X: NDArray
    relationships: tuple[Relationship, ...]
    coefficient_names: tuple[str, ...]
    component_names: tuple[str, ...]

    @classmethod
    def build(
        cls,
        y: ArrayLike,
        X: ArrayLike,
        relationships: Sequence[Any],
        *,
        coefficient_names: Sequence[str] | None = None,
        component_names: Sequence[str] | None = None,
    ) -> GREMLDesign:
        """
        Validate inputs and create a GREMLDesign.

        Args:
            y: Response vector.
            X: Fixed effects design matrix. If 1-D, treated as a single
               column (include an intercept column yourself if wanted).
            relationships: Sequence of relationship matrices. Each may be
               a DenseRelationship/DiagonalRelationship, a 2-D array or
               DataFrame (dense), a 1-D array (diagonal) or a scipy.sparse
               matrix.
            coefficient_names: Optional names for the columns of X.
            component_names: Optional names for the relationship matrices.

        Raises:
            ValidationError: On non-numeric or non-finite data, or an
                asymmetric relationship matrix.
            DimensionError: On inconsistent sizes or p > n.
            SingularMatrixError: If X is rank-deficient.
        """
        y_arr = check_array(y, 'y')
        if y_arr.ndim == 2 and y_arr.shape[1] == 1:
            y_arr = y_arr.ravel()
        check_1d(y_arr, 'y')
        check_finite(y_arr, 'y')
        check_min_samples(y_arr, 2, 'y')
        n = y_arr.shape[0]

        X_arr = check_array(X, 'X')
        if X_arr.ndim == 1:
            X_arr = X_arr.reshape(-1, 1)
        check_2d(X_arr, 'X')
        check_finite(X_arr, 'X')
        check_consistent_length(y_arr, X_arr, names=('y', 'X'))
        p = X_arr.shape[1]

        if p < 1:
            raise ValidationError("X: must have at least one column")
        if p > n:
            raise DimensionError(
                f"X has {p} columns but only {n} observations (need p <= n)"
            )
        check_column_rank(X_arr, 'X')

        if relationships is None or len(relationships) == 0:
            raise ValidationError("At least one relationship matrix required")

        rels = []
        for i, obj in enumerate(relationships):
            label = f"relationships[{i}]"
            rel = as_relationship(obj)
            if rel.n != n:
                raise DimensionError(
                    f"{label} is {rel.n} x {rel.n}, expected {n} x {n} (matching y)"
                )
            if rel.kind is RelationshipKind.DENSE:
                check_finite(rel.matrix, label)
                check_symmetric(rel.matrix, label)
            else:
                check_finite(rel.values, label)
            rels.append(rel)
        q = len(rels)

        if coefficient_names is None:
            coefficient_names = _make_coef_names(p)
        if component_names is None:
            component_names = [f'R{i + 1}' for i in range(q)]
        coefficient_names = tuple(str(c) for c in coefficient_names)
        component_names = tuple(str(c) for c in component_names)
        if len(coefficient_names) != p:
            raise DimensionError(
                f"{len(coefficient_names)} coefficient names for {p} columns of X"
            )
        if len(component_names) != q:
            raise DimensionError(
                f"{len(component_names)} component names for {q} relationship matrices"
            )

        y_arr = np.array(y_arr)
        X_arr = np.array(X_arr)
        y_arr.setflags(write=False)
        X_arr.setflags(write=False)

        return cls(
            y=y_arr,
            X=X_arr,
            relationships=tuple(rels),
            coefficient_names=coefficient_names,
            component_names=component_names,
        )

    @classmethod
    def from_dataframe(
        cls,
        data,
        response: str,
        covariates: Sequence[str] = (),
        relationships: Sequence[Any] = (),
        *,
        intercept: bool = True,
        component_names: Sequence[str] | None = None,
    ) -> GREMLDesign:
        """
        Build a GREMLDesign from columns of a pandas DataFrame.

        This selects columns; it does not parse model formulas. Relationship
        matrices given as DataFrames are aligned to the row index of data
        (rows and columns looked up by label), which is how sample IDs in a
        GRM file are matched to phenotype records.

        Parameters
        ----------
        data : pandas.DataFrame
            One row per observation.
        response : str
            Column holding y.
        covariates : sequence of str
            Columns entering X, in order.
        relationships : sequence
            Relationship matrices (see build()).
        intercept : bool
            Prepend a column of ones named '(Intercept)'.
        component_names : sequence of str, optional
            Names for the relationship matrices.
        """
        import pandas as pd

        if not isinstance(data, pd.DataFrame):
            raise ValidationError(
                f"data: expected a pandas DataFrame, got {type(data).__name__}"
            )

        missing = [c for c in [response, *covariates] if c not in data.columns]
        if missing:
            raise ValidationError(
                f"Columns not found in data: {missing}. Available: {list(data.columns)}"
            )

        y = data[response].to_numpy(dtype=np.float64)
        columns = []
        names = []
        if intercept:
            columns.append(np.ones(len(data)))
            names.append('(Intercept)')
        for c in covariates:
            columns.append(data[c].to_numpy(dtype=np.float64))
            names.append(str(c))
        if not columns:
            raise ValidationError("No fixed effects: set intercept=True or give covariates")
        X = np.column_stack(columns)

        aligned = []
        for i, rel in enumerate(relationships):
            if isinstance(rel, pd.DataFrame):
                try:
                    rel = rel.loc[data.index, data.index]
                except KeyError as e:
                    raise ValidationError(
                        f"relationships[{i}]: labels do not cover the data index: {e}"
                    ) from e
            elif isinstance(rel, pd.Series):
                try:
                    rel = rel.loc[data.index]
                except KeyError as e:
                    raise ValidationError(
                        f"relationships[{i}]: labels do not cover the data index: {e}"
                    ) from e
            aligned.append(rel)

        return cls.build(
            y, X, aligned,
            coefficient_names=names,
            component_names=component_names,
        )

    @property
    def n(self) -> int:
        """Number of observations."""
        return self.y.shape[0]

    @property
    def p(self) -> int:
        """Number of fixed effects."""
        return self.X.shape[1]

    @property
    def q(self) -> int:
        """Number of variance components."""
        return len(self.relationships)

    def __repr__(self) -> str:
        kinds = ", ".join(r.kind.value for r in self.relationships)
        return f"GREMLDesign(n={self.n}, p={self.p}, q={self.q}, relationships=[{kinds}])"


def _make_coef_names(p: int) -> list[str]:
    """Generate default coefficient names."""
    names = ['(Intercept)']
    for i in range(1, p):
        names.append(f'X{i}')
    return names
