"""
Solver entry point for variance-component models.

Public API:
    greml(): validate data, build a GREMLModel and fit it in one call
"""

from __future__ import annotations

from typing import Any, Sequence

from numpy.typing import ArrayLike

from pygreml.varcomp._transforms import ParameterTransform
from pygreml.varcomp.backends import BackendChoice
from pygreml.varcomp.design import GREMLDesign
from pygreml.varcomp.model import GradientChoice, GREMLModel
from pygreml.varcomp.solution import GREMLSolution


def greml(
    y: ArrayLike | GREMLDesign,
    X: ArrayLike | None = None,
    relationships: Sequence[Any] | None = None,
    *,
    transform: ParameterTransform | str | None = None,
    theta0: ArrayLike | None = None,
    lower_bounds: ArrayLike | None = None,
    reml: bool = True,
    backend: BackendChoice = 'cpu',
    tol: float = 1e-8,
    max_iter: int = 200,
    gradient: GradientChoice = 'auto',
    strict: bool = False,
    verbose: bool = False,
) -> GREMLSolution:
    """Fit a linear variance-component model by (restricted) maximum likelihood.

    Model: y ~ N(X β, V) with V = Σ_i δ_i R_i, where the relationship
    matrices R_i are known (a genomic relationship matrix, the identity
    for the residual, ...) and δ = transform(θ) is estimated.

    Args:
        y: Response vector (n,), or an already built GREMLDesign (then X
            and relationships must be omitted).
        X: Fixed effects design matrix (n, p). Include an intercept column
            if desired.
        relationships: Relationship matrices R_1..R_q, each n x n (dense
            array, DataFrame, scipy.sparse, or a 1-D array for a diagonal
            matrix).
        transform: θ → δ mapping. Default: identity (δ = θ).
        theta0: Starting θ. Default: the transform's initial_theta().
        lower_bounds: Floor on θ. Default: the transform's defaults
            (0 for identity components).
        reml: If True (default), maximise the restricted likelihood. Use
            ML (reml=False) for likelihood ratio tests between models with
            different fixed effects.
        backend: 'cpu' (default), 'gpu' or 'auto'.
        tol: Convergence tolerance for the optimizer. Default 1e-8.
        max_iter: Maximum optimizer iterations. Default 200.
        gradient: 'auto' (default), 'analytic' or 'numeric'.
        strict: Raise ConvergenceError on non-convergence instead of
            warning.
        verbose: Print progress.

    Returns:
        GREMLSolution with fixed effects, variance components, model fit
        statistics and summary().

    Examples:
        # Genetic + residual variance
        >>> result = greml(y, X, [K, np.ones(n)])
        >>> result.variance_components
        {'R1': 2.03, 'R2': 3.96}

        # Prebuilt design with named components
        >>> design = GREMLDesign.build(y, X, [K, np.ones(n)],
        ...                            component_names=['genetic', 'residual'])
        >>> result = greml(design, lower_bounds=[0.0, 1e-6])
    """
    if isinstance(y, GREMLDesign):
        if X is not None or relationships is not None:
            raise TypeError(
                "greml(design, ...) takes no X or relationships; they are part "
                "of the design"
            )
        design = y
    else:
        if X is None or relationships is None:
            raise TypeError("greml(y, X, relationships) requires X and relationships")
        design = GREMLDesign.build(y, X, relationships)

    model = GREMLModel(design, transform, reml=reml, backend=backend)
    return model.fit(
        theta0,
        lower_bounds,
        tol=tol,
        max_iter=max_iter,
        gradient=gradient,
        strict=strict,
        verbose=verbose,
    )
