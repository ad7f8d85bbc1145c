"""
Common data types for variance-component models.

Contains the frozen parameter payload that goes inside a Result[P]
envelope. The payload is a pure data container: no methods, no
computation.

References:
    Yang, J., Lee, S. H., Goddard, M. E., & Visscher, P. M. (2011).
    GCTA: A Tool for Genome-wide Complex Trait Analysis.
    American Journal of Human Genetics, 88(1), 76-82.

    Gilmour, A. R., Thompson, R., & Cullis, B. R. (1995).
    Average Information REML: An Efficient Algorithm for Variance
    Parameter Estimation in Linear Mixed Models. Biometrics, 51(4),
    1440-1450.
"""

from dataclasses import dataclass

from numpy.typing import NDArray


@dataclass(frozen=True)
class GREMLParams:
    """
    Parameter payload for a fitted variance-component model.
    """
    # Fixed effects
    coefficients: NDArray              # β̂ (p,)
    coefficient_names: tuple[str, ...]

    # Variance components
    delta: NDArray                     # covariance weights δ (q,)
    theta: NDArray                     # optimizer parameters θ (q,)
    component_names: tuple[str, ...]
    lower_bounds: NDArray              # floor on θ used in the fit (q,)

    # Model fit
    log_likelihood: float
    reml: bool
    aic: float
    bic: float
    dof: int                           # p + q
    n_obs: int
    n_fixed: int
    n_components: int

    # Convergence
    converged: bool
    n_iter: int
    n_evaluations: int
    n_inadmissible: int

    # Predictions
    fitted_values: NDArray             # Xβ̂ (n,)
    residuals: NDArray                 # y - Xβ̂ (n,)
