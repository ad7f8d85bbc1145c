"""
Bounded maximisation of the profiled log-likelihood over theta.

Thin driver around scipy's L-BFGS-B. The objective is maximised, so the
minimiser is handed its negation. Only lower bounds are supported; an
infinite lower bound means the coordinate is unbounded.

Inadmissible points, where V is not positive definite, are reported by
the objective as -inf. L-BFGS-B cannot work with infinities, so such a
point is given a large finite value (a barrier well above anything the
start already achieved) and a zero gradient; the line search then
backtracks toward the admissible region. The best admissible point seen
is tracked and returned if the search happens to stop on a barrier
point.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.optimize import minimize

from pygreml.core.exceptions import NumericalError, ValidationError

Objective = Callable[[NDArray], float]
ObjectiveWithGradient = Callable[[NDArray], 'tuple[float, NDArray]']


@dataclass(frozen=True)
class OptimizerResult:
    """Outcome of maximize().

    Attributes:
        theta: Maximiser found (best admissible point).
        value: Objective at theta.
        converged: True only if L-BFGS-B reported success.
        n_iter: L-BFGS-B iterations.
        n_evaluations: Objective evaluations, including finite-difference
            probes and inadmissible points.
        n_inadmissible: Evaluations that returned -inf (or NaN).
        message: L-BFGS-B termination message.
    """
    theta: NDArray
    value: float
    converged: bool
    n_iter: int
    n_evaluations: int
    n_inadmissible: int
    message: str


def maximize(
    objective: Objective,
    theta0: ArrayLike,
    lower_bounds: ArrayLike,
    *,
    gradient: ObjectiveWithGradient | None = None,
    tol: float = 1e-8,
    max_iter: int = 200,
    callback: Callable[[int, NDArray, float], None] | None = None,
) -> OptimizerResult:
    """
    Maximise objective(theta) subject to theta >= lower_bounds.

    Args:
        objective: theta -> value. May return -inf at inadmissible points.
        theta0: Starting point, elementwise >= lower_bounds.
        lower_bounds: Elementwise floor on theta; -inf for unbounded.
        gradient: Optional theta -> (value, d value / d theta). When given
            it replaces objective inside the optimiser; otherwise L-BFGS-B
            uses finite differences of objective.
        tol: Convergence tolerance (L-BFGS-B ftol; gtol is 10 * tol).
        max_iter: Iteration cap. Reaching it is non-convergence.
        callback: Called after each iteration as callback(k, theta, value)
            with the best admissible value so far.

    Raises:
        ValidationError: If theta0 is not finite, has the wrong shape or
            lies below its bounds.
        NumericalError: If the objective is not finite at theta0.
    """
    theta0 = np.array(theta0, dtype=np.float64)
    lower = np.array(lower_bounds, dtype=np.float64)

    if theta0.ndim != 1 or theta0.shape != lower.shape:
        raise ValidationError(
            f"theta0 has shape {theta0.shape}, lower_bounds has shape {lower.shape}"
        )
    if not np.all(np.isfinite(theta0)):
        raise ValidationError(f"theta0 must be finite, got {theta0}")
    if np.any(np.isnan(lower)) or np.any(lower == np.inf):
        raise ValidationError(f"lower_bounds must be finite or -inf, got {lower}")
    below = np.flatnonzero(theta0 < lower)
    if below.size:
        raise ValidationError(
            f"theta0 violates its lower bounds at positions {below.tolist()}: "
            f"theta0={theta0[below].tolist()}, lower={lower[below].tolist()}"
        )

    if gradient is not None:
        f0, _ = gradient(theta0.copy())
    else:
        f0 = objective(theta0.copy())
    f0 = float(f0)
    if not np.isfinite(f0):
        raise NumericalError(
            f"objective is not finite at the starting point theta0={theta0.tolist()}"
        )

    # minimised quantity at an inadmissible point
    barrier = -f0 + max(1.0, abs(f0)) * 1e3

    state = {
        'n_evaluations': 1,
        'n_inadmissible': 0,
        'best_value': f0,
        'best_theta': theta0.copy(),
        'n_iter': 0,
    }

    def _record(theta: NDArray, value: float) -> bool:
        state['n_evaluations'] += 1
        if not np.isfinite(value):
            state['n_inadmissible'] += 1
            return False
        if value > state['best_value']:
            state['best_value'] = value
            state['best_theta'] = theta.copy()
        return True

    if gradient is not None:
        def fun(theta):
            value, grad = gradient(theta)
            value = float(value)
            if not _record(theta, value):
                return barrier, np.zeros_like(theta)
            return -value, -np.asarray(grad, dtype=np.float64)
        jac = True
    else:
        def fun(theta):
            value = float(objective(theta))
            if not _record(theta, value):
                return barrier
            return -value
        jac = None

    def _iteration(theta):
        state['n_iter'] += 1
        if callback is not None:
            callback(state['n_iter'], theta, state['best_value'])

    bounds = [(lb if np.isfinite(lb) else None, None) for lb in lower]

    res = minimize(
        fun,
        theta0,
        jac=jac,
        method='L-BFGS-B',
        bounds=bounds,
        callback=_iteration,
        options={'maxiter': max_iter, 'ftol': tol, 'gtol': tol * 10},
    )

    if np.isfinite(res.fun) and res.fun < barrier:
        theta = np.array(res.x, dtype=np.float64)
        value = -float(res.fun)
    else:
        theta = state['best_theta']
        value = state['best_value']

    # L-BFGS-B projects onto the box; make active bounds exact
    finite = np.isfinite(lower)
    theta[finite] = np.maximum(theta[finite], lower[finite])

    return OptimizerResult(
        theta=theta,
        value=value,
        converged=bool(res.success),
        n_iter=int(res.nit),
        n_evaluations=state['n_evaluations'],
        n_inadmissible=state['n_inadmissible'],
        message=str(res.message),
    )
