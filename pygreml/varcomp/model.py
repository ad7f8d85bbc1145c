"""
GREMLModel: a variance-component model bound to one design.

The model owns a parameter transform and one likelihood evaluator (and
with it one covariance buffer) for its whole lifetime. fit() maximises

    theta -> evaluator.evaluate(transform(theta)).log_likelihood

over theta >= lower_bounds and records the maximiser, the covariance
weights delta it maps to, and the GLS fixed effects at that point.
"""

from __future__ import annotations

import warnings
from typing import Literal

import numpy as np
from numpy.typing import ArrayLike, NDArray

from pygreml.core.compute.timing import Timer
from pygreml.core.exceptions import (
    ConvergenceError,
    DimensionError,
    NumericalError,
    ValidationError,
)
from pygreml.core.result import Result
from pygreml.varcomp._common import GREMLParams
from pygreml.varcomp._optimizer import maximize
from pygreml.varcomp._transforms import (
    IdentityTransform,
    ParameterTransform,
    get_transform,
)
from pygreml.varcomp.backends import BackendChoice, get_evaluator
from pygreml.varcomp.design import GREMLDesign
from pygreml.varcomp.solution import GREMLSolution

GradientChoice = Literal['auto', 'analytic', 'numeric']


class GREMLModel:
    """
    Linear variance-component model y ~ N(X beta, sum_i delta_i R_i).

    Args:
        design: Validated GREMLDesign.
        transform: Mapping from optimizer parameters theta to covariance
            weights delta. None (default) is the identity; a string is
            looked up with get_transform(); otherwise a ParameterTransform
            whose n_params equals the number of relationship matrices.
        reml: Maximise the restricted (True, default) or the full (False)
            likelihood.
        backend: Likelihood evaluator: 'cpu' (default), 'gpu' or 'auto'.

    Before fit() the parameter state holds the transform's defaults and
    the fitted accessors raise.

    Examples:
        >>> design = GREMLDesign.build(y, X, [K, np.ones(n)])
        >>> model = GREMLModel(design)
        >>> model.fit(theta0=[1.0, 1.0], lower_bounds=[0.0, 0.0])
        >>> model.delta, model.log_likelihood
    """

    def __init__(
        self,
        design: GREMLDesign,
        transform: ParameterTransform | str | None = None,
        *,
        reml: bool = True,
        backend: BackendChoice = 'cpu',
    ):
        if not isinstance(design, GREMLDesign):
            raise ValidationError(
                f"design: expected a GREMLDesign, got {type(design).__name__}. "
                f"Use GREMLDesign.build(y, X, relationships)."
            )

        q = design.q
        if transform is None:
            transform = IdentityTransform(q)
        elif isinstance(transform, str):
            transform = get_transform(transform, q)
        elif not isinstance(transform, ParameterTransform):
            raise ValidationError(
                f"transform: expected a ParameterTransform or a name, "
                f"got {type(transform).__name__}"
            )
        if transform.n_params != q:
            raise DimensionError(
                f"transform has {transform.n_params} parameters but the design "
                f"has {q} relationship matrices"
            )

        self.design = design
        self.transform = transform
        self.reml = reml
        self.evaluator = get_evaluator(backend, design, reml=reml)

        self.theta: NDArray = transform.initial_theta()
        self.delta: NDArray = transform(self.theta)
        self.lower_bounds: NDArray = transform.default_lower_bounds()
        self._solution: GREMLSolution | None = None

    # --- Fitting ---

    def fit(
        self,
        theta0: ArrayLike | None = None,
        lower_bounds: ArrayLike | None = None,
        *,
        tol: float = 1e-8,
        max_iter: int = 200,
        gradient: GradientChoice = 'auto',
        strict: bool = False,
        verbose: bool = False,
    ) -> GREMLSolution:
        """
        Maximise the (restricted) log-likelihood over theta.

        Args:
            theta0: Starting point. Default: the transform's initial_theta().
            lower_bounds: Elementwise floor on theta; -inf for unbounded.
                Default: the transform's default_lower_bounds().
            tol: Convergence tolerance for L-BFGS-B. Default 1e-8.
            max_iter: Maximum optimizer iterations. Default 200.
            gradient: 'analytic' uses the evaluator's score chained through
                the transform Jacobian, 'numeric' lets L-BFGS-B take finite
                differences, 'auto' (default) picks analytic when the
                evaluator supports it.
            strict: Raise ConvergenceError instead of warning when the
                optimizer does not converge. The model state is left
                unchanged in that case.
            verbose: Print progress.

        Returns:
            GREMLSolution, also kept on the model as model.solution.

        Raises:
            ValidationError: If theta0 lies below lower_bounds.
            DimensionError: If theta0 or lower_bounds has the wrong length.
            NumericalError: If the likelihood cannot be evaluated at theta0,
                e.g. V is not positive definite there. This is the only
                case in which a non-positive-definite V reaches the
                caller; at every later trial point it is scored as
                inadmissible and the line search backs off.
            ConvergenceError: If strict=True and the optimizer did not converge.
        """
        design = self.design
        transform = self.transform
        evaluator = self.evaluator

        timer = Timer(sync_cuda=evaluator.name.startswith('gpu'))
        timer.start()

        with timer.section('setup'):
            theta0 = _parameter_vector(
                transform.initial_theta() if theta0 is None else theta0,
                transform.n_params, 'theta0',
            )
            lower = _parameter_vector(
                transform.default_lower_bounds() if lower_bounds is None else lower_bounds,
                transform.n_params, 'lower_bounds',
            )
            below = np.flatnonzero(theta0 < lower)
            if below.size:
                raise ValidationError(
                    f"theta0 lies below lower_bounds at positions {below.tolist()}"
                )
            use_gradient = _resolve_gradient(gradient, evaluator)

        if verbose:
            print(f"GREML ({'REML' if self.reml else 'ML'}): {design.n} observations, "
                  f"{design.p} fixed effects, {design.q} variance components")
            print(f"Backend: {evaluator.name}, gradient: "
                  f"{'analytic' if use_gradient else 'numeric'}")

        negative_pivots = [0]

        def objective(theta):
            try:
                ev = evaluator.evaluate(transform(theta))
            except NumericalError:
                return -np.inf
            negative_pivots[0] += ev.negative_pivots
            return ev.log_likelihood

        def objective_with_gradient(theta):
            try:
                ev, grad_delta = evaluator.score(transform(theta))
            except NumericalError:
                return -np.inf, np.zeros_like(theta)
            negative_pivots[0] += ev.negative_pivots
            return ev.log_likelihood, transform.jacobian(theta).T @ grad_delta

        def progress(k, theta, value):
            print(f"  iter {k:4d}  logLik = {value:.6f}  "
                  f"theta = {np.array2string(theta, precision=5)}")

        with timer.section('optimization'):
            opt = maximize(
                objective,
                theta0,
                lower,
                gradient=objective_with_gradient if use_gradient else None,
                tol=tol,
                max_iter=max_iter,
                callback=progress if verbose else None,
            )

        with timer.section('final_evaluation'):
            theta_hat = opt.theta
            delta_hat = transform(theta_hat)
            final = evaluator.evaluate(delta_hat)
            negative_pivots[0] += final.negative_pivots

        with timer.section('model_fit'):
            beta = final.beta
            ll = final.log_likelihood
            fitted = design.X @ beta
            residuals = design.y - fitted
            dof = design.p + design.q
            aic = -2.0 * ll + 2.0 * dof
            bic = -2.0 * ll + np.log(design.n) * dof

        timer.stop()

        warn_list = []
        if not opt.converged:
            message = (
                f"GREML optimizer did not converge after {opt.n_iter} iterations. "
                f"Message: {opt.message}"
            )
            if strict:
                raise ConvergenceError(
                    message,
                    iterations=opt.n_iter,
                    reason=opt.message,
                    threshold=tol,
                )
            warnings.warn(message, RuntimeWarning, stacklevel=2)
            warn_list.append(f"Optimizer did not converge: {opt.message}")
        if negative_pivots[0]:
            warn_list.append(
                f"{negative_pivots[0]} negative Cholesky pivots were seen; "
                f"log-determinants used their absolute values"
            )

        if verbose:
            print(f"Converged: {opt.converged} ({opt.n_iter} iterations, "
                  f"{opt.n_evaluations} evaluations), logLik = {ll:.6f}")

        params = GREMLParams(
            coefficients=beta,
            coefficient_names=design.coefficient_names,
            delta=delta_hat,
            theta=theta_hat,
            component_names=design.component_names,
            lower_bounds=lower,
            log_likelihood=ll,
            reml=self.reml,
            aic=float(aic),
            bic=float(bic),
            dof=dof,
            n_obs=design.n,
            n_fixed=design.p,
            n_components=design.q,
            converged=opt.converged,
            n_iter=opt.n_iter,
            n_evaluations=opt.n_evaluations,
            n_inadmissible=opt.n_inadmissible,
            fitted_values=fitted,
            residuals=residuals,
        )

        result = Result(
            params=params,
            info={
                'method': 'REML' if self.reml else 'ML',
                'optimizer': 'L-BFGS-B',
                'gradient': 'analytic' if use_gradient else 'numeric',
                'transform': repr(transform),
                'converged': opt.converged,
                'n_iter': opt.n_iter,
                'n_evaluations': opt.n_evaluations,
                'n_inadmissible': opt.n_inadmissible,
                'negative_pivots': negative_pivots[0],
                'message': opt.message,
                'logdet_v': final.logdet_v,
                'logdet_xtvx': final.logdet_xtvx,
                'rss': final.rss,
            },
            timing=timer.result(),
            backend_name=evaluator.name,
            warnings=tuple(warn_list),
        )

        self.theta = theta_hat
        self.delta = delta_hat
        self.lower_bounds = lower
        self._solution = GREMLSolution(_result=result, _design=design)
        return self._solution

    # --- Accessors ---

    @property
    def is_fitted(self) -> bool:
        return self._solution is not None

    @property
    def solution(self) -> GREMLSolution:
        """The solution from the last fit()."""
        if self._solution is None:
            raise ValidationError("model has not been fitted; call fit() first")
        return self._solution

    @property
    def log_likelihood(self) -> float:
        return self.solution.log_likelihood

    @property
    def coefficients(self) -> NDArray:
        """GLS fixed effects at the fitted theta."""
        return self.solution.coefficients

    @property
    def converged(self) -> bool:
        return self.solution.converged

    @property
    def n_obs(self) -> int:
        return self.design.n

    @property
    def n_fixed(self) -> int:
        return self.design.p

    @property
    def n_components(self) -> int:
        return self.design.q

    def __repr__(self) -> str:
        method = 'REML' if self.reml else 'ML'
        status = 'fitted' if self.is_fitted else 'unfitted'
        return (
            f"GREMLModel({method}, n={self.n_obs}, fixed={self.n_fixed}, "
            f"components={self.n_components}, {status})"
        )


def _parameter_vector(value: ArrayLike, q: int, name: str) -> NDArray:
    arr = np.array(value, dtype=np.float64)
    if arr.shape != (q,):
        raise DimensionError(f"{name} has shape {arr.shape}, expected ({q},)")
    return arr


def _resolve_gradient(choice: str, evaluator) -> bool:
    if choice == 'auto':
        return evaluator.supports_gradient
    if choice == 'analytic':
        if not evaluator.supports_gradient:
            raise ValidationError(
                f"backend {evaluator.name!r} has no analytic gradient; "
                f"use gradient='numeric'"
            )
        return True
    if choice == 'numeric':
        return False
    raise ValidationError(
        f"gradient: expected 'auto', 'analytic' or 'numeric', got {choice!r}"
    )
