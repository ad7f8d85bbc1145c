"""
Solution wrapper for variance-component models.

GREMLSolution wraps Result[GREMLParams] and provides a text summary,
property accessors for common quantities, and model comparison via a
likelihood ratio test.
"""

from __future__ import annotations

import warnings
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from pygreml.core.exceptions import ValidationError
from pygreml.core.result import Result
from pygreml.varcomp._common import GREMLParams

if TYPE_CHECKING:
    from pygreml.varcomp.design import GREMLDesign


def _format_pvalue(p: float) -> str:
    """Format p-value like R."""
    if p < 2e-16:
        return '< 2e-16'
    elif p < 0.001:
        return f'{p:.2e}'
    else:
        return f'{p:.4f}'


class GREMLSolution:
    """Solution wrapper for a fitted variance-component model.

    Standard errors are not computed, so the summary reports estimates
    only.
    """

    def __init__(self, _result: Result[GREMLParams], _design: GREMLDesign):
        self._result = _result
        self._design = _design

    @property
    def params(self) -> GREMLParams:
        return self._result.params

    @property
    def design(self) -> GREMLDesign:
        return self._design

    # --- Fixed effects ---

    @property
    def coefficients(self) -> NDArray:
        """GLS fixed effect estimates β̂."""
        return self.params.coefficients

    @property
    def coef(self) -> dict[str, float]:
        """Fixed effects as name → value dict."""
        return dict(zip(self.params.coefficient_names,
                        (float(b) for b in self.params.coefficients)))

    # --- Variance components ---

    @property
    def delta(self) -> NDArray:
        """Covariance weights δ at the optimum."""
        return self.params.delta

    @property
    def theta(self) -> NDArray:
        """Optimizer parameters θ at the optimum."""
        return self.params.theta

    @property
    def variance_components(self) -> dict[str, float]:
        """Covariance weights as component name → value dict."""
        return dict(zip(self.params.component_names,
                        (float(d) for d in self.params.delta)))

    # --- Model fit ---

    @property
    def log_likelihood(self) -> float:
        return self.params.log_likelihood

    @property
    def aic(self) -> float:
        return self.params.aic

    @property
    def bic(self) -> float:
        return self.params.bic

    @property
    def dof(self) -> int:
        """Parameter count used by AIC/BIC and the LRT: p + q."""
        return self.params.dof

    @property
    def fitted_values(self) -> NDArray:
        """X β̂ (marginal fitted values)."""
        return self.params.fitted_values

    @property
    def residuals(self) -> NDArray:
        return self.params.residuals

    @property
    def converged(self) -> bool:
        return self.params.converged

    @property
    def n_iter(self) -> int:
        return self.params.n_iter

    @property
    def n_obs(self) -> int:
        return self.params.n_obs

    @property
    def n_fixed(self) -> int:
        return self.params.n_fixed

    @property
    def n_components(self) -> int:
        return self.params.n_components

    # --- Envelope ---

    @property
    def info(self) -> dict[str, Any]:
        return self._result.info

    @property
    def timing(self) -> dict[str, float] | None:
        return self._result.timing

    @property
    def backend_name(self) -> str:
        return self._result.backend_name

    @property
    def warnings(self) -> tuple[str, ...]:
        return self._result.warnings

    # --- Model comparison ---

    def compare(self, other: GREMLSolution) -> str:
        """Likelihood ratio test between two nested models.

        The model with more parameters is taken as the full model.
        Restricted likelihoods are only comparable when both models share
        the same fixed effects; otherwise refit with reml=False.

        Args:
            other: The other model to compare against.

        Returns:
            Formatted LRT summary string.
        """
        if not isinstance(other, GREMLSolution):
            raise ValidationError(
                f"other: expected a GREMLSolution, got {type(other).__name__}"
            )
        if self.n_obs != other.n_obs:
            raise ValidationError(
                f"models were fit to different data (n={self.n_obs} vs n={other.n_obs})"
            )
        if self.params.reml != other.params.reml:
            raise ValidationError("cannot compare a REML fit with an ML fit")
        if self.params.reml and not _same_fixed_effects(self._design, other._design):
            warnings.warn(
                "Likelihood ratio test between REML fits requires identical "
                "fixed effects. Refit with reml=False.",
                UserWarning,
                stacklevel=2,
            )

        if self.dof >= other.dof:
            full, reduced = self, other
        else:
            full, reduced = other, self

        chi_sq = -2.0 * (reduced.log_likelihood - full.log_likelihood)
        chi_sq = max(chi_sq, 0.0)
        df = full.dof - reduced.dof
        if df <= 0:
            df = 1
        p_value = float(stats.chi2.sf(chi_sq, df))

        lines = [
            "Likelihood Ratio Test",
            "=" * 50,
            f"  Reduced model logLik: {reduced.log_likelihood:.4f}  "
            f"(df = {reduced.dof})",
            f"  Full model logLik:    {full.log_likelihood:.4f}  "
            f"(df = {full.dof})",
            f"  Chi-squared: {chi_sq:.4f}  on {df} df",
            f"  p-value: {_format_pvalue(p_value)}",
        ]
        return '\n'.join(lines)

    # --- Summary ---

    def summary(self) -> str:
        """Text summary of the fit."""
        params = self.params
        method = 'REML' if params.reml else 'ML'

        lines = []
        lines.append(f"Variance component model fit by {method}")
        lines.append("")

        lines.append("Variance components:")
        lines.append(f" {'Name':<15s} {'delta':>12s} {'theta':>12s}")
        for name, d, t in zip(params.component_names, params.delta, params.theta):
            lines.append(f" {name:<15s} {d:12.6g} {t:12.6g}")
        lines.append("")

        lines.append(f"Number of obs: {params.n_obs}, fixed effects: {params.n_fixed}, "
                     f"components: {params.n_components}")
        lines.append("")

        lines.append("Fixed effects:")
        lines.append(f" {'':>15s} {'Estimate':>12s}")
        for name, b in zip(params.coefficient_names, params.coefficients):
            lines.append(f" {name:>15s} {b:12.6g}")
        lines.append("")

        lines.append(f"{method} criterion at convergence: "
                     f"{-2 * params.log_likelihood:.4f}")
        lines.append(f"logLik: {params.log_likelihood:.4f} (df = {params.dof})")
        lines.append(f"AIC: {params.aic:.1f}, BIC: {params.bic:.1f}")
        lines.append(f"Iterations: {params.n_iter}, evaluations: {params.n_evaluations}")

        if not params.converged:
            lines.append("")
            lines.append("WARNING: Model did not converge; estimates are provisional")

        return '\n'.join(lines)

    def __repr__(self) -> str:
        method = 'REML' if self.params.reml else 'ML'
        return (
            f"GREMLSolution({method}, "
            f"n={self.params.n_obs}, "
            f"fixed={self.params.n_fixed}, "
            f"components={self.params.n_components}, "
            f"logLik={self.params.log_likelihood:.4f})"
        )


def _same_fixed_effects(a: GREMLDesign, b: GREMLDesign) -> bool:
    return a.X.shape == b.X.shape and bool(np.array_equal(a.X, b.X))
