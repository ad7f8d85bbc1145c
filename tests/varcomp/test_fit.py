"""End-to-end tests for GREMLModel.fit() and greml()."""

import numpy as np
import pandas as pd
import pytest
from scipy.optimize import minimize

from pygreml.core.exceptions import (
    ConvergenceError,
    DimensionError,
    NumericalError,
    ValidationError,
)
from pygreml.varcomp import (
    CholeskyBlockTransform,
    DenseRelationship,
    GREMLDesign,
    GREMLModel,
    GREMLSolution,
    greml,
)
from pygreml.varcomp._likelihood import LikelihoodEvaluator


@pytest.fixture
def small_design(small_greml):
    d = small_greml
    return GREMLDesign.build(d['y'], d['X'], [d['K'], np.ones(len(d['y']))])


def _relationships(d):
    return [d['K'], np.ones(len(d['y']))]


# ═══════════════════════════════════════════════════════════════════════
# Reference fit: n=1000, m=2000, delta=(2, 4)
# ═══════════════════════════════════════════════════════════════════════


# Fitted REML log-likelihood for simulate_greml(default_rng(123), 1000, 2000,
# (2, 4)) in conftest.py; changes if the simulation or the fit drifts.
REFERENCE_LOGLIK = -2280.343146886933


@pytest.fixture(scope='module')
def reference_fit(reference_greml):
    d = reference_greml
    design = GREMLDesign.build(d['y'], d['X'], _relationships(d))
    model = GREMLModel(design)
    model.fit(theta0=[1.0, 1.0], lower_bounds=[0.0, 0.0])
    return model


class TestReferenceFit:
    """Intercept + two uniform covariates, theta0=(1, 1), bounds (0, 0)."""

    def test_converged(self, reference_fit):
        assert reference_fit.converged
        assert reference_fit.solution.warnings == ()

    def test_pinned_log_likelihood(self, reference_fit):
        np.testing.assert_allclose(reference_fit.log_likelihood, REFERENCE_LOGLIK, rtol=1e-5)

    def test_matches_independent_maximisation(self, reference_fit, reference_greml, naive):
        d = reference_greml
        rels = _relationships(d)
        ref = minimize(
            lambda t: -naive.loglik(t, d['y'], d['X'], rels),
            x0=[1.0, 1.0],
            method='Nelder-Mead',
            bounds=[(1e-8, None), (1e-8, None)],
            options={'xatol': 1e-6, 'fatol': 1e-7, 'maxiter': 400},
        )
        np.testing.assert_allclose(reference_fit.log_likelihood, -ref.fun, rtol=1e-5)
        assert reference_fit.log_likelihood >= -ref.fun - 1e-4

    def test_loglik_at_fitted_delta(self, reference_fit, reference_greml, naive):
        d = reference_greml
        expected = naive.loglik(reference_fit.delta, d['y'], d['X'], _relationships(d))
        np.testing.assert_allclose(reference_fit.log_likelihood, expected, rtol=1e-9)

    def test_estimates_plausible(self, reference_fit):
        assert 0.5 < reference_fit.delta[0] < 4.5
        assert 2.5 < reference_fit.delta[1] < 5.5
        assert reference_fit.coefficients.shape == (3,)


# ═══════════════════════════════════════════════════════════════════════
# Model behaviour
# ═══════════════════════════════════════════════════════════════════════


class TestFit:

    def test_returns_solution(self, small_design):
        model = GREMLModel(small_design)
        assert not model.is_fitted
        sol = model.fit()
        assert isinstance(sol, GREMLSolution)
        assert model.is_fitted
        assert model.solution is sol
        assert sol.converged

    def test_model_state_updated(self, small_design):
        model = GREMLModel(small_design)
        sol = model.fit()
        np.testing.assert_array_equal(model.theta, sol.theta)
        np.testing.assert_array_equal(model.delta, sol.delta)
        np.testing.assert_array_equal(model.coefficients, sol.coefficients)
        assert model.log_likelihood == sol.log_likelihood
        assert (model.n_obs, model.n_fixed, model.n_components) == (120, 3, 2)

    def test_accessors_before_fit(self, small_design):
        model = GREMLModel(small_design)
        np.testing.assert_array_equal(model.theta, [1.0, 1.0])
        np.testing.assert_array_equal(model.lower_bounds, [0.0, 0.0])
        with pytest.raises(ValidationError, match="not been fitted"):
            model.log_likelihood

    def test_final_state_matches_final_evaluation(self, small_greml, small_design, naive):
        d = small_greml
        sol = GREMLModel(small_design).fit()
        np.testing.assert_allclose(
            sol.log_likelihood,
            naive.loglik(sol.delta, d['y'], d['X'], _relationships(d)),
            rtol=1e-10,
        )
        np.testing.assert_allclose(
            sol.coefficients, naive.gls(sol.delta, d['y'], d['X'], _relationships(d)),
            rtol=1e-8, atol=1e-10,
        )

    def test_active_bound_held_exactly(self, small_design):
        model = GREMLModel(small_design)
        model.fit(theta0=[10.0, 1.0], lower_bounds=[10.0, 0.0])
        assert model.theta[0] == 10.0
        assert model.delta[0] == 10.0
        np.testing.assert_array_equal(model.lower_bounds, [10.0, 0.0])

    @pytest.mark.parametrize('gradient', ['analytic', 'numeric'])
    def test_interior_start_lands_on_bound(self, gradient):
        # y has less spread along the range of K than along its null space,
        # so the unconstrained maximiser has delta[0] < 0
        rng = np.random.default_rng(3)
        n, m = 100, 40
        G = rng.standard_normal((n, m))
        K = G @ G.T / m
        _, U = np.linalg.eigh(K)
        scale = np.where(np.arange(n) < n - m, 3.0, 0.5)
        y = U @ (scale * rng.standard_normal(n))
        design = GREMLDesign.build(y, np.ones((n, 1)), [K, np.ones(n)])

        model = GREMLModel(design)
        sol = model.fit(theta0=[1.0, 1.0], lower_bounds=[0.0, 0.0], gradient=gradient)
        assert sol.converged
        assert model.theta[0] == 0.0
        assert model.delta[0] == 0.0
        assert model.delta[1] > 0.0
        assert LikelihoodEvaluator(design).gradient(model.delta)[0] < 0.0

    def test_deterministic(self, small_design):
        a = GREMLModel(small_design).fit()
        b = GREMLModel(small_design).fit()
        np.testing.assert_array_equal(a.theta, b.theta)
        assert a.log_likelihood == b.log_likelihood

    def test_design_not_mutated(self, small_greml, small_design):
        d = small_greml
        GREMLModel(small_design).fit()
        np.testing.assert_array_equal(small_design.y, d['y'])
        np.testing.assert_array_equal(small_design.X, d['X'])
        np.testing.assert_array_equal(small_design.relationships[0].matrix, d['K'])

    def test_shared_relationship_between_models(self, small_greml):
        d = small_greml
        n = len(d['y'])
        K = DenseRelationship(d['K'])
        full = GREMLModel(GREMLDesign.build(d['y'], d['X'], [K, np.ones(n)])).fit()
        reduced = GREMLModel(GREMLDesign.build(d['y'], d['X'][:, :1], [K, np.ones(n)])).fit()
        assert full.n_fixed == 3 and reduced.n_fixed == 1
        np.testing.assert_array_equal(K.matrix, d['K'])

    def test_numeric_gradient_agrees(self, small_design):
        analytic = GREMLModel(small_design).fit(gradient='analytic')
        numeric = GREMLModel(small_design).fit(gradient='numeric')
        assert analytic.info['gradient'] == 'analytic'
        assert numeric.info['gradient'] == 'numeric'
        np.testing.assert_allclose(analytic.log_likelihood, numeric.log_likelihood, rtol=1e-6)
        np.testing.assert_allclose(analytic.delta, numeric.delta, atol=0.05)

    def test_ml(self, small_greml, small_design, naive):
        d = small_greml
        sol = GREMLModel(small_design, reml=False).fit()
        assert sol.info['method'] == 'ML'
        np.testing.assert_allclose(
            sol.log_likelihood,
            naive.loglik(sol.delta, d['y'], d['X'], _relationships(d), reml=False),
            rtol=1e-10,
        )

    def test_fit_statistics(self, small_greml, small_design):
        sol = GREMLModel(small_design).fit()
        assert sol.dof == 5
        assert sol.aic == pytest.approx(-2 * sol.log_likelihood + 10)
        assert sol.bic == pytest.approx(-2 * sol.log_likelihood + np.log(120) * 5)
        np.testing.assert_allclose(sol.fitted_values + sol.residuals, small_greml['y'],
                                   atol=1e-10)

    def test_result_envelope(self, small_design):
        sol = GREMLModel(small_design).fit()
        assert sol.backend_name == 'cpu_cholesky'
        assert 'optimization' in sol.timing
        assert sol.info['optimizer'] == 'L-BFGS-B'
        assert sol.info['negative_pivots'] == 0
        assert sol.info['n_evaluations'] >= sol.n_iter

    def test_named_components(self, small_greml):
        d = small_greml
        design = GREMLDesign.build(d['y'], d['X'], _relationships(d),
                                   coefficient_names=['mu', 'x', 'z'],
                                   component_names=['genetic', 'residual'])
        sol = GREMLModel(design).fit()
        assert list(sol.variance_components) == ['genetic', 'residual']
        assert list(sol.coef) == ['mu', 'x', 'z']
        assert 'genetic' in sol.summary()

    def test_verbose(self, small_design, capsys):
        GREMLModel(small_design).fit(verbose=True)
        out = capsys.readouterr().out
        assert 'Backend: cpu_cholesky' in out
        assert 'logLik' in out


class TestTransforms:

    def test_cholesky_block_of_one_matches_identity(self, small_design):
        identity = GREMLModel(small_design).fit()
        chol = GREMLModel(small_design, CholeskyBlockTransform(1, n_extra=1)).fit(
            theta0=[1.0, 1.0])
        np.testing.assert_allclose(chol.log_likelihood, identity.log_likelihood, rtol=1e-6)
        np.testing.assert_allclose(chol.delta, identity.delta, atol=0.05)
        assert chol.delta[0] == pytest.approx(chol.theta[0] ** 2)

    def test_random_intercept_and_slope(self, random_slope_kernels, naive):
        d = random_slope_kernels
        design = GREMLDesign.build(d['y'], d['X'], d['relationships'])
        transform = CholeskyBlockTransform(2, n_extra=1)
        model = GREMLModel(design, transform)
        start = model.evaluator.evaluate(transform(transform.initial_theta())).log_likelihood

        sol = model.fit()

        S = transform.block_from_delta(sol.delta)
        assert np.linalg.eigvalsh(S).min() > -1e-10
        assert sol.delta[2] > 0.0
        assert sol.delta[3] > 0.0
        assert sol.log_likelihood > start
        np.testing.assert_allclose(
            sol.log_likelihood,
            naive.loglik(sol.delta, d['y'], d['X'], d['relationships']),
            rtol=1e-9,
        )

    def test_transform_by_name(self, small_design):
        assert GREMLModel(small_design, 'identity').fit().converged

    def test_transform_size_mismatch(self, small_design):
        with pytest.raises(DimensionError):
            GREMLModel(small_design, CholeskyBlockTransform(2, n_extra=1))


# ═══════════════════════════════════════════════════════════════════════
# Errors and non-convergence
# ═══════════════════════════════════════════════════════════════════════


class TestFitErrors:

    def test_start_below_bound(self, small_design):
        with pytest.raises(ValidationError, match="below lower_bounds"):
            GREMLModel(small_design).fit(theta0=[-1.0, 1.0])

    def test_wrong_length_start(self, small_design):
        with pytest.raises(DimensionError):
            GREMLModel(small_design).fit(theta0=[1.0, 1.0, 1.0])

    def test_inadmissible_start(self, small_design):
        model = GREMLModel(small_design)
        with pytest.raises(NumericalError, match="not finite at the starting point"):
            model.fit(theta0=[0.0, 0.0])
        assert not model.is_fitted

    def test_unknown_gradient(self, small_design):
        with pytest.raises(ValidationError, match="gradient"):
            GREMLModel(small_design).fit(gradient='exact')

    def test_unknown_backend(self, small_design):
        with pytest.raises(ValueError, match="Unknown backend"):
            GREMLModel(small_design, backend='tpu')

    def test_not_a_design(self, small_greml):
        with pytest.raises(ValidationError, match="GREMLDesign"):
            GREMLModel(small_greml)


class TestNonConvergence:

    def test_warns_and_flags(self, small_design):
        model = GREMLModel(small_design)
        with pytest.warns(RuntimeWarning, match="did not converge"):
            sol = model.fit(max_iter=1)
        assert not sol.converged
        assert sol.n_iter <= 1
        assert sol._result.has_warning("did not converge")
        assert "provisional" in sol.summary()
        assert np.isfinite(sol.log_likelihood)

    def test_strict_raises_and_keeps_state(self, small_design):
        model = GREMLModel(small_design)
        with pytest.raises(ConvergenceError) as info:
            model.fit(max_iter=1, strict=True)
        assert info.value.iterations <= 1
        assert not model.is_fitted
        np.testing.assert_array_equal(model.theta, [1.0, 1.0])


# ═══════════════════════════════════════════════════════════════════════
# greml() entry point and solution helpers
# ═══════════════════════════════════════════════════════════════════════


class TestGreml:

    def test_arrays(self, small_greml, small_design):
        d = small_greml
        sol = greml(d['y'], d['X'], _relationships(d))
        ref = GREMLModel(small_design).fit()
        assert sol.log_likelihood == ref.log_likelihood

    def test_design(self, small_design):
        sol = greml(small_design, lower_bounds=[0.0, 1e-6])
        assert sol.converged

    def test_design_with_extra_arrays(self, small_design, small_greml):
        with pytest.raises(TypeError):
            greml(small_design, small_greml['X'])

    def test_missing_arguments(self, small_greml):
        with pytest.raises(TypeError):
            greml(small_greml['y'])

    def test_dataframe(self, small_greml):
        d = small_greml
        n = len(d['y'])
        df = pd.DataFrame({'y': d['y'], 'x': d['x'], 'z': d['z']})
        design = GREMLDesign.from_dataframe(df, 'y', ['x', 'z'], _relationships(d))
        sol = greml(design)
        ref = greml(d['y'], d['X'], _relationships(d))
        np.testing.assert_allclose(sol.log_likelihood, ref.log_likelihood, rtol=1e-12)
        assert list(sol.coef) == ['(Intercept)', 'x', 'z']
        assert n == sol.n_obs


class TestSolution:

    def test_summary(self, small_design):
        text = GREMLModel(small_design).fit().summary()
        assert 'fit by REML' in text
        assert 'R1' in text and 'R2' in text
        assert '(Intercept)' in text
        assert 'AIC' in text

    def test_compare_nested(self, small_greml):
        d = small_greml
        n = len(d['y'])
        full = greml(d['y'], d['X'], _relationships(d))
        reduced = greml(d['y'], d['X'], [np.ones(n)])
        text = full.compare(reduced)
        assert 'Likelihood Ratio Test' in text
        assert 'on 1 df' in text
        assert reduced.compare(full) == text

    def test_compare_reml_different_fixed_effects_warns(self, small_greml):
        d = small_greml
        a = greml(d['y'], d['X'], _relationships(d))
        b = greml(d['y'], d['X'][:, :1], _relationships(d))
        with pytest.warns(UserWarning, match="identical"):
            a.compare(b)

    def test_compare_reml_with_ml(self, small_greml):
        d = small_greml
        a = greml(d['y'], d['X'], _relationships(d))
        b = greml(d['y'], d['X'], _relationships(d), reml=False)
        with pytest.raises(ValidationError):
            a.compare(b)

    def test_repr(self, small_design):
        r = repr(GREMLModel(small_design).fit())
        assert r.startswith('GREMLSolution(REML')
