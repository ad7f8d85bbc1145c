"""
Shared fixtures for variance-component tests.

Datasets are simulated from the model itself: a genomic relationship
matrix K = G G' / m built from m standard-normal markers, the identity for
the residual, and y drawn from N(0, d1 K + d2 I).
"""

import numpy as np
import pytest


def simulate_greml(rng, n, m, delta):
    """Draw (y, X, K) with V = delta[0] K + delta[1] I and X = [1, x, z]."""
    G = rng.standard_normal((n, m))
    K = G @ G.T / m
    V = delta[0] * K + delta[1] * np.eye(n)
    y = np.linalg.cholesky(V) @ rng.standard_normal(n)
    x = rng.random(n)
    z = rng.random(n)
    X = np.column_stack([np.ones(n), x, z])
    return {'y': y, 'X': X, 'K': K, 'x': x, 'z': z, 'delta': np.asarray(delta, float)}


def naive_loglik(delta, y, X, relationships, reml=True):
    """Dense reference (restricted) log-likelihood through LU solves.

    relationships are dense (n, n) arrays or 1-D diagonals.
    """
    n, p = X.shape
    V = np.zeros((n, n))
    for d, R in zip(delta, relationships):
        R = np.asarray(R, dtype=float)
        V += d * (np.diag(R) if R.ndim == 1 else R)
    sign, logdet_v = np.linalg.slogdet(V)
    if sign <= 0:
        return -np.inf
    S = np.linalg.solve(V, np.column_stack([X, y]))
    Vi_X, Vi_y = S[:, :p], S[:, p]
    XtViX = X.T @ Vi_X
    beta = np.linalg.solve(XtViX, X.T @ Vi_y)
    r = y - X @ beta
    rss = float(r @ (Vi_y - Vi_X @ beta))
    if reml:
        _, logdet_xtvx = np.linalg.slogdet(XtViX)
        return -0.5 * ((n - p) * np.log(2 * np.pi) + logdet_v + logdet_xtvx + rss)
    return -0.5 * (n * np.log(2 * np.pi) + logdet_v + rss)


def naive_gls(delta, y, X, relationships):
    n = X.shape[0]
    V = np.zeros((n, n))
    for d, R in zip(delta, relationships):
        R = np.asarray(R, dtype=float)
        V += d * (np.diag(R) if R.ndim == 1 else R)
    Vi_X = np.linalg.solve(V, X)
    return np.linalg.solve(X.T @ Vi_X, Vi_X.T @ y)


@pytest.fixture
def naive():
    """Reference implementations: naive.loglik, naive.gls."""
    class _Naive:
        loglik = staticmethod(naive_loglik)
        gls = staticmethod(naive_gls)
    return _Naive


@pytest.fixture
def small_greml():
    """n=120 observations, m=300 markers, delta=(2, 4)."""
    return simulate_greml(np.random.default_rng(7), 120, 300, (2.0, 4.0))


@pytest.fixture(scope='module')
def reference_greml():
    """n=1000 observations, m=2000 markers, delta=(2, 4), seed 123."""
    return simulate_greml(np.random.default_rng(123), 1000, 2000, (2.0, 4.0))


@pytest.fixture
def random_slope_kernels():
    """Random intercept + slope per group, written as four kernels.

    y_i = a_g + b_g t_i + e_i with (a_g, b_g) ~ N(0, S), e_i ~ N(0, se).
    cov(y_i, y_j) = [g_i == g_j] (S11 + S21 (t_i + t_j) + S22 t_i t_j)
                    + se [i == j]
    so V = S11 K1 + S21 K12 + S22 K2 + se I.
    """
    rng = np.random.default_rng(11)
    n_groups, n_per = 30, 8
    n = n_groups * n_per
    S = np.array([[4.0, 0.5], [0.5, 1.0]])
    se = 1.0

    g = np.repeat(np.arange(n_groups), n_per)
    t = np.tile(np.arange(n_per, dtype=float), n_groups)
    same = (g[:, None] == g[None, :]).astype(float)
    K1 = same
    K12 = same * (t[:, None] + t[None, :])
    K2 = same * np.outer(t, t)

    re = rng.multivariate_normal([0.0, 0.0], S, size=n_groups)
    y = 10.0 + 0.5 * t + re[g, 0] + re[g, 1] * t + rng.normal(0.0, np.sqrt(se), n)
    X = np.column_stack([np.ones(n), t])
    return {'y': y, 'X': X, 'relationships': [K1, K12, K2, np.ones(n)],
            'S': S, 'se': se}
