"""
Parameter transforms: optimizer parameters theta -> covariance weights delta.

The optimizer works on theta; the covariance is assembled from delta.
A transform is a strategy object supplied to the model. It must be pure,
length-preserving and defined for every finite theta, including the
tentative steps a line search takes; if the resulting V is not positive
definite that is the likelihood evaluator's problem, not the transform's.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np
from numpy.typing import ArrayLike, NDArray

from pygreml.core.exceptions import DimensionError


class ParameterTransform(ABC):
    """Abstract base class for theta -> delta mappings."""

    def __init__(self, n_params: int):
        """
        Parameters
        ----------
        n_params : int
            Length of theta, which is also the length of delta and the
            number of relationship matrices.
        """
        if n_params < 1:
            raise ValueError(f"n_params must be positive, got {n_params}")
        self.n_params = n_params

    @property
    def n_components(self) -> int:
        return self.n_params

    @abstractmethod
    def evaluate(self, theta: ArrayLike) -> NDArray:
        """Map theta to delta."""
        pass

    @abstractmethod
    def jacobian(self, theta: ArrayLike) -> NDArray:
        """Jacobian J[i, j] = d delta_i / d theta_j, shape (q, q)."""
        pass

    @abstractmethod
    def default_lower_bounds(self) -> NDArray:
        """Elementwise floor on theta used when the caller gives none."""
        pass

    @abstractmethod
    def initial_theta(self) -> NDArray:
        """Starting theta used when the caller gives none."""
        pass

    def __call__(self, theta: ArrayLike) -> NDArray:
        return self.evaluate(theta)

    def _as_theta(self, theta: ArrayLike) -> NDArray:
        theta = np.asarray(theta, dtype=np.float64)
        if theta.shape != (self.n_params,):
            raise DimensionError(
                f"theta has shape {theta.shape}, expected ({self.n_params},)"
            )
        return theta

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n_params={self.n_params})"


class IdentityTransform(ParameterTransform):
    """
    Direct variance components: delta = theta.

    Each component is kept non-negative through its lower bound of 0.
    """

    def evaluate(self, theta: ArrayLike) -> NDArray:
        return np.array(self._as_theta(theta), copy=True)

    def jacobian(self, theta: ArrayLike) -> NDArray:
        self._as_theta(theta)
        return np.eye(self.n_params)

    def default_lower_bounds(self) -> NDArray:
        return np.zeros(self.n_params)

    def initial_theta(self) -> NDArray:
        return np.ones(self.n_params)


class CholeskyBlockTransform(ParameterTransform):
    """
    Positive-semidefinite k x k covariance block via Sigma = L L'.

    Parameters: [vech(L), extra...]
    where vech(L) lists the k(k+1)/2 entries of the lower-triangular
    factor L column by column, (0,0), (1,0), ..., (k-1,0), (1,1), ...

    The first k(k+1)/2 covariance weights are the same positions of
    Sigma (its lower triangle, column-major), so each is a sum of
    products of theta entries and Sigma is PSD whatever the signs of
    theta. The remaining n_extra weights (typically the residual
    variance) are passed through unchanged.

    A bivariate genetic model uses k=2: delta = (s11, s21, s22, residual)
    with relationship matrices (K1, K12, K2, I).
    """

    def __init__(self, block_size: int, n_extra: int = 1):
        if block_size < 1:
            raise ValueError(f"block_size must be positive, got {block_size}")
        if n_extra < 0:
            raise ValueError(f"n_extra must be non-negative, got {n_extra}")

        self.block_size = block_size
        self.n_block = block_size * (block_size + 1) // 2
        self.n_extra = n_extra
        super().__init__(self.n_block + n_extra)

        rows, cols = [], []
        for j in range(block_size):
            for i in range(j, block_size):
                rows.append(i)
                cols.append(j)
        self._rows = np.array(rows, dtype=np.intp)
        self._cols = np.array(cols, dtype=np.intp)

    def lower_factor(self, theta: ArrayLike) -> NDArray:
        """The lower-triangular factor L populated from theta."""
        theta = self._as_theta(theta)
        L = np.zeros((self.block_size, self.block_size))
        L[self._rows, self._cols] = theta[:self.n_block]
        return L

    def covariance_block(self, theta: ArrayLike) -> NDArray:
        """Sigma = L L'."""
        L = self.lower_factor(theta)
        return L @ L.T

    def block_from_delta(self, delta: ArrayLike) -> NDArray:
        """Symmetric k x k matrix populated from the block part of delta."""
        delta = np.asarray(delta, dtype=np.float64)
        S = np.zeros((self.block_size, self.block_size))
        S[self._rows, self._cols] = delta[:self.n_block]
        S[self._cols, self._rows] = delta[:self.n_block]
        return S

    def evaluate(self, theta: ArrayLike) -> NDArray:
        theta = self._as_theta(theta)
        sigma = self.covariance_block(theta)
        delta = np.empty(self.n_params)
        delta[:self.n_block] = sigma[self._rows, self._cols]
        delta[self.n_block:] = theta[self.n_block:]
        return delta

    def jacobian(self, theta: ArrayLike) -> NDArray:
        # d Sigma[a, b] / d L[u, v] = [a == u] L[b, v] + [b == u] L[a, v]
        L = self.lower_factor(theta)
        J = np.zeros((self.n_params, self.n_params))
        positions = list(zip(self._rows, self._cols))
        for m, (a, b) in enumerate(positions):
            for l, (u, v) in enumerate(positions):
                value = 0.0
                if a == u:
                    value += L[b, v]
                if b == u:
                    value += L[a, v]
                J[m, l] = value
        J[self.n_block:, self.n_block:] = np.eye(self.n_extra)
        return J

    def default_lower_bounds(self) -> NDArray:
        return np.concatenate([
            np.full(self.n_block, -np.inf),
            np.zeros(self.n_extra),
        ])

    def initial_theta(self) -> NDArray:
        theta = np.zeros(self.n_params)
        theta[:self.n_block][self._rows == self._cols] = 1.0
        theta[self.n_block:] = 1.0
        return theta

    def __repr__(self) -> str:
        return (f"CholeskyBlockTransform(block_size={self.block_size}, "
                f"n_extra={self.n_extra})")


def get_transform(name: str, n_components: int, **kwargs) -> ParameterTransform:
    """
    Factory function for creating transforms by name.

    Parameters
    ----------
    name : str
        'identity' or 'cholesky_block'
    n_components : int
        Number of relationship matrices (length of delta)
    **kwargs
        block_size for 'cholesky_block'; n_extra is inferred from
        n_components when not given.
    """
    name_lower = name.lower()

    if name_lower in ['identity', 'direct']:
        return IdentityTransform(n_components)
    elif name_lower in ['cholesky_block', 'cholesky-block', 'cholesky', 'chol']:
        if 'block_size' not in kwargs:
            raise ValueError("cholesky_block transform requires block_size")
        block_size = kwargs['block_size']
        n_block = block_size * (block_size + 1) // 2
        n_extra = kwargs.get('n_extra', n_components - n_block)
        transform = CholeskyBlockTransform(block_size, n_extra)
        if transform.n_params != n_components:
            raise DimensionError(
                f"cholesky_block(block_size={block_size}, n_extra={n_extra}) has "
                f"{transform.n_params} parameters, model has {n_components} components"
            )
        return transform
    else:
        raise ValueError(f"Unknown transform: {name}")
